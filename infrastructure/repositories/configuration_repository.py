"""
Payment configuration repository - SQLAlchemy implementation
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.configuration.entity import ConfigurationEntry, ValueType
from domain.configuration.repository import ConfigurationRepository
from infrastructure.models.configuration import PaymentConfigurationModel
from shared.clock import as_utc, utcnow


class SQLAlchemyConfigurationRepository(ConfigurationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentConfigurationModel) -> ConfigurationEntry:
        return ConfigurationEntry(
            key=model.key,
            value=model.value,
            value_type=ValueType(model.value_type),
            category=model.category,
            description=model.description,
            is_active=model.is_active,
            updated_at=as_utc(model.updated_at),
        )

    async def get(self, key: str) -> Optional[ConfigurationEntry]:
        result = await self.session.execute(
            select(PaymentConfigurationModel).where(PaymentConfigurationModel.key == key)
        )
        db_entry = result.scalar_one_or_none()
        return self._to_entity(db_entry) if db_entry else None

    async def list(self, category: Optional[str] = None, active_only: bool = True) -> List[ConfigurationEntry]:
        query = select(PaymentConfigurationModel)
        if category:
            query = query.where(PaymentConfigurationModel.category == category)
        if active_only:
            query = query.where(PaymentConfigurationModel.is_active.is_(True))
        result = await self.session.execute(
            query.order_by(PaymentConfigurationModel.category.asc(), PaymentConfigurationModel.key.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def upsert(self, entry: ConfigurationEntry) -> ConfigurationEntry:
        result = await self.session.execute(
            select(PaymentConfigurationModel).where(PaymentConfigurationModel.key == entry.key)
        )
        db_entry = result.scalar_one_or_none()
        if db_entry is None:
            db_entry = PaymentConfigurationModel(key=entry.key)
            self.session.add(db_entry)
        db_entry.value = entry.value
        db_entry.value_type = entry.value_type.value
        db_entry.category = entry.category
        db_entry.description = entry.description
        db_entry.is_active = entry.is_active
        db_entry.updated_at = entry.updated_at or utcnow()
        await self.session.flush()
        return self._to_entity(db_entry)
