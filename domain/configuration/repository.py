from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import ConfigurationEntry


class ConfigurationRepository(ABC):

    @abstractmethod
    async def get(self, key: str) -> Optional[ConfigurationEntry]:
        pass

    @abstractmethod
    async def list(self, category: Optional[str] = None, active_only: bool = True) -> List[ConfigurationEntry]:
        pass

    @abstractmethod
    async def upsert(self, entry: ConfigurationEntry) -> ConfigurationEntry:
        pass
