"""
API依赖项 - 服务装配与调用方身份

认证由上游网关完成；这里只读取它转发的调用方身份头。
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from application.services.authorization_service import AuthorizationService
from application.services.cancellation_service import CancellationService
from application.services.configuration_service import PaymentConfigurationService
from application.services.delivery_code_service import DeliveryCodeService
from application.services.job_scheduler import JobScheduler
from infrastructure.container import PaymentServices

ADMIN_ROLE = "admin"


def get_services(request: Request) -> PaymentServices:
    """应用启动时装配的服务集合（见 main.lifespan）"""
    services = getattr(request.app.state, "payment_services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment services not ready")
    return services


def get_authorization_service(services: PaymentServices = Depends(get_services)) -> AuthorizationService:
    return services.authorizations


def get_cancellation_service(services: PaymentServices = Depends(get_services)) -> CancellationService:
    return services.cancellations


def get_job_scheduler(services: PaymentServices = Depends(get_services)) -> JobScheduler:
    return services.scheduler


def get_configuration_service(services: PaymentServices = Depends(get_services)) -> PaymentConfigurationService:
    return services.config


def get_delivery_code_service(services: PaymentServices = Depends(get_services)) -> DeliveryCodeService:
    return services.delivery_codes


async def get_actor_id(x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id")) -> int:
    """调用方用户ID（由上游认证网关注入）"""
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    try:
        return int(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Actor-Id must be an integer")


async def require_admin(
    actor_id: int = Depends(get_actor_id),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> int:
    """运维接口：要求调用方角色为 admin"""
    if (x_actor_role or "").lower() != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator role required",
        )
    return actor_id
