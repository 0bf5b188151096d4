"""
支付授权API路由 - FastAPI表现层
"""
from fastapi import APIRouter, Depends, status

from api.dependencies import get_actor_id, get_authorization_service
from application.dtos.authorizations import (
    AuthorizationResponseDTO,
    CancelAuthorizationDTO,
    CaptureResponseDTO,
    CreateAuthorizationDTO,
)
from application.services.authorization_service import AuthorizationService
from core.response import Response as ApiResponse, success_response
from domain.authorization.entity import CaptureReason

router = APIRouter(
    prefix="/authorizations",
    tags=["Payment authorizations"],
)


@router.post("", summary="为已接受的预订预授权资金", status_code=status.HTTP_201_CREATED,
             response_model=ApiResponse[AuthorizationResponseDTO])
async def create_authorization(
    payload: CreateAuthorizationDTO,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """
    预授权预订金额（手动扣款模式）

    收款方账户尚不可收款时，授权进入 pending_gateway_setup，待账户就绪后再向网关授权。
    """
    authorization = await service.create_for_booking(payload.booking_id, actor_id=actor_id)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization), message="Authorization created")


@router.get("/{authorization_id}", summary="查询授权", response_model=ApiResponse[AuthorizationResponseDTO])
async def get_authorization(
    authorization_id: int,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    authorization = await service.get(authorization_id, actor_id=actor_id)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization))


@router.get("/{authorization_id}/client-secret", summary="获取前端确认支付所需的 client secret")
async def get_client_secret(
    authorization_id: int,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    return success_response(data=await service.get_client_secret(authorization_id, actor_id))


@router.post("/{authorization_id}/confirm", summary="寄件人确认支付",
             response_model=ApiResponse[AuthorizationResponseDTO])
async def confirm_authorization(
    authorization_id: int,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """确认后安排自动扣款与过期任务"""
    authorization = await service.confirm(authorization_id, actor_id)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization), message="Authorization confirmed")


@router.post("/{authorization_id}/capture", summary="手动扣款", response_model=ApiResponse[CaptureResponseDTO])
async def capture_authorization(
    authorization_id: int,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """幂等：已扣款的授权直接返回原结果"""
    outcome = await service.capture(authorization_id, CaptureReason.MANUAL, actor_id=actor_id)
    return success_response(
        data=CaptureResponseDTO(
            authorization=AuthorizationResponseDTO.from_entity(outcome.authorization),
            already_captured=outcome.already_captured,
            transaction_id=outcome.transaction_id,
        ),
        message="Payment captured",
    )


@router.post("/{authorization_id}/cancel", summary="取消授权", response_model=ApiResponse[AuthorizationResponseDTO])
async def cancel_authorization(
    authorization_id: int,
    payload: CancelAuthorizationDTO | None = None,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    reason = payload.reason if payload else None
    authorization = await service.cancel(authorization_id, actor_id, reason)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization), message="Authorization cancelled")


@router.post("/bookings/{booking_id}/pickup", summary="取件确认后扣款")
async def capture_on_pickup(
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """由取件确认触发；配置关闭时返回 skipped"""
    return success_response(data=await service.capture_on_pickup(booking_id, actor_id=actor_id))
