"""
交付码API路由
"""
from fastapi import APIRouter, Depends, status

from api.dependencies import get_actor_id, get_delivery_code_service
from application.dtos.authorizations import DeliveryCodeDTO, VerifyDeliveryCodeDTO
from application.services.delivery_code_service import DeliveryCodeService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/delivery-codes",
    tags=["Delivery codes"],
)


@router.post("/bookings/{booking_id}", summary="为预订签发交付码", status_code=status.HTTP_201_CREATED,
             response_model=ApiResponse[DeliveryCodeDTO])
async def issue_code(
    booking_id: int,
    actor_id: int = Depends(get_actor_id),
    service: DeliveryCodeService = Depends(get_delivery_code_service),
):
    """已有有效交付码时直接返回"""
    code = await service.issue(booking_id)
    return success_response(data=DeliveryCodeDTO.from_entity(code))


@router.post("/bookings/{booking_id}/verify", summary="核验交付码")
async def verify_code(
    booking_id: int,
    payload: VerifyDeliveryCodeDTO,
    actor_id: int = Depends(get_actor_id),
    service: DeliveryCodeService = Depends(get_delivery_code_service),
):
    verified = await service.verify(booking_id, payload.code)
    return success_response(data={"booking_id": booking_id, "verified": verified})
