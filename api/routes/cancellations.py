"""
取消与退款API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_actor_id, get_cancellation_service
from application.dtos.authorizations import CancellationRequestDTO
from application.services.cancellation_service import CancellationService
from core.response import success_response

router = APIRouter(
    prefix="/cancellations",
    tags=["Cancellations"],
)


@router.post("/bookings/{booking_id}/preview", summary="预览取消结果（不产生副作用）")
async def preview_cancellation(
    booking_id: int,
    no_show: bool = False,
    actor_id: int = Depends(get_actor_id),
    service: CancellationService = Depends(get_cancellation_service),
):
    return success_response(data=await service.preview(booking_id, actor_id, no_show=no_show))


@router.post("/bookings/{booking_id}", summary="寄件人取消预订")
async def cancel_booking(
    booking_id: int,
    payload: CancellationRequestDTO | None = None,
    actor_id: int = Depends(get_actor_id),
    service: CancellationService = Depends(get_cancellation_service),
):
    """
    按距出发时间分档退款：

    - **free**: 未确认或距出发足够远，全额退回
    - **early**: 退回金额扣除网关手续费
    - **late**: 净额按比例在寄件人与出行人之间分配
    """
    result = await service.cancel_booking(booking_id, actor_id, payload.reason if payload else None)
    return success_response(data=result, message="Booking cancelled")


@router.post("/trips/{trip_id}", summary="出行人取消行程")
async def cancel_trip(
    trip_id: int,
    payload: CancellationRequestDTO | None = None,
    actor_id: int = Depends(get_actor_id),
    service: CancellationService = Depends(get_cancellation_service),
):
    """滚动窗口内超过取消次数上限时返回 429"""
    result = await service.cancel_trip(trip_id, actor_id, payload.reason if payload else None)
    return success_response(data=result, message="Trip cancelled")


@router.post("/bookings/{booking_id}/no-show", summary="出行人报告寄件人未到")
async def report_no_show(
    booking_id: int,
    payload: CancellationRequestDTO | None = None,
    actor_id: int = Depends(get_actor_id),
    service: CancellationService = Depends(get_cancellation_service),
):
    result = await service.report_no_show(booking_id, actor_id, payload.reason if payload else None)
    return success_response(data=result, message="No-show recorded")
