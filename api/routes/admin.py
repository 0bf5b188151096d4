"""
运维API路由 - 授权排查、任务队列、支付配置
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_authorization_service,
    get_configuration_service,
    get_job_scheduler,
    require_admin,
)
from application.dtos.authorizations import (
    AttachDestinationDTO,
    AuthorizationResponseDTO,
    CaptureAuthorizationDTO,
    CaptureResponseDTO,
    ConfigurationUpdateDTO,
    EventLogDTO,
)
from application.services.authorization_service import AuthorizationService
from application.services.configuration_service import PaymentConfigurationService
from application.services.job_scheduler import JobScheduler
from core.config import settings
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.authorization import AuthorizationStatus, CaptureReason

router = APIRouter(
    prefix="/admin",
    tags=["Operations"],
    dependencies=[Depends(require_admin)],
)


# ---- authorizations ----

@router.get("/authorizations", summary="按状态分页列出授权",
            response_model=ApiResponse[PaginatedData[AuthorizationResponseDTO]])
async def list_authorizations(
    status: Optional[AuthorizationStatus] = Query(None, description="过滤状态"),
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    service: AuthorizationService = Depends(get_authorization_service),
):
    items, total = await service.page_by_status(status, page=page, size=size)
    return paginated_response(
        items=[AuthorizationResponseDTO.from_entity(a) for a in items],
        total=total,
        page=page,
        size=size,
    )


@router.get("/authorizations/stats", summary="授权统计")
async def authorization_stats(service: AuthorizationService = Depends(get_authorization_service)):
    return success_response(data=await service.statistics())


@router.get("/authorizations/{authorization_id}/timeline", summary="授权事件时间线")
async def authorization_timeline(
    authorization_id: int,
    service: AuthorizationService = Depends(get_authorization_service),
):
    entries = await service.timeline(authorization_id)
    return success_response(data=[EventLogDTO.from_entity(e) for e in entries])


@router.get("/events/attention", summary="需要人工处理的事件")
async def events_requiring_attention(
    limit: int = Query(50, ge=1, le=500),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """扣款失败、任务耗尽、对账修正等需要运维跟进的记录，按时间倒序"""
    entries = await service.requiring_attention(limit)
    return success_response(data=[EventLogDTO.from_entity(e) for e in entries])


@router.post("/authorizations/{authorization_id}/force-capture", summary="强制扣款",
             response_model=ApiResponse[CaptureResponseDTO])
async def force_capture(
    authorization_id: int,
    payload: Optional[CaptureAuthorizationDTO] = None,
    admin_id: int = Depends(require_admin),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """失败时不再安排自动重试，由运维决定后续处理"""
    outcome = await service.capture(authorization_id, CaptureReason.ADMIN, actor_id=admin_id, schedule_retry=False)
    return success_response(
        data=CaptureResponseDTO(
            authorization=AuthorizationResponseDTO.from_entity(outcome.authorization),
            already_captured=outcome.already_captured,
            transaction_id=outcome.transaction_id,
        ),
        message=payload.reason if payload and payload.reason else "Payment captured",
    )


@router.post("/authorizations/{authorization_id}/force-cancel", summary="强制取消授权",
             response_model=ApiResponse[AuthorizationResponseDTO])
async def force_cancel(
    authorization_id: int,
    payload: Optional[CaptureAuthorizationDTO] = None,
    admin_id: int = Depends(require_admin),
    service: AuthorizationService = Depends(get_authorization_service),
):
    reason = payload.reason if payload and payload.reason else "admin_cancelled"
    authorization = await service.cancel(authorization_id, admin_id, reason, system=True)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization), message="Authorization cancelled")


@router.post("/authorizations/{authorization_id}/destination", summary="补录收款账户",
             response_model=ApiResponse[AuthorizationResponseDTO])
async def attach_destination(
    authorization_id: int,
    payload: AttachDestinationDTO,
    service: AuthorizationService = Depends(get_authorization_service),
):
    authorization = await service.attach_destination(authorization_id, payload.destination_account)
    return success_response(data=AuthorizationResponseDTO.from_entity(authorization))


@router.post("/payees/{payee_id}/activate", summary="收款账户开通后恢复待授权的预订")
async def activate_payee(
    payee_id: int,
    payload: AttachDestinationDTO,
    service: AuthorizationService = Depends(get_authorization_service),
):
    resumed = await service.activate_payee(payee_id, payload.destination_account)
    return success_response(data=[AuthorizationResponseDTO.from_entity(a) for a in resumed])


# ---- scheduled jobs ----

@router.get("/jobs/stats", summary="任务队列状态")
async def job_stats(
    overdue_minutes: int = Query(5, ge=1),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    return success_response(data=await scheduler.queue_stats(overdue_minutes))


@router.get("/jobs/metrics", summary="任务执行指标")
async def job_metrics(
    hours: int = Query(24, ge=1, le=24 * 30),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    return success_response(data=await scheduler.performance_metrics(hours))


@router.post("/jobs/run", summary="立即执行到期任务")
async def run_due_jobs(
    limit: int = Query(50, ge=1, le=500),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    summary = await scheduler.run_due(limit)
    return success_response(data=summary.to_dict())


@router.post("/jobs/retry-failed", summary="重新排队失败任务")
async def retry_failed_jobs(
    limit: int = Query(100, ge=1, le=1000),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    return success_response(data={"requeued": await scheduler.retry_failed_jobs(limit)})


# ---- configuration ----

@router.get("/config", summary="列出生效中的支付配置")
async def list_configuration(
    category: Optional[str] = Query(None),
    config: PaymentConfigurationService = Depends(get_configuration_service),
):
    return success_response(data=await config.list_all(category))


@router.get("/config/{key}", summary="查询单项配置")
async def get_configuration(key: str, config: PaymentConfigurationService = Depends(get_configuration_service)):
    return success_response(data=await config.get_entry(key))


@router.put("/config/{key}", summary="更新配置（同时失效缓存）")
async def update_configuration(
    key: str,
    payload: ConfigurationUpdateDTO,
    config: PaymentConfigurationService = Depends(get_configuration_service),
):
    await config.set(
        key,
        payload.value,
        value_type=payload.value_type,
        category=payload.category,
        description=payload.description,
        is_active=payload.is_active,
    )
    return success_response(data=await config.get_entry(key), message="Configuration updated")
