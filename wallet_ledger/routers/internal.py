from typing import Optional

from fastapi import APIRouter, Depends, status

from wallet_ledger.core.dependencies import (
    access_internal, get_refund_orchestrator, get_renewal_job
)
from wallet_ledger.schemas.refunds import RefundProcessResponse
from wallet_ledger.schemas.subscription import RenewalRequest, RenewalSummary
from wallet_ledger.services.refunds import RefundOrchestrator
from wallet_ledger.services.renewals import SubscriptionRenewalJob
from wallet_ledger.routers.responses import FORBIDDEN_SERVICE, SERVER_ERROR

import logging
logger = logging.getLogger("[INTERNAL]")


# Internal API (для cron / інших внутрішніх сервісів)
internal_router = APIRouter(prefix="/api/internal", tags=["Internal API"])


@internal_router.post(
    "/refunds/process",
    dependencies=[Depends(access_internal)],
    summary="Batch обробка очікуваних повернень (cron)",
    description="Лише внутрішній доступ. Headers: X-Service-Token",
    response_model=RefundProcessResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_SERVICE, 500: SERVER_ERROR},
)
async def process_pending_refunds(
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    result = await orchestrator.process_all()
    logger.info(
        f"Scheduled refund run: processed={result.processed}, "
        f"failed={result.failed}, total={result.total_amount}"
    )
    return result


@internal_router.post(
    "/subscriptions/renewals",
    dependencies=[Depends(access_internal)],
    summary="Продовження / завершення підписок наприкінці циклу (cron)",
    description="Лише внутрішній доступ. Headers: X-Service-Token",
    response_model=RenewalSummary,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_SERVICE, 500: SERVER_ERROR},
)
async def process_subscription_renewals(
    payload: Optional[RenewalRequest] = None,
    job: SubscriptionRenewalJob = Depends(get_renewal_job)
):
    payload = payload or RenewalRequest()
    summary = await job.process_renewals(payload.today, dry_run=payload.dry_run)
    logger.info(f"Scheduled renewal run: {summary}")
    return summary
