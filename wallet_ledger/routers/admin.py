from datetime import date, datetime, timezone, time
from typing import List, Optional

from fastapi import APIRouter, Depends, status, Query
from sqlalchemy import select, func, case, or_
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.database import atomic
from wallet_ledger.core.dependencies import (
    access_admin, get_admin_id, get_session, get_adjustments,
    get_refund_orchestrator, get_subscription_engine
)
from wallet_ledger.core.exceptions import ValidationError, WalletNotFound
from wallet_ledger.models import (
    Wallet, WalletTransaction, TransactionType, TransactionCategory,
    User, SubscriptionStatus, REFUND_CATEGORIES
)
from wallet_ledger.schemas.base import (
    WalletList, WalletListItem, WalletStatsResponse, WalletReconcileResponse,
    AdjustmentRequest, AdjustmentResponse, ResetRequest
)
from wallet_ledger.schemas.refunds import (
    PendingRefundsResponse, RefundProcessResponse, RefundHistoryItem,
    RefundStatsResponse, ManualRefundRequest, TripCancelRequest,
    TripCancelResponse
)
from wallet_ledger.schemas.serializers import serialize_transaction
from wallet_ledger.schemas.subscription import (
    SubscriptionList, SubscriptionOut, SubscriptionStatsResponse,
    InvoiceList, InvoiceOut, SubscriptionCancelRequest,
    SubscriptionCancelResponse
)
from wallet_ledger.schemas.transactions import TransactionPaginatedList
from wallet_ledger.services.adjustments import AdminAdjustments
from wallet_ledger.services.ledger import TransactionLedger
from wallet_ledger.services.refunds import RefundOrchestrator
from wallet_ledger.services.subscriptions import SubscriptionEngine
from wallet_ledger.utils.common import ZERO, to_money
from wallet_ledger.routers.responses import (
    FORBIDDEN_ADMIN, SERVER_ERROR, WALLET_NOT_FOUND, USER_NOT_FOUND,
    SUBSCRIPTION_NOT_FOUND, TRIP_NOT_FOUND, ALREADY_TERMINAL,
    INSUFFICIENT_FUNDS, VALIDATION_ERROR
)

import logging

logger = logging.getLogger("[ADMIN]")

ADMIN_DESCRIPTION = "Доступ лише для адміністратора. Headers: X-Admin-Token"
ADMIN_MUTATION_DESCRIPTION = (
    "Доступ лише для адміністратора. Headers: X-Admin-Token, X-Admin-Id"
)


# Admin API
admin_router = APIRouter(prefix="/api/admin", tags=["Admin API"])


# ***********************************************************    Wallets
@admin_router.get(
    "/wallets",
    dependencies=[Depends(access_admin)],
    summary="Список гаманців з даними користувачів",
    description=ADMIN_DESCRIPTION,
    response_model=WalletList,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def list_wallets(
    search: Optional[str] = Query(None, description="name / phone / email / user_id"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session)
):
    filters = []
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(or_(
            User.name.ilike(pattern),
            User.phone.ilike(pattern),
            User.email.ilike(pattern),
            Wallet.user_id == search.strip(),
        ))

    # підрахунок total
    count_stmt = (
        select(func.count(Wallet.id))
        .join(User, User.id == Wallet.user_id)
        .where(*filters)
    )
    total = await session.scalar(count_stmt) or 0

    stmt = (
        select(
            Wallet,
            User,
            func.count(WalletTransaction.id).label("transaction_count"),
            func.max(WalletTransaction.created_at).label("last_transaction_at"),
        )
        .join(User, User.id == Wallet.user_id)
        .outerjoin(WalletTransaction, WalletTransaction.wallet_id == Wallet.id)
        .where(*filters)
        .group_by(Wallet.id, User.id)
        .order_by(Wallet.balance.desc(), Wallet.id)
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)

    wallets = [
        WalletListItem(
            id=row.Wallet.id,
            user_id=row.Wallet.user_id,
            balance=to_money(row.Wallet.balance),
            user_name=row.User.name,
            user_phone=row.User.phone,
            user_email=row.User.email,
            transaction_count=row.transaction_count,
            last_transaction_at=row.last_transaction_at,
            created_at=row.Wallet.created_at,
            updated_at=row.Wallet.updated_at,
        )
        for row in result.all()
    ]

    return WalletList(total=total, limit=limit, offset=offset, wallets=wallets)


@admin_router.get(
    "/wallets/stats",
    dependencies=[Depends(access_admin)],
    summary="Статистика гаманців",
    description=ADMIN_DESCRIPTION,
    response_model=WalletStatsResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def get_wallet_stats(
    session: AsyncSession = Depends(get_session)
):
    result = await session.execute(
        select(
            func.count(Wallet.id).label("total"),
            func.sum(Wallet.balance).label("balance"),
            func.sum(case((Wallet.balance == 0, 1), else_=0)).label("zero"),
        )
    )
    row = result.one()
    total_wallets = row.total or 0
    total_balance = to_money(row.balance or ZERO)

    result = await session.execute(
        select(
            func.sum(case(
                (WalletTransaction.type == TransactionType.CREDIT, WalletTransaction.amount),
                else_=0,
            )).label("credited"),
            func.sum(case(
                (WalletTransaction.type == TransactionType.DEBIT, WalletTransaction.amount),
                else_=0,
            )).label("debited"),
        )
    )
    totals = result.one()

    return WalletStatsResponse(
        total_wallets=total_wallets,
        total_balance=total_balance,
        average_balance=(
            to_money(total_balance / total_wallets) if total_wallets else ZERO
        ),
        zero_balance_wallets=row.zero or 0,
        total_credited=to_money(totals.credited or ZERO),
        total_debited=to_money(abs(totals.debited or ZERO)),
    )


@admin_router.get(
    "/wallets/{wallet_id}/transactions",
    dependencies=[Depends(access_admin)],
    summary="Історія транзакцій гаманця",
    description=ADMIN_DESCRIPTION,
    response_model=TransactionPaginatedList,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 404: WALLET_NOT_FOUND, 500: SERVER_ERROR},
)
async def list_wallet_transactions(
    wallet_id: int,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session)
):
    wallet = await session.get(Wallet, wallet_id)
    if wallet is None:
        raise WalletNotFound(wallet_id)

    ledger = TransactionLedger(session)
    total = await ledger.count_by_wallet(wallet_id)
    db_transactions = await ledger.list_by_wallet(wallet_id, limit, offset)

    return TransactionPaginatedList(
        total=total,
        limit=limit,
        offset=offset,
        transactions=[serialize_transaction(t) for t in db_transactions]
    )


@admin_router.get(
    "/wallets/{wallet_id}/reconcile",
    dependencies=[Depends(access_admin)],
    summary="Звірка балансу гаманця з журналом транзакцій",
    description=ADMIN_DESCRIPTION,
    response_model=WalletReconcileResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 404: WALLET_NOT_FOUND, 500: SERVER_ERROR},
)
async def reconcile_wallet(
    wallet_id: int,
    session: AsyncSession = Depends(get_session)
):
    report = await TransactionLedger(session).reconcile(wallet_id)
    if not report["consistent"]:
        logger.error(f"Wallet {wallet_id} is inconsistent with its ledger: {report}")
    return WalletReconcileResponse(**report)


@admin_router.post(
    "/wallets/{wallet_id}/adjust",
    dependencies=[Depends(access_admin)],
    summary="Ручне коригування балансу",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=AdjustmentResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: INSUFFICIENT_FUNDS,
        403: FORBIDDEN_ADMIN,
        404: WALLET_NOT_FOUND,
        422: VALIDATION_ERROR,
        500: SERVER_ERROR,
    },
)
async def adjust_wallet(
    wallet_id: int,
    payload: AdjustmentRequest,
    admin_id: str = Depends(get_admin_id),
    adjustments: AdminAdjustments = Depends(get_adjustments)
):
    tx = await adjustments.adjust(
        wallet_id,
        TransactionType(payload.type),
        payload.amount,
        payload.reason,
        admin_id,
        description=payload.description,
    )
    return AdjustmentResponse(
        wallet_id=wallet_id,
        new_balance=tx.balance_after,
        transaction=serialize_transaction(tx)
    )


@admin_router.post(
    "/wallets/{wallet_id}/reset",
    dependencies=[Depends(access_admin)],
    summary="Обнулення балансу гаманця",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=AdjustmentResponse,
    status_code=status.HTTP_200_OK,
    responses={
        403: FORBIDDEN_ADMIN,
        404: WALLET_NOT_FOUND,
        422: VALIDATION_ERROR,
        500: SERVER_ERROR,
    },
)
async def reset_wallet(
    wallet_id: int,
    payload: ResetRequest,
    admin_id: str = Depends(get_admin_id),
    adjustments: AdminAdjustments = Depends(get_adjustments)
):
    tx = await adjustments.reset(wallet_id, payload.reason, admin_id)
    return AdjustmentResponse(
        wallet_id=wallet_id,
        new_balance=tx.balance_after,
        transaction=serialize_transaction(tx)
    )


# ***********************************************************    Refunds
@admin_router.post(
    "/refunds",
    dependencies=[Depends(access_admin)],
    summary="Ручне повернення коштів користувачу",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: FORBIDDEN_ADMIN,
        404: USER_NOT_FOUND,
        422: VALIDATION_ERROR,
        500: SERVER_ERROR,
    },
)
async def create_manual_refund(
    payload: ManualRefundRequest,
    admin_id: str = Depends(get_admin_id),
    adjustments: AdminAdjustments = Depends(get_adjustments)
):
    tx = await adjustments.refund(
        payload.user_id,
        payload.amount,
        payload.reason,
        admin_id,
        description=payload.description,
    )
    return AdjustmentResponse(
        wallet_id=tx.wallet_id,
        new_balance=tx.balance_after,
        transaction=serialize_transaction(tx)
    )


@admin_router.post(
    "/refunds/process",
    dependencies=[Depends(access_admin)],
    summary="Обробка всіх очікуваних повернень",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=RefundProcessResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def process_refunds(
    admin_id: str = Depends(get_admin_id),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    logger.info(f"Refund processing triggered by admin {admin_id}")
    return await orchestrator.process_all()


@admin_router.get(
    "/refunds/pending",
    dependencies=[Depends(access_admin)],
    summary="Очікувані повернення (поїздки, підписки, пропущені дні)",
    description=ADMIN_DESCRIPTION,
    response_model=PendingRefundsResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def list_pending_refunds(
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    return await orchestrator.list_pending()


@admin_router.get(
    "/refunds/history",
    dependencies=[Depends(access_admin)],
    summary="Історія повернень",
    description=ADMIN_DESCRIPTION,
    response_model=List[RefundHistoryItem],
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 422: VALIDATION_ERROR, 500: SERVER_ERROR},
)
async def get_refund_history(
    start_date: Optional[date] = Query(None, description="Start date (e.g. 2026-01-01)"),
    end_date: Optional[date] = Query(None, description="End date (e.g. 2026-01-31)"),
    user_id: Optional[str] = Query(None),
    refund_type: Optional[str] = Query(None, description="trip_cancellation / subscription_cancellation / missed_service / manual_refund"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    categories = None
    if refund_type:
        try:
            category = TransactionCategory(refund_type)
        except ValueError:
            category = None
        if category not in REFUND_CATEGORIES:
            raise ValidationError(f"Unknown refund type: '{refund_type}'.")
        categories = [category]

    # формування дати-часу з дати
    start = (
        datetime.combine(start_date, time(0, 0, 0), tzinfo=timezone.utc)
        if start_date else None
    )
    end = (
        datetime.combine(end_date, time(23, 59, 59), tzinfo=timezone.utc)
        if end_date else None
    )

    return await orchestrator.history(
        start, end, user_id, categories, limit, offset
    )


@admin_router.get(
    "/refunds/stats",
    dependencies=[Depends(access_admin)],
    summary="Статистика повернень",
    description=ADMIN_DESCRIPTION,
    response_model=RefundStatsResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def get_refund_stats(
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    return await orchestrator.stats()


# ***********************************************************    Subscriptions
@admin_router.get(
    "/subscriptions",
    dependencies=[Depends(access_admin)],
    summary="Список підписок",
    description=ADMIN_DESCRIPTION,
    response_model=SubscriptionList,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def list_subscriptions(
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    subscriptions = await engine.list_subscriptions(
        status_filter, user_id, limit, offset
    )
    return SubscriptionList(
        limit=limit,
        offset=offset,
        subscriptions=[SubscriptionOut.model_validate(s) for s in subscriptions]
    )


@admin_router.get(
    "/subscriptions/stats",
    dependencies=[Depends(access_admin)],
    summary="Статистика підписок",
    description=ADMIN_DESCRIPTION,
    response_model=SubscriptionStatsResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 500: SERVER_ERROR},
)
async def get_subscription_stats(
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    return await engine.stats()


@admin_router.get(
    "/subscriptions/{subscription_id}/invoices",
    dependencies=[Depends(access_admin)],
    summary="Рахунки підписки",
    description=ADMIN_DESCRIPTION,
    response_model=InvoiceList,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 404: SUBSCRIPTION_NOT_FOUND, 500: SERVER_ERROR},
)
async def list_subscription_invoices(
    subscription_id: str,
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    invoices = await engine.invoices(subscription_id)
    return InvoiceList(
        subscription_id=subscription_id,
        invoices=[InvoiceOut.model_validate(i) for i in invoices]
    )


@admin_router.post(
    "/subscriptions/{subscription_id}/cancel",
    dependencies=[Depends(access_admin)],
    summary="Скасування підписки (повернення нараховується при обробці)",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=SubscriptionCancelResponse,
    status_code=status.HTTP_200_OK,
    responses={
        403: FORBIDDEN_ADMIN,
        404: SUBSCRIPTION_NOT_FOUND,
        409: ALREADY_TERMINAL,
        500: SERVER_ERROR,
    },
)
async def cancel_subscription(
    subscription_id: str,
    payload: Optional[SubscriptionCancelRequest] = None,
    admin_id: str = Depends(get_admin_id),
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    on_date = payload.cancellation_date if payload else None
    async with atomic(engine.session):
        subscription = await engine.request_cancellation(subscription_id, on_date)

    logger.info(
        f"Admin {admin_id} cancelled subscription {subscription_id}, "
        f"refund {subscription.refund_amount}"
    )
    return SubscriptionCancelResponse(
        subscription=SubscriptionOut.model_validate(subscription),
        refund_amount=to_money(subscription.refund_amount),
        message="Subscription cancellation requested; refund will be processed."
    )


# ***********************************************************    Trips
@admin_router.post(
    "/trips/{trip_id}/cancel",
    dependencies=[Depends(access_admin)],
    summary="Скасування поїздки з негайним поверненням пасажирам",
    description=ADMIN_MUTATION_DESCRIPTION,
    response_model=TripCancelResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_ADMIN, 404: TRIP_NOT_FOUND, 500: SERVER_ERROR},
)
async def cancel_trip(
    trip_id: str,
    payload: TripCancelRequest,
    admin_id: str = Depends(get_admin_id),
    orchestrator: RefundOrchestrator = Depends(get_refund_orchestrator)
):
    logger.info(f"Admin {admin_id} cancels trip {trip_id}: {payload.reason}")
    return await orchestrator.cancel_trip_and_refund(trip_id, payload.reason)
