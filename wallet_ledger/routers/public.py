from typing import Optional, List

from fastapi import APIRouter, status, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.database import atomic
from wallet_ledger.core.dependencies import (
    get_current_user, get_session, get_wallet_store, get_subscription_engine
)
from wallet_ledger.core.exceptions import SubscriptionNotFound
from wallet_ledger.models import (
    WalletTransaction, TransactionType, TransactionCategory, PaymentMethod
)
from wallet_ledger.schemas.base import WalletBalanceResponse
from wallet_ledger.schemas.serializers import serialize_transaction
from wallet_ledger.schemas.subscription import (
    SubscriptionCreate, SubscriptionOut, SubscriptionList,
    SubscriptionCancelResponse
)
from wallet_ledger.schemas.transactions import (
    TransactionPaginatedList, TopUpRequest, TopUpResponse
)
from wallet_ledger.services.subscriptions import SubscriptionEngine
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import to_money
from wallet_ledger.utils.idempotency import check_idempotency
from wallet_ledger.utils.logging import get_extra_data_log
from wallet_ledger.routers.responses import (
    UNAUTHORIZED, FORBIDDEN_USER, SERVER_ERROR, USER_NOT_FOUND,
    SUBSCRIPTION_NOT_FOUND, ALREADY_TERMINAL, INSUFFICIENT_FUNDS,
    VALIDATION_ERROR
)

import logging
logger = logging.getLogger("[PUBLIC]")

USER_DESCRIPTION = (
    "Доступ для user з token. "
    "Headers: Authorization: Bearer {user_token}, X-User-Id"
)


# API для фронтенду (зовнішні користувачі)
public_router = APIRouter(prefix="/api/v1", tags=["Public API"])


@public_router.get(
    "/wallet",
    summary="Баланс гаманця користувача",
    description=USER_DESCRIPTION,
    response_model=WalletBalanceResponse,
    status_code=status.HTTP_200_OK,
    responses={
        401: UNAUTHORIZED,
        403: FORBIDDEN_USER,
        404: USER_NOT_FOUND,
        500: SERVER_ERROR,
    },
)
async def get_wallet_balance(
    user_id: str = Depends(get_current_user),
    store: WalletStore = Depends(get_wallet_store)
):
    # спочатку Redis, якщо немає - БД
    balance = await store.get_balance(user_id)
    return WalletBalanceResponse(
        wallet_id=balance["wallet_id"],
        user_id=user_id,
        balance=balance["balance"]
    )


@public_router.get(
    "/wallet/transactions",
    summary="Історія транзакцій",
    description=USER_DESCRIPTION,
    response_model=TransactionPaginatedList,
    status_code=status.HTTP_200_OK,
    responses={401: UNAUTHORIZED, 403: FORBIDDEN_USER, 500: SERVER_ERROR},
)
async def list_user_transactions(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[TransactionType] = Query(None),
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    # базовий запит
    stmt = select(WalletTransaction).where(WalletTransaction.user_id == user_id)
    count_stmt = (
        select(func.count())
        .select_from(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
    )

    # фільтр по типу
    if type:
        stmt = stmt.where(WalletTransaction.type == type)
        count_stmt = count_stmt.where(WalletTransaction.type == type)

    total = (await session.execute(count_stmt)).scalar_one()

    # пагінація
    stmt = stmt.order_by(WalletTransaction.id.desc()).limit(limit).offset(offset)
    result = await session.execute(stmt)
    db_transactions: List[WalletTransaction] = result.scalars().all()

    return TransactionPaginatedList(
        total=total,
        limit=limit,
        offset=offset,
        transactions=[serialize_transaction(t) for t in db_transactions]
    )


async def _existing_top_up(session: AsyncSession, operation_id: str) -> Optional[TopUpResponse]:
    # Перевіряємо ідемпотентність
    is_duplicate, existing_tx = await check_idempotency(
        session,
        operation_id,
        expected_category=TransactionCategory.TOP_UP
    )
    if not is_duplicate or existing_tx is None:
        return None

    # Повертаємо той самий результат, що був раніше
    logger.warning(
        "Found duplicate transaction: ",
        extra=get_extra_data_log(existing_tx)
    )
    return TopUpResponse(
        duplicate=True,
        balance=existing_tx.balance_after,
        transaction=serialize_transaction(existing_tx)
    )


@public_router.post(
    "/wallet/topup",
    summary="Поповнення гаманця",
    description=USER_DESCRIPTION + ". operation_id робить запит ідемпотентним",
    response_model=TopUpResponse,
    status_code=status.HTTP_200_OK,
    responses={
        401: UNAUTHORIZED,
        403: FORBIDDEN_USER,
        404: USER_NOT_FOUND,
        409: {
            "description": "Conflict.",
            "content": {
                "application/json": {
                    "example": {
                        "detail": "Operation ID already used for different operation type"
                    }
                },
            },
        },
        422: VALIDATION_ERROR,
        500: SERVER_ERROR,
    },
)
async def top_up_wallet(
    payload: TopUpRequest,
    user_id: str = Depends(get_current_user),
    store: WalletStore = Depends(get_wallet_store)
):
    session = store.session

    if payload.operation_id:
        existing = await _existing_top_up(session, payload.operation_id)
        if existing is not None:
            return existing

    try:
        async with atomic(session):
            wallet = await store.get_or_create_wallet(user_id)
            tx = await store.apply_delta(
                wallet.id,
                payload.amount,
                category=TransactionCategory.TOP_UP,
                reason="Wallet top-up",
                description=payload.description,
                operation_id=payload.operation_id,
            )
    except IntegrityError:
        # паралельний повтор з тим самим operation_id встиг записати першим
        existing = None
        if payload.operation_id:
            existing = await _existing_top_up(session, payload.operation_id)
        if existing is None:
            raise
        return existing
    await store.invalidate_cache()

    logger.info("Wallet topped up. Transaction:", extra=get_extra_data_log(tx))
    return TopUpResponse(
        balance=tx.balance_after,
        transaction=serialize_transaction(tx)
    )


@public_router.get(
    "/subscriptions",
    summary="Підписки користувача",
    description=USER_DESCRIPTION,
    response_model=SubscriptionList,
    status_code=status.HTTP_200_OK,
    responses={401: UNAUTHORIZED, 403: FORBIDDEN_USER, 500: SERVER_ERROR},
)
async def list_user_subscriptions(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user),
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    subscriptions = await engine.list_subscriptions(
        user_id=user_id, limit=limit, offset=offset
    )
    return SubscriptionList(
        limit=limit,
        offset=offset,
        subscriptions=[SubscriptionOut.model_validate(s) for s in subscriptions]
    )


@public_router.post(
    "/subscriptions",
    summary="Оформлення підписки на маршрут",
    description=USER_DESCRIPTION,
    response_model=SubscriptionOut,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: INSUFFICIENT_FUNDS,
        401: UNAUTHORIZED,
        403: FORBIDDEN_USER,
        404: USER_NOT_FOUND,
        422: VALIDATION_ERROR,
        500: SERVER_ERROR,
    },
)
async def create_subscription(
    payload: SubscriptionCreate,
    user_id: str = Depends(get_current_user),
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    async with atomic(engine.session):
        subscription = await engine.subscribe(
            user_id,
            payload.route_id,
            weekdays=payload.weekdays,
            discount_amount=payload.discount_amount,
            billing_cycle_days=payload.billing_cycle_days,
            time_slot_id=payload.time_slot_id,
            start_date=payload.start_date,
            payment_method=PaymentMethod(payload.payment_method),
            auto_renew=payload.auto_renew,
        )
    await engine.store.invalidate_cache()
    return SubscriptionOut.model_validate(subscription)


@public_router.post(
    "/subscriptions/{subscription_id}/cancel",
    summary="Скасування підписки",
    description=USER_DESCRIPTION,
    response_model=SubscriptionCancelResponse,
    status_code=status.HTTP_200_OK,
    responses={
        401: UNAUTHORIZED,
        403: FORBIDDEN_USER,
        404: SUBSCRIPTION_NOT_FOUND,
        409: ALREADY_TERMINAL,
        500: SERVER_ERROR,
    },
)
async def cancel_user_subscription(
    subscription_id: str,
    user_id: str = Depends(get_current_user),
    engine: SubscriptionEngine = Depends(get_subscription_engine)
):
    async with atomic(engine.session):
        subscription = await engine.get(subscription_id)
        # чужа підписка - як неіснуюча
        if subscription.user_id != user_id:
            raise SubscriptionNotFound(subscription_id)
        subscription = await engine.request_cancellation(subscription_id)

    refund_amount = to_money(subscription.refund_amount)
    logger.info(
        f"User {user_id} cancelled subscription {subscription_id}, refund {refund_amount}"
    )
    return SubscriptionCancelResponse(
        subscription=SubscriptionOut.model_validate(subscription),
        refund_amount=refund_amount,
        message=(
            "Refund will be credited to your wallet."
            if refund_amount > 0 else "No refund is due."
        )
    )
