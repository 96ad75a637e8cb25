import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.config import config
from wallet_ledger.core.database import Database, atomic, utcnow
from wallet_ledger.core.exceptions import TripNotFound
from wallet_ledger.models import (
    User, CarpoolRoute, VehicleTrip, TripBooking, TripStatus, BookingStatus,
    PaymentMethod, Subscription, SubscriptionStatus, SubscriptionServiceDay,
    ServiceDayStatus, TransactionCategory, ReferenceType, WalletTransaction
)
from wallet_ledger.schemas.refunds import (
    TripRefundCandidate, SubscriptionRefundCandidate,
    MissedServiceRefundCandidate, TripRefundGroup, PendingRefundsResponse,
    RefundProcessResponse, RefundCandidate, RefundHistoryItem
)
from wallet_ledger.services.ledger import TransactionLedger
from wallet_ledger.services.subscriptions import (
    SubscriptionEngine, daily_refund_amount, remaining_days_in_cycle
)
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import ZERO, to_money
from wallet_ledger.utils.idempotency import refund_operation_id
from wallet_ledger.utils.redis_cache import BalanceCache

logger = logging.getLogger("[REFUNDS]")

TRIP_CANCELLED_REASON = "Trip cancelled by operator"
NO_SHOW_REASON = "Driver no-show - automatic refund"


def group_trip_refunds(refunds: Sequence[TripRefundCandidate]) -> List[TripRefundGroup]:
    """Групує повернення за trip_id: одна скасована поїздка - багато пасажирів."""
    groups: "OrderedDict[str, TripRefundGroup]" = OrderedDict()
    for refund in refunds:
        group = groups.get(refund.trip_id)
        if group is None:
            group = TripRefundGroup(
                trip_id=refund.trip_id,
                trip_date=refund.trip_date,
                route=refund.route,
                reason=refund.reason,
                total_amount=ZERO,
                refunds=[],
            )
            groups[refund.trip_id] = group
        group.refunds.append(refund)
        group.total_amount += refund.amount
    return list(groups.values())


def _label(candidate: RefundCandidate) -> str:
    if isinstance(candidate, TripRefundCandidate):
        return f"trip booking {candidate.booking_id}"
    if isinstance(candidate, SubscriptionRefundCandidate):
        return f"subscription {candidate.subscription_id}"
    return f"service day {candidate.service_day_id}"


class RefundOrchestrator:
    """
    Пошук і batch-обробка повернень.

    Кожен кандидат обробляється у власній сесії та unit of work:
    блокуємо джерело, перевіряємо що воно ще не врегульоване, нараховуємо
    через WalletStore і позначаємо джерело врегульованим - усе в одному
    commit. Помилка одного кандидата не зупиняє решту batch.
    """

    def __init__(
        self,
        database: Database,
        cache: Optional[BalanceCache] = None,
        *,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        candidate_timeout: Optional[float] = None,
    ):
        self.database = database
        self.cache = cache
        self.batch_size = batch_size or config.REFUND_BATCH_SIZE
        self.concurrency = concurrency or config.REFUND_BATCH_CONCURRENCY
        self.candidate_timeout = candidate_timeout or config.REFUND_CANDIDATE_TIMEOUT_SECONDS

    # ---------------------------------------------------------------- discovery
    async def list_pending(self) -> PendingRefundsResponse:
        async with self.database.session() as session:
            trip_refunds = await self._trip_candidates(session)
            subscription_refunds = await self._subscription_candidates(session)
            missed_service_refunds = await self._missed_service_candidates(session)

        return PendingRefundsResponse(
            trip_refunds=trip_refunds,
            subscription_refunds=subscription_refunds,
            missed_service_refunds=missed_service_refunds,
            trip_groups=group_trip_refunds(trip_refunds),
        )

    async def _trip_candidates(
        self, session: AsyncSession, trip_id: Optional[str] = None
    ) -> List[TripRefundCandidate]:
        query = (
            select(TripBooking, VehicleTrip, CarpoolRoute, User)
            .join(VehicleTrip, TripBooking.trip_id == VehicleTrip.id)
            .join(CarpoolRoute, VehicleTrip.route_id == CarpoolRoute.id)
            .outerjoin(User, User.id == TripBooking.user_id)
            .where(
                TripBooking.refund_processed.is_(False),
                TripBooking.payment_method == PaymentMethod.WALLET,
                TripBooking.status != BookingStatus.CANCELLED,
                TripBooking.fare > 0,
                or_(
                    VehicleTrip.status == TripStatus.CANCELLED,
                    TripBooking.status == BookingStatus.NO_SHOW,
                ),
            )
            .order_by(VehicleTrip.trip_date, VehicleTrip.id, TripBooking.id)
        )
        if trip_id is not None:
            query = query.where(VehicleTrip.id == trip_id)

        result = await session.execute(query)
        candidates = []
        for booking, trip, route, user in result.all():
            if trip.status == TripStatus.CANCELLED:
                category = TransactionCategory.TRIP_CANCELLATION.value
                reason = trip.cancellation_reason or TRIP_CANCELLED_REASON
            else:
                category = TransactionCategory.MISSED_SERVICE.value
                reason = NO_SHOW_REASON
            candidates.append(TripRefundCandidate(
                category=category,
                booking_id=booking.id,
                trip_id=trip.id,
                user_id=booking.user_id,
                user_name=user.name if user else None,
                trip_date=trip.trip_date,
                route=route.name,
                reason=reason,
                amount=to_money(booking.fare),
            ))
        return candidates

    async def _subscription_candidates(
        self, session: AsyncSession
    ) -> List[SubscriptionRefundCandidate]:
        result = await session.execute(
            select(Subscription, CarpoolRoute, User)
            .join(CarpoolRoute, Subscription.route_id == CarpoolRoute.id)
            .outerjoin(User, User.id == Subscription.user_id)
            .where(
                Subscription.status == SubscriptionStatus.PENDING_CANCELLATION,
                Subscription.refund_processed.is_(False),
                Subscription.refund_amount > 0,
            )
            .order_by(Subscription.cancellation_date, Subscription.id)
        )
        return [
            SubscriptionRefundCandidate(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                user_name=user.name if user else None,
                route=route.name,
                cancellation_date=subscription.cancellation_date,
                remaining_days=remaining_days_in_cycle(
                    subscription, subscription.cancellation_date
                ),
                amount=to_money(subscription.refund_amount),
            )
            for subscription, route, user in result.all()
        ]

    async def _missed_service_candidates(
        self, session: AsyncSession
    ) -> List[MissedServiceRefundCandidate]:
        result = await session.execute(
            select(SubscriptionServiceDay, Subscription, CarpoolRoute, User)
            .join(Subscription, SubscriptionServiceDay.subscription_id == Subscription.id)
            .join(CarpoolRoute, Subscription.route_id == CarpoolRoute.id)
            .outerjoin(User, User.id == SubscriptionServiceDay.user_id)
            .where(
                SubscriptionServiceDay.status == ServiceDayStatus.TRIP_NOT_GENERATED,
                SubscriptionServiceDay.refund_processed.is_(False),
                Subscription.payment_method == PaymentMethod.WALLET,
            )
            .order_by(SubscriptionServiceDay.service_date, SubscriptionServiceDay.id)
        )
        candidates = []
        for day, subscription, route, user in result.all():
            # дні після скасування вже покриває пропорційне повернення
            if (
                subscription.cancellation_date is not None
                and day.service_date >= subscription.cancellation_date
            ):
                continue
            amount = daily_refund_amount(subscription)
            if amount <= ZERO:
                continue
            candidates.append(MissedServiceRefundCandidate(
                service_day_id=day.id,
                subscription_id=subscription.id,
                user_id=day.user_id,
                user_name=user.name if user else None,
                route=route.name,
                service_date=day.service_date,
                amount=amount,
            ))
        return candidates

    # --------------------------------------------------------------- processing
    async def process_all(self) -> RefundProcessResponse:
        lock = None
        if self.cache is not None:
            lock = await self.cache.acquire_processing_lock()
            if lock is None:
                logger.warning("Refund processing already running, skipping this run")
                return RefundProcessResponse()

        started = time.monotonic()
        try:
            logger.info("Starting refund processing...")
            pending = await self.list_pending()
            candidates = pending.candidates()
            logger.info(f"Found {len(candidates)} pending refunds")

            result = await self._process_candidates(candidates)

            duration_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                f"Completed: {result.processed} refunds processed, "
                f"{result.failed} failed, total amount: {result.total_amount} "
                f"in {duration_ms}ms"
            )
            return result
        finally:
            if lock is not None:
                await self.cache.release_processing_lock(lock)

    async def _process_candidates(
        self, candidates: Sequence[RefundCandidate]
    ) -> RefundProcessResponse:
        result = RefundProcessResponse()
        semaphore = asyncio.Semaphore(self.concurrency)

        for i in range(0, len(candidates), self.batch_size):
            batch = candidates[i:i + self.batch_size]
            outcomes = await asyncio.gather(
                *(self._run_candidate(c, semaphore) for c in batch)
            )
            for outcome in outcomes:
                if outcome is False:
                    result.failed += 1
                elif outcome is not None:
                    result.processed += 1
                    result.total_amount += outcome
        return result

    async def _run_candidate(self, candidate: RefundCandidate, semaphore: asyncio.Semaphore):
        """
        Повертає суму нарахування, None якщо джерело вже врегульоване,
        або False якщо кандидат не вдалося обробити.
        """
        async with semaphore:
            try:
                tx = await asyncio.wait_for(
                    self._settle(candidate), timeout=self.candidate_timeout
                )
            except asyncio.TimeoutError:
                logger.error(
                    f"Refund for {_label(candidate)} timed out after "
                    f"{self.candidate_timeout}s (user {candidate.user_id})"
                )
                return False
            except Exception as e:
                # помилка одного кандидата не зупиняє batch
                logger.error(
                    f"Refund for {_label(candidate)} failed "
                    f"(user {candidate.user_id}, amount {candidate.amount}): {e}"
                )
                return False

        if tx is None:
            logger.info(f"Refund for {_label(candidate)} already settled, skipped")
            return None
        return to_money(tx.amount)

    async def _settle(self, candidate: RefundCandidate) -> Optional[WalletTransaction]:
        async with self.database.session() as session:
            store = WalletStore(session, self.cache)
            async with atomic(session):
                if isinstance(candidate, TripRefundCandidate):
                    tx = await self._settle_trip(session, store, candidate)
                elif isinstance(candidate, SubscriptionRefundCandidate):
                    tx = await self._settle_subscription(session, store, candidate)
                else:
                    tx = await self._settle_service_day(session, store, candidate)
            await store.invalidate_cache()
            return tx

    async def _settle_trip(
        self, session: AsyncSession, store: WalletStore, candidate: TripRefundCandidate
    ) -> Optional[WalletTransaction]:
        booking = await session.scalar(
            select(TripBooking)
            .where(TripBooking.id == candidate.booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if booking is None or booking.refund_processed:
            return None

        amount = to_money(booking.fare)
        wallet = await store.get_or_create_wallet(booking.user_id)
        tx = await store.apply_delta(
            wallet.id,
            amount,
            category=TransactionCategory(candidate.category),
            reason=candidate.reason,
            description=f"Refund for trip on {candidate.trip_date.isoformat()} ({candidate.route})",
            reference_type=ReferenceType.TRIP_BOOKING,
            reference_id=booking.id,
            operation_id=refund_operation_id(ReferenceType.TRIP_BOOKING.value, booking.id),
            info={"trip_id": candidate.trip_id},
        )
        booking.refund_processed = True
        booking.refund_amount = amount
        booking.refunded_at = utcnow()
        return tx

    async def _settle_subscription(
        self,
        session: AsyncSession,
        store: WalletStore,
        candidate: SubscriptionRefundCandidate,
    ) -> Optional[WalletTransaction]:
        engine = SubscriptionEngine(session, store)
        subscription = await engine.get(candidate.subscription_id, lock=True)
        if (
            subscription.refund_processed
            or subscription.status != SubscriptionStatus.PENDING_CANCELLATION
        ):
            return None

        amount = to_money(subscription.refund_amount)
        wallet = await store.get_or_create_wallet(subscription.user_id)
        tx = await store.apply_delta(
            wallet.id,
            amount,
            category=TransactionCategory.SUBSCRIPTION_CANCELLATION,
            reason="Subscription cancelled",
            description=(
                f"Pro-rated subscription refund - "
                f"{candidate.remaining_days} days remaining"
            ),
            reference_type=ReferenceType.SUBSCRIPTION,
            reference_id=subscription.id,
            operation_id=refund_operation_id(
                ReferenceType.SUBSCRIPTION.value, subscription.id
            ),
            info={"remaining_days": candidate.remaining_days},
        )
        engine.settle_cancellation(subscription)
        return tx

    async def _settle_service_day(
        self,
        session: AsyncSession,
        store: WalletStore,
        candidate: MissedServiceRefundCandidate,
    ) -> Optional[WalletTransaction]:
        day = await session.scalar(
            select(SubscriptionServiceDay)
            .where(SubscriptionServiceDay.id == candidate.service_day_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if day is None or day.refund_processed:
            return None

        subscription = await session.get(Subscription, day.subscription_id)
        amount = daily_refund_amount(subscription)
        formatted_date = day.service_date.isoformat()
        wallet = await store.get_or_create_wallet(day.user_id)
        tx = await store.apply_delta(
            wallet.id,
            amount,
            category=TransactionCategory.MISSED_SERVICE,
            reason="Missed service refund",
            description=(
                f"Automatic refund for missed service on {formatted_date} - "
                f"trip not generated due to low bookings"
            ),
            reference_type=ReferenceType.SERVICE_DAY,
            reference_id=day.id,
            operation_id=refund_operation_id(ReferenceType.SERVICE_DAY.value, day.id),
            info={"subscription_id": subscription.id},
        )
        day.refund_processed = True
        day.refund_amount = amount
        day.refunded_at = utcnow()
        return tx

    async def cancel_trip_and_refund(
        self, trip_id: str, reason: str = "Trip cancelled by admin"
    ) -> dict:
        """Скасовує поїздку і одразу нараховує повернення її пасажирам."""
        async with self.database.session() as session:
            async with atomic(session):
                trip = await session.scalar(
                    select(VehicleTrip)
                    .where(VehicleTrip.id == trip_id)
                    .with_for_update()
                )
                if trip is None:
                    raise TripNotFound(trip_id)
                trip.status = TripStatus.CANCELLED
                trip.cancellation_reason = reason
            candidates = await self._trip_candidates(session, trip_id=trip_id)

        logger.info(
            f"Trip {trip_id} cancelled, processing {len(candidates)} refunds..."
        )
        result = await self._process_candidates(candidates)
        logger.info(
            f"Trip {trip_id} cancelled: {result.processed} refunds processed, "
            f"total: {result.total_amount}"
        )
        return {
            "trip_id": trip_id,
            "affected_bookings": result.processed,
            "failed": result.failed,
            "total_refunded": result.total_amount,
        }

    # ------------------------------------------------------------------ reports
    async def history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        categories: Optional[List[TransactionCategory]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[RefundHistoryItem]:
        async with self.database.session() as session:
            ledger = TransactionLedger(session)
            transactions = await ledger.refund_history(
                start, end, user_id, categories, limit, offset
            )
            user_ids = {tx.user_id for tx in transactions}
            users = {}
            if user_ids:
                result = await session.execute(select(User).where(User.id.in_(user_ids)))
                users = {u.id: u for u in result.scalars()}

        items = []
        for tx in transactions:
            user = users.get(tx.user_id)
            items.append(RefundHistoryItem(
                id=tx.id,
                user_id=tx.user_id,
                user_name=user.name if user else None,
                user_phone=user.phone if user else None,
                amount=to_money(tx.amount),
                category=tx.category.value,
                reason=tx.reason,
                description=tx.description,
                reference_type=tx.reference_type.value if tx.reference_type else None,
                reference_id=tx.reference_id,
                performed_by=tx.performed_by,
                created_at=tx.created_at,
            ))
        return items

    async def stats(self) -> dict:
        async with self.database.session() as session:
            return await TransactionLedger(session).refund_stats()
