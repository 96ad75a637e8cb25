import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.config import config
from wallet_ledger.core.database import utcnow
from wallet_ledger.core.exceptions import (
    AlreadyTerminal, SubscriptionNotFound, ValidationError
)
from wallet_ledger.models import (
    Subscription, SubscriptionStatus, SubscriptionInvoice, InvoiceStatus,
    PaymentMethod, TransactionCategory, ReferenceType, CarpoolRoute,
    TERMINAL_STATUSES
)
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import (
    CENT, ZERO, to_money, billing_month_of, generate_invoice_number,
    user_existing_check
)

logger = logging.getLogger("[SUBSCRIPTIONS]")


def calculate_daily_rate(
    base_fee: Decimal, discount: Decimal, billing_cycle_days: int
) -> Decimal:
    if billing_cycle_days <= 0:
        raise ValidationError("Billing cycle must be at least 1 day.")
    return (Decimal(base_fee) - Decimal(discount or 0)) / Decimal(billing_cycle_days)


def calculate_prorated_refund(
    base_fee: Decimal,
    discount: Decimal,
    billing_cycle_days: int,
    remaining_days: int,
) -> Decimal:
    """
    refund = (base_fee - discount) / billing_cycle_days * remaining_days
    Округлення лише фінальної суми, ROUND_HALF_UP до копійок.
    """
    remaining_days = min(max(remaining_days, 0), billing_cycle_days)
    if remaining_days == 0:
        return ZERO
    daily_rate = calculate_daily_rate(base_fee, discount, billing_cycle_days)
    refund = (daily_rate * remaining_days).quantize(CENT, rounding=ROUND_HALF_UP)
    return max(refund, ZERO)


def remaining_days_in_cycle(subscription: Subscription, on_date: date) -> int:
    days = (subscription.end_date - on_date).days
    return min(max(days, 0), subscription.billing_cycle_days)


def daily_refund_amount(subscription: Subscription) -> Decimal:
    # вартість одного дня поточного циклу (повернення за пропущений день)
    return to_money(calculate_daily_rate(
        subscription.base_fee,
        subscription.discount_amount,
        subscription.billing_cycle_days,
    ))


class SubscriptionEngine:
    """
    Стан підписки:
        active -> pending_cancellation -> cancelled
        active -> expired
    cancelled/expired - термінальні. Баланс гаманця рушій змінює лише
    через WalletStore (покупка), повернення нараховує RefundOrchestrator.
    """

    def __init__(self, session: AsyncSession, store: Optional[WalletStore] = None):
        self.session = session
        self.store = store or WalletStore(session)

    async def get(self, subscription_id: str, *, lock: bool = False) -> Subscription:
        query = select(Subscription).where(Subscription.id == subscription_id)
        if lock:
            query = query.with_for_update().execution_options(populate_existing=True)
        subscription = await self.session.scalar(query)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)
        return subscription

    async def subscribe(
        self,
        user_id: str,
        route_id: str,
        *,
        weekdays: Iterable[str],
        base_fee: Optional[Decimal] = None,
        discount_amount: Decimal = ZERO,
        billing_cycle_days: Optional[int] = None,
        time_slot_id: Optional[str] = None,
        start_date: Optional[date] = None,
        payment_method: PaymentMethod = PaymentMethod.WALLET,
        auto_renew: bool = True,
    ) -> Subscription:
        """
        Створює активну підписку. Для оплати з гаманця одразу списує
        вартість першого циклу і створює оплачений рахунок.
        Виклик має бути всередині `atomic(session)`.
        """
        await user_existing_check(self.session, user_id)

        route = await self.session.get(CarpoolRoute, route_id)
        if route is None:
            raise ValidationError(f"Route '{route_id}' not found.")

        weekdays = list(weekdays)
        if not weekdays:
            raise ValidationError("At least one weekday is required.")

        cycle_days = billing_cycle_days or config.DEFAULT_BILLING_CYCLE_DAYS
        start_date = start_date or utcnow().date()
        if base_fee is None:
            # ціна за місце * кількість поїздок у циклі
            trips = round(len(weekdays) * cycle_days / 7)
            base_fee = to_money(route.price_per_seat) * trips
        base_fee = to_money(base_fee)
        discount_amount = to_money(discount_amount)
        if discount_amount < ZERO or discount_amount > base_fee:
            raise ValidationError("Discount must be between 0 and the base fee.")

        try:
            subscription = Subscription(
                user_id=user_id,
                route_id=route_id,
                time_slot_id=time_slot_id,
                weekdays=weekdays,
                start_date=start_date,
                end_date=start_date + timedelta(days=cycle_days),
                base_fee=base_fee,
                discount_amount=discount_amount,
                billing_cycle_days=cycle_days,
                payment_method=payment_method,
                auto_renew=auto_renew,
                status=SubscriptionStatus.ACTIVE,
            )
        except ValueError as e:
            raise ValidationError(str(e))
        self.session.add(subscription)
        await self.session.flush()

        net_fee = to_money(subscription.net_fee)
        invoice = SubscriptionInvoice(
            subscription_id=subscription.id,
            user_id=user_id,
            billing_month=billing_month_of(start_date),
            invoice_number=generate_invoice_number(billing_month_of(start_date)),
            amount_due=net_fee,
            due_date=start_date,
            status=InvoiceStatus.PENDING,
        )

        if payment_method == PaymentMethod.WALLET and net_fee > ZERO:
            wallet = await self.store.get_or_create_wallet(user_id)
            tx = await self.store.apply_delta(
                wallet.id,
                -net_fee,
                category=TransactionCategory.SUBSCRIPTION_PURCHASE,
                reason="Subscription purchase",
                description=f"Subscription to route {route.name}",
                reference_type=ReferenceType.SUBSCRIPTION,
                reference_id=subscription.id,
            )
            invoice.amount_paid = net_fee
            invoice.status = InvoiceStatus.PAID
            invoice.wallet_transaction_id = tx.id
            invoice.paid_at = utcnow()

        self.session.add(invoice)
        await self.session.flush()

        logger.info(
            f"Created subscription {subscription.id} for user {user_id}, "
            f"net fee {net_fee}"
        )
        return subscription

    async def request_cancellation(
        self, subscription_id: str, on_date: Optional[date] = None
    ) -> Subscription:
        """
        active -> pending_cancellation. Сума повернення фіксується на момент
        скасування; нараховує її RefundOrchestrator.
        """
        subscription = await self.get(subscription_id, lock=True)

        if subscription.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(subscription.id, subscription.status.value)
        if subscription.status == SubscriptionStatus.PENDING_CANCELLATION:
            # повторний запит - нічого не змінюємо
            return subscription

        on_date = on_date or utcnow().date()
        remaining = remaining_days_in_cycle(subscription, on_date)

        if subscription.payment_method == PaymentMethod.CASH:
            refund = ZERO
        else:
            refund = calculate_prorated_refund(
                subscription.base_fee,
                subscription.discount_amount,
                subscription.billing_cycle_days,
                remaining,
            )

        subscription.status = SubscriptionStatus.PENDING_CANCELLATION
        subscription.cancellation_date = on_date
        subscription.refund_amount = refund
        subscription.auto_renew = False
        await self.session.flush()

        logger.info(
            f"Subscription {subscription.id} pending cancellation: "
            f"{remaining} days remaining, refund {refund}"
        )
        return subscription

    def settle_cancellation(self, subscription: Subscription) -> Subscription:
        """pending_cancellation -> cancelled; повернення вважається врегульованим."""
        if subscription.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(subscription.id, subscription.status.value)
        if subscription.status != SubscriptionStatus.PENDING_CANCELLATION:
            raise ValidationError(
                f"Subscription '{subscription.id}' has no pending cancellation."
            )
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.refund_processed = True
        subscription.refunded_at = utcnow()
        return subscription

    def expire(self, subscription: Subscription) -> Subscription:
        """active -> expired (цикл закінчився без продовження)."""
        if subscription.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(subscription.id, subscription.status.value)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise ValidationError(
                f"Only active subscriptions can expire, got {subscription.status.value}."
            )
        subscription.status = SubscriptionStatus.EXPIRED
        subscription.auto_renew = False
        return subscription

    async def list_subscriptions(
        self,
        status: Optional[SubscriptionStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[Subscription]:
        query = select(Subscription).order_by(Subscription.created_at.desc())
        if status is not None:
            query = query.where(Subscription.status == status)
        if user_id is not None:
            query = query.where(Subscription.user_id == user_id)
        result = await self.session.execute(query.limit(limit).offset(offset))
        return result.scalars().all()

    async def invoices(self, subscription_id: str) -> Sequence[SubscriptionInvoice]:
        await self.get(subscription_id)
        result = await self.session.execute(
            select(SubscriptionInvoice)
            .where(SubscriptionInvoice.subscription_id == subscription_id)
            .order_by(SubscriptionInvoice.created_at.desc())
        )
        return result.scalars().all()

    async def stats(self) -> dict:
        result = await self.session.execute(
            select(Subscription.status, func.count(Subscription.id))
            .group_by(Subscription.status)
        )
        counts = {status.value: 0 for status in SubscriptionStatus}
        for status, count in result.all():
            counts[status.value] = count

        result = await self.session.execute(
            select(Subscription).where(
                Subscription.status == SubscriptionStatus.ACTIVE
            )
        )
        active = result.scalars().all()
        mrr = sum((to_money(s.net_fee) for s in active), ZERO)

        revenue = await self.session.scalar(
            select(func.sum(SubscriptionInvoice.amount_paid))
            .where(SubscriptionInvoice.status == InvoiceStatus.PAID)
        )
        return {
            "by_status": counts,
            "total_revenue": to_money(revenue or ZERO),
            "monthly_recurring_revenue": mrr,
            "average_subscription_value": (
                to_money(mrr / len(active)) if active else ZERO
            ),
        }
