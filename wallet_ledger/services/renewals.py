import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select

from wallet_ledger.core.database import Database, atomic, utcnow
from wallet_ledger.core.exceptions import InsufficientFunds
from wallet_ledger.models import (
    Subscription, SubscriptionStatus, SubscriptionInvoice, InvoiceStatus,
    PaymentMethod, TransactionCategory, ReferenceType
)
from wallet_ledger.services.subscriptions import SubscriptionEngine
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import (
    ZERO, to_money, billing_month_of, generate_invoice_number
)
from wallet_ledger.utils.redis_cache import BalanceCache

logger = logging.getLogger("[SUBSCRIPTIONS]")


class SubscriptionRenewalJob:
    """
    Закриття циклів оплати підписок, у яких end_date <= today.
    Кожна підписка обробляється в окремій сесії; помилка однієї не
    зупиняє решту.
    """

    def __init__(self, database: Database, cache: Optional[BalanceCache] = None):
        self.database = database
        self.cache = cache

    async def _due_subscription_ids(self, today: date) -> list[str]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Subscription.id)
                .where(
                    Subscription.end_date <= today,
                    Subscription.status.in_([
                        SubscriptionStatus.ACTIVE,
                        SubscriptionStatus.PENDING_CANCELLATION,
                    ]),
                )
                .order_by(Subscription.end_date, Subscription.id)
            )
            return list(result.scalars().all())

    async def process_renewals(self, today: Optional[date] = None, dry_run: bool = False) -> dict:
        today = today or utcnow().date()
        summary = {
            "processed": 0,
            "renewed": 0,
            "expired": 0,
            "cancelled": 0,
            "failed": 0,
            "errors": [],
        }

        subscription_ids = await self._due_subscription_ids(today)
        logger.info(
            f"Renewal run for {today.isoformat()}: {len(subscription_ids)} due"
            f"{' (dry run)' if dry_run else ''}"
        )

        for subscription_id in subscription_ids:
            try:
                outcome = await self._process_one(subscription_id, today, dry_run)
            except Exception as e:
                summary["failed"] += 1
                summary["errors"].append(f"{subscription_id}: {e}")
                logger.error(f"Renewal of subscription {subscription_id} failed: {e}")
                continue
            if outcome is None:
                continue
            summary["processed"] += 1
            summary[outcome] += 1

        logger.info(
            f"Renewal run done: {summary['renewed']} renewed, "
            f"{summary['expired']} expired, {summary['cancelled']} cancelled, "
            f"{summary['failed']} failed"
        )
        return summary

    async def _process_one(self, subscription_id: str, today: date, dry_run: bool) -> Optional[str]:
        """Повертає 'renewed' | 'expired' | 'cancelled' або None (пропущено)."""
        async with self.database.session() as session:
            store = WalletStore(session, self.cache)
            engine = SubscriptionEngine(session, store)

            try:
                async with atomic(session):
                    subscription = await engine.get(subscription_id, lock=True)
                    outcome = self._decide(subscription, today)
                    if outcome is None or dry_run:
                        return outcome

                    if outcome == "cancelled":
                        engine.settle_cancellation(subscription)
                    elif outcome == "expired":
                        engine.expire(subscription)
                    else:
                        await self._renew(session, store, subscription)
            except InsufficientFunds:
                # оплата не пройшла - підписка закінчується, рахунок неоплачений
                async with atomic(session):
                    subscription = await engine.get(subscription_id, lock=True)
                    session.add(self._invoice(subscription, InvoiceStatus.FAILED))
                    engine.expire(subscription)
                logger.warning(
                    f"Subscription {subscription_id} expired: insufficient funds for renewal"
                )
                outcome = "expired"

            await store.invalidate_cache()
            return outcome

    @staticmethod
    def _decide(subscription: Subscription, today: date) -> Optional[str]:
        if subscription.end_date > today:
            return None
        if subscription.status == SubscriptionStatus.PENDING_CANCELLATION:
            if subscription.refund_processed or to_money(subscription.refund_amount) == ZERO:
                return "cancelled"
            # повернення ще не нараховане: це робить RefundOrchestrator
            return None
        if subscription.status != SubscriptionStatus.ACTIVE:
            return None
        if not subscription.auto_renew:
            return "expired"
        return "renewed"

    @staticmethod
    def _invoice(subscription: Subscription, status: InvoiceStatus) -> SubscriptionInvoice:
        month = billing_month_of(subscription.end_date)
        return SubscriptionInvoice(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            billing_month=month,
            invoice_number=generate_invoice_number(month),
            amount_due=to_money(subscription.net_fee),
            due_date=subscription.end_date,
            status=status,
        )

    async def _renew(self, session, store: WalletStore, subscription: Subscription):
        net_fee = to_money(subscription.net_fee)
        invoice = self._invoice(subscription, InvoiceStatus.PENDING)

        if subscription.payment_method == PaymentMethod.WALLET and net_fee > ZERO:
            wallet = await store.get_or_create_wallet(subscription.user_id)
            tx = await store.apply_delta(
                wallet.id,
                -net_fee,
                category=TransactionCategory.SUBSCRIPTION_RENEWAL,
                reason="Subscription renewal",
                description=f"Renewal for {invoice.billing_month}",
                reference_type=ReferenceType.SUBSCRIPTION,
                reference_id=subscription.id,
                operation_id=f"renewal:{subscription.id}:{subscription.end_date.isoformat()}",
            )
            invoice.amount_paid = net_fee
            invoice.status = InvoiceStatus.PAID
            invoice.wallet_transaction_id = tx.id
            invoice.paid_at = utcnow()

        session.add(invoice)
        subscription.end_date = subscription.end_date + timedelta(
            days=subscription.billing_cycle_days
        )
        await session.flush()
        logger.info(
            f"Renewed subscription {subscription.id} until "
            f"{subscription.end_date.isoformat()}, invoice {invoice.invoice_number}"
        )
