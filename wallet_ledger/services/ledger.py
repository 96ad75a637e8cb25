import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.database import utcnow
from wallet_ledger.core.exceptions import WalletNotFound
from wallet_ledger.models import (
    Wallet, WalletTransaction, TransactionType, TransactionCategory,
    TransactionStatus, ReferenceType, REFUND_CATEGORIES
)
from wallet_ledger.utils.common import to_money, ZERO
from wallet_ledger.utils.logging import get_extra_data_log

logger = logging.getLogger("[LEDGER]")


class TransactionLedger:
    """
    Append-only журнал змін балансу.

    `append` викликається лише з WalletStore.apply_delta, у тій самій
    транзакції БД, що й оновлення балансу. Рядки журналу не змінюються
    і не видаляються.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        wallet: Wallet,
        amount: Decimal,
        *,
        balance_before: Decimal,
        category: TransactionCategory,
        reason: str,
        description: Optional[str] = None,
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        operation_id: Optional[str] = None,
        info: Optional[dict] = None,
    ) -> WalletTransaction:
        tx = WalletTransaction(
            wallet_id=wallet.id,
            user_id=wallet.user_id,
            type=TransactionType.CREDIT if amount > 0 else TransactionType.DEBIT,
            category=category,
            status=TransactionStatus.COMPLETED,
            amount=amount,
            balance_before=balance_before,
            balance_after=wallet.balance,
            reason=reason,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            performed_by=performed_by,
            operation_id=operation_id,
            info=info or {},
            created_at=utcnow(),
        )
        self.session.add(tx)
        await self.session.flush()

        logger.info("Appended transaction:", extra=get_extra_data_log(tx))
        return tx

    async def list_by_wallet(
        self, wallet_id: int, limit: int = 50, offset: int = 0
    ) -> Sequence[WalletTransaction]:
        result = await self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all()

    async def list_by_user(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> Sequence[WalletTransaction]:
        result = await self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all()

    async def count_by_wallet(self, wallet_id: int) -> int:
        return await self.session.scalar(
            select(func.count(WalletTransaction.id))
            .where(WalletTransaction.wallet_id == wallet_id)
        ) or 0

    async def reconcile(self, wallet_id: int) -> dict:
        """
        Відтворює баланс із журналу в хронологічному порядку і перевіряє,
        що кожен balance_after продовжує попередній.
        """
        wallet = await self.session.get(Wallet, wallet_id)
        if wallet is None:
            raise WalletNotFound(wallet_id)

        result = await self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.id.asc())
        )
        running = ZERO
        chain_ok = True
        broken_at = None
        count = 0
        for tx in result.scalars():
            count += 1
            if to_money(tx.balance_before) != running and chain_ok:
                chain_ok = False
                broken_at = tx.id
            running = to_money(running + to_money(tx.amount))
            if to_money(tx.balance_after) != running and chain_ok:
                chain_ok = False
                broken_at = tx.id

        balance = to_money(wallet.balance)
        return {
            "wallet_id": wallet_id,
            "balance": balance,
            "ledger_total": running,
            "transactions": count,
            "consistent": chain_ok and running == balance,
            "broken_at_transaction_id": broken_at,
        }

    def _refund_query(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        categories: Optional[List[TransactionCategory]] = None,
    ):
        query = select(WalletTransaction).where(
            WalletTransaction.category.in_(categories or REFUND_CATEGORIES)
        )
        if start is not None:
            query = query.where(WalletTransaction.created_at >= start)
        if end is not None:
            query = query.where(WalletTransaction.created_at <= end)
        if user_id:
            query = query.where(WalletTransaction.user_id == user_id)
        return query

    async def refund_history(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        user_id: Optional[str] = None,
        categories: Optional[List[TransactionCategory]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[WalletTransaction]:
        query = (
            self._refund_query(start, end, user_id, categories)
            .order_by(WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def refund_stats(self) -> dict:
        # агрегуємо у Python: формат місяця у SQL залежить від діалекту
        result = await self.session.execute(self._refund_query())
        total = ZERO
        by_reason = defaultdict(lambda: {"count": 0, "amount": ZERO})
        by_month = defaultdict(lambda: {"count": 0, "amount": ZERO})

        for tx in result.scalars():
            amount = to_money(tx.amount)
            total += amount
            reason = by_reason[tx.category.value]
            reason["count"] += 1
            reason["amount"] += amount
            month = by_month[tx.created_at.strftime("%Y-%m")]
            month["count"] += 1
            month["amount"] += amount

        return {
            "total_refunded": total,
            "refunds_by_reason": dict(by_reason),
            "monthly_trends": [
                {"month": month, **data}
                for month, data in sorted(by_month.items())
            ],
        }
