import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.database import utcnow
from wallet_ledger.core.exceptions import (
    InsufficientFunds, WalletNotFound, ValidationError
)
from wallet_ledger.models import (
    Wallet, WalletTransaction, TransactionCategory, ReferenceType
)
from wallet_ledger.services.ledger import TransactionLedger
from wallet_ledger.utils.common import to_money, user_existing_check, ZERO
from wallet_ledger.utils.redis_cache import BalanceCache

logger = logging.getLogger("[LEDGER]")


class WalletStore:
    """
    Єдине місце, що змінює баланс гаманця.

    Баланс змінюється атомарним умовним UPDATE (balance = balance + amount),
    а не записом значення, прочитаного раніше. Рядок лишається заблокованим
    до commit/rollback unit of work, тож рядки журналу одного гаманця
    утворюють неперервний ланцюжок.
    Сам commit робить викликач через `atomic(session)`.
    """

    def __init__(self, session: AsyncSession, cache: Optional[BalanceCache] = None):
        self.session = session
        self.cache = cache
        self.ledger = TransactionLedger(session)
        self._touched_users: set[str] = set()

    def _insert(self):
        if self.session.bind.dialect.name == "postgresql":
            return postgresql.insert(Wallet)
        return sqlite.insert(Wallet)

    async def get_wallet(self, wallet_id: int) -> Wallet:
        wallet = await self.session.get(Wallet, wallet_id)
        if wallet is None:
            raise WalletNotFound(wallet_id)
        return wallet

    async def get_wallet_by_user(self, user_id: str) -> Wallet | None:
        return await self.session.scalar(
            select(Wallet).where(Wallet.user_id == user_id)
        )

    async def get_or_create_wallet(self, user_id: str) -> Wallet:
        wallet = await self.get_wallet_by_user(user_id)
        if wallet is not None:
            return wallet

        await user_existing_check(self.session, user_id)

        # якщо гаманець одночасно створює інший запит - просто нічого не робимо
        now = utcnow()
        stmt = self._insert().values(
            user_id=user_id, balance=ZERO, created_at=now, updated_at=now
        ).on_conflict_do_nothing(index_elements=["user_id"])
        await self.session.execute(stmt)

        wallet = await self.get_wallet_by_user(user_id)
        logger.info(f"Wallet {wallet.id} ready for user {user_id}")
        return wallet

    async def lock_wallet(self, wallet_id: int) -> Wallet:
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise WalletNotFound(wallet_id)
        return wallet

    async def apply_delta(
        self,
        wallet_id: int,
        amount: Decimal,
        *,
        category: TransactionCategory,
        reason: str,
        description: Optional[str] = None,
        reference_type: Optional[ReferenceType] = None,
        reference_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        operation_id: Optional[str] = None,
        info: Optional[dict] = None,
    ) -> WalletTransaction:
        """
        new_balance = balance + amount; оновлення балансу і рядок журналу
        пишуться в одній транзакції БД. Якщо баланс став би < 0 -
        InsufficientFunds до будь-якого запису.

        Баланс змінюється одним умовним UPDATE ... RETURNING, тож
        паралельні записи не перетирають один одного на жодній БД.
        """
        amount = to_money(amount)
        if amount == ZERO:
            raise ValidationError("Amount must not be zero.")

        new_balance = func.round(Wallet.balance + amount, 2, type_=Wallet.balance.type)
        result = await self.session.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id, new_balance >= ZERO)
            .values(balance=new_balance, updated_at=utcnow())
            .returning(Wallet)
            .execution_options(populate_existing=True, synchronize_session=False)
        )
        wallet = result.scalar_one_or_none()

        if wallet is None:
            current = await self.session.get(
                Wallet, wallet_id, populate_existing=True
            )
            if current is None:
                raise WalletNotFound(wallet_id)
            available = to_money(current.balance)
            logger.warning(
                f"Rejected debit {amount} on wallet {wallet_id}: "
                f"available {available}"
            )
            raise InsufficientFunds(wallet_id, -amount, available)

        balance_before = to_money(wallet.balance) - amount

        tx = await self.ledger.append(
            wallet,
            amount,
            balance_before=balance_before,
            category=category,
            reason=reason,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            performed_by=performed_by,
            operation_id=operation_id,
            info=info,
        )
        self._touched_users.add(wallet.user_id)
        return tx


    async def invalidate_cache(self):
        """Викликати після commit: скидає кеш балансу змінених гаманців."""
        if self.cache is not None and self._touched_users:
            await self.cache.delete(*self._touched_users)
        self._touched_users.clear()

    async def get_balance(self, user_id: str) -> dict:
        """Баланс користувача: спочатку Redis, якщо немає - БД"""
        if self.cache is not None:
            cached = await self.cache.get(user_id)
            if cached is not None:
                return cached

        wallet = await self.get_or_create_wallet(user_id)
        await self.session.commit()
        balance = to_money(wallet.balance)

        if self.cache is not None:
            await self.cache.set(user_id, wallet.id, balance)
            # зміна могла закомітитись між читанням БД і записом у кеш
            fresh = to_money(await self.session.scalar(
                select(Wallet.balance).where(Wallet.id == wallet.id)
            ))
            await self.session.commit()
            if fresh != balance:
                logger.info(f"Balance of wallet {wallet.id} changed while caching, dropping cache")
                await self.cache.delete(user_id)
                balance = fresh
        return {"wallet_id": wallet.id, "balance": balance}
