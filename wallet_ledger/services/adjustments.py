import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.database import atomic
from wallet_ledger.core.exceptions import ValidationError
from wallet_ledger.models import (
    TransactionCategory, TransactionType, ReferenceType, WalletTransaction
)
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import (
    ZERO, to_money, validate_positive_amount, validate_reason
)
from wallet_ledger.utils.logging import get_extra_data_log
from wallet_ledger.utils.redis_cache import BalanceCache

logger = logging.getLogger("[ADMIN]")


class AdminAdjustments:
    """
    Ручні зміни балансу адміністратором. Кожна операція - окремий
    unit of work; рядок журналу зберігає причину і ідентифікатор адміна.
    """

    def __init__(self, session: AsyncSession, cache: Optional[BalanceCache] = None):
        self.session = session
        self.store = WalletStore(session, cache)

    async def adjust(
        self,
        wallet_id: int,
        type: TransactionType,
        amount: Decimal,
        reason: str,
        admin_user_id: str,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        amount = validate_positive_amount(amount)
        reason = validate_reason(reason)
        delta = amount if TransactionType(type) == TransactionType.CREDIT else -amount

        async with atomic(self.session):
            tx = await self.store.apply_delta(
                wallet_id,
                delta,
                category=TransactionCategory.ADMIN_ADJUSTMENT,
                reason=reason,
                description=description or f"Admin adjustment: {reason}",
                reference_type=ReferenceType.ADMIN,
                reference_id=admin_user_id,
                performed_by=admin_user_id,
            )
        await self.store.invalidate_cache()

        logger.info(
            f"Admin {admin_user_id} adjusted wallet {wallet_id} by {delta}:",
            extra=get_extra_data_log(tx),
        )
        return tx

    async def reset(
        self, wallet_id: int, reason: str, admin_user_id: str
    ) -> WalletTransaction:
        """Списує весь поточний баланс; нульовий баланс скидати нічого."""
        reason = validate_reason(reason)

        async with atomic(self.session):
            wallet = await self.store.lock_wallet(wallet_id)
            balance = to_money(wallet.balance)
            if balance == ZERO:
                raise ValidationError(f"Wallet {wallet_id} balance is already zero.")

            tx = await self.store.apply_delta(
                wallet_id,
                -balance,
                category=TransactionCategory.ADMIN_RESET,
                reason=reason,
                description=f"Wallet reset by admin. Previous balance: {balance}",
                reference_type=ReferenceType.ADMIN,
                reference_id=admin_user_id,
                performed_by=admin_user_id,
                info={"previous_balance": str(balance)},
            )
        await self.store.invalidate_cache()

        logger.warning(
            f"Admin {admin_user_id} reset wallet {wallet_id} from {balance}:",
            extra=get_extra_data_log(tx),
        )
        return tx

    async def refund(
        self,
        user_id: str,
        amount: Decimal,
        reason: str,
        admin_user_id: str,
        description: Optional[str] = None,
    ) -> WalletTransaction:
        """Ручне повернення на гаманець користувача (створює гаманець за потреби)."""
        amount = validate_positive_amount(amount)
        reason = validate_reason(reason)

        async with atomic(self.session):
            wallet = await self.store.get_or_create_wallet(user_id)
            tx = await self.store.apply_delta(
                wallet.id,
                amount,
                category=TransactionCategory.MANUAL_REFUND,
                reason=reason,
                description=description or f"Manual refund: {reason}",
                reference_type=ReferenceType.ADMIN,
                reference_id=admin_user_id,
                performed_by=admin_user_id,
            )
        await self.store.invalidate_cache()

        logger.info(
            f"Admin {admin_user_id} refunded {amount} to user {user_id}:",
            extra=get_extra_data_log(tx),
        )
        return tx
