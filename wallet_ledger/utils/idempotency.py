from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.models import WalletTransaction, TransactionCategory


def refund_operation_id(reference_type: str, reference_id: str) -> str:
    # одне джерело = один refund; повтор впаде на unique(operation_id)
    return f"refund:{reference_type}:{reference_id}"


async def check_idempotency(
    db: AsyncSession,
    operation_id: str,
    expected_category: Optional[TransactionCategory] = None,
) -> Tuple[bool, Optional[WalletTransaction]]:
    """
    Перевіряє, чи вже існує транзакція з таким operation_id
    Повертає:
        (is_duplicate: bool, existing_transaction: WalletTransaction | None)
    Якщо is_duplicate == True - операцію вже виконували раніше
    Якщо expected_category передано і категорія не збігається - кидає 409
    """
    result = await db.execute(
        select(WalletTransaction).where(WalletTransaction.operation_id == operation_id)
    )
    tx: WalletTransaction | None = result.scalar_one_or_none()

    if not tx:
        return False, None

    # Якщо є очікувана категорія операції - перевіряємо
    if expected_category is not None and tx.category != expected_category:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Operation ID '{operation_id}' already used "
                f"for different operation type: {tx.category.value}"
            )
        )

    return True, tx
