from wallet_ledger.models import WalletTransaction, TransactionType
from wallet_ledger.schemas.transactions import (
	TransactionDetail, CreditTransaction, DebitTransaction
)


def serialize_transaction(tx: WalletTransaction) -> TransactionDetail:
    tx_dict = {
        "id": tx.id,
        "type": tx.type.value,
        "created_at": tx.created_at,
        "amount": tx.amount,
        "balance_before": tx.balance_before,
        "balance_after": tx.balance_after,
        "category": tx.category.value,
        "reason": tx.reason,
        "description": tx.description,
        "reference_type": tx.reference_type.value if tx.reference_type else None,
        "reference_id": tx.reference_id,
        "performed_by": tx.performed_by,
        "operation_id": tx.operation_id,
    }

    if tx.type == TransactionType.CREDIT:
        return CreditTransaction.model_validate(tx_dict)
    return DebitTransaction.model_validate(tx_dict)
