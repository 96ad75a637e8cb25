"""
Доменні винятки гаманця, журналу транзакцій і повернень коштів.

Кожен виняток наслідує HTTPException, тому роутери пропускають їх далі
без перетворення, а сервіси можна викликати й поза HTTP (batch, cron).
"""
from decimal import Decimal

from fastapi import HTTPException, status


class LedgerError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Ledger error."
    headers = None
    code = "ledger_error"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("status_code", self.status_code)
        kwargs.setdefault("detail", self.detail)
        kwargs.setdefault("headers", {"X-Error": self.code})
        super().__init__(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


class InsufficientFunds(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "insufficient_funds"

    def __init__(self, wallet_id: int, attempted: Decimal, available: Decimal):
        self.wallet_id = wallet_id
        self.attempted = attempted
        self.available = available
        super().__init__(detail={
            "error": self.code,
            "message": "Insufficient funds.",
            "wallet_id": wallet_id,
            "attempted": str(attempted),
            "available": str(available),
        })


class WalletNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "wallet_not_found"

    def __init__(self, wallet_id):
        self.wallet_id = wallet_id
        super().__init__(detail=f"Wallet '{wallet_id}' not found.")


class UserNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_found"

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(detail=f"User '{user_id}' not found.")


class SubscriptionNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "subscription_not_found"

    def __init__(self, subscription_id):
        self.subscription_id = subscription_id
        super().__init__(detail=f"Subscription '{subscription_id}' not found.")


class TripNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "trip_not_found"

    def __init__(self, trip_id):
        self.trip_id = trip_id
        super().__init__(detail=f"Trip '{trip_id}' not found.")


class AlreadyTerminal(LedgerError):
    """Підписка вже cancelled/expired: нешкідливий no-op для batch."""
    status_code = status.HTTP_409_CONFLICT
    code = "already_terminal"

    def __init__(self, subscription_id, current_status: str):
        self.subscription_id = subscription_id
        self.current_status = current_status
        super().__init__(
            detail=f"Subscription '{subscription_id}' is already {current_status}."
        )


class ValidationError(LedgerError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"

    def __init__(self, detail: str):
        super().__init__(detail=detail)
