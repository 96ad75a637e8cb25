from wallet_ledger.models.user import User
from wallet_ledger.models.wallet import Wallet
from wallet_ledger.models.transaction import (
    WalletTransaction, TransactionType, TransactionCategory,
    TransactionStatus, ReferenceType, REFUND_CATEGORIES
)
from wallet_ledger.models.trip import (
    CarpoolRoute, TimeSlot, VehicleTrip, TripBooking,
    PaymentMethod, TripStatus, BookingStatus
)
from wallet_ledger.models.subscription import (
    Subscription, SubscriptionInvoice, SubscriptionServiceDay,
    SubscriptionStatus, InvoiceStatus, ServiceDayStatus,
    TERMINAL_STATUSES, WEEKDAYS
)

__all__ = [
    "User", "Wallet",
    "WalletTransaction", "TransactionType", "TransactionCategory",
    "TransactionStatus", "ReferenceType", "REFUND_CATEGORIES",
    "CarpoolRoute", "TimeSlot", "VehicleTrip", "TripBooking",
    "PaymentMethod", "TripStatus", "BookingStatus",
    "Subscription", "SubscriptionInvoice", "SubscriptionServiceDay",
    "SubscriptionStatus", "InvoiceStatus", "ServiceDayStatus",
    "TERMINAL_STATUSES", "WEEKDAYS",
]
