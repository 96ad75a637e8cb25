import enum

from sqlalchemy import (
    Column, Integer, String, ForeignKey, Numeric, DateTime, JSON, Enum, event
)
from sqlalchemy.orm import relationship

from wallet_ledger.core.database import Base, utcnow


class TransactionType(enum.Enum):
    CREDIT = "credit"        # нарахування
    DEBIT = "debit"          # списання


class TransactionCategory(enum.Enum):
    TOP_UP = "top_up"
    TRIP_CANCELLATION = "trip_cancellation"
    SUBSCRIPTION_CANCELLATION = "subscription_cancellation"
    MISSED_SERVICE = "missed_service"
    MANUAL_REFUND = "manual_refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    ADMIN_RESET = "admin_reset"
    SUBSCRIPTION_PURCHASE = "subscription_purchase"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"


REFUND_CATEGORIES = (
    TransactionCategory.TRIP_CANCELLATION,
    TransactionCategory.SUBSCRIPTION_CANCELLATION,
    TransactionCategory.MISSED_SERVICE,
    TransactionCategory.MANUAL_REFUND,
)


class TransactionStatus(enum.Enum):
    # часткові стани не зберігаються
    COMPLETED = "completed"


class ReferenceType(enum.Enum):
    TRIP_BOOKING = "trip_booking"
    SUBSCRIPTION = "subscription"
    SERVICE_DAY = "service_day"
    ADMIN = "admin"


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(TransactionType), nullable=False)
    category = Column(Enum(TransactionCategory), nullable=False, index=True)
    status = Column(
        Enum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED
    )

    amount = Column(Numeric(12, 2), nullable=False)  # + або -
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    reason = Column(String, nullable=False)
    description = Column(String, nullable=True)

    # що спричинило зміну балансу
    reference_type = Column(Enum(ReferenceType), nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    performed_by = Column(String, nullable=True)  # admin id

    operation_id = Column(String, unique=True, nullable=True)  # для ідемпотентності
    info = Column(JSON, default=dict)   # metadata
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    wallet = relationship("Wallet", back_populates="transactions")


@event.listens_for(WalletTransaction, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"Wallet transaction {target.id} is immutable")


@event.listens_for(WalletTransaction, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError(f"Wallet transaction {target.id} is immutable")
