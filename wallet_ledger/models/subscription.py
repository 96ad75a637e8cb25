import enum
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
	Column, Integer, String, Numeric, Boolean, Date, DateTime, JSON, Enum,
	ForeignKey
)
from sqlalchemy.orm import relationship, validates

from wallet_ledger.core.database import Base, utcnow
from wallet_ledger.models.trip import PaymentMethod


WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class SubscriptionStatus(enum.Enum):
	ACTIVE = "active"
	PENDING_CANCELLATION = "pending_cancellation"
	CANCELLED = "cancelled"
	EXPIRED = "expired"


TERMINAL_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class InvoiceStatus(enum.Enum):
	PENDING = "pending"
	PAID = "paid"
	FAILED = "failed"
	REFUNDED = "refunded"


class ServiceDayStatus(enum.Enum):
	SCHEDULED = "scheduled"
	TRIP_GENERATED = "trip_generated"
	TRIP_NOT_GENERATED = "trip_not_generated"  # замало бронювань


class Subscription(Base):
	__tablename__ = "subscriptions"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	route_id = Column(String, ForeignKey("carpool_routes.id"), nullable=False)
	time_slot_id = Column(String, ForeignKey("time_slots.id"), nullable=True)
	weekdays = Column(JSON, default=list, nullable=False)

	start_date = Column(Date, nullable=False)
	# кінець поточного циклу оплати (не включно)
	end_date = Column(Date, nullable=False)

	base_fee = Column(Numeric(12, 2), nullable=False)
	discount_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
	billing_cycle_days = Column(Integer, default=30, nullable=False)
	payment_method = Column(
		Enum(PaymentMethod), default=PaymentMethod.WALLET, nullable=False
	)
	auto_renew = Column(Boolean, default=True, nullable=False)

	status = Column(
		Enum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, nullable=False
	)
	cancellation_date = Column(Date, nullable=True)
	refund_amount = Column(Numeric(12, 2), nullable=True)
	refund_processed = Column(Boolean, default=False, nullable=False)
	refunded_at = Column(DateTime(timezone=True), nullable=True)

	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	updated_at = Column(
		DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
	)

	user = relationship("User", back_populates="subscriptions")
	route = relationship("CarpoolRoute")
	time_slot = relationship("TimeSlot")
	invoices = relationship("SubscriptionInvoice", back_populates="subscription")

	@property
	def net_fee(self) -> Decimal:
		return Decimal(self.base_fee) - Decimal(self.discount_amount or 0)

	@validates("billing_cycle_days")
	def validate_billing_cycle_days(self, key, value):
		if value is None or value <= 0:
			raise ValueError("Billing cycle must be at least 1 day")
		return value

	@validates("weekdays")
	def validate_weekdays(self, key, value):
		unknown = set(value or []) - set(WEEKDAYS)
		if unknown:
			raise ValueError(f"Unknown weekdays: {sorted(unknown)}")
		return list(value or [])


class SubscriptionInvoice(Base):
	__tablename__ = "subscription_invoices"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	subscription_id = Column(
		String, ForeignKey("subscriptions.id"), nullable=False, index=True
	)
	user_id = Column(String, ForeignKey("users.id"), nullable=False)
	invoice_number = Column(String, unique=True, nullable=False)
	billing_month = Column(String(7), nullable=False)  # "2026-01"
	amount_due = Column(Numeric(12, 2), nullable=False)
	amount_paid = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
	status = Column(Enum(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False)
	due_date = Column(Date, nullable=False)
	wallet_transaction_id = Column(
		Integer, ForeignKey("wallet_transactions.id"), nullable=True
	)
	paid_at = Column(DateTime(timezone=True), nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

	subscription = relationship("Subscription", back_populates="invoices")


class SubscriptionServiceDay(Base):
	__tablename__ = "subscription_service_days"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	subscription_id = Column(
		String, ForeignKey("subscriptions.id"), nullable=False, index=True
	)
	user_id = Column(String, ForeignKey("users.id"), nullable=False)
	service_date = Column(Date, nullable=False)
	status = Column(
		Enum(ServiceDayStatus), default=ServiceDayStatus.SCHEDULED, nullable=False
	)
	refund_processed = Column(Boolean, default=False, nullable=False)
	refund_amount = Column(Numeric(12, 2), nullable=True)
	refunded_at = Column(DateTime(timezone=True), nullable=True)

	subscription = relationship("Subscription")
