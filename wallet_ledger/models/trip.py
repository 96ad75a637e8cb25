import enum
from uuid import uuid4

from sqlalchemy import (
	Column, String, Numeric, Date, DateTime, Boolean, ForeignKey, Enum
)
from sqlalchemy.orm import relationship

from wallet_ledger.core.database import Base, utcnow


class PaymentMethod(enum.Enum):
	WALLET = "wallet"
	CASH = "cash"     # оплата водію, повернення не нараховуються


class TripStatus(enum.Enum):
	SCHEDULED = "scheduled"
	COMPLETED = "completed"
	CANCELLED = "cancelled"


class BookingStatus(enum.Enum):
	CONFIRMED = "confirmed"
	COMPLETED = "completed"
	NO_SHOW = "no_show"        # водій не приїхав
	CANCELLED = "cancelled"    # скасовано користувачем


class CarpoolRoute(Base):
	__tablename__ = "carpool_routes"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	name = Column(String, nullable=False)
	from_area = Column(String, nullable=True)
	to_area = Column(String, nullable=True)
	price_per_seat = Column(Numeric(12, 2), nullable=False)
	active = Column(Boolean, default=True)
	created_at = Column(DateTime(timezone=True), default=utcnow)

	time_slots = relationship("TimeSlot", back_populates="route")


class TimeSlot(Base):
	__tablename__ = "time_slots"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	route_id = Column(String, ForeignKey("carpool_routes.id"), nullable=False)
	pickup_time = Column(String(5), nullable=False)  # "08:30"
	drop_off_time = Column(String(5), nullable=True)

	route = relationship("CarpoolRoute", back_populates="time_slots")


class VehicleTrip(Base):
	__tablename__ = "vehicle_trips"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	route_id = Column(String, ForeignKey("carpool_routes.id"), nullable=False)
	time_slot_id = Column(String, ForeignKey("time_slots.id"), nullable=True)
	trip_date = Column(Date, nullable=False)
	status = Column(Enum(TripStatus), default=TripStatus.SCHEDULED, nullable=False)
	cancellation_reason = Column(String, nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

	route = relationship("CarpoolRoute")
	bookings = relationship("TripBooking", back_populates="trip")


class TripBooking(Base):
	__tablename__ = "trip_bookings"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	trip_id = Column(String, ForeignKey("vehicle_trips.id"), nullable=False, index=True)
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	subscription_id = Column(String, ForeignKey("subscriptions.id"), nullable=True)
	fare = Column(Numeric(12, 2), nullable=False)
	payment_method = Column(
		Enum(PaymentMethod), default=PaymentMethod.WALLET, nullable=False
	)
	status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False)

	refund_processed = Column(Boolean, default=False, nullable=False)
	refund_amount = Column(Numeric(12, 2), nullable=True)
	refunded_at = Column(DateTime(timezone=True), nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow)

	trip = relationship("VehicleTrip", back_populates="bookings")
	user = relationship("User")
