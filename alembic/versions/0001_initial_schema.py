"""initial schema: wallets, ledger, trips, subscriptions

Revision ID: 0001
Revises:
Create Date: 2026-01-05 10:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


payment_method = postgresql.ENUM("WALLET", "CASH", name="paymentmethod", create_type=False)
trip_status = postgresql.ENUM("SCHEDULED", "COMPLETED", "CANCELLED", name="tripstatus", create_type=False)
booking_status = postgresql.ENUM(
    "CONFIRMED", "COMPLETED", "NO_SHOW", "CANCELLED", name="bookingstatus", create_type=False)
subscription_status = postgresql.ENUM(
    "ACTIVE", "PENDING_CANCELLATION", "CANCELLED", "EXPIRED",
    name="subscriptionstatus", create_type=False)
invoice_status = postgresql.ENUM("PENDING", "PAID", "FAILED", "REFUNDED", name="invoicestatus", create_type=False)
service_day_status = postgresql.ENUM(
    "SCHEDULED", "TRIP_GENERATED", "TRIP_NOT_GENERATED", name="servicedaystatus", create_type=False)
transaction_type = postgresql.ENUM("CREDIT", "DEBIT", name="transactiontype", create_type=False)
transaction_category = postgresql.ENUM(
    "TOP_UP", "TRIP_CANCELLATION", "SUBSCRIPTION_CANCELLATION", "MISSED_SERVICE",
    "MANUAL_REFUND", "ADMIN_ADJUSTMENT", "ADMIN_RESET", "SUBSCRIPTION_PURCHASE",
    "SUBSCRIPTION_RENEWAL",
    name="transactioncategory", create_type=False)
transaction_status = postgresql.ENUM("COMPLETED", name="transactionstatus", create_type=False)
reference_type = postgresql.ENUM(
    "TRIP_BOOKING", "SUBSCRIPTION", "SERVICE_DAY", "ADMIN", name="referencetype", create_type=False)

ENUM_TYPES = (
    payment_method, trip_status, booking_status, subscription_status,
    invoice_status, service_day_status, transaction_type,
    transaction_category, transaction_status, reference_type,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "carpool_routes",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("from_area", sa.String(), nullable=True),
        sa.Column("to_area", sa.String(), nullable=True),
        sa.Column("price_per_seat", sa.Numeric(12, 2), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "time_slots",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("route_id", sa.String(), sa.ForeignKey("carpool_routes.id"), nullable=False),
        sa.Column("pickup_time", sa.String(5), nullable=False),
        sa.Column("drop_off_time", sa.String(5), nullable=True),
    )
    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )
    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("wallet_id", sa.Integer(), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("category", transaction_category, nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("reference_type", reference_type, nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("operation_id", sa.String(), nullable=True, unique=True),
        sa.Column("info", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"])
    op.create_index("ix_wallet_transactions_category", "wallet_transactions", ["category"])
    op.create_index("ix_wallet_transactions_reference_id", "wallet_transactions", ["reference_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("route_id", sa.String(), sa.ForeignKey("carpool_routes.id"), nullable=False),
        sa.Column("time_slot_id", sa.String(), sa.ForeignKey("time_slots.id"), nullable=True),
        sa.Column("weekdays", sa.JSON(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("base_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("billing_cycle_days", sa.Integer(), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("auto_renew", sa.Boolean(), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("cancellation_date", sa.Date(), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("refund_processed", sa.Boolean(), nullable=False),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])

    op.create_table(
        "subscription_invoices",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invoice_number", sa.String(), nullable=False, unique=True),
        sa.Column("billing_month", sa.String(7), nullable=False),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "wallet_transaction_id", sa.Integer(),
            sa.ForeignKey("wallet_transactions.id"), nullable=True,
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_subscription_invoices_subscription_id",
        "subscription_invoices", ["subscription_id"],
    )

    op.create_table(
        "subscription_service_days",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("status", service_day_status, nullable=False),
        sa.Column("refund_processed", sa.Boolean(), nullable=False),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_subscription_service_days_subscription_id",
        "subscription_service_days", ["subscription_id"],
    )

    op.create_table(
        "vehicle_trips",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("route_id", sa.String(), sa.ForeignKey("carpool_routes.id"), nullable=False),
        sa.Column("time_slot_id", sa.String(), sa.ForeignKey("time_slots.id"), nullable=True),
        sa.Column("trip_date", sa.Date(), nullable=False),
        sa.Column("status", trip_status, nullable=False),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "trip_bookings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("trip_id", sa.String(), sa.ForeignKey("vehicle_trips.id"), nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("fare", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("status", booking_status, nullable=False),
        sa.Column("refund_processed", sa.Boolean(), nullable=False),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_trip_bookings_trip_id", "trip_bookings", ["trip_id"])
    op.create_index("ix_trip_bookings_user_id", "trip_bookings", ["user_id"])


def downgrade() -> None:
    op.drop_table("trip_bookings")
    op.drop_table("vehicle_trips")
    op.drop_table("subscription_service_days")
    op.drop_table("subscription_invoices")
    op.drop_table("subscriptions")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("time_slots")
    op.drop_table("carpool_routes")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
