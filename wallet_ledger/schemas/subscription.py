from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from wallet_ledger.models import SubscriptionStatus, InvoiceStatus, PaymentMethod


class SubscriptionBase(BaseModel):
	route_id: str
	time_slot_id: Optional[str] = None
	weekdays: List[str]
	payment_method: Literal["wallet", "cash"] = "wallet"
	auto_renew: bool = True


class SubscriptionCreate(SubscriptionBase):
	start_date: Optional[date] = None
	billing_cycle_days: Optional[int] = Field(None, gt=0)
	discount_amount: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)


class SubscriptionOut(SubscriptionBase):
	id: str
	payment_method: PaymentMethod
	user_id: str
	start_date: date
	end_date: date
	base_fee: Decimal
	discount_amount: Decimal
	billing_cycle_days: int
	status: SubscriptionStatus
	cancellation_date: Optional[date] = None
	refund_amount: Optional[Decimal] = None
	refund_processed: bool
	refunded_at: Optional[datetime] = None
	created_at: datetime

	@computed_field
	@property
	def net_fee(self) -> Decimal:
		return self.base_fee - self.discount_amount

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values=True
	)


class SubscriptionList(BaseModel):
	limit: int
	offset: int
	subscriptions: List[SubscriptionOut]


class SubscriptionCancelRequest(BaseModel):
	cancellation_date: Optional[date] = None


class SubscriptionCancelResponse(BaseModel):
	success: bool = True
	subscription: SubscriptionOut
	refund_amount: Decimal
	message: str


class InvoiceOut(BaseModel):
	id: str
	invoice_number: str
	billing_month: str
	amount_due: Decimal
	amount_paid: Decimal
	status: InvoiceStatus
	due_date: date
	wallet_transaction_id: Optional[int] = None
	paid_at: Optional[datetime] = None
	created_at: datetime

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values=True
	)


class InvoiceList(BaseModel):
	subscription_id: str
	invoices: List[InvoiceOut]


class SubscriptionStatsResponse(BaseModel):
	by_status: Dict[str, int]
	total_revenue: Decimal
	monthly_recurring_revenue: Decimal
	average_subscription_value: Decimal


# Internal endpoints
class RenewalRequest(BaseModel):
	today: Optional[date] = None
	dry_run: bool = False


class RenewalSummary(BaseModel):
	processed: int
	renewed: int
	expired: int
	cancelled: int
	failed: int
	errors: List[str] = []
