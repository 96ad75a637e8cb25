from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# **************    Candidates (обчислюються, не зберігаються)
class TripRefundCandidate(BaseModel):
	kind: Literal["trip"] = "trip"
	category: Literal["trip_cancellation", "missed_service"]
	booking_id: str
	trip_id: str
	user_id: str
	user_name: Optional[str] = None
	trip_date: date
	route: str
	reason: str
	amount: Decimal


class SubscriptionRefundCandidate(BaseModel):
	kind: Literal["subscription"] = "subscription"
	category: Literal["subscription_cancellation"] = "subscription_cancellation"
	subscription_id: str
	user_id: str
	user_name: Optional[str] = None
	route: str
	cancellation_date: date
	remaining_days: int
	amount: Decimal


class MissedServiceRefundCandidate(BaseModel):
	kind: Literal["missed_service"] = "missed_service"
	category: Literal["missed_service"] = "missed_service"
	service_day_id: str
	subscription_id: str
	user_id: str
	user_name: Optional[str] = None
	route: str
	service_date: date
	amount: Decimal


RefundCandidate = Annotated[
	Union[TripRefundCandidate, SubscriptionRefundCandidate, MissedServiceRefundCandidate],
	Field(discriminator="kind"),
]


class TripRefundGroup(BaseModel):
	trip_id: str
	trip_date: date
	route: str
	reason: str
	total_amount: Decimal
	refunds: List[TripRefundCandidate]

	@computed_field
	@property
	def user_count(self) -> int:
		return len({r.user_id for r in self.refunds})


class PendingRefundsResponse(BaseModel):
	trip_refunds: List[TripRefundCandidate]
	subscription_refunds: List[SubscriptionRefundCandidate]
	missed_service_refunds: List[MissedServiceRefundCandidate]
	trip_groups: List[TripRefundGroup]

	@computed_field
	@property
	def total_amount(self) -> Decimal:
		return sum(
			(c.amount for c in self.candidates()), Decimal("0.00")
		)

	def candidates(self) -> List[RefundCandidate]:
		return [
			*self.trip_refunds,
			*self.subscription_refunds,
			*self.missed_service_refunds,
		]


# **************    Processing
class RefundProcessResponse(BaseModel):
	processed: int = 0
	failed: int = 0
	total_amount: Decimal = Decimal("0.00")


class ManualRefundRequest(BaseModel):
	user_id: str
	amount: Decimal = Field(..., gt=0, decimal_places=2)
	reason: str
	description: Optional[str] = None


class TripCancelRequest(BaseModel):
	reason: str = "Trip cancelled by admin"


class TripCancelResponse(BaseModel):
	trip_id: str
	affected_bookings: int
	failed: int
	total_refunded: Decimal


# **************    History / Stats
class RefundHistoryItem(BaseModel):
	id: int
	user_id: str
	user_name: Optional[str] = None
	user_phone: Optional[str] = None
	amount: Decimal
	category: str
	reason: str
	description: Optional[str] = None
	reference_type: Optional[str] = None
	reference_id: Optional[str] = None
	performed_by: Optional[str] = None
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class RefundReasonStats(BaseModel):
	count: int
	amount: Decimal


class RefundMonthlyTrend(BaseModel):
	month: str
	count: int
	amount: Decimal


class RefundStatsResponse(BaseModel):
	total_refunded: Decimal
	refunds_by_reason: Dict[str, RefundReasonStats]
	monthly_trends: List[RefundMonthlyTrend]
