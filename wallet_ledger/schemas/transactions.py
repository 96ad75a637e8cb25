from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Literal, Union

from pydantic import (
	BaseModel, Field, field_serializer, ConfigDict, computed_field
)

from wallet_ledger.utils.common import to_money


class TransactionBase(BaseModel):
	id: int
	created_at: datetime = Field(exclude=True)
	amount: Decimal
	balance_before: Decimal
	balance_after: Decimal
	category: str
	reason: str
	description: Optional[str] = None
	reference_type: Optional[str] = None
	reference_id: Optional[str] = None
	performed_by: Optional[str] = None
	operation_id: Optional[str] = None

	@computed_field
	@property
	def date(self) -> datetime:
		return self.created_at

	@field_serializer("amount", "balance_before", "balance_after")
	def format_amount(self, v: Decimal, _info):
		return str(to_money(v))  # 2 знаки після крапки

	model_config = ConfigDict(
		from_attributes=True,
		use_enum_values = True
	)


# нарахування (amount > 0)
class CreditTransaction(TransactionBase):
	type: Literal["credit"]


# списання (amount < 0)
class DebitTransaction(TransactionBase):
	type: Literal["debit"]


TransactionDetail = Union[CreditTransaction, DebitTransaction]


class TransactionPaginatedList(BaseModel):
	total: int
	limit: int
	offset: int
	transactions: List[TransactionDetail]


# Public endpoints
class TopUpRequest(BaseModel):
	amount: Decimal = Field(..., gt=0, decimal_places=2)
	operation_id: Optional[str] = None
	description: Optional[str] = None


class TopUpResponse(BaseModel):
	success: bool = True
	duplicate: bool = False
	balance: Decimal
	transaction: TransactionDetail
