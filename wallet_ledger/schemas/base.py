from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from wallet_ledger.schemas.transactions import TransactionDetail


# Wallets Admin
class WalletListItem(BaseModel):
	id: int
	user_id: str
	balance: Decimal
	user_name: Optional[str] = None
	user_phone: Optional[str] = None
	user_email: Optional[str] = None
	transaction_count: int = 0
	last_transaction_at: Optional[datetime] = None
	created_at: datetime
	updated_at: datetime

	class Config:
		from_attributes = True


class WalletList(BaseModel):
	total: int
	limit: int
	offset: int
	wallets: List[WalletListItem]


class WalletStatsResponse(BaseModel):
	total_wallets: int
	total_balance: Decimal
	average_balance: Decimal
	zero_balance_wallets: int
	total_credited: Decimal
	total_debited: Decimal


class WalletReconcileResponse(BaseModel):
	wallet_id: int
	balance: Decimal
	ledger_total: Decimal
	transactions: int
	consistent: bool
	broken_at_transaction_id: Optional[int] = None


class AdjustmentRequest(BaseModel):
	type: Literal["credit", "debit"]
	amount: Decimal = Field(..., gt=0, decimal_places=2)
	reason: str
	description: Optional[str] = None


class ResetRequest(BaseModel):
	reason: str


class AdjustmentResponse(BaseModel):
	success: bool = True
	wallet_id: int
	new_balance: Decimal
	transaction: TransactionDetail


# Wallet Public
class WalletBalanceResponse(BaseModel):
	wallet_id: int
	user_id: str
	balance: Decimal
