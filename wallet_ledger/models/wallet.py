from decimal import Decimal

from sqlalchemy import (
	Column, Integer, ForeignKey, String, Numeric, DateTime, CheckConstraint
)
from sqlalchemy.orm import relationship

from wallet_ledger.core.database import Base, utcnow


class Wallet(Base):
	__tablename__ = "wallets"
	__table_args__ = (
		CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
	)

	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
	# поточний баланс; змінюється лише через WalletStore.apply_delta
	balance = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	updated_at = Column(
		DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
	)

	user = relationship("User", back_populates="wallet")
	transactions = relationship(
		"WalletTransaction",
		back_populates="wallet",
		order_by="WalletTransaction.id"
	)
