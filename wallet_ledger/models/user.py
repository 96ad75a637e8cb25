from uuid import uuid4

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from wallet_ledger.core.database import Base, utcnow


class User(Base):
	__tablename__ = "users"

	id = Column(String, primary_key=True, default=lambda: str(uuid4()))
	name = Column(String, nullable=False)
	phone = Column(String, nullable=True)
	email = Column(String, nullable=True)
	is_admin = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

	# ORM-зв’язок
	wallet = relationship("Wallet", back_populates="user", uselist=False)
	subscriptions = relationship("Subscription", back_populates="user")
