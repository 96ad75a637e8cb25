import secrets
from datetime import date
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.config import config
from wallet_ledger.core.exceptions import ValidationError, UserNotFound
from wallet_ledger.models import User


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
	"""
	Decimal з 2 знаками після крапки (ROUND_HALF_UP).
	float спершу перетворюється у str, щоб не тягнути двійкову похибку.
	"""
	if value is None:
		return ZERO
	if isinstance(value, float):
		value = repr(value)
	try:
		return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
	except InvalidOperation:
		raise ValidationError(f"Invalid amount: {value!r}")


def validate_positive_amount(amount) -> Decimal:
	try:
		raw = Decimal(str(amount))
	except InvalidOperation:
		raise ValidationError(f"Invalid amount: {amount!r}")
	if not raw.is_finite() or raw <= 0:
		raise ValidationError("Amount must be greater than 0.")
	if raw != raw.quantize(CENT):
		raise ValidationError("Amount must have at most 2 decimal places.")
	return raw.quantize(CENT)


def validate_reason(reason: str | None, min_length: int | None = None) -> str:
	min_length = config.ADJUSTMENT_REASON_MIN_LENGTH if min_length is None else min_length
	reason = (reason or "").strip()
	if not reason:
		raise ValidationError("Reason is required.")
	if len(reason) < min_length:
		raise ValidationError(
			f"Reason must be at least {min_length} characters."
		)
	return reason


def generate_invoice_number(billing_month: str) -> str:
	# INV-202601-3F9A1C
	return f"INV-{billing_month.replace('-', '')}-{secrets.token_hex(3).upper()}"


def billing_month_of(day: date) -> str:
	return f"{day.year}-{day.month:02d}"


async def user_existing_check(session: AsyncSession, user_id: str) -> User:
	"""
	Перевіряє, чи користувач існує в базі даних.
	Якщо ні, генерує виняток.
	"""
	user = await session.get(User, user_id)
	if not user:
		raise UserNotFound(user_id)
	return user
