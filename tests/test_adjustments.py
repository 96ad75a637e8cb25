from decimal import Decimal

import pytest

from wallet_ledger.core.exceptions import InsufficientFunds, ValidationError
from wallet_ledger.models import TransactionCategory, TransactionType, ReferenceType
from wallet_ledger.services.adjustments import AdminAdjustments
from wallet_ledger.services.wallet_store import WalletStore


async def _wallet_id(database, user_id):
	async with database.session() as session:
		wallet = await WalletStore(session).get_wallet_by_user(user_id)
		return wallet.id


@pytest.mark.asyncio
async def test_reset_debits_whole_balance(
		database, cache, make_user, wallet_balance, user_transactions
):
	user = await make_user(balance="150.50")
	wallet_id = await _wallet_id(database, user.id)

	async with database.session() as session:
		tx = await AdminAdjustments(session, cache).reset(
			wallet_id, "Fraud investigation", "admin-7"
		)

	assert tx.amount == Decimal("-150.50")
	assert tx.balance_after == Decimal("0.00")
	assert await wallet_balance(user.id) == Decimal("0.00")

	last = (await user_transactions(user.id))[-1]
	assert last.category == TransactionCategory.ADMIN_RESET
	assert last.type == TransactionType.DEBIT
	assert last.performed_by == "admin-7"
	assert last.reason == "Fraud investigation"
	assert last.info == {"previous_balance": "150.50"}


@pytest.mark.asyncio
async def test_reset_zero_balance_rejected(database, make_user, user_transactions):
	user = await make_user(balance="0")
	wallet_id = await _wallet_id(database, user.id)

	async with database.session() as session:
		with pytest.raises(ValidationError):
			await AdminAdjustments(session).reset(wallet_id, "Cleanup", "admin-1")

	assert await user_transactions(user.id) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"type_, amount, expected",
	[
		(TransactionType.CREDIT, "25.00", "125.00"),
		(TransactionType.DEBIT, "40.10", "59.90"),
	],
)
async def test_adjust(database, make_user, wallet_balance, user_transactions, type_, amount, expected):
	user = await make_user(balance="100.00")
	wallet_id = await _wallet_id(database, user.id)

	async with database.session() as session:
		tx = await AdminAdjustments(session).adjust(
			wallet_id, type_, Decimal(amount), "Support ticket 42", "admin-1",
		)

	assert tx.type == type_
	assert await wallet_balance(user.id) == Decimal(expected)

	last = (await user_transactions(user.id))[-1]
	assert last.category == TransactionCategory.ADMIN_ADJUSTMENT
	assert last.reference_type == ReferenceType.ADMIN
	assert last.reference_id == "admin-1"
	assert last.description == "Admin adjustment: Support ticket 42"


@pytest.mark.asyncio
async def test_adjust_debit_over_balance(database, make_user, wallet_balance):
	user = await make_user(balance="10.00")
	wallet_id = await _wallet_id(database, user.id)

	async with database.session() as session:
		with pytest.raises(InsufficientFunds):
			await AdminAdjustments(session).adjust(
				wallet_id, TransactionType.DEBIT, Decimal("10.01"), "Correction", "admin-1",
			)

	assert await wallet_balance(user.id) == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"amount, reason",
	[
		("10.00", "ok"),        # закоротка причина
		("10.00", "   "),
		("1.005", "Correction"),  # три знаки після крапки
		("-5.00", "Correction"),
		("0", "Correction"),
	],
)
async def test_adjust_validation(database, make_user, wallet_balance, amount, reason):
	user = await make_user(balance="10.00")
	wallet_id = await _wallet_id(database, user.id)

	async with database.session() as session:
		with pytest.raises(ValidationError) as exc:
			await AdminAdjustments(session).adjust(
				wallet_id, TransactionType.CREDIT, Decimal(amount), reason, "admin-1",
			)

	assert exc.value.status_code == 422
	assert await wallet_balance(user.id) == Decimal("10.00")


@pytest.mark.asyncio
async def test_manual_refund_creates_wallet(database, cache, make_user, wallet_balance, user_transactions):
	user = await make_user()

	async with database.session() as session:
		tx = await AdminAdjustments(session, cache).refund(
			user.id, Decimal("35.00"), "Driver was late", "admin-3",
			description="Compensation for delay",
		)

	assert tx.type == TransactionType.CREDIT
	assert await wallet_balance(user.id) == Decimal("35.00")

	last = (await user_transactions(user.id))[-1]
	assert last.category == TransactionCategory.MANUAL_REFUND
	assert last.description == "Compensation for delay"
	assert last.performed_by == "admin-3"
