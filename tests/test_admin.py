from decimal import Decimal

import pytest

from wallet_ledger.models import SubscriptionStatus, TripStatus, BookingStatus
from wallet_ledger.services.wallet_store import WalletStore

TRANSACTION_FIELDS = {
	"id",
	"type",
	"date",
	"amount",
	"balance_before",
	"balance_after",
	"category",
	"reason",
	"description",
	"reference_type",
	"reference_id",
	"performed_by",
	"operation_id",
}


async def _wallet_id(database, user_id):
	async with database.session() as session:
		return (await WalletStore(session).get_wallet_by_user(user_id)).id


# ******************************************************    access
@pytest.mark.asyncio
async def test_admin_invalid_token(async_client):
	resp = await async_client.get(
		"/api/admin/wallets",
		headers={"X-Admin-Token": "wrong-token"}
	)
	assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_mutation_requires_admin_id(async_client, database, make_user, admin_headers):
	user = await make_user(balance="10.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/reset",
		headers={"X-Admin-Token": admin_headers["X-Admin-Token"]},
		json={"reason": "Cleanup"}
	)
	# X-Admin-Id відсутній
	assert resp.status_code == 422


# ******************************************************    wallets
@pytest.mark.asyncio
async def test_list_wallets(async_client, make_user, admin_headers):
	await make_user(name="Olena Koval", phone="+380671234567", balance="120.00")
	await make_user(name="Petro Shevchenko", phone="+380509998877", balance="5.00")

	resp = await async_client.get("/api/admin/wallets", headers=admin_headers)
	assert resp.status_code == 200

	data = resp.json()
	assert {"total", "limit", "offset", "wallets"}.issubset(data.keys())
	assert data["total"] == 2

	expected_fields = {
		"id",
		"user_id",
		"balance",
		"user_name",
		"user_phone",
		"user_email",
		"transaction_count",
		"last_transaction_at",
		"created_at",
		"updated_at",
	}
	wallet = data["wallets"][0]
	assert len(wallet) == 10
	assert expected_fields.issubset(wallet.keys())
	# сортування за балансом
	assert wallet["user_name"] == "Olena Koval"
	assert wallet["balance"] == "120.00"
	assert wallet["transaction_count"] == 1


@pytest.mark.asyncio
async def test_search_wallets(async_client, make_user, admin_headers):
	await make_user(name="Olena Koval", phone="+380671234567", balance="1.00")
	petro = await make_user(name="Petro Shevchenko", phone="+380509998877", balance="1.00")

	resp = await async_client.get(
		"/api/admin/wallets", params={"search": "shevch"}, headers=admin_headers
	)
	assert resp.status_code == 200
	assert [w["user_id"] for w in resp.json()["wallets"]] == [petro.id]

	resp = await async_client.get(
		"/api/admin/wallets", params={"search": petro.id}, headers=admin_headers
	)
	assert resp.json()["total"] == 1


@pytest.mark.asyncio
async def test_wallet_stats(async_client, make_user, admin_headers):
	await make_user(balance="100.00")
	await make_user(balance="50.00")
	await make_user(balance="0")

	resp = await async_client.get("/api/admin/wallets/stats", headers=admin_headers)
	assert resp.status_code == 200

	data = resp.json()
	assert data["total_wallets"] == 3
	assert data["total_balance"] == "150.00"
	assert data["average_balance"] == "50.00"
	assert data["zero_balance_wallets"] == 1
	assert data["total_credited"] == "150.00"
	assert data["total_debited"] == "0.00"


@pytest.mark.asyncio
async def test_wallet_transactions(async_client, database, make_user, admin_headers):
	user = await make_user(balance="30.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.get(
		f"/api/admin/wallets/{wallet_id}/transactions", headers=admin_headers
	)
	assert resp.status_code == 200

	data = resp.json()
	assert data["total"] == 1
	transaction = data["transactions"][0]
	assert set(transaction.keys()) == TRANSACTION_FIELDS
	assert transaction["type"] == "credit"
	assert transaction["category"] == "top_up"
	assert transaction["amount"] == "30.00"


@pytest.mark.asyncio
async def test_wallet_not_found(async_client, admin_headers):
	resp = await async_client.get(
		"/api/admin/wallets/9999/transactions", headers=admin_headers
	)
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_adjust_wallet(async_client, database, make_user, admin_headers):
	user = await make_user(balance="100.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/adjust",
		headers=admin_headers,
		json={"type": "debit", "amount": "20.50", "reason": "Duplicate top-up"}
	)
	assert resp.status_code == 200

	data = resp.json()
	assert data["success"] is True
	assert data["wallet_id"] == wallet_id
	assert data["new_balance"] == "79.50"
	assert data["transaction"]["type"] == "debit"
	assert data["transaction"]["amount"] == "-20.50"
	assert data["transaction"]["category"] == "admin_adjustment"
	assert data["transaction"]["performed_by"] == "admin-1"


@pytest.mark.asyncio
async def test_adjust_wallet_insufficient_funds(async_client, database, make_user, admin_headers):
	user = await make_user(balance="10.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/adjust",
		headers=admin_headers,
		json={"type": "debit", "amount": "25.00", "reason": "Correction"}
	)
	assert resp.status_code == 400

	detail = resp.json()["detail"]
	assert detail["error"] == "insufficient_funds"
	assert detail["wallet_id"] == wallet_id
	assert detail["attempted"] == "25.00"
	assert detail["available"] == "10.00"


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"payload",
	[
		{"type": "credit", "amount": "1.005", "reason": "Correction"},
		{"type": "credit", "amount": "-1.00", "reason": "Correction"},
		{"type": "bonus", "amount": "1.00", "reason": "Correction"},
		{"type": "credit", "amount": "1.00", "reason": "ok"},
	],
)
async def test_adjust_wallet_validation(async_client, database, make_user, admin_headers, payload):
	user = await make_user(balance="10.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/adjust", headers=admin_headers, json=payload
	)
	assert resp.status_code == 422


@pytest.mark.asyncio
async def test_reset_wallet(async_client, database, make_user, admin_headers, wallet_balance):
	user = await make_user(balance="150.50")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/reset",
		headers=admin_headers,
		json={"reason": "Account closed"}
	)
	assert resp.status_code == 200
	assert resp.json()["new_balance"] == "0.00"
	assert resp.json()["transaction"]["category"] == "admin_reset"
	assert await wallet_balance(user.id) == Decimal("0.00")

	# повторне обнулення - баланс вже нульовий
	resp = await async_client.post(
		f"/api/admin/wallets/{wallet_id}/reset",
		headers=admin_headers,
		json={"reason": "Account closed"}
	)
	assert resp.status_code == 422


@pytest.mark.asyncio
async def test_reconcile_wallet(async_client, database, make_user, admin_headers):
	user = await make_user(balance="42.00")
	wallet_id = await _wallet_id(database, user.id)

	resp = await async_client.get(
		f"/api/admin/wallets/{wallet_id}/reconcile", headers=admin_headers
	)
	assert resp.status_code == 200
	assert resp.json() == {
		"wallet_id": wallet_id,
		"balance": "42.00",
		"ledger_total": "42.00",
		"transactions": 1,
		"consistent": True,
		"broken_at_transaction_id": None,
	}


# ******************************************************    refunds
@pytest.mark.asyncio
async def test_pending_and_process_refunds(
		async_client, make_user, make_route, make_trip, make_booking, admin_headers,
		wallet_balance
):
	route = await make_route(name="Kyiv - Bucha")
	trip = await make_trip(route)
	alice = await make_user(name="Alice")
	bob = await make_user(name="Bob")
	await make_booking(trip, alice.id, "500.00")
	await make_booking(trip, bob.id, "300.00")

	resp = await async_client.get("/api/admin/refunds/pending", headers=admin_headers)
	assert resp.status_code == 200

	data = resp.json()
	assert {
		"trip_refunds",
		"subscription_refunds",
		"missed_service_refunds",
		"trip_groups",
		"total_amount",
	} == set(data.keys())
	assert len(data["trip_refunds"]) == 2
	assert data["total_amount"] == "800.00"

	group = data["trip_groups"][0]
	assert group["route"] == "Kyiv - Bucha"
	assert group["user_count"] == 2
	assert group["total_amount"] == "800.00"

	resp = await async_client.post("/api/admin/refunds/process", headers=admin_headers)
	assert resp.status_code == 200
	assert resp.json() == {"processed": 2, "failed": 0, "total_amount": "800.00"}
	assert await wallet_balance(alice.id) == Decimal("500.00")

	resp = await async_client.get("/api/admin/refunds/pending", headers=admin_headers)
	assert resp.json()["trip_refunds"] == []


@pytest.mark.asyncio
async def test_manual_refund(async_client, make_user, admin_headers, wallet_balance):
	user = await make_user()

	resp = await async_client.post(
		"/api/admin/refunds",
		headers=admin_headers,
		json={"user_id": user.id, "amount": "12.00", "reason": "Goodwill"}
	)
	assert resp.status_code == 201
	assert resp.json()["transaction"]["category"] == "manual_refund"
	assert await wallet_balance(user.id) == Decimal("12.00")

	resp = await async_client.post(
		"/api/admin/refunds",
		headers=admin_headers,
		json={"user_id": "missing-user", "amount": "12.00", "reason": "Goodwill"}
	)
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_refund_history_filter(
		async_client, make_user, make_route, make_trip, make_booking, admin_headers
):
	route = await make_route()
	trip = await make_trip(route)
	user = await make_user(name="Olena", phone="+380671234567")
	await make_booking(trip, user.id, "70.00")

	await async_client.post("/api/admin/refunds/process", headers=admin_headers)
	await async_client.post(
		"/api/admin/refunds",
		headers=admin_headers,
		json={"user_id": user.id, "amount": "5.00", "reason": "Goodwill"}
	)

	resp = await async_client.get("/api/admin/refunds/history", headers=admin_headers)
	assert resp.status_code == 200
	assert len(resp.json()) == 2

	resp = await async_client.get(
		"/api/admin/refunds/history",
		params={"refund_type": "trip_cancellation", "user_id": user.id},
		headers=admin_headers
	)
	data = resp.json()
	assert len(data) == 1

	expected_fields = {
		"id",
		"user_id",
		"user_name",
		"user_phone",
		"amount",
		"category",
		"reason",
		"description",
		"reference_type",
		"reference_id",
		"performed_by",
		"created_at",
	}
	assert set(data[0].keys()) == expected_fields
	assert data[0]["user_phone"] == "+380671234567"
	assert data[0]["amount"] == "70.00"


@pytest.mark.asyncio
@pytest.mark.parametrize("refund_type", ["top_up", "something"])
async def test_refund_history_invalid_type(async_client, admin_headers, refund_type):
	resp = await async_client.get(
		"/api/admin/refunds/history",
		params={"refund_type": refund_type},
		headers=admin_headers
	)
	assert resp.status_code == 422


@pytest.mark.asyncio
async def test_refund_stats(async_client, make_user, admin_headers):
	user = await make_user()
	await async_client.post(
		"/api/admin/refunds",
		headers=admin_headers,
		json={"user_id": user.id, "amount": "5.00", "reason": "Goodwill"}
	)

	resp = await async_client.get("/api/admin/refunds/stats", headers=admin_headers)
	assert resp.status_code == 200

	data = resp.json()
	assert data["total_refunded"] == "5.00"
	assert data["refunds_by_reason"]["manual_refund"] == {"count": 1, "amount": "5.00"}
	assert len(data["monthly_trends"]) == 1


# ******************************************************    trips
@pytest.mark.asyncio
async def test_cancel_trip(
		async_client, make_user, make_route, make_trip, make_booking, admin_headers,
		wallet_balance
):
	route = await make_route()
	trip = await make_trip(route, status=TripStatus.SCHEDULED)
	user = await make_user()
	await make_booking(trip, user.id, "150.00")
	await make_booking(trip, user.id, "150.00", status=BookingStatus.CANCELLED)

	resp = await async_client.post(
		f"/api/admin/trips/{trip.id}/cancel",
		headers=admin_headers,
		json={"reason": "Driver sick"}
	)
	assert resp.status_code == 200
	assert resp.json() == {
		"trip_id": trip.id,
		"affected_bookings": 1,
		"failed": 0,
		"total_refunded": "150.00",
	}
	assert await wallet_balance(user.id) == Decimal("150.00")


@pytest.mark.asyncio
async def test_cancel_unknown_trip(async_client, admin_headers):
	resp = await async_client.post(
		"/api/admin/trips/missing-trip/cancel", headers=admin_headers, json={}
	)
	assert resp.status_code == 404


# ******************************************************    subscriptions
@pytest.mark.asyncio
async def test_admin_cancel_subscription(
		async_client, make_user, make_route, make_subscription, admin_headers
):
	user = await make_user()
	route = await make_route()
	subscription = await make_subscription(user, route)

	resp = await async_client.post(
		f"/api/admin/subscriptions/{subscription.id}/cancel",
		headers=admin_headers,
		json={"cancellation_date": "2026-01-21"}
	)
	assert resp.status_code == 200

	data = resp.json()
	assert data["refund_amount"] == "900.00"
	assert data["subscription"]["status"] == "pending_cancellation"
	assert data["subscription"]["auto_renew"] is False

	# повторний запит - без змін
	resp = await async_client.post(
		f"/api/admin/subscriptions/{subscription.id}/cancel",
		headers=admin_headers,
		json={"cancellation_date": "2026-01-25"}
	)
	assert resp.status_code == 200
	assert resp.json()["refund_amount"] == "900.00"
	assert resp.json()["subscription"]["cancellation_date"] == "2026-01-21"


@pytest.mark.asyncio
async def test_admin_cancel_terminal_subscription(
		async_client, make_user, make_route, make_subscription, admin_headers
):
	user = await make_user()
	route = await make_route()
	subscription = await make_subscription(
		user, route, status=SubscriptionStatus.CANCELLED
	)

	resp = await async_client.post(
		f"/api/admin/subscriptions/{subscription.id}/cancel",
		headers=admin_headers
	)
	assert resp.status_code == 409

	resp = await async_client.post(
		"/api/admin/subscriptions/missing/cancel", headers=admin_headers
	)
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_subscriptions_and_invoices(
		async_client, make_user, make_route, make_subscription, admin_headers
):
	user = await make_user()
	route = await make_route()
	active = await make_subscription(user, route)
	await make_subscription(user, route, status=SubscriptionStatus.EXPIRED)

	resp = await async_client.get(
		"/api/admin/subscriptions", params={"status": "active"}, headers=admin_headers
	)
	assert resp.status_code == 200
	subscriptions = resp.json()["subscriptions"]
	assert [s["id"] for s in subscriptions] == [active.id]
	assert subscriptions[0]["net_fee"] == "2700.00"
	assert subscriptions[0]["weekdays"] == ["mon", "wed", "fri"]

	resp = await async_client.get(
		f"/api/admin/subscriptions/{active.id}/invoices", headers=admin_headers
	)
	assert resp.status_code == 200
	assert resp.json() == {"subscription_id": active.id, "invoices": []}


@pytest.mark.asyncio
async def test_subscription_stats(async_client, make_user, make_route, make_subscription, admin_headers):
	user = await make_user()
	route = await make_route()
	await make_subscription(user, route)

	resp = await async_client.get("/api/admin/subscriptions/stats", headers=admin_headers)
	assert resp.status_code == 200

	data = resp.json()
	assert data["by_status"]["active"] == 1
	assert data["monthly_recurring_revenue"] == "2700.00"
