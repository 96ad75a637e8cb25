from datetime import date
from decimal import Decimal

import pytest


@pytest.mark.asyncio
async def test_internal_invalid_token(async_client):
	resp = await async_client.post(
		"/api/internal/refunds/process",
		headers={"X-Service-Token": "wrong-token"}
	)
	assert resp.status_code == 403


@pytest.mark.asyncio
async def test_internal_process_refunds(
		async_client, make_user, make_route, make_trip, make_booking, service_headers,
		wallet_balance
):
	route = await make_route()
	trip = await make_trip(route)
	user = await make_user()
	await make_booking(trip, user.id, "64.20")

	resp = await async_client.post("/api/internal/refunds/process", headers=service_headers)
	assert resp.status_code == 200
	assert resp.json() == {"processed": 1, "failed": 0, "total_amount": "64.20"}
	assert await wallet_balance(user.id) == Decimal("64.20")

	# повторний запуск нічого не нараховує
	resp = await async_client.post("/api/internal/refunds/process", headers=service_headers)
	assert resp.json() == {"processed": 0, "failed": 0, "total_amount": "0.00"}


@pytest.mark.asyncio
async def test_internal_process_refunds_while_locked(
		async_client, cache, service_headers
):
	# інший запуск тримає single-flight lock
	assert await cache.acquire_processing_lock() is not None

	resp = await async_client.post("/api/internal/refunds/process", headers=service_headers)
	assert resp.status_code == 200
	assert resp.json()["processed"] == 0


@pytest.mark.asyncio
async def test_internal_renewals(
		async_client, make_user, make_route, make_subscription, service_headers
):
	user = await make_user(balance="5000.00")
	route = await make_route()
	await make_subscription(user, route, auto_renew=True)
	await make_subscription(user, route, auto_renew=False)
	await make_subscription(user, route, end_date=date(2026, 3, 1))

	resp = await async_client.post(
		"/api/internal/subscriptions/renewals",
		headers=service_headers,
		json={"today": "2026-01-31", "dry_run": True}
	)
	assert resp.status_code == 200
	assert resp.json() == {
		"processed": 2,
		"renewed": 1,
		"expired": 1,
		"cancelled": 0,
		"failed": 0,
		"errors": [],
	}

	resp = await async_client.post(
		"/api/internal/subscriptions/renewals",
		headers=service_headers,
		json={"today": "2026-01-31"}
	)
	assert resp.json()["renewed"] == 1

	# після продовження нічого не прострочено
	resp = await async_client.post(
		"/api/internal/subscriptions/renewals",
		headers=service_headers,
		json={"today": "2026-01-31"}
	)
	assert resp.json()["processed"] == 0


@pytest.mark.asyncio
async def test_internal_renewals_without_body(async_client, service_headers):
	resp = await async_client.post(
		"/api/internal/subscriptions/renewals", headers=service_headers
	)
	assert resp.status_code == 200
	assert resp.json()["processed"] == 0
