import os
import sys
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

# config читається при імпорті застосунку
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("SERVICE_TOKEN", "test-service-token")
os.environ.setdefault("USER_TOKEN_BEARER", "test-user-token")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "wallet_ledger_test_logs"))

import fakeredis
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

from wallet_ledger.core.database import Database, atomic
from wallet_ledger.main import create_app
from wallet_ledger.models import (
	User, Wallet, WalletTransaction, CarpoolRoute, VehicleTrip, TripBooking,
	Subscription, TransactionCategory, TripStatus, BookingStatus, PaymentMethod,
	SubscriptionStatus
)
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.common import to_money
from wallet_ledger.utils.redis_cache import BalanceCache


# Нова БД (sqlite файл) для КОЖНОГО тесту
@pytest_asyncio.fixture
async def database(tmp_path):
	db = Database(f"sqlite+aiosqlite:///{tmp_path / 'wallet_ledger.db'}")
	await db.create_all()

	yield db  # Тест виконується тут

	await db.drop_all()
	await db.dispose()  #  Закриваємо engine


@pytest_asyncio.fixture
async def redis_client():
	client = fakeredis.FakeAsyncRedis(decode_responses=True)
	yield client
	await client.flushall()
	await client.aclose()


@pytest.fixture
def cache(redis_client):
	return BalanceCache(redis_client)


@pytest_asyncio.fixture
async def session(database):
	async with database.session() as session:
		yield session


@pytest_asyncio.fixture
async def async_client(database, redis_client):
	app = create_app(database=database, redis=redis_client)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as client:
		yield client


# ******************************************************    factories
@pytest.fixture
def persist(database):
	"""Зберігає ORM-об'єкти окремою сесією і повертає їх."""
	async def _persist(*objects):
		async with database.session() as session:
			session.add_all(objects)
			await session.commit()
		return objects[0] if len(objects) == 1 else objects
	return _persist


@pytest.fixture
def make_user(database):
	async def _make_user(name="Test User", phone="+380501112233", email=None, balance=None):
		async with database.session() as session:
			user = User(name=name, phone=phone, email=email)
			session.add(user)
			await session.commit()

			if balance is not None:
				store = WalletStore(session)
				async with atomic(session):
					wallet = await store.get_or_create_wallet(user.id)
					if Decimal(str(balance)) > 0:
						await store.apply_delta(
							wallet.id,
							Decimal(str(balance)),
							category=TransactionCategory.TOP_UP,
							reason="Initial top-up",
						)
			return user
	return _make_user


@pytest.fixture
def make_route(persist):
	async def _make_route(name="Kyiv - Irpin", price_per_seat="100.00"):
		return await persist(
			CarpoolRoute(name=name, price_per_seat=Decimal(price_per_seat))
		)
	return _make_route


@pytest.fixture
def make_trip(persist):
	async def _make_trip(route, trip_date=date(2026, 1, 15), status=TripStatus.CANCELLED,
						 cancellation_reason=None):
		return await persist(VehicleTrip(
			route_id=route.id,
			trip_date=trip_date,
			status=status,
			cancellation_reason=cancellation_reason,
		))
	return _make_trip


@pytest.fixture
def make_booking(persist):
	async def _make_booking(trip, user_id, fare, payment_method=PaymentMethod.WALLET,
							status=BookingStatus.CONFIRMED):
		return await persist(TripBooking(
			trip_id=trip.id,
			user_id=user_id,
			fare=Decimal(fare),
			payment_method=payment_method,
			status=status,
		))
	return _make_booking


@pytest.fixture
def make_subscription(persist):
	async def _make_subscription(user, route, **fields):
		values = dict(
			user_id=user.id,
			route_id=route.id,
			weekdays=["mon", "wed", "fri"],
			start_date=date(2026, 1, 1),
			end_date=date(2026, 1, 31),
			base_fee=Decimal("3000.00"),
			discount_amount=Decimal("300.00"),
			billing_cycle_days=30,
			payment_method=PaymentMethod.WALLET,
			status=SubscriptionStatus.ACTIVE,
		)
		values.update(fields)
		return await persist(Subscription(**values))
	return _make_subscription


@pytest.fixture
def wallet_balance(database):
	async def _wallet_balance(user_id):
		async with database.session() as session:
			wallet = await session.scalar(select(Wallet).where(Wallet.user_id == user_id))
			return to_money(wallet.balance) if wallet else None
	return _wallet_balance


@pytest.fixture
def user_transactions(database):
	async def _user_transactions(user_id):
		async with database.session() as session:
			result = await session.execute(
				select(WalletTransaction)
				.where(WalletTransaction.user_id == user_id)
				.order_by(WalletTransaction.id)
			)
			return result.scalars().all()
	return _user_transactions


@pytest.fixture
def admin_headers():
	from wallet_ledger.core.config import config
	return {"X-Admin-Token": config.ADMIN_TOKEN, "X-Admin-Id": "admin-1"}


@pytest.fixture
def service_headers():
	from wallet_ledger.core.config import config
	return {"X-Service-Token": config.SERVICE_TOKEN}


@pytest.fixture
def user_headers():
	from wallet_ledger.core.config import config

	def _user_headers(user_id):
		return {
			"Authorization": f"Bearer {config.USER_TOKEN_BEARER}",
			"X-User-Id": user_id,
		}
	return _user_headers
