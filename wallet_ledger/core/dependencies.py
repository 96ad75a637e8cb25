from fastapi import Header, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_ledger.core.config import config
from wallet_ledger.core.database import Database
from wallet_ledger.services.adjustments import AdminAdjustments
from wallet_ledger.services.refunds import RefundOrchestrator
from wallet_ledger.services.renewals import SubscriptionRenewalJob
from wallet_ledger.services.subscriptions import SubscriptionEngine
from wallet_ledger.services.wallet_store import WalletStore
from wallet_ledger.utils.redis_cache import BalanceCache


# Dependency: handle до БД, створений при старті застосунку
def get_database(request: Request) -> Database:
    return request.app.state.db


# Dependency для отримання сесії
async def get_session(database: Database = Depends(get_database)) -> AsyncSession:
    async with database.session() as session:
        yield session


# Dependency: кеш балансу (Redis)
def get_cache(request: Request) -> BalanceCache:
    return BalanceCache(request.app.state.redis)


# Dependency: перевірка адмін токену
def access_admin(x_admin_token: str = Header(...)):
    if x_admin_token != config.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid admin token")


# Dependency: ідентифікатор адміна для журналу
def get_admin_id(x_admin_id: str = Header(...)) -> str:
    admin_id = x_admin_id.strip()
    if not admin_id:
        raise HTTPException(status_code=400, detail="X-Admin-Id header is required")
    return admin_id


# Dependency: перевірка internal токену
def access_internal(x_service_token: str = Header(...)):
    if x_service_token != config.SERVICE_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid service token")


security = HTTPBearer()

# Dependency: перевірка user токену
def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        x_user_id: str = Header(...)
) -> str:
    token = credentials.credentials
    if token != config.USER_TOKEN_BEARER:
        raise HTTPException(status_code=403, detail="Invalid user token")
    return x_user_id  # користувача визначає auth-gateway


# Dependency: сервіси
def get_wallet_store(
        session: AsyncSession = Depends(get_session),
        cache: BalanceCache = Depends(get_cache)
) -> WalletStore:
    return WalletStore(session, cache)


def get_adjustments(
        session: AsyncSession = Depends(get_session),
        cache: BalanceCache = Depends(get_cache)
) -> AdminAdjustments:
    return AdminAdjustments(session, cache)


def get_subscription_engine(
        store: WalletStore = Depends(get_wallet_store)
) -> SubscriptionEngine:
    return SubscriptionEngine(store.session, store)


def get_refund_orchestrator(
        database: Database = Depends(get_database),
        cache: BalanceCache = Depends(get_cache)
) -> RefundOrchestrator:
    return RefundOrchestrator(database, cache)


def get_renewal_job(
        database: Database = Depends(get_database),
        cache: BalanceCache = Depends(get_cache)
) -> SubscriptionRenewalJob:
    return SubscriptionRenewalJob(database, cache)
