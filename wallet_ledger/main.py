from contextlib import asynccontextmanager

from fastapi import FastAPI

from wallet_ledger.core.database import Database, create_database
from wallet_ledger.core.logging_config import setup_logging
from wallet_ledger.routers.admin import admin_router
from wallet_ledger.routers.internal import internal_router
from wallet_ledger.routers.public import public_router
from wallet_ledger.utils.redis_cache import create_redis_client

setup_logging()


def create_app(database: Database | None = None, redis=None) -> FastAPI:
    """
    БД і Redis передаються явно (тести) або створюються при старті.
    Закриваються при shutdown лише ті, що створив сам застосунок.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_db = getattr(app.state, "db", None) is None
        owns_redis = getattr(app.state, "redis", None) is None
        if owns_db:
            app.state.db = create_database()
        if owns_redis:
            app.state.redis = create_redis_client()
        yield
        if owns_redis:
            await app.state.redis.aclose()
        if owns_db:
            await app.state.db.dispose()

    app = FastAPI(
        title="Wallet Ledger",
        description="Сервіс гаманців, повернень коштів і підписок для carpool бронювань",
        version="1.0.0",
        lifespan=lifespan,
    )
    # ASGITransport у тестах не запускає lifespan
    app.state.db = database
    app.state.redis = redis

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(internal_router)
    app.include_router(public_router)
    app.include_router(admin_router)
    return app


app = create_app()
