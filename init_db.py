# Створення таблиць без міграцій (локальний запуск / демо)
import asyncio

from wallet_ledger.core.database import create_database
import wallet_ledger.models  # noqa: F401  реєструє моделі в Base.metadata


async def init_db():
    database = create_database()
    try:
        await database.create_all()
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
