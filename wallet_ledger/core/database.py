from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import (
	create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
)
from sqlalchemy.orm import declarative_base

from wallet_ledger.core.config import config


Base = declarative_base()


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


class Database:
	"""
	Явний handle до БД: engine + фабрика сесій.
	Створюється при старті застосунку і закривається при shutdown.
	"""

	def __init__(self, url: str, echo: bool = False, **engine_kwargs):
		self.url = url
		self.engine: AsyncEngine = create_async_engine(
			url, echo=echo, **engine_kwargs
		)
		self.session_factory = async_sessionmaker(
			bind=self.engine,
			expire_on_commit=False,
			class_=AsyncSession
		)

	def session(self) -> AsyncSession:
		return self.session_factory()

	async def create_all(self):
		async with self.engine.begin() as conn:
			await conn.run_sync(Base.metadata.create_all)

	async def drop_all(self):
		async with self.engine.begin() as conn:
			await conn.run_sync(Base.metadata.drop_all)

	async def dispose(self):
		await self.engine.dispose()


def create_database(url: str | None = None) -> Database:
	url = url or config.DATABASE_URL
	engine_kwargs = {}
	# sqlite (aiosqlite) не підтримує параметри пулу QueuePool
	if not url.startswith("sqlite"):
		engine_kwargs = {
			"pool_size": config.DB_POOL_SIZE,
			"max_overflow": config.DB_MAX_OVERFLOW,
			"pool_pre_ping": True,
		}
	return Database(url, echo=config.DEBUG_MODE, **engine_kwargs)


@asynccontextmanager
async def atomic(session: AsyncSession):
	"""
	Unit of work: усе всередині блоку або комітиться разом, або відкочується.
	"""
	try:
		yield session
		await session.commit()
	except BaseException:
		await session.rollback()
		raise
