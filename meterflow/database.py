import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from meterflow.config import settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
	if url.startswith("sqlite"):
		# SQLite has no server-side pool
		return {"echo": settings.DB_ECHO}
	return {
		"echo": settings.DB_ECHO,
		"pool_size": settings.DB_POOL_SIZE,
		"max_overflow": settings.DB_MAX_OVERFLOW,
		"pool_pre_ping": settings.DB_POOL_PRE_PING,
	}


engine = create_async_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

# Session factory
AsyncSessionLocal = async_sessionmaker(
	engine,
	class_=AsyncSession,
	expire_on_commit=False,
	autoflush=False,
)

Base = declarative_base()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
	async with AsyncSessionLocal() as session:
		try:
			yield session
			await session.commit()
		except Exception:
			await session.rollback()
			raise


async def init_db():
	"""Initialize database - create tables if not exist"""
	# Register every mapped class on Base.metadata
	from meterflow import models  # noqa: F401

	try:
		async with engine.begin() as conn:
			if settings.AUTO_CREATE_TABLES:
				await conn.run_sync(Base.metadata.create_all)
		logger.info("Database initialized successfully")
	except Exception as e:
		logger.error(f"Database initialization failed: {e}")
		raise


async def close_db():
	"""Close database connections"""
	await engine.dispose()
	logger.info("Database connections closed")


async def check_db_connection() -> bool:
	"""Check if database is healthy"""
	try:
		async with AsyncSessionLocal() as session:
			await session.execute(text("SELECT 1"))
			return True
	except Exception as e:
		logger.error(f"Database health check failed: {e}")
		return False
