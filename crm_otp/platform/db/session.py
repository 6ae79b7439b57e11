from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from crm_otp.platform.config import settings
from crm_otp.platform.db.base import Base

engine_options = {"echo": False, "future": True, "pool_pre_ping": True}
if settings.DATABASE_URL.startswith("sqlite"):
    # aiosqlite connections must not outlive the event loop that opened them
    engine_options["poolclass"] = NullPool
else:
    engine_options.update(pool_recycle=1800, pool_size=20, max_overflow=30, pool_timeout=30)

engine = create_async_engine(settings.DATABASE_URL, **engine_options)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False, autocommit=False)


async def get_db():
    async with SessionLocal() as session:
        yield session


async def init_models():
    # registers OTPChallenge on Base.metadata
    from crm_otp.features.otp.models import otp  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
