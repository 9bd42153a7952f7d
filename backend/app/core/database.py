import urllib.parse
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL as ENV_DATABASE_URL, SUPABASE_DB_PASS, SUPABASE_DB_HOST


def _build_database_url() -> str:
    if ENV_DATABASE_URL:
        return ENV_DATABASE_URL
    password = urllib.parse.quote_plus(SUPABASE_DB_PASS or "")
    host = SUPABASE_DB_HOST or "localhost"
    return f"postgresql+asyncpg://postgres:{password}@{host}:5432/postgres"


DATABASE_URL = _build_database_url()

# pool sizing only applies to the postgres driver
_engine_kwargs = {"echo": False, "future": True}
if DATABASE_URL.startswith("postgresql"):
    _engine_kwargs.update(
        pool_size=3,
        max_overflow=2,
        pool_recycle=300,
        pool_timeout=30,
        pool_pre_ping=True,
    )

engine = create_async_engine(DATABASE_URL, **_engine_kwargs)
SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session
