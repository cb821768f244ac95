from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from assessment_platform.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local demos) cannot take pool sizing arguments
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_kwargs(settings.database_url),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    pass


def generate_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the schema's `timestamp without time zone` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
