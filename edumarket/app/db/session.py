"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL.
"""

from sqlalchemy import MetaData, Numeric
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from edumarket.app.core.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Deterministic names for indexes and constraints
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Create declarative base for models
Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))

# All money columns: two decimal places, the smallest currency unit
Money = Numeric(12, 2)


async def get_db():
    """
    FastAPI dependency for database sessions.

    Yields an async database session and ensures it's properly closed.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
