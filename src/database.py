import os
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from dotenv import load_dotenv
from uuid import uuid4
from sqlalchemy import (
    JSON, Column, Integer, String,
    func, DateTime,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

load_dotenv()

POSTGRES_USER = os.getenv("POSTGRES_USER")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD")
POSTGRES_DB = os.getenv("POSTGRES_DB_URL")

class Base(DeclarativeBase): pass

postgres_file_name = f"{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_DB}"

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{postgres_file_name}"
    )


def _connect_args(url: str) -> dict:
    if not url.startswith("postgresql+asyncpg"):
        return {}
    # pgbouncer in transaction mode breaks asyncpg's prepared statement cache
    from asyncpg import Connection

    class FixedConnection(Connection):
        def _get_unique_id(self, prefix: str) -> str:
            return f'__asyncpg_{prefix}_{uuid4()}__'

    return {
        "statement_cache_size": 0,
        "prepared_statement_cache_size": 0,
        "connection_class": FixedConnection,
    }


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    future=True,
    connect_args=_connect_args(DATABASE_URL),
)

# Фабрика сессий
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def get_session():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

#ORM

class SavedSessionORM(Base):
    __tablename__ = "saved_sessions"

    id       = Column(String, primary_key=True)
    courts   = Column(Integer, nullable=False)
    document = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)  # engine.to_document()
    saved_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
