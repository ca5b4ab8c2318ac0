"""
Database: engine, sessions and the unit of work

Every saga step group runs inside one ``UnitOfWork`` transaction. All stores
used by that group share the same ``AsyncSession``, so a single commit or
rollback covers orders, payments and reservations together.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .tables import metadata


def make_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False)


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class UnitOfWork:
    """
    Transaction Coordinator.

    The only component allowed to begin, commit or roll back. Reads issued
    before ``begin`` (idempotency checks, status probes) run in the session's
    implicit transaction, which ``begin`` closes first so the saga step always
    starts from a fresh transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def begin(self) -> None:
        if self.session.in_transaction():
            await self.session.commit()
        await self.session.begin()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
