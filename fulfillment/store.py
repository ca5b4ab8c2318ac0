"""
Store: repository base shared by the order, payment and reservation stores.

``add`` and ``update`` only stage changes; ``save_changes`` writes them and
returns the number of rows affected. Updates are version-checked: a row is
written only if its ``version`` still matches the one that was loaded, and the
version is bumped on success. A writer holding a stale copy therefore affects
zero rows, which callers treat as a persistence failure and roll back.
"""

from typing import Any

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncSession


class Store:
    table: Table

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._pending: list[tuple[str, Any]] = []

    # ── Mapping (per aggregate) ──────────────────

    def _from_row(self, row: RowMapping) -> Any:
        raise NotImplementedError

    def _to_values(self, entity: Any) -> dict:
        raise NotImplementedError

    async def _after_insert(self, entity: Any) -> int:
        """Write child rows once the parent has its id."""
        return 0

    # ── Reads ────────────────────────────────────

    async def exists(self, **criteria: Any) -> bool:
        clauses = [self.table.c[name] == value for name, value in criteria.items()]
        result = await self.session.execute(select(self.table.c.id).where(*clauses).limit(1))
        return result.first() is not None

    async def get_by_id(self, entity_id: int) -> Any | None:
        return await self._get_one(self.table.c.id == entity_id)

    async def _get_one(self, *clauses: Any) -> Any | None:
        result = await self.session.execute(select(self.table).where(*clauses))
        row = result.mappings().first()
        return self._from_row(row) if row else None

    # ── Writes ───────────────────────────────────

    def add(self, entity: Any) -> None:
        self._pending.append(("insert", entity))

    def update(self, entity: Any) -> None:
        self._pending.append(("update", entity))

    async def save_changes(self) -> int:
        pending, self._pending = self._pending, []
        affected = 0
        for operation, entity in pending:
            if operation == "insert":
                affected += await self._insert(entity)
            else:
                affected += await self._update(entity)
        return affected

    async def _insert(self, entity: Any) -> int:
        result = await self.session.execute(
            insert(self.table).values(version=1, **self._to_values(entity))
        )
        entity.id = result.inserted_primary_key[0]
        entity.version = 1
        return result.rowcount + await self._after_insert(entity)

    async def _update(self, entity: Any) -> int:
        result = await self.session.execute(
            update(self.table)
            .where(self.table.c.id == entity.id, self.table.c.version == entity.version)
            .values(version=entity.version + 1, **self._to_values(entity))
        )
        if result.rowcount == 1:
            entity.version += 1
        return result.rowcount
