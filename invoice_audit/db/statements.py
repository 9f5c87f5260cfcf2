"""Dialect-aware statements shared by the summary projections."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import Table, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from invoice_audit.errors import StorageError


def insert_if_absent(dialect: str, table: Table, values: dict[str, Any], conflict_columns: Sequence[str]) -> Any:
    """INSERT that does nothing when a row with the same unique key exists.

    Raises StorageError for a dialect without an insert-or-ignore form.
    """
    if dialect == "postgresql":
        return pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
    if dialect == "sqlite":
        return sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
    if dialect in ("mysql", "mariadb"):
        return insert(table).values(**values).prefix_with("IGNORE")
    msg = f"Unsupported database dialect for summary upsert: {dialect}"
    raise StorageError(msg)
