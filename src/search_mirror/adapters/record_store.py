"""Primary-store access used by the synchronizer, reindexer and search facade.

The primary store owns the records; the index only mirrors them. The
``RecordStore`` contract is deliberately small: read one record, page through
records or keys, and describe column types so the extractor can ignore
non-text columns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
import logging
import re
import sqlite3
from typing import Any

from search_mirror.deployment_config import IndexRegistry


logger = logging.getLogger(__name__)

Conditions = Mapping[str, Any]
Order = str | Sequence[str] | None

_ORDER_PATTERN = re.compile(r"^\s*(?P<column>[A-Za-z_][A-Za-z0-9_]*)(?:\s+(?P<direction>asc|desc))?\s*$", re.I)


class RecordStore(ABC):
    """Read access to the records of the primary store, per entity type."""

    @abstractmethod
    def read_by_key(self, entity_type: str, key: Any) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def find_all(
        self,
        entity_type: str,
        conditions: Conditions | None = None,
        fields: Sequence[str] | None = None,
        limit: int | None = None,
        page: int = 1,
        order: Order = None,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_keys(
        self,
        entity_type: str,
        conditions: Conditions | None = None,
        limit: int | None = None,
        page: int = 1,
        order: Order = None,
    ) -> list[Any]:
        """Return primary keys only; used to page through large tables cheaply."""
        raise NotImplementedError

    @abstractmethod
    def column_types(self, entity_type: str) -> dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    def primary_key(self, entity_type: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def last_inserted_key(self, entity_type: str) -> Any:
        """Key of the most recent insert, for hosts that save without echoing the key."""
        raise NotImplementedError


class SqliteRecordStore(RecordStore):
    """``RecordStore`` over a sqlite3 connection.

    ``tables`` maps entity types to table names; unmapped entity types use
    their own name as the table. ``primary_keys`` overrides the key read
    from the table schema.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        tables: Mapping[str, str] | None = None,
        primary_keys: Mapping[str, str] | None = None,
    ) -> None:
        self._connection = connection
        self._tables = dict(tables or {})
        self._primary_keys = dict(primary_keys or {})
        self._columns: dict[str, list[tuple[str, str, bool]]] = {}
        self._last_inserted: dict[str, Any] = {}

    @classmethod
    def from_registry(cls, connection: sqlite3.Connection, registry: IndexRegistry) -> SqliteRecordStore:
        return cls(
            connection,
            {entity.entity_type: entity.storage_table for entity in registry.entities},
            {entity.entity_type: entity.primary_key for entity in registry.entities if entity.primary_key},
        )

    # --- schema -------------------------------------------------------------

    def table_for(self, entity_type: str) -> str:
        return self._tables.get(entity_type, entity_type)

    def column_types(self, entity_type: str) -> dict[str, str]:
        return {name: column_type for name, column_type, _ in self._table_info(entity_type)}

    def primary_key(self, entity_type: str) -> str:
        if entity_type in self._primary_keys:
            return self._primary_keys[entity_type]
        for name, _, is_pk in self._table_info(entity_type):
            if is_pk:
                return name
        return "id"

    def _table_info(self, entity_type: str) -> list[tuple[str, str, bool]]:
        table = self.table_for(entity_type)
        if table not in self._columns:
            rows = self._connection.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
            if not rows:
                raise ValueError(f"Table '{table}' for entity type '{entity_type}' does not exist")
            # cid, name, type, notnull, dflt_value, pk
            self._columns[table] = [(row[1], row[2] or "", bool(row[5])) for row in rows]
        return self._columns[table]

    # --- reads --------------------------------------------------------------

    def read_by_key(self, entity_type: str, key: Any) -> dict[str, Any] | None:
        rows = self.find_all(entity_type, {self.primary_key(entity_type): key}, limit=1)
        return rows[0] if rows else None

    def find_all(
        self,
        entity_type: str,
        conditions: Conditions | None = None,
        fields: Sequence[str] | None = None,
        limit: int | None = None,
        page: int = 1,
        order: Order = None,
    ) -> list[dict[str, Any]]:
        columns = [self._column(entity_type, name) for name in fields] if fields else ["*"]
        sql = f"SELECT {', '.join(columns)} FROM {_quote(self.table_for(entity_type))}"
        where, params = self._where(entity_type, conditions)
        sql += where + self._order_by(entity_type, order) + _paging(limit, page)

        logger.debug("find_all %s: %s %s", entity_type, sql, params)
        cursor = self._connection.execute(sql, params)
        names = [description[0] for description in cursor.description]
        return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]

    def list_keys(
        self,
        entity_type: str,
        conditions: Conditions | None = None,
        limit: int | None = None,
        page: int = 1,
        order: Order = None,
    ) -> list[Any]:
        primary_key = self.primary_key(entity_type)
        rows = self.find_all(entity_type, conditions, [primary_key], limit, page, order or primary_key)
        return [row[primary_key] for row in rows]

    def last_inserted_key(self, entity_type: str) -> Any:
        return self._last_inserted.get(entity_type)

    # --- writes -------------------------------------------------------------

    def save(self, entity_type: str, values: Mapping[str, Any]) -> Any:
        """Insert or update a record and return its key."""
        primary_key = self.primary_key(entity_type)
        table = _quote(self.table_for(entity_type))
        names = [self._column(entity_type, name) for name in values]
        key = values.get(primary_key)

        with self._connection:
            if key is not None and self.read_by_key(entity_type, key) is not None:
                assignments = ", ".join(f"{name} = ?" for name in names)
                self._connection.execute(
                    f"UPDATE {table} SET {assignments} WHERE {_quote(primary_key)} = ?",
                    [*values.values(), key],
                )
                return key

            placeholders = ", ".join("?" for _ in names)
            cursor = self._connection.execute(
                f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                list(values.values()),
            )
        key = key if key is not None else cursor.lastrowid
        self._last_inserted[entity_type] = key
        return key

    def delete(self, entity_type: str, key: Any) -> bool:
        primary_key = self.primary_key(entity_type)
        with self._connection:
            cursor = self._connection.execute(
                f"DELETE FROM {_quote(self.table_for(entity_type))} WHERE {_quote(primary_key)} = ?",
                [key],
            )
        return cursor.rowcount > 0

    # --- SQL helpers --------------------------------------------------------

    def _column(self, entity_type: str, name: str) -> str:
        if name not in self.column_types(entity_type):
            raise ValueError(f"Unknown column '{name}' for entity type '{entity_type}'")
        return _quote(name)

    def _where(self, entity_type: str, conditions: Conditions | None) -> tuple[str, list[Any]]:
        if not conditions:
            return "", []
        clauses: list[str] = []
        params: list[Any] = []
        for name, value in conditions.items():
            column = self._column(entity_type, name)
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def _order_by(self, entity_type: str, order: Order) -> str:
        if not order:
            return ""
        items = [order] if isinstance(order, str) else list(order)
        parts = []
        for item in items:
            match = _ORDER_PATTERN.match(item)
            if not match:
                raise ValueError(f"Invalid order clause: {item!r}")
            direction = (match.group("direction") or "asc").upper()
            parts.append(f"{self._column(entity_type, match.group('column'))} {direction}")
        return " ORDER BY " + ", ".join(parts)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _paging(limit: int | None, page: int) -> str:
    if limit is None:
        return ""
    offset = max(page - 1, 0) * limit
    return f" LIMIT {int(limit)} OFFSET {int(offset)}"
