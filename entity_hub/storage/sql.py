from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor

from ..errors import StorageError
from ..filters import ListFilters
from .base import Row, Storage

logger = logging.getLogger(__name__)

TABLE_COLUMNS: Dict[str, List[str]] = {
    "items": ["description", "status", "sell_price", "unique", "tags", "components"],
    "persons": ["name", "status", "type", "tags", "components"],
    "projects": ["name", "description", "status", "person_id"],
    "item_tags": ["name"],
    "person_tags": ["name"],
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS item_tags (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS person_tags (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        id BIGSERIAL PRIMARY KEY,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        sell_price NUMERIC(10, 2) NOT NULL DEFAULT 0,
        "unique" BOOLEAN NOT NULL DEFAULT FALSE,
        tags BIGINT[] NOT NULL DEFAULT '{}',
        components BIGINT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS persons (
        id BIGSERIAL PRIMARY KEY,
        name TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        type TEXT NOT NULL DEFAULT 'natural',
        tags BIGINT[] NOT NULL DEFAULT '{}',
        components BIGINT[] NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        person_id BIGINT NOT NULL REFERENCES persons (id)
    )
    """,
]


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def checked_table(table: str) -> str:
    if table not in TABLE_COLUMNS:
        raise StorageError(f"Unknown table {table!r}")
    return quote(table)


def checked_columns(table: str, data: Dict[str, Any]) -> List[str]:
    allowed = TABLE_COLUMNS[table]
    unknown = [key for key in data if key not in allowed]
    if unknown:
        raise StorageError(f"Unknown columns for {table}: {unknown!r}")
    return list(data.keys())


def ensure_column(db, table: str, column: str, col_type: str) -> None:
    with db.cursor() as cursor:
        cursor.execute(f"ALTER TABLE {quote(table)} ADD COLUMN IF NOT EXISTS {quote(column)} {col_type}")


def init_db(db) -> None:
    with db.cursor() as cursor:
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)

    ensure_column(db, "items", "components", "BIGINT[] NOT NULL DEFAULT '{}'")
    ensure_column(db, "persons", "components", "BIGINT[] NOT NULL DEFAULT '{}'")
    ensure_column(db, "persons", "type", "TEXT NOT NULL DEFAULT 'natural'")
    db.commit()


class SqlStorage(Storage):
    """PostgreSQL through a psycopg2 connection pool.

    Calls made inside ``transaction()`` share one connection; calls outside it
    borrow a connection and commit on their own.
    """

    name = "sql"

    def __init__(self, dsn: str, maxconn: int = 10) -> None:
        self.dsn = dsn
        self.maxconn = maxconn
        self._pool: pool.ThreadedConnectionPool | None = None
        self._local = threading.local()

    def get_pool(self) -> pool.ThreadedConnectionPool:
        if self._pool is None:
            try:
                self._pool = pool.ThreadedConnectionPool(minconn=1, maxconn=self.maxconn, dsn=self.dsn)
            except psycopg2.Error as exc:
                raise StorageError("Could not connect to the database") from exc
        return self._pool

    def init_schema(self) -> None:
        db = self.get_pool().getconn()
        try:
            init_db(db)
        finally:
            try:
                db.rollback()
            except psycopg2.Error:
                logger.exception("Rollback after schema init failed")
            self.get_pool().putconn(db)

    def _rollback_quietly(self, db) -> None:
        try:
            db.rollback()
        except psycopg2.Error:
            logger.exception("Rollback failed")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "db", None) is not None:
            # Nested scopes join the outer transaction.
            yield
            return
        try:
            db = self.get_pool().getconn()
        except psycopg2.Error as exc:
            raise StorageError("No database connection available") from exc
        self._local.db = db
        try:
            try:
                yield
            except BaseException:
                self._rollback_quietly(db)
                raise
            try:
                db.commit()
            except psycopg2.Error as exc:
                self._rollback_quietly(db)
                raise StorageError("Commit failed") from exc
        finally:
            self._local.db = None
            self.get_pool().putconn(db)

    @contextmanager
    def _cursor(self, dict_rows: bool = True) -> Iterator[Any]:
        factory = RealDictCursor if dict_rows else None
        db = getattr(self._local, "db", None)
        try:
            if db is not None:
                with db.cursor(cursor_factory=factory) as cursor:
                    yield cursor
                return
            db = self.get_pool().getconn()
            try:
                with db.cursor(cursor_factory=factory) as cursor:
                    yield cursor
                db.commit()
            except BaseException:
                self._rollback_quietly(db)
                raise
            finally:
                self.get_pool().putconn(db)
        except psycopg2.Error as exc:
            raise StorageError(str(exc).strip() or "Database error") from exc

    def fetch_one(self, query: str, params: List[Any] | tuple[Any, ...] | None = None) -> Row | None:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row is not None else None

    def fetch_all_rows(self, query: str, params: List[Any] | tuple[Any, ...] | None = None) -> List[Row]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def execute_sql(self, query: str, params: List[Any] | tuple[Any, ...] | None = None) -> None:
        with self._cursor(dict_rows=False) as cursor:
            cursor.execute(query, params)

    def ping(self) -> bool:
        row = self.fetch_one("SELECT 1 AS ok")
        return bool(row and row.get("ok") == 1)

    def fetch_tags_by_name(self, catalog: str, names: List[str]) -> List[Row]:
        if not names:
            return []
        return self.fetch_all_rows(
            f"SELECT id, name FROM {checked_table(catalog)} WHERE name = ANY(%s)",
            (list(names),),
        )

    def insert_tags(self, catalog: str, names: List[str]) -> List[Row]:
        if not names:
            return []
        placeholders = ", ".join("(%s)" for _ in names)
        return self.fetch_all_rows(
            f"INSERT INTO {checked_table(catalog)} (name) VALUES {placeholders} "
            "ON CONFLICT (name) DO NOTHING RETURNING id, name",
            list(names),
        )

    def fetch_tags_by_id(self, catalog: str, ids: List[int]) -> List[Row]:
        if not ids:
            return []
        return self.fetch_all_rows(
            f"SELECT id, name FROM {checked_table(catalog)} WHERE id = ANY(%s) ORDER BY id",
            (list(ids),),
        )

    def list_tags(self, catalog: str, page: int, page_size: int) -> Tuple[List[Row], int]:
        table = checked_table(catalog)
        total_row = self.fetch_one(f"SELECT count(*) AS total FROM {table}")
        rows = self.fetch_all_rows(
            f"SELECT id, name FROM {table} ORDER BY id LIMIT %s OFFSET %s",
            (page_size, (page - 1) * page_size),
        )
        return rows, int(total_row["total"]) if total_row else 0

    def all_tag_names(self, catalog: str) -> List[str]:
        rows = self.fetch_all_rows(f"SELECT name FROM {checked_table(catalog)} ORDER BY name")
        return [row["name"] for row in rows]

    def rename_tag(self, catalog: str, tag_id: int, name: str) -> None:
        self.execute_sql(f"UPDATE {checked_table(catalog)} SET name = %s WHERE id = %s", (name, tag_id))

    def delete_tag(self, catalog: str, tag_id: int) -> None:
        self.execute_sql(f"DELETE FROM {checked_table(catalog)} WHERE id = %s", (tag_id,))

    def existing_ids(self, table: str, ids: List[int]) -> List[int]:
        if not ids:
            return []
        rows = self.fetch_all_rows(f"SELECT id FROM {checked_table(table)} WHERE id = ANY(%s)", (list(ids),))
        return [int(row["id"]) for row in rows]

    def parent_ids(self, table: str, child_id: int) -> List[int]:
        rows = self.fetch_all_rows(
            f"SELECT id FROM {checked_table(table)} WHERE components @> ARRAY[%s]::bigint[]",
            (child_id,),
        )
        return [int(row["id"]) for row in rows]

    def insert_row(self, table: str, data: Row) -> int:
        target = checked_table(table)
        columns = checked_columns(table, data)
        placeholders = ", ".join("%s" for _ in columns)
        row = self.fetch_one(
            f"INSERT INTO {target} ({', '.join(quote(c) for c in columns)}) VALUES ({placeholders}) RETURNING id",
            [data[c] for c in columns],
        )
        if row is None:
            raise StorageError(f"Insert into {table} returned no id")
        return int(row["id"])

    def update_row(self, table: str, row_id: int, data: Row) -> None:
        if not data:
            return
        target = checked_table(table)
        columns = checked_columns(table, data)
        assignments = ", ".join(f"{quote(c)} = %s" for c in columns)
        self.execute_sql(
            f"UPDATE {target} SET {assignments} WHERE id = %s",
            [data[c] for c in columns] + [row_id],
        )

    def get_row(self, table: str, row_id: int) -> Row | None:
        return self.fetch_one(f"SELECT * FROM {checked_table(table)} WHERE id = %s", (row_id,))

    def list_rows(
        self,
        table: str,
        filters: ListFilters,
        page: int,
        page_size: int,
        name_column: str = "name",
    ) -> Tuple[List[Row], int]:
        target = checked_table(table)
        columns = TABLE_COLUMNS[table]
        clauses: List[str] = []
        params: List[Any] = []
        if filters.status and filters.status != "all":
            clauses.append("status = %s")
            params.append(filters.status)
        if filters.ids:
            clauses.append("id = ANY(%s)")
            params.append(list(filters.ids))
        if filters.tag_ids and "tags" in columns:
            clauses.append("tags && %s::bigint[]")
            params.append(list(filters.tag_ids))
        if filters.name_query and name_column in columns:
            clauses.append(f"{quote(name_column)} ILIKE %s")
            params.append(f"%{filters.name_query}%")
        if filters.unique is not None and "unique" in columns:
            clauses.append('"unique" = %s')
            params.append(filters.unique)
        if filters.type and "type" in columns:
            clauses.append("type = %s")
            params.append(filters.type)
        if filters.person_ids and "person_id" in columns:
            clauses.append("person_id = ANY(%s)")
            params.append(list(filters.person_ids))

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        total_row = self.fetch_one(f"SELECT count(*) AS total FROM {target}{where}", params)
        rows = self.fetch_all_rows(
            f"SELECT * FROM {target}{where} ORDER BY id LIMIT %s OFFSET %s",
            params + [page_size, (page - 1) * page_size],
        )
        return rows, int(total_row["total"]) if total_row else 0
