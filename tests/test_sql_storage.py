"""Tests for the PostgreSQL adapter using a recording connection pool."""

from __future__ import annotations

from typing import Any, List, Tuple

import psycopg2
import pytest
from psycopg2.pool import PoolError

from entity_hub.errors import StorageError
from entity_hub.filters import ListFilters
from entity_hub.storage.sql import SqlStorage, checked_columns, init_db, quote


class FakeCursor:
    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection
        self._result: List[Any] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, query: str, params: Any = None) -> None:
        if self.connection.fail_with is not None:
            raise self.connection.fail_with
        self.connection.executed.append((" ".join(query.split()), params))
        self._result = self.connection.results.pop(0) if self.connection.results else []

    def fetchone(self) -> Any:
        return self._result[0] if self._result else None

    def fetchall(self) -> List[Any]:
        return list(self._result)


class FakeConnection:
    def __init__(self, results: List[List[Any]] | None = None) -> None:
        self.results = list(results or [])
        self.executed: List[Tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_with: Exception | None = None
        self.commit_error: Exception | None = None
        self.rollback_error: Exception | None = None

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        if self.commit_error is not None:
            raise self.commit_error
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1
        if self.rollback_error is not None:
            raise self.rollback_error


class FakePool:
    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection
        self.borrowed = 0
        self.exhausted = False

    def getconn(self) -> FakeConnection:
        if self.exhausted:
            raise PoolError("connection pool exhausted")
        self.borrowed += 1
        return self.connection

    def putconn(self, connection: FakeConnection) -> None:
        self.borrowed -= 1


def make_storage(*results: List[Any]) -> Tuple[SqlStorage, FakeConnection, FakePool]:
    connection = FakeConnection(list(results))
    fake_pool = FakePool(connection)
    storage = SqlStorage("postgresql://example/test")
    storage._pool = fake_pool
    return storage, connection, fake_pool


def test_insert_tags_is_idempotent_statement() -> None:
    storage, connection, _ = make_storage([{"id": 4, "name": "blue"}])

    created = storage.insert_tags("item_tags", ["blue", "red"])

    assert created == [{"id": 4, "name": "blue"}]
    query, params = connection.executed[0]
    assert query == 'INSERT INTO "item_tags" (name) VALUES (%s), (%s) ON CONFLICT (name) DO NOTHING RETURNING id, name'
    assert params == ["blue", "red"]


def test_list_rows_where_clause_and_paging() -> None:
    storage, connection, _ = make_storage([{"total": 3}], [{"id": 7, "description": "bolt"}])
    filters = ListFilters(ids=[7], name_query="bo", tag_ids=[1], status="active", unique=True)

    rows, total = storage.list_rows("items", filters, page=3, page_size=5, name_column="description")

    assert total == 3
    assert rows == [{"id": 7, "description": "bolt"}]
    count_query, count_params = connection.executed[0]
    assert count_query == (
        'SELECT count(*) AS total FROM "items" WHERE status = %s AND id = ANY(%s) '
        'AND tags && %s::bigint[] AND "description" ILIKE %s AND "unique" = %s'
    )
    assert count_params == ["active", [7], [1], "%bo%", True]
    page_query, page_params = connection.executed[1]
    assert page_query.endswith("ORDER BY id LIMIT %s OFFSET %s")
    assert page_params[-2:] == [5, 10]


def test_filters_for_missing_columns_are_skipped() -> None:
    storage, connection, _ = make_storage([{"total": 0}], [])

    storage.list_rows("projects", ListFilters(tag_ids=[1], person_ids=[2], status="all"), 1, 10)

    count_query, count_params = connection.executed[0]
    assert count_query == 'SELECT count(*) AS total FROM "projects" WHERE person_id = ANY(%s)'
    assert count_params == [[2]]


def test_parent_lookup_uses_array_containment() -> None:
    storage, connection, _ = make_storage([{"id": 2}, {"id": 5}])

    assert storage.parent_ids("persons", 9) == [2, 5]
    assert "components @> ARRAY[%s]::bigint[]" in connection.executed[0][0]


def test_transaction_shares_one_connection_and_commits_once() -> None:
    storage, connection, pool = make_storage([{"id": 12}])

    with storage.transaction():
        row_id = storage.insert_row("items", {"description": "x", "unique": False})
        storage.update_row("items", row_id, {"status": "inactive"})
        assert pool.borrowed == 1

    assert row_id == 12
    assert connection.commits == 1
    assert pool.borrowed == 0
    insert_query, insert_params = connection.executed[0]
    assert insert_query == 'INSERT INTO "items" ("description", "unique") VALUES (%s, %s) RETURNING id'
    assert insert_params == ["x", False]
    assert connection.executed[1] == ('UPDATE "items" SET "status" = %s WHERE id = %s', ["inactive", 12])


def test_transaction_rolls_back_on_error() -> None:
    storage, connection, pool = make_storage()

    with pytest.raises(RuntimeError):
        with storage.transaction():
            storage.execute_sql("SELECT 1")
            raise RuntimeError("abort")

    assert connection.rollbacks == 1
    assert connection.commits == 0
    assert pool.borrowed == 0


def test_driver_errors_become_storage_errors() -> None:
    storage, connection, pool = make_storage()
    connection.fail_with = psycopg2.OperationalError("server closed the connection")

    with pytest.raises(StorageError):
        storage.get_row("items", 1)
    assert connection.rollbacks == 1
    assert pool.borrowed == 0


def test_unknown_tables_and_columns_are_refused() -> None:
    storage, _, _ = make_storage()

    with pytest.raises(StorageError):
        storage.get_row("users; DROP TABLE items", 1)
    with pytest.raises(StorageError):
        checked_columns("projects", {"tags": []})


def test_init_db_creates_tables_and_columns() -> None:
    connection = FakeConnection()

    init_db(connection)

    statements = [query for query, _ in connection.executed]
    assert any(query.startswith("CREATE TABLE IF NOT EXISTS item_tags") for query in statements)
    assert 'ALTER TABLE "persons" ADD COLUMN IF NOT EXISTS "type" TEXT NOT NULL DEFAULT \'natural\'' in statements
    assert connection.commits == 1


def test_quote_escapes_double_quotes() -> None:
    assert quote('we"ird') == '"we""ird"'


def test_commit_failure_is_a_storage_error() -> None:
    storage, connection, pool_ = make_storage([{"id": 3}])
    connection.commit_error = psycopg2.OperationalError("could not commit")

    with pytest.raises(StorageError) as excinfo:
        with storage.transaction():
            storage.insert_row("items", {"description": "x"})

    assert isinstance(excinfo.value.__cause__, psycopg2.OperationalError)
    assert connection.rollbacks == 1
    assert pool_.borrowed == 0


def test_exhausted_pool_is_a_storage_error() -> None:
    storage, _, pool_ = make_storage()
    pool_.exhausted = True

    with pytest.raises(StorageError):
        with storage.transaction():
            pass
    with pytest.raises(StorageError):
        storage.get_row("items", 1)


def test_failed_rollback_keeps_the_original_error(caplog: pytest.LogCaptureFixture) -> None:
    storage, connection, pool_ = make_storage()
    connection.fail_with = psycopg2.OperationalError("server closed the connection")
    connection.rollback_error = psycopg2.InterfaceError("connection already closed")

    with pytest.raises(StorageError) as excinfo:
        with storage.transaction():
            storage.get_row("items", 1)

    assert isinstance(excinfo.value.__cause__, psycopg2.OperationalError)
    assert connection.rollbacks == 1
    assert pool_.borrowed == 0
    assert "Rollback failed" in caplog.text


def test_failed_rollback_outside_a_transaction() -> None:
    storage, connection, _ = make_storage()
    connection.fail_with = psycopg2.OperationalError("server closed the connection")
    connection.rollback_error = psycopg2.InterfaceError("connection already closed")

    with pytest.raises(StorageError) as excinfo:
        storage.execute_sql("SELECT 1")

    assert isinstance(excinfo.value.__cause__, psycopg2.OperationalError)
