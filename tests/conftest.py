"""Shared fixtures: an in-memory storage backend and a Flask test client."""
from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Tuple

import pytest

from entity_hub.errors import StorageError
from entity_hub.filters import ListFilters
from entity_hub.storage.base import Row, Storage

TABLES = ["items", "persons", "projects", "item_tags", "person_tags"]


class MemoryStorage(Storage):
    """Dict-backed storage with snapshot rollback for ``transaction()``.

    ``fail_on`` maps a method name to a callable run before that method, so a
    test can make one call blow up.
    """

    name = "memory"

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[int, Row]] = {table: {} for table in TABLES}
        self.next_ids: Dict[str, int] = {table: 1 for table in TABLES}
        self.fail_on: Dict[str, Callable[..., None]] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self._depth = 0

    def _hook(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        hook = self.fail_on.get(method)
        if hook is not None:
            hook(*args)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            yield
            return
        snapshot = (copy.deepcopy(self.tables), dict(self.next_ids))
        self._depth += 1
        try:
            yield
            self.commits += 1
        except BaseException:
            self.tables, self.next_ids = snapshot
            self.rollbacks += 1
            raise
        finally:
            self._depth -= 1

    def ping(self) -> bool:
        return True

    # Test helpers

    def add(self, table: str, **data: Any) -> int:
        row_id = data.pop("id", None) or self.next_ids[table]
        self.next_ids[table] = max(self.next_ids[table], row_id + 1)
        row = {"id": row_id, **data}
        if table in ("items", "persons", "projects"):
            row.setdefault("status", "active")
        if table in ("items", "persons"):
            row.setdefault("tags", [])
            row.setdefault("components", [])
        self.tables[table][row_id] = row
        return row_id

    def tag_names(self, catalog: str) -> List[str]:
        return [row["name"] for row in self.tables[catalog].values()]

    # Tag catalogs

    def fetch_tags_by_name(self, catalog: str, names: List[str]) -> List[Row]:
        self._hook("fetch_tags_by_name", catalog, list(names))
        return [dict(row) for row in self.tables[catalog].values() if row["name"] in names]

    def insert_tags(self, catalog: str, names: List[str]) -> List[Row]:
        self._hook("insert_tags", catalog, list(names))
        existing = set(self.tag_names(catalog))
        created = []
        for name in names:
            if name in existing:
                continue
            tag_id = self.add(catalog, name=name)
            existing.add(name)
            created.append({"id": tag_id, "name": name})
        return created

    def fetch_tags_by_id(self, catalog: str, ids: List[int]) -> List[Row]:
        return [dict(self.tables[catalog][tag_id]) for tag_id in sorted(ids) if tag_id in self.tables[catalog]]

    def list_tags(self, catalog: str, page: int, page_size: int) -> Tuple[List[Row], int]:
        rows = [dict(row) for _, row in sorted(self.tables[catalog].items())]
        start = (page - 1) * page_size
        return rows[start : start + page_size], len(rows)

    def all_tag_names(self, catalog: str) -> List[str]:
        return sorted(self.tag_names(catalog))

    def rename_tag(self, catalog: str, tag_id: int, name: str) -> None:
        if tag_id in self.tables[catalog]:
            self.tables[catalog][tag_id]["name"] = name

    def delete_tag(self, catalog: str, tag_id: int) -> None:
        self.tables[catalog].pop(tag_id, None)

    # Entity rows

    def existing_ids(self, table: str, ids: List[int]) -> List[int]:
        self._hook("existing_ids", table, list(ids))
        return [row_id for row_id in ids if row_id in self.tables[table]]

    def parent_ids(self, table: str, child_id: int) -> List[int]:
        self._hook("parent_ids", table, child_id)
        return [row_id for row_id, row in self.tables[table].items() if child_id in (row.get("components") or [])]

    def insert_row(self, table: str, data: Row) -> int:
        self._hook("insert_row", table, dict(data))
        return self.add(table, **copy.deepcopy(data))

    def update_row(self, table: str, row_id: int, data: Row) -> None:
        self._hook("update_row", table, row_id, dict(data))
        if row_id not in self.tables[table]:
            return
        self.tables[table][row_id].update(copy.deepcopy(data))

    def get_row(self, table: str, row_id: int) -> Row | None:
        row = self.tables[table].get(row_id)
        return dict(row) if row is not None else None

    def list_rows(
        self,
        table: str,
        filters: ListFilters,
        page: int,
        page_size: int,
        name_column: str = "name",
    ) -> Tuple[List[Row], int]:
        self._hook("list_rows", table, filters)
        rows = []
        for row_id, row in sorted(self.tables[table].items()):
            if filters.status and filters.status != "all" and row.get("status") != filters.status:
                continue
            if filters.ids and row_id not in filters.ids:
                continue
            if filters.tag_ids and not set(filters.tag_ids) & set(row.get("tags") or []):
                continue
            if filters.name_query and filters.name_query.lower() not in str(row.get(name_column) or "").lower():
                continue
            if filters.unique is not None and bool(row.get("unique")) != filters.unique:
                continue
            if filters.type and row.get("type") != filters.type:
                continue
            if filters.person_ids and row.get("person_id") not in filters.person_ids:
                continue
            rows.append(copy.deepcopy(row))
        start = (page - 1) * page_size
        return rows[start : start + page_size], len(rows)


def raise_storage_error(*args: Any) -> None:
    raise StorageError("backend went away")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def app(storage: MemoryStorage):
    from entity_hub.website import create_app

    flask_app = create_app(storage)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
