from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

import requests

from ..errors import StorageError
from ..filters import ListFilters
from .base import Row, Storage

logger = logging.getLogger(__name__)


def in_list(values: List[Any]) -> str:
    return "in.(" + ",".join(str(value) for value in values) + ")"


def array_literal(values: List[Any]) -> str:
    return "{" + ",".join(str(value) for value in values) + "}"


def parse_content_range(header: str | None, fallback: int) -> int:
    if not header or "/" not in header:
        return fallback
    total = header.rsplit("/", 1)[1]
    try:
        return int(total)
    except ValueError:
        return fallback


class RestStorage(Storage):
    """PostgREST-style backend (Supabase and friends) over HTTP.

    There is no transaction across requests; ``transaction()`` only marks the
    unit of work in the logs. Tag inserts ignore duplicates, so an aborted
    write can leave an unused catalog entry but never a dangling id.
    """

    name = "rest"

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def headers(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        if extra:
            headers.update(extra)
        return headers

    def table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def rest_json_request(
        self,
        method: str,
        table: str,
        params: Dict[str, str] | None = None,
        payload: Any = None,
        headers: Dict[str, str] | None = None,
    ) -> Tuple[Any, requests.Response]:
        try:
            response = requests.request(
                method,
                self.table_url(table),
                params=params,
                json=payload,
                headers=self.headers(headers),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageError(f"REST backend is unavailable ({method} {table})") from exc

        try:
            body: Any = response.json() if response.content else None
        except ValueError:
            body = {"raw": response.text}

        if response.status_code >= 400:
            logger.error("REST backend returned %s for %s %s: %s", response.status_code, method, table, body)
            raise StorageError(f"REST backend returned {response.status_code} for {method} {table}")
        return body, response

    @contextmanager
    def transaction(self) -> Iterator[None]:
        logger.debug("Starting REST unit of work")
        try:
            yield
        except Exception:
            logger.warning("REST unit of work aborted; earlier requests are not rolled back")
            raise

    def ping(self) -> bool:
        try:
            self.rest_json_request("GET", "item_tags", params={"select": "id", "limit": "1"})
        except StorageError:
            logger.exception("REST health check failed")
            return False
        return True

    def fetch_tags_by_name(self, catalog: str, names: List[str]) -> List[Row]:
        if not names:
            return []
        quoted = ",".join('"' + name.replace('"', '\\"') + '"' for name in names)
        body, _ = self.rest_json_request("GET", catalog, params={"select": "id,name", "name": f"in.({quoted})"})
        return list(body or [])

    def insert_tags(self, catalog: str, names: List[str]) -> List[Row]:
        if not names:
            return []
        body, _ = self.rest_json_request(
            "POST",
            catalog,
            params={"on_conflict": "name", "select": "id,name"},
            payload=[{"name": name} for name in names],
            headers={"Prefer": "resolution=ignore-duplicates,return=representation"},
        )
        return list(body or [])

    def fetch_tags_by_id(self, catalog: str, ids: List[int]) -> List[Row]:
        if not ids:
            return []
        body, _ = self.rest_json_request(
            "GET", catalog, params={"select": "id,name", "id": in_list(ids), "order": "id"}
        )
        return list(body or [])

    def list_tags(self, catalog: str, page: int, page_size: int) -> Tuple[List[Row], int]:
        return self._paged(catalog, {"select": "id,name", "order": "id"}, page, page_size)

    def all_tag_names(self, catalog: str) -> List[str]:
        body, _ = self.rest_json_request("GET", catalog, params={"select": "name", "order": "name"})
        return [row["name"] for row in body or []]

    def rename_tag(self, catalog: str, tag_id: int, name: str) -> None:
        self.rest_json_request("PATCH", catalog, params={"id": f"eq.{tag_id}"}, payload={"name": name})

    def delete_tag(self, catalog: str, tag_id: int) -> None:
        self.rest_json_request("DELETE", catalog, params={"id": f"eq.{tag_id}"})

    def existing_ids(self, table: str, ids: List[int]) -> List[int]:
        if not ids:
            return []
        body, _ = self.rest_json_request("GET", table, params={"select": "id", "id": in_list(ids)})
        return [int(row["id"]) for row in body or []]

    def parent_ids(self, table: str, child_id: int) -> List[int]:
        body, _ = self.rest_json_request(
            "GET", table, params={"select": "id", "components": f"cs.{array_literal([child_id])}"}
        )
        return [int(row["id"]) for row in body or []]

    def insert_row(self, table: str, data: Row) -> int:
        body, _ = self.rest_json_request(
            "POST",
            table,
            params={"select": "id"},
            payload=data,
            headers={"Prefer": "return=representation"},
        )
        rows = body if isinstance(body, list) else [body]
        if not rows or not rows[0] or "id" not in rows[0]:
            raise StorageError(f"Insert into {table} returned no id")
        return int(rows[0]["id"])

    def update_row(self, table: str, row_id: int, data: Row) -> None:
        if not data:
            return
        self.rest_json_request("PATCH", table, params={"id": f"eq.{row_id}"}, payload=data)

    def get_row(self, table: str, row_id: int) -> Row | None:
        body, _ = self.rest_json_request("GET", table, params={"select": "*", "id": f"eq.{row_id}"})
        return body[0] if body else None

    def list_rows(
        self,
        table: str,
        filters: ListFilters,
        page: int,
        page_size: int,
        name_column: str = "name",
    ) -> Tuple[List[Row], int]:
        params: Dict[str, str] = {"select": "*", "order": "id"}
        if filters.status and filters.status != "all":
            params["status"] = f"eq.{filters.status}"
        if filters.ids:
            params["id"] = in_list(filters.ids)
        if filters.tag_ids:
            params["tags"] = f"ov.{array_literal(filters.tag_ids)}"
        if filters.name_query:
            params[name_column] = f"ilike.*{filters.name_query}*"
        if filters.unique is not None:
            params["unique"] = f"is.{str(filters.unique).lower()}"
        if filters.type:
            params["type"] = f"eq.{filters.type}"
        if filters.person_ids:
            params["person_id"] = in_list(filters.person_ids)
        return self._paged(table, params, page, page_size)

    def _paged(self, table: str, params: Dict[str, str], page: int, page_size: int) -> Tuple[List[Row], int]:
        start = (page - 1) * page_size
        end = start + page_size - 1
        body, response = self.rest_json_request(
            "GET",
            table,
            params=params,
            headers={"Range-Unit": "items", "Range": f"{start}-{end}", "Prefer": "count=exact"},
        )
        rows = list(body or [])
        return rows, parse_content_range(response.headers.get("Content-Range"), len(rows))
