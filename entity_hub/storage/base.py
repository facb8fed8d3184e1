from __future__ import annotations

import abc
from contextlib import AbstractContextManager
from typing import Any, Dict, List, Tuple

from ..filters import ListFilters

Row = Dict[str, Any]


class Storage(abc.ABC):
    """What the services need from a backend.

    Tables and catalogs are addressed by name (``items``, ``item_tags``...);
    ``components`` and ``tags`` columns hold arrays of integer ids.
    """

    name = "base"

    @abc.abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Scope in which every call commits together or not at all."""

    @abc.abstractmethod
    def ping(self) -> bool: ...

    # Tag catalogs

    @abc.abstractmethod
    def fetch_tags_by_name(self, catalog: str, names: List[str]) -> List[Row]: ...

    @abc.abstractmethod
    def insert_tags(self, catalog: str, names: List[str]) -> List[Row]:
        """Insert names, silently skipping ones that already exist.

        Returns only the rows this call created.
        """

    @abc.abstractmethod
    def fetch_tags_by_id(self, catalog: str, ids: List[int]) -> List[Row]: ...

    @abc.abstractmethod
    def list_tags(self, catalog: str, page: int, page_size: int) -> Tuple[List[Row], int]: ...

    @abc.abstractmethod
    def all_tag_names(self, catalog: str) -> List[str]: ...

    @abc.abstractmethod
    def rename_tag(self, catalog: str, tag_id: int, name: str) -> None: ...

    @abc.abstractmethod
    def delete_tag(self, catalog: str, tag_id: int) -> None: ...

    # Entity rows

    @abc.abstractmethod
    def existing_ids(self, table: str, ids: List[int]) -> List[int]: ...

    @abc.abstractmethod
    def parent_ids(self, table: str, child_id: int) -> List[int]:
        """Ids of rows whose components include ``child_id``."""

    @abc.abstractmethod
    def insert_row(self, table: str, data: Row) -> int: ...

    @abc.abstractmethod
    def update_row(self, table: str, row_id: int, data: Row) -> None: ...

    @abc.abstractmethod
    def get_row(self, table: str, row_id: int) -> Row | None: ...

    @abc.abstractmethod
    def list_rows(
        self,
        table: str,
        filters: ListFilters,
        page: int,
        page_size: int,
        name_column: str = "name",
    ) -> Tuple[List[Row], int]: ...
