from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping

from . import config
from .entities import ENTITY_DEFS, PERSON_TYPES, STATUS_VALUES, TAG_CATALOGS
from .errors import InvalidId, NotFound
from .filters import ListFilters
from .reconcile import resolve_component_ids, resolve_tag_names
from .storage.base import Row, Storage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
TRUTHY_FORM_VALUES = {"on", "true", "1", "yes"}


@dataclass
class Page:
    rows: List[Row]
    total: int
    page: int
    page_size: int

    def as_dict(self) -> Dict[str, Any]:
        return {"rows": self.rows, "total": self.total, "page": self.page, "page_size": self.page_size}


@dataclass
class EntityUpdate:
    """Columns to change on one row.

    ``tag_names`` and ``component_ids`` are None when the form did not carry
    the relation at all; an empty list clears it.
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    tag_names: List[str] | None = None
    component_ids: List[Any] | None = None


def form_value(form: Mapping[str, Any], name: str) -> str | None:
    value = form.get(name)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def form_list(form: Mapping[str, Any], name: str) -> List[Any]:
    getlist = getattr(form, "getlist", None)
    if callable(getlist):
        return list(getlist(name))
    value = form.get(name)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def form_flag(form: Mapping[str, Any], name: str) -> bool:
    return str(form_value(form, name) or "").strip().lower() in TRUTHY_FORM_VALUES


def relation_present(form: Mapping[str, Any], name: str) -> bool:
    return bool(form_value(form, f"_{name}_present"))


def parse_price(value: Any) -> float | None:
    try:
        price = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if price != price or price in (float("inf"), float("-inf")):
        return None
    return round(price, 2)


def parse_positive_int(value: Any) -> int | None:
    text = str(value if value is not None else "").strip()
    if not text.isdecimal():
        return None
    number = int(text)
    return number if number > 0 else None


def clamp_page(value: Any) -> int:
    return parse_positive_int(value) or 1


def clamp_page_size(value: Any, default: int = DEFAULT_PAGE_SIZE) -> int:
    size = parse_positive_int(value)
    if size is None or size > MAX_PAGE_SIZE:
        return default
    return size


def extract_id(form: Mapping[str, Any], label: str) -> int:
    raw = form_value(form, "id")
    if raw is None or not raw.strip():
        raise InvalidId(f"Missing {label} id")
    row_id = parse_positive_int(raw)
    if row_id is None:
        raise InvalidId(f"Invalid {label} id")
    return row_id


def serialize_row(row: Row) -> Row:
    out: Row = {}
    for key, value in row.items():
        if isinstance(value, Decimal):
            value = str(value)
        out[key] = value
    return out


class EntityService:
    def __init__(self, entity: str, storage: Storage, max_visits: int | None = None) -> None:
        self.entity = entity
        self.definition = ENTITY_DEFS[entity]
        self.storage = storage
        self.table: str = self.definition["table"]
        self.catalog: str | None = self.definition["tag_catalog"]
        self.has_components: bool = self.definition["has_components"]
        self.descriptor = self.definition["descriptor"]
        self.label = self.definition["singular"].lower()
        self.max_visits = max_visits if max_visits is not None else config.ancestor_max_visits()

    # Form parsing

    def _name(self, form: Mapping[str, Any]) -> str:
        column = self.definition["name_column"]
        return (form_value(form, column) or "").strip() or self.definition["default_name"]

    def _status(self, form: Mapping[str, Any]) -> str:
        raw = (form_value(form, "status") or "").strip()
        return raw if raw in STATUS_VALUES else self.descriptor.default_status

    def _scalar_fields(self, form: Mapping[str, Any], creating: bool) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if creating or form_value(form, self.definition["name_column"]) is not None:
            data[self.definition["name_column"]] = self._name(form)
        if self.entity == "items":
            price = parse_price(form_value(form, "sell_price"))
            if creating:
                data["sell_price"] = price if price is not None else 0.0
                data["unique"] = form_flag(form, "unique")
            else:
                if price is not None:
                    data["sell_price"] = price
                if form_value(form, "unique") is not None:
                    data["unique"] = form_flag(form, "unique")
        elif self.entity == "persons":
            person_type = (form_value(form, "type") or "").strip()
            if person_type in PERSON_TYPES:
                data["type"] = person_type
            elif creating:
                data["type"] = PERSON_TYPES[0]
        elif self.entity == "projects":
            if creating or form_value(form, "description") is not None:
                data["description"] = (form_value(form, "description") or "").strip()
            raw_person = form_value(form, "person_id")
            if creating or raw_person is not None:
                person_id = parse_positive_int(raw_person)
                if person_id is None:
                    raise InvalidId("Invalid person")
                data["person_id"] = person_id
        return data

    def update_from_values(self, form: Mapping[str, Any]) -> EntityUpdate:
        update = EntityUpdate(fields=self._scalar_fields(form, creating=False))
        if form_value(form, "status") is not None:
            update.fields["status"] = self._status(form)
        if self.catalog and relation_present(form, "tags"):
            update.tag_names = [str(value) for value in form_list(form, "tags")]
        if self.has_components and relation_present(form, "components"):
            update.component_ids = form_list(form, "components")
        return update

    # Writes

    def _resolve_tags(self, names: List[str]) -> List[int]:
        catalog = self.catalog
        return resolve_tag_names(
            names,
            lambda batch: self.storage.fetch_tags_by_name(catalog, batch),
            lambda batch: self.storage.insert_tags(catalog, batch),
        )

    def _resolve_components(self, requested: List[Any], own_id: int | None) -> List[int]:
        return resolve_component_ids(
            requested,
            own_id,
            lambda ids: self.storage.existing_ids(self.table, ids),
            lambda child: self.storage.parent_ids(self.table, child),
            max_visits=self.max_visits,
        )

    def _check_person(self, person_id: int) -> None:
        if not self.storage.existing_ids("persons", [person_id]):
            raise InvalidId(f"Unknown person {person_id}")

    def create_from_form(self, form: Mapping[str, Any]) -> int:
        data = self._scalar_fields(form, creating=True)
        data["status"] = self._status(form)
        with self.storage.transaction():
            if self.entity == "projects":
                self._check_person(data["person_id"])
            if self.catalog:
                data["tags"] = self._resolve_tags([str(value) for value in form_list(form, "tags")])
            if self.has_components:
                data["components"] = self._resolve_components(form_list(form, "components"), None)
            row_id = self.storage.insert_row(self.table, data)
        logger.info("Created %s %s", self.label, row_id)
        return row_id

    def update(self, row_id: int, update: EntityUpdate) -> None:
        if not row_id:
            raise InvalidId(f"Invalid {self.label} id")
        data = dict(update.fields)
        with self.storage.transaction():
            if self.storage.get_row(self.table, row_id) is None:
                raise NotFound(f"{self.definition['singular']} {row_id} not found")
            if self.entity == "projects" and "person_id" in data:
                self._check_person(data["person_id"])
            if self.catalog and update.tag_names is not None:
                data["tags"] = self._resolve_tags(update.tag_names)
            if self.has_components and update.component_ids is not None:
                data["components"] = self._resolve_components(update.component_ids, row_id)
            self.storage.update_row(self.table, row_id, data)
        logger.info("Updated %s %s (%s)", self.label, row_id, ", ".join(sorted(data)))

    def update_from_form(self, form: Mapping[str, Any]) -> int:
        row_id = extract_id(form, self.label)
        self.update(row_id, self.update_from_values(form))
        return row_id

    def soft_delete_from_form(self, form: Mapping[str, Any]) -> int:
        row_id = extract_id(form, self.label)
        self.update(row_id, EntityUpdate(fields={"status": "archived"}))
        return row_id

    # Reads

    def _enrich(self, rows: List[Row]) -> List[Row]:
        rows = [serialize_row(row) for row in rows]
        if not self.catalog:
            return rows
        tag_ids = sorted({int(tag_id) for row in rows for tag_id in row.get("tags") or []})
        by_id = {
            int(tag["id"]): {"id": int(tag["id"]), "name": tag["name"]}
            for tag in self.storage.fetch_tags_by_id(self.catalog, tag_ids)
        }
        for row in rows:
            row["tags"] = [by_id[int(tag_id)] for tag_id in row.get("tags") or [] if int(tag_id) in by_id]
            if self.has_components:
                row["components"] = [int(value) for value in row.get("components") or []]
        return rows

    def normalize_filters(self, filters: ListFilters) -> ListFilters:
        allowed = STATUS_VALUES + ["all"]
        status = filters.status if filters.status in allowed else self.descriptor.default_status
        return ListFilters(
            ids=filters.ids or None,
            name_query=(filters.name_query or "").strip() or None,
            tag_ids=filters.tag_ids if self.catalog else None,
            status=status,
            unique=filters.unique if self.descriptor.supports_unique_flag else None,
            type=filters.type if filters.type in PERSON_TYPES and self.descriptor.supports_type_field else None,
            person_ids=filters.person_ids if "person" in self.descriptor.numeric_keys else None,
        )

    def list(self, filters: ListFilters | None = None, page: Any = 1, page_size: Any = DEFAULT_PAGE_SIZE) -> Page:
        safe_filters = self.normalize_filters(filters or ListFilters())
        safe_page = clamp_page(page)
        safe_size = clamp_page_size(page_size)
        rows, total = self.storage.list_rows(
            self.table, safe_filters, safe_page, safe_size, name_column=self.definition["name_column"]
        )
        return Page(rows=self._enrich(rows), total=total, page=safe_page, page_size=safe_size)

    def get(self, row_id: int) -> Row:
        row = self.storage.get_row(self.table, row_id)
        if row is None:
            raise NotFound(f"{self.definition['singular']} {row_id} not found")
        return self._enrich([row])[0]


class TagCatalogService:
    def __init__(self, catalog: str, storage: Storage) -> None:
        if catalog not in TAG_CATALOGS:
            raise KeyError(f"Unknown tag catalog {catalog!r}")
        self.catalog = catalog
        self.storage = storage

    def list(self, page: Any = 1, page_size: Any = DEFAULT_PAGE_SIZE) -> Page:
        safe_page = clamp_page(page)
        safe_size = clamp_page_size(page_size)
        rows, total = self.storage.list_tags(self.catalog, safe_page, safe_size)
        return Page(rows=rows, total=total, page=safe_page, page_size=safe_size)

    def all_names(self) -> List[str]:
        return self.storage.all_tag_names(self.catalog)

    def rename_from_form(self, form: Mapping[str, Any]) -> int:
        tag_id = extract_id(form, "tag")
        name = (form_value(form, "name") or "").strip() or "unnamed"
        self.storage.rename_tag(self.catalog, tag_id, name)
        return tag_id

    def delete_from_form(self, form: Mapping[str, Any]) -> int:
        tag_id = extract_id(form, "tag")
        self.storage.delete_tag(self.catalog, tag_id)
        logger.info("Deleted %s tag %s", self.catalog, tag_id)
        return tag_id


def get_services(storage: Storage) -> Dict[str, Any]:
    services: Dict[str, Any] = {entity: EntityService(entity, storage) for entity in ENTITY_DEFS}
    for catalog in TAG_CATALOGS:
        services[catalog] = TagCatalogService(catalog, storage)
    return services
