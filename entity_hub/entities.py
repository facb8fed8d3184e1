from __future__ import annotations

from typing import Any, Dict

from .filters import EntityDescriptor

STATUS_VALUES = ["active", "inactive", "archived"]
PERSON_TYPES = ["natural", "legal"]

ITEMS_DESCRIPTOR = EntityDescriptor(supports_unique_flag=True, default_status="active")
PERSONS_DESCRIPTOR = EntityDescriptor(supports_type_field=True, default_status="active")
PROJECTS_DESCRIPTOR = EntityDescriptor(default_status="active", numeric_keys={"person": "person_ids"})

ENTITY_DEFS: Dict[str, Dict[str, Any]] = {
    "items": {
        "label": "Items",
        "singular": "Item",
        "table": "items",
        "name_column": "description",
        "default_name": "Untitled item",
        "tag_catalog": "item_tags",
        "has_components": True,
        "descriptor": ITEMS_DESCRIPTOR,
        "fields": [
            {"name": "description", "label": "Description", "input_type": "text"},
            {"name": "sell_price", "label": "Sell price", "input_type": "number", "step": "0.01"},
            {"name": "unique", "label": "Unique", "widget": "toggle"},
            {"name": "status", "label": "Status", "widget": "status"},
        ],
    },
    "persons": {
        "label": "Persons",
        "singular": "Person",
        "table": "persons",
        "name_column": "name",
        "default_name": "Unnamed person",
        "tag_catalog": "person_tags",
        "has_components": True,
        "descriptor": PERSONS_DESCRIPTOR,
        "fields": [
            {"name": "name", "label": "Name", "input_type": "text"},
            {"name": "type", "label": "Type", "widget": "person_type"},
            {"name": "status", "label": "Status", "widget": "status"},
        ],
    },
    "projects": {
        "label": "Projects",
        "singular": "Project",
        "table": "projects",
        "name_column": "name",
        "default_name": "Unnamed",
        "tag_catalog": None,
        "has_components": False,
        "descriptor": PROJECTS_DESCRIPTOR,
        "fields": [
            {"name": "name", "label": "Name", "input_type": "text"},
            {"name": "description", "label": "Description", "widget": "textarea"},
            {"name": "person_id", "label": "Person #", "input_type": "number", "step": "1"},
            {"name": "status", "label": "Status", "widget": "status"},
        ],
    },
}

TAG_CATALOGS: Dict[str, Dict[str, str]] = {
    "item_tags": {"label": "Item Tags", "owner": "items"},
    "person_tags": {"label": "Person Tags", "owner": "persons"},
}

