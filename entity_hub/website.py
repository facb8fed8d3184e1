from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Mapping
from urllib.parse import urlencode

from flask import Flask, current_app, jsonify, request
from reactpy import component, hooks, html
from reactpy.backend.flask import Options, configure
from werkzeug.datastructures import MultiDict

from . import config
from .entities import ENTITY_DEFS, PERSON_TYPES, STATUS_VALUES, TAG_CATALOGS
from .errors import EntityHubError, InvalidId, NotFound, ReconciliationFailed, StorageError
from .filters import (
    FilterToken,
    normalize_user_input,
    parse_query_to_tokens,
    serialize_tokens_to_query,
    tokens_to_filters,
)
from .services import DEFAULT_PAGE_SIZE, EntityService, TagCatalogService, get_services
from .storage import Storage, get_storage

logger = logging.getLogger(__name__)

EXTENSION_KEY = "entity_hub"
NAV_KEYS = list(ENTITY_DEFS) + list(TAG_CATALOGS)


def maybe_init_db_on_startup(storage: Storage) -> None:
    """Create missing tables when RUN_DB_INIT=1.

    Schema changes never run on the request path. Set RUN_DB_INIT=1, restart
    once, then set it back to 0.
    """
    if not config.env_flag("RUN_DB_INIT"):
        return
    init_schema = getattr(storage, "init_schema", None)
    if init_schema is None:
        logger.warning("RUN_DB_INIT ignored: %s backend has no schema bootstrap", storage.name)
        return
    init_schema()


def services() -> Dict[str, Any]:
    return current_app.extensions[EXTENSION_KEY]


def entity_service(entity: str) -> EntityService:
    service = services().get(entity)
    if not isinstance(service, EntityService):
        raise NotFound(f"Unknown entity {entity!r}")
    return service


def catalog_service(catalog: str) -> TagCatalogService:
    service = services().get(catalog)
    if not isinstance(service, TagCatalogService):
        raise NotFound(f"Unknown tag catalog {catalog!r}")
    return service


def tokens_as_json(tokens: List[FilterToken]) -> List[Dict[str, str]]:
    return [{"key": token.key, "value": token.value} for token in tokens]


def request_form() -> MultiDict:
    """The submitted values as a mutable MultiDict, JSON or form encoded.

    A JSON body that carries ``tags`` or ``components`` counts as setting that
    relation, the same as an HTML form sending the ``_<name>_present`` marker.
    """
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        form: MultiDict = MultiDict()
        for key, value in payload.items():
            if isinstance(value, list):
                form.setlist(key, [str(item) for item in value])
            elif isinstance(value, bool):
                form[key] = "true" if value else "false"
            elif value is not None:
                form[key] = str(value)
        for relation in ("tags", "components"):
            if relation in payload and f"_{relation}_present" not in payload:
                form[f"_{relation}_present"] = "1"
        return form
    return request.form.copy()


def list_entity(entity: str, query: Mapping[str, Any], page: Any, page_size: Any) -> Dict[str, Any]:
    service = entity_service(entity)
    descriptor = service.descriptor
    tokens = parse_query_to_tokens(query, descriptor)
    result = service.list(tokens_to_filters(tokens, descriptor), page, page_size)
    return {
        **result.as_dict(),
        "tokens": tokens_as_json(tokens),
        "query": serialize_tokens_to_query(tokens, descriptor),
    }


def register_api(app: Flask) -> None:
    @app.errorhandler(InvalidId)
    def handle_invalid_id(exc: InvalidId):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(NotFound)
    def handle_not_found(exc: NotFound):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ReconciliationFailed)
    def handle_reconciliation_failed(exc: ReconciliationFailed):
        app.logger.exception("Save failed")
        return jsonify({"error": "Save failed"}), 500

    @app.errorhandler(StorageError)
    def handle_storage_error(exc: StorageError):
        app.logger.exception("Storage backend failed")
        return jsonify({"error": "Storage backend is unavailable"}), 500

    @app.route("/api/db-health")
    def api_db_health():
        storage: Storage = app.config["STORAGE"]
        try:
            ok = storage.ping()
        except StorageError:
            app.logger.exception("Health check failed")
            ok = False
        return jsonify({"ok": ok, "backend": storage.name})

    @app.route("/api/filter-token", methods=["POST"])
    def api_filter_token():
        payload = request.get_json(silent=True) or {}
        token = normalize_user_input(str(payload.get("text") or ""))
        return jsonify({"token": {"key": token.key, "value": token.value} if token else None})

    @app.route("/api/tags/<catalog>", methods=["GET"])
    def api_tag_collection(catalog: str):
        service = catalog_service(catalog)
        page = service.list(request.args.get("page", 1), request.args.get("page_size", DEFAULT_PAGE_SIZE))
        return jsonify(page.as_dict())

    @app.route("/api/tags/<catalog>/names", methods=["GET"])
    def api_tag_names(catalog: str):
        return jsonify([{"name": name} for name in catalog_service(catalog).all_names()])

    @app.route("/api/tags/<catalog>/<int:tag_id>", methods=["PUT", "DELETE"])
    def api_tag_item(catalog: str, tag_id: int):
        service = catalog_service(catalog)
        form = request_form()
        form["id"] = str(tag_id)
        if request.method == "DELETE":
            service.delete_from_form(form)
        else:
            service.rename_from_form(form)
        return jsonify({"ok": True})

    @app.route("/api/<entity>", methods=["GET", "POST"])
    def api_entity_collection(entity: str):
        if request.method == "GET":
            return jsonify(
                list_entity(
                    entity,
                    request.args,
                    request.args.get("page", 1),
                    request.args.get("page_size", DEFAULT_PAGE_SIZE),
                )
            )
        row_id = entity_service(entity).create_from_form(request_form())
        return jsonify({"ok": True, "id": row_id}), 201

    @app.route("/api/<entity>/<int:row_id>", methods=["GET", "PUT", "DELETE"])
    def api_entity_item(entity: str, row_id: int):
        service = entity_service(entity)
        if request.method == "GET":
            return jsonify(service.get(row_id))
        form = request_form()
        form["id"] = str(row_id)
        if request.method == "DELETE":
            service.soft_delete_from_form(form)
        else:
            service.update_from_form(form)
        return jsonify({"ok": True})


GLASS_CSS = """
:root {
  color-scheme: light;
  --bg: #eaf2ff;
  --glass: rgba(255, 255, 255, 0.62);
  --border: rgba(255, 255, 255, 0.5);
  --text: #0b1220;
  --muted: #56627a;
  --accent: #0a84ff;
  --radius: 18px;
  --shadow: 0 18px 40px rgba(10, 20, 45, 0.18);
}

* { box-sizing: border-box; }

body {
  margin: 0;
  font-family: "Helvetica Neue", "Segoe UI", sans-serif;
  color: var(--text);
  background: linear-gradient(155deg, #86c9ff 0%, #356eff 55%, #f2f6ff 100%);
  min-height: 100vh;
}

.page { max-width: 1120px; margin: 0 auto; padding: 24px; display: grid; gap: 20px; }

.glass-surface {
  background: var(--glass);
  border: 1px solid var(--border);
  border-radius: var(--radius);
  box-shadow: var(--shadow);
  backdrop-filter: blur(24px) saturate(180%);
  -webkit-backdrop-filter: blur(24px) saturate(180%);
}

.card { padding: 20px; }
.nav { display: flex; gap: 8px; flex-wrap: wrap; padding: 12px 16px; }
.meta { color: var(--muted); font-size: 13px; }
.error { color: #7a1010; font-size: 13px; }

.btn {
  border: 1px solid var(--border);
  background: rgba(255, 255, 255, 0.75);
  padding: 8px 14px;
  border-radius: 999px;
  cursor: pointer;
  font-size: 13px;
  font-weight: 600;
  color: var(--text);
}
.btn.primary { background: var(--accent); color: #fff; }
.btn.active { border-color: var(--accent); color: var(--accent); }
.btn[disabled] { opacity: 0.6; cursor: wait; }

.filter-row { display: flex; gap: 8px; flex-wrap: wrap; align-items: center; margin-bottom: 12px; }
.chip {
  display: inline-flex;
  gap: 6px;
  align-items: center;
  padding: 4px 10px;
  border-radius: 999px;
  background: rgba(10, 132, 255, 0.12);
  font-size: 12px;
}
.chip button { border: none; background: none; cursor: pointer; color: var(--muted); }

.tag {
  display: inline-flex;
  padding: 2px 8px;
  margin-right: 4px;
  border-radius: 999px;
  border: 1px solid var(--border);
  background: rgba(255, 255, 255, 0.8);
  font-size: 12px;
  color: var(--muted);
}

.pill { padding: 2px 8px; border-radius: 999px; font-size: 12px; font-weight: 600; }
.pill-success { background: rgba(68, 201, 140, 0.18); color: #0f5132; }
.pill-muted { background: rgba(15, 23, 42, 0.08); color: var(--muted); }
.pill-danger { background: rgba(255, 99, 99, 0.2); color: #7a1010; }

.table { width: 100%; border-collapse: collapse; font-size: 14px; }
.table th, .table td { text-align: left; padding: 10px; border-bottom: 1px solid rgba(15, 23, 42, 0.08); }
.table th { font-size: 11px; text-transform: uppercase; letter-spacing: 0.12em; color: var(--muted); }

.input {
  padding: 10px 12px;
  border-radius: 12px;
  border: 1px solid rgba(255, 255, 255, 0.4);
  background: rgba(255, 255, 255, 0.85);
  font-size: 14px;
}

.modal {
  position: fixed;
  inset: 0;
  background: rgba(8, 16, 32, 0.45);
  display: flex;
  align-items: center;
  justify-content: center;
  padding: 24px;
}
.modal-card { width: min(640px, 95vw); padding: 24px; display: grid; gap: 14px; }
.form { display: grid; gap: 12px; }
.field { display: grid; gap: 6px; }
.label { font-size: 12px; text-transform: uppercase; letter-spacing: 0.12em; color: var(--muted); }
.form-actions { display: flex; gap: 8px; justify-content: flex-end; }
.pager { display: flex; gap: 8px; align-items: center; justify-content: flex-end; margin-top: 12px; }
"""


def status_class(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text == "active":
        return "pill-success"
    if text == "archived":
        return "pill-danger"
    return "pill-muted"


def split_csv(value: Any) -> List[str]:
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


def empty_page(error: str = "") -> Dict[str, Any]:
    return {"rows": [], "total": 0, "page": 1, "page_size": DEFAULT_PAGE_SIZE, "error": error}


def load_view_safe(view: str, tokens: List[FilterToken], page: int) -> Dict[str, Any]:
    try:
        if view in TAG_CATALOGS:
            data = catalog_service(view).list(page, DEFAULT_PAGE_SIZE).as_dict()
        else:
            service = entity_service(view)
            data = service.list(tokens_to_filters(tokens, service.descriptor), page, DEFAULT_PAGE_SIZE).as_dict()
    except EntityHubError as exc:
        logger.exception("Failed to load %s", view)
        return empty_page(error=str(exc))
    data["error"] = ""
    return data


def form_values_for(entity: str, row: Dict[str, Any] | None) -> Dict[str, Any]:
    definition = ENTITY_DEFS[entity]
    row = row or {}
    values: Dict[str, Any] = {}
    for field in definition["fields"]:
        value = row.get(field["name"])
        if isinstance(value, bool):
            value = "true" if value else "false"
        values[field["name"]] = "" if value is None else str(value)
    if not row:
        values["status"] = definition["descriptor"].default_status
        if entity == "persons":
            values["type"] = PERSON_TYPES[0]
    if definition["tag_catalog"]:
        values["tags"] = ", ".join(tag["name"] for tag in row.get("tags") or [])
    if definition["has_components"]:
        values["components"] = ", ".join(str(value) for value in row.get("components") or [])
    return values


def submitted_form(entity: str, values: Dict[str, Any], row_id: int | None) -> MultiDict:
    definition = ENTITY_DEFS[entity]
    form: MultiDict = MultiDict()
    for field in definition["fields"]:
        form[field["name"]] = str(values.get(field["name"], ""))
    if row_id:
        form["id"] = str(row_id)
    if definition["tag_catalog"]:
        form.setlist("tags", split_csv(values.get("tags")))
        form["_tags_present"] = "1"
    if definition["has_components"]:
        form.setlist("components", split_csv(values.get("components")))
        form["_components_present"] = "1"
    return form


@component
def App():
    view, set_view = hooks.use_state("items")
    tokens, set_tokens = hooks.use_state(lambda: parse_query_to_tokens({}, ENTITY_DEFS["items"]["descriptor"]))
    page, set_page = hooks.use_state(1)
    filter_text, set_filter_text = hooks.use_state("")
    data, set_data = hooks.use_state(lambda: load_view_safe("items", tokens, 1))
    modal, set_modal = hooks.use_state({"open": False})
    form_values, set_form_values = hooks.use_state({})
    notice, set_notice = hooks.use_state("")
    is_busy, set_is_busy = hooks.use_state(False)
    busy_ref = hooks.use_ref(False)

    def reload(next_view: str, next_tokens: List[FilterToken], next_page: int) -> None:
        set_data(load_view_safe(next_view, next_tokens, next_page))

    def run_mutation(action: Callable[[], None]) -> None:
        if busy_ref.current:
            return
        busy_ref.current = True
        set_is_busy(True)
        try:
            action()
            set_notice("")
        except (InvalidId, NotFound) as exc:
            set_notice(str(exc))
        except EntityHubError:
            logger.exception("Save failed")
            set_notice("Save failed")
        finally:
            busy_ref.current = False
            set_is_busy(False)
        reload(view, tokens, page)

    def switch_view(next_view: str) -> None:
        if busy_ref.current:
            return
        next_tokens: List[FilterToken] = []
        if next_view in ENTITY_DEFS:
            next_tokens = parse_query_to_tokens({}, ENTITY_DEFS[next_view]["descriptor"])
        set_view(next_view)
        set_tokens(next_tokens)
        set_page(1)
        set_notice("")
        set_modal({"open": False})
        reload(next_view, next_tokens, 1)

    def apply_tokens(next_tokens: List[FilterToken]) -> None:
        set_tokens(next_tokens)
        set_page(1)
        reload(view, next_tokens, 1)

    def add_filter_token(event: Dict[str, Any]) -> None:
        if event.get("key") != "Enter":
            return
        token = normalize_user_input(str(event.get("target", {}).get("value", filter_text)))
        set_filter_text("")
        if token is None:
            return
        next_tokens = list(tokens)
        if token.key == "status":
            next_tokens = [existing for existing in next_tokens if existing.key != "status"]
        if token not in next_tokens:
            next_tokens.append(token)
        apply_tokens(next_tokens)

    def remove_token(index: int) -> None:
        next_tokens = [token for position, token in enumerate(tokens) if position != index]
        if not any(token.key == "status" for token in next_tokens):
            # Dropping the status chip falls back to the default status.
            next_tokens.append(FilterToken("status", ENTITY_DEFS[view]["descriptor"].default_status))
        apply_tokens(next_tokens)

    def set_status_filter(status: str) -> None:
        next_tokens = [token for token in tokens if token.key != "status"]
        next_tokens.append(FilterToken("status", status))
        apply_tokens(next_tokens)

    def go_to_page(next_page: int) -> None:
        set_page(next_page)
        reload(view, tokens, next_page)

    def set_field(name: str, value: Any) -> None:
        set_form_values(lambda prev: {**prev, name: value})

    def open_entity_modal(mode: str, row: Dict[str, Any] | None = None) -> None:
        if busy_ref.current:
            return
        set_form_values(form_values_for(view, row))
        set_modal(
            {
                "open": True,
                "kind": "entity",
                "mode": mode,
                "row_id": row.get("id") if row else None,
                "title": ("Add " if mode == "new" else "Edit ") + ENTITY_DEFS[view]["singular"],
            }
        )

    def open_tag_modal(row: Dict[str, Any]) -> None:
        if busy_ref.current:
            return
        set_form_values({"name": row.get("name") or ""})
        set_modal({"open": True, "kind": "tag", "row_id": row.get("id"), "title": "Rename tag"})

    def close_modal(event: Dict[str, Any] | None = None) -> None:
        if busy_ref.current:
            return
        set_modal({"open": False})

    def handle_submit(event: Dict[str, Any] | None = None) -> None:
        if not modal.get("open") or busy_ref.current:
            return
        values = dict(form_values)
        row_id = modal.get("row_id")

        def commit_form() -> None:
            if modal.get("kind") == "tag":
                catalog_service(view).rename_from_form({"id": str(row_id), "name": values.get("name", "")})
                return
            service = entity_service(view)
            form = submitted_form(view, values, row_id)
            if modal.get("mode") == "new":
                service.create_from_form(form)
            else:
                service.update_from_form(form)

        set_modal({"open": False})
        run_mutation(commit_form)

    def handle_archive(row_id: int) -> None:
        run_mutation(lambda: entity_service(view).soft_delete_from_form({"id": str(row_id)}))

    def handle_tag_delete(row_id: int) -> None:
        run_mutation(lambda: catalog_service(view).delete_from_form({"id": str(row_id)}))

    def render_choice(name: str, options: List[str]):
        current = form_values.get(name, "")
        return html.div(
            {"class": "filter-row"},
            *[
                html.button(
                    {
                        "key": option,
                        "type": "button",
                        "class": f"btn {'active' if current == option else ''}",
                        "disabled": is_busy,
                        "on_click": lambda event, value=option: set_field(name, value),
                    },
                    option.capitalize(),
                )
                for option in options
            ],
        )

    def render_input(name: str, label: str, input_type: str = "text", step: str | None = None, helper: str = ""):
        attrs = {
            "name": name,
            "class": "input",
            "type": input_type,
            "value": form_values.get(name, ""),
            "disabled": is_busy,
            "on_change": lambda event: set_field(name, event.get("target", {}).get("value", "")),
        }
        if step:
            attrs["step"] = step
        return html.div(
            {"class": "field"},
            html.span({"class": "label"}, label),
            html.input(attrs),
            html.div({"class": "meta"}, helper) if helper else "",
        )

    def render_field(field: Dict[str, Any]):
        name = field["name"]
        widget = field.get("widget")
        if widget == "status":
            return html.div({"class": "field"}, html.span({"class": "label"}, field["label"]), render_choice(name, STATUS_VALUES))
        if widget == "person_type":
            return html.div({"class": "field"}, html.span({"class": "label"}, field["label"]), render_choice(name, PERSON_TYPES))
        if widget == "toggle":
            return html.div({"class": "field"}, html.span({"class": "label"}, field["label"]), render_choice(name, ["true", "false"]))
        if widget == "textarea":
            return html.div(
                {"class": "field"},
                html.span({"class": "label"}, field["label"]),
                html.textarea(
                    {
                        "name": name,
                        "class": "input",
                        "rows": 3,
                        "value": form_values.get(name, ""),
                        "disabled": is_busy,
                        "on_change": lambda event: set_field(name, event.get("target", {}).get("value", "")),
                    }
                ),
            )
        return render_input(name, field["label"], field.get("input_type", "text"), field.get("step"))

    def render_modal():
        if not modal.get("open"):
            return None
        if modal.get("kind") == "tag":
            fields = [render_input("name", "Name")]
        else:
            definition = ENTITY_DEFS[view]
            fields = [render_field(field) for field in definition["fields"]]
            if definition["tag_catalog"]:
                fields.append(render_input("tags", "Tags", helper="Comma separated names; new names are added to the catalog."))
            if definition["has_components"]:
                fields.append(render_input("components", "Components", helper=f"Comma separated {definition['label'].lower()} ids."))
        return html.div(
            {"class": "modal"},
            html.div(
                {"class": "modal-card glass-surface"},
                html.h3(modal.get("title", "Edit")),
                html.div(
                    {"class": "form"},
                    *fields,
                    html.div(
                        {"class": "form-actions"},
                        html.button({"type": "button", "class": "btn", "disabled": is_busy, "on_click": close_modal}, "Cancel"),
                        html.button({"type": "button", "class": "btn primary", "disabled": is_busy, "on_click": handle_submit}, "Save"),
                    ),
                ),
            ),
        )

    def render_cell(name: str, row: Dict[str, Any]):
        value = row.get(name)
        if name == "status":
            return html.span({"class": f"pill {status_class(value)}"}, value or "")
        if name == "tags":
            return html.span(*[html.span({"class": "tag", "key": tag["id"]}, tag["name"]) for tag in value or []])
        if name == "components":
            return ", ".join(f"#{component_id}" for component_id in value or []) or ""
        if name == "unique":
            return "Yes" if value else "No"
        return "" if value is None else str(value)

    def render_filters():
        if view not in ENTITY_DEFS:
            return None
        descriptor = ENTITY_DEFS[view]["descriptor"]
        active_status = next((token.value for token in tokens if token.key == "status"), descriptor.default_status)
        query = serialize_tokens_to_query(tokens, descriptor)
        return html.div(
            html.div(
                {"class": "filter-row"},
                *[
                    html.button(
                        {
                            "key": status,
                            "type": "button",
                            "class": f"btn {'active' if active_status == status else ''}",
                            "disabled": is_busy,
                            "on_click": lambda event, value=status: set_status_filter(value),
                        },
                        status.capitalize(),
                    )
                    for status in STATUS_VALUES + ["all"]
                ],
            ),
            html.div(
                {"class": "filter-row"},
                html.input(
                    {
                        "class": "input",
                        "placeholder": "Filter: 42, bolt, tag:3, status:inactive",
                        "value": filter_text,
                        "disabled": is_busy,
                        "on_change": lambda event: set_filter_text(event.get("target", {}).get("value", "")),
                        "on_key_down": add_filter_token,
                    }
                ),
                *[
                    html.span(
                        {"class": "chip", "key": f"{token.key}:{token.value}:{index}"},
                        f"{token.key}:{token.value}",
                        html.button({"type": "button", "on_click": lambda event, index=index: remove_token(index)}, "x"),
                    )
                    for index, token in enumerate(tokens)
                ],
            ),
            html.div({"class": "meta"}, f"/api/{view}?{urlencode(query)}" if query else f"/api/{view}"),
        )

    def render_table():
        rows = data.get("rows") or []
        if view in TAG_CATALOGS:
            columns = [("id", "#"), ("name", "Name")]
        else:
            definition = ENTITY_DEFS[view]
            columns = [("id", "#")] + [(field["name"], field["label"]) for field in definition["fields"]]
            if definition["tag_catalog"]:
                columns.append(("tags", "Tags"))
            if definition["has_components"]:
                columns.append(("components", "Components"))
        if not rows:
            return html.div({"class": "meta"}, "Nothing matches these filters.")

        def row_actions(row: Dict[str, Any]):
            row_id = int(row["id"])
            if view in TAG_CATALOGS:
                return html.td(
                    html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e, row=row: open_tag_modal(row)}, "Rename"),
                    html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e, row_id=row_id: handle_tag_delete(row_id)}, "Delete"),
                )
            return html.td(
                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e, row=row: open_entity_modal("edit", row)}, "Edit"),
                html.button({"class": "btn", "disabled": is_busy, "on_click": lambda e, row_id=row_id: handle_archive(row_id)}, "Archive"),
            )

        return html.table(
            {"class": "table"},
            html.thead(html.tr(*[html.th(label) for _, label in columns], html.th(""))),
            html.tbody(
                *[
                    html.tr(
                        {"key": row.get("id", idx)},
                        *[html.td(render_cell(name, row)) for name, _ in columns],
                        row_actions(row),
                    )
                    for idx, row in enumerate(rows)
                ]
            ),
        )

    def render_pager():
        total = int(data.get("total") or 0)
        size = int(data.get("page_size") or DEFAULT_PAGE_SIZE)
        last_page = max(1, (total + size - 1) // size)
        return html.div(
            {"class": "pager"},
            html.span({"class": "meta"}, f"Page {page} of {last_page} ({total} rows)"),
            html.button({"class": "btn", "disabled": is_busy or page <= 1, "on_click": lambda e: go_to_page(page - 1)}, "Previous"),
            html.button({"class": "btn", "disabled": is_busy or page >= last_page, "on_click": lambda e: go_to_page(page + 1)}, "Next"),
        )

    title = ENTITY_DEFS[view]["label"] if view in ENTITY_DEFS else TAG_CATALOGS[view]["label"]
    return html.div(
        {"id": "entity-hub-root"},
        html.style(GLASS_CSS),
        html.main(
            {"class": "page"},
            html.nav(
                {"class": "nav glass-surface"},
                *[
                    html.button(
                        {
                            "key": key,
                            "class": f"btn {'active' if key == view else ''}",
                            "disabled": is_busy,
                            "on_click": lambda e, key=key: switch_view(key),
                        },
                        ENTITY_DEFS[key]["label"] if key in ENTITY_DEFS else TAG_CATALOGS[key]["label"],
                    )
                    for key in NAV_KEYS
                ],
            ),
            html.section(
                {"class": "card glass-surface"},
                html.div(
                    {"class": "filter-row"},
                    html.h2(title),
                    html.button({"class": "btn primary", "disabled": is_busy, "on_click": lambda e: open_entity_modal("new")}, "Add")
                    if view in ENTITY_DEFS
                    else "",
                ),
                render_filters(),
                html.div({"class": "error"}, data.get("error") or notice) if (data.get("error") or notice) else "",
                render_table(),
                render_pager(),
            ),
        ),
        render_modal(),
    )


def create_app(storage: Storage | None = None) -> Flask:
    app = Flask(__name__)
    if storage is None:
        config.load_dotenv()
        storage = get_storage()
        maybe_init_db_on_startup(storage)
    app.config["STORAGE"] = storage
    app.extensions[EXTENSION_KEY] = get_services(storage)
    register_api(app)
    configure(
        app,
        App,
        Options(
            head=(
                {"tagName": "title", "children": ["Entity Hub"]},
                {
                    "tagName": "meta",
                    "attributes": {"name": "viewport", "content": "width=device-width, initial-scale=1"},
                },
            )
        ),
    )
    return app


def main() -> None:
    app = create_app()
    app.run(
        host="0.0.0.0",
        port=config.env_int("PORT", 5001),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )


if __name__ == "__main__":
    main()
