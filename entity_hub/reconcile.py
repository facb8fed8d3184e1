"""Turn submitted tag names and component ids into stored foreign keys.

Both entry points take their storage access as plain callables so they can run
inside whatever transaction the caller has open. Any failure of those
callables is reported as ReconciliationFailed; candidates that would break the
component graph are dropped without an error.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Sequence

from .errors import AncestorWalkTruncated, ReconciliationFailed

logger = logging.getLogger(__name__)

TagRows = List[Dict[str, Any]]
CatalogLookup = Callable[[List[str]], TagRows]
CatalogInsert = Callable[[List[str]], TagRows]
ExistsLookup = Callable[[List[int]], Iterable[int]]
ParentLookup = Callable[[int], Iterable[int]]

DEFAULT_MAX_VISITS = 1000


def distinct_tag_names(names: Iterable[Any]) -> List[str]:
    distinct: List[str] = []
    for raw in names:
        if raw is None:
            continue
        name = str(raw).strip()
        if name and name not in distinct:
            distinct.append(name)
    return distinct


def resolve_tag_names(
    names: Iterable[Any],
    catalog_lookup: CatalogLookup,
    catalog_insert: CatalogInsert,
) -> List[int]:
    distinct = distinct_tag_names(names)
    if not distinct:
        return []

    try:
        resolved = {row["name"]: int(row["id"]) for row in catalog_lookup(distinct)}
        missing = [name for name in distinct if name not in resolved]
        if missing:
            for row in catalog_insert(missing):
                resolved.setdefault(row["name"], int(row["id"]))
            # Rows skipped by ON CONFLICT DO NOTHING belong to a concurrent writer.
            still_missing = [name for name in missing if name not in resolved]
            if still_missing:
                for row in catalog_lookup(still_missing):
                    resolved.setdefault(row["name"], int(row["id"]))
    except Exception as exc:
        raise ReconciliationFailed(f"Could not resolve tags {distinct!r}") from exc

    unresolved = [name for name in distinct if name not in resolved]
    if unresolved:
        raise ReconciliationFailed(f"Tag catalog did not return ids for {unresolved!r}")
    return [resolved[name] for name in distinct]


def clean_component_ids(requested: Iterable[Any], own_id: int | None = None) -> List[int]:
    cleaned: List[int] = []
    for raw in requested:
        if isinstance(raw, bool):
            continue
        if isinstance(raw, int):
            value = raw
        elif isinstance(raw, float) and raw.is_integer():
            value = int(raw)
        elif isinstance(raw, str) and raw.strip().isdecimal():
            value = int(raw.strip())
        else:
            continue
        if value <= 0 or value == own_id or value in cleaned:
            continue
        cleaned.append(value)
    return cleaned


def ancestors_of(own_id: int, parent_lookup: ParentLookup, max_visits: int = DEFAULT_MAX_VISITS) -> set[int]:
    """Every row that has ``own_id`` as a component, directly or transitively.

    Walks parent edges breadth first. Raises AncestorWalkTruncated once more
    than ``max_visits`` rows have been expanded.
    """
    ancestors: set[int] = set()
    queue: deque[int] = deque([own_id])
    visited = 0
    while queue:
        if visited >= max_visits:
            raise AncestorWalkTruncated(own_id, visited)
        current = queue.popleft()
        visited += 1
        for parent in parent_lookup(current):
            parent = int(parent)
            if parent not in ancestors:
                ancestors.add(parent)
                queue.append(parent)
    return ancestors


def resolve_component_ids(
    requested_ids: Sequence[Any],
    own_id: int | None,
    exists_lookup: ExistsLookup,
    parent_lookup: ParentLookup,
    max_visits: int = DEFAULT_MAX_VISITS,
) -> List[int]:
    own_id = own_id or None
    candidates = clean_component_ids(requested_ids, own_id)
    if not candidates:
        return []

    try:
        if own_id is not None:
            try:
                ancestors = ancestors_of(own_id, parent_lookup, max_visits)
            except AncestorWalkTruncated as exc:
                logger.warning("Dropping components %s: %s", candidates, exc)
                return []
            candidates = [candidate for candidate in candidates if candidate not in ancestors]
            if not candidates:
                return []
        existing = {int(value) for value in exists_lookup(candidates)}
    except Exception as exc:
        raise ReconciliationFailed(f"Could not validate components {candidates!r}") from exc

    kept = [candidate for candidate in candidates if candidate in existing]
    if len(kept) != len(requested_ids):
        logger.debug("Components for %s: requested %s, kept %s", own_id, list(requested_ids), kept)
    return kept
