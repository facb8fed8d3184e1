from __future__ import annotations


class EntityHubError(Exception):
    """Base class for errors raised by entity_hub."""


class InvalidFilterFragment(EntityHubError):
    """A filter fragment could not be interpreted.

    Only used inside the filter engine; fragments are dropped, never surfaced.
    """


class InvalidId(EntityHubError):
    """An entity id for update or delete was missing or non-numeric."""


class NotFound(EntityHubError):
    pass


class StorageError(EntityHubError):
    """A storage adapter call failed (database or REST backend)."""


class ReconciliationFailed(EntityHubError):
    """A storage call made while resolving tags or components failed.

    Aborts the enclosing write transaction.
    """


class AncestorWalkTruncated(EntityHubError):
    def __init__(self, own_id: int, visited: int) -> None:
        super().__init__(f"ancestor walk for {own_id} stopped after {visited} rows")
        self.own_id = own_id
        self.visited = visited
