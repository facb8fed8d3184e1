from __future__ import annotations

import os

from .. import config
from .base import Row, Storage

__all__ = ["Row", "Storage", "get_storage"]


def get_storage() -> Storage:
    """Build the adapter selected by the environment (SQL wins over REST)."""
    backend = config.selected_backend()
    if backend == "sql":
        from .sql import SqlStorage

        return SqlStorage(config.required_env("DATABASE_URL"), maxconn=config.env_int("DB_POOL_MAX", 10))

    from .rest import RestStorage

    return RestStorage(
        config.required_env("REST_URL"),
        api_key=os.environ.get("REST_API_KEY") or None,
        timeout=config.rest_timeout_seconds(),
    )
