from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return

    try:
        with open(path, "r", encoding="utf-8") as env_file:
            for raw_line in env_file:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue

                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("'").strip('"')
                if key:
                    os.environ.setdefault(key, value)
    except OSError:
        logger.exception("Failed to read %s", path)


def required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} is not configured")
    return value


def env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        logger.warning("Ignoring non-numeric %s", name)
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        logger.warning("Ignoring non-numeric %s", name)
        return default


def env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default) == "1"


def database_url() -> str | None:
    return os.environ.get("DATABASE_URL") or None


def rest_url() -> str | None:
    value = os.environ.get("REST_URL")
    return value.rstrip("/") if value else None


def rest_timeout_seconds() -> float:
    return env_float("REST_TIMEOUT_SECONDS", 5.0)


def ancestor_max_visits() -> int:
    return env_int("ANCESTOR_MAX_VISITS", 1000)


def selected_backend() -> str:
    """Name of the storage adapter the environment asks for.

    A database URL wins over a REST URL, mirroring how the admin has always
    preferred the direct connection when both are configured.
    """
    if database_url():
        return "sql"
    if rest_url():
        return "rest"
    raise RuntimeError("DATABASE_URL or REST_URL environment variable is required")
