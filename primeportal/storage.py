"""Safe wrapper around the local persistent key/value store.

The store is a JSON file at ``LOCAL_STORAGE_PATH``.  When no path is
configured (or the file cannot be read or written) every call degrades to a
no-op: reads return ``None`` and writes return ``False``.  Nothing here raises.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from primeportal.config import get_settings

logger = logging.getLogger("primeportal.storage")


class JsonFileStore:
    """Tiny string → string store persisted as a JSON object."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self._path} does not hold an object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)


def default_store() -> JsonFileStore | None:
    """Return the configured store, or None when persistence is unavailable."""
    path = get_settings().local_storage_path
    if not path:
        return None
    return JsonFileStore(Path(path))


def safe_get_item(key: str, store: JsonFileStore | None = None) -> str | None:
    store = store or default_store()
    if store is None:
        return None
    try:
        return store.get(key)
    except (OSError, ValueError) as exc:
        logger.warning('[Storage] Failed to get item "%s": %s', key, exc)
        return None


def safe_set_item(key: str, value: str, store: JsonFileStore | None = None) -> bool:
    store = store or default_store()
    if store is None:
        return False
    try:
        store.set(key, value)
        return True
    except (OSError, ValueError) as exc:
        logger.warning('[Storage] Failed to set item "%s": %s', key, exc)
        return False

