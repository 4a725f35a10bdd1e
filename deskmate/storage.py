from __future__ import annotations

import json
import os
import re
import secrets
from pathlib import Path
from typing import Any, Protocol

from .errors import CorruptStateError


SCHEMA_VERSION = 1
STORE_SUFFIX = ".json"
_KEY_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Used by tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileStore:
    """One file per key under `root`: key `projects` lives in `projects.json`."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key or ""):
            raise ValueError(f"invalid store key: {key!r}")
        return self.root / f"{key}{STORE_SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(path.stem for path in self.root.glob(f"*{STORE_SUFFIX}") if not path.name.startswith("."))


class JsonCollection:
    """A JSON array of records stored under one key.

    On disk the array sits inside `{"version": N, "items": [...]}`. A bare array
    is the pre-envelope layout and reads as version 0; the next `save` rewrites
    it in the current envelope.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self.store = store
        self.key = key

    def load(self) -> list[dict[str, Any]]:
        raw = self.store.get(self.key)
        if raw is None:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptStateError(self.key, f"invalid JSON ({exc.msg} at line {exc.lineno})") from exc

        if isinstance(payload, list):
            items = payload
        elif isinstance(payload, dict):
            version = payload.get("version")
            if not isinstance(version, int) or isinstance(version, bool) or version < 0:
                raise CorruptStateError(self.key, "missing or invalid schema version")
            if version > SCHEMA_VERSION:
                raise CorruptStateError(self.key, f"unsupported schema version {version} (max {SCHEMA_VERSION})")
            items = payload.get("items")
            if not isinstance(items, list):
                raise CorruptStateError(self.key, "envelope has no `items` array")
        else:
            raise CorruptStateError(self.key, f"expected an array or envelope, got {type(payload).__name__}")

        records: list[dict[str, Any]] = []
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                raise CorruptStateError(self.key, f"item {idx} is not an object")
            records.append(dict(item))
        return records

    def save(self, records: list[dict[str, Any]]) -> None:
        serializable = {
            "version": SCHEMA_VERSION,
            "items": list(records),
        }
        self.store.set(self.key, json.dumps(serializable, indent=2, sort_keys=True, ensure_ascii=True) + "\n")

    def clear(self) -> None:
        self.store.remove(self.key)
