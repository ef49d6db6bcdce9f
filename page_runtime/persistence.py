"""Persistence layer for the shared store.

Wraps store construction: declared ``persistent_paths`` are read back from a
string key-value storage before the store is handed out, and written through
after every mutation. Keys are ``<prefix>.<namespace>.<path>``; values are
JSON text.
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

from .const import DEFAULT_KEY_PREFIX, STORAGE_KEY, STORAGE_VERSION
from .store import SharedStore, StateModule, get_path, to_plain

_LOGGER = logging.getLogger(__name__)

_MISSING = object()


class StorageBackend(Protocol):
    """A durable string key-value store (browser local storage, a file...)."""

    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    """Non-durable storage, for tests and pages without persistence."""

    def __init__(self, items: Mapping[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class JsonFileStorage:
    """Storage kept in one versioned JSON document.

    The file layout follows Home Assistant's ``.storage`` files::

        {"version": 1, "key": "page_runtime.state", "data": {"<key>": "<json>"}}

    Every write replaces the file atomically.
    """

    def __init__(self, path: str | Path, key: str = STORAGE_KEY) -> None:
        self.path = Path(path)
        self.key = key
        self._data: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data

        self._data = {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return self._data
        except (OSError, ValueError) as err:
            _LOGGER.warning("Storage file %s unreadable (%s), starting empty", self.path, err)
            return self._data

        if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
            _LOGGER.warning("Storage file %s has unexpected layout, starting empty", self.path)
            return self._data

        version = raw.get("version", STORAGE_VERSION)
        if not isinstance(version, int) or version > STORAGE_VERSION:
            _LOGGER.warning(
                "Storage file %s has version %r (supported: %d), starting empty",
                self.path, version, STORAGE_VERSION,
            )
            return self._data

        self._data = {str(k): v for k, v in raw["data"].items() if isinstance(v, str)}
        return self._data

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        payload = {"version": STORAGE_VERSION, "key": self.key, "data": self._load()}
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, sort_keys=True)
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._write()

    def remove_item(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._write()


def collect_persistent_paths(modules: Iterable[StateModule]) -> list[str]:
    paths: list[str] = []
    for module in modules:
        paths.extend(module.qualified_paths())
    return paths


class PersistedState:
    """Store subscriber that mirrors declared paths into storage."""

    def __init__(
        self,
        storage: StorageBackend,
        paths: Iterable[str],
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.storage = storage
        self.paths = list(paths)
        self.key_prefix = key_prefix

    def key_for(self, path: str) -> str:
        return f"{self.key_prefix}.{path}" if self.key_prefix else path

    def rehydrate(self, store: SharedStore) -> int:
        """Seed ``store`` from storage; returns the number of restored paths.

        Missing or unreadable records leave the declared initial value.
        """
        restored = 0
        for path in self.paths:
            key = self.key_for(path)
            try:
                raw = self.storage.get_item(key)
            except Exception as err:  # noqa: BLE001
                _LOGGER.warning("Reading %s failed (%s), using default", key, err)
                continue
            if raw is None:
                continue
            try:
                value = json.loads(raw)
            except (TypeError, ValueError):
                _LOGGER.warning("Stored value for %s is corrupt, using default", key)
                continue
            store._seed(path, value)
            restored += 1
        return restored

    def write(self, state: Mapping[str, Any]) -> None:
        for path in self.paths:
            key = self.key_for(path)
            value = get_path(state, path, _MISSING)
            if value is _MISSING:
                self.storage.remove_item(key)
                continue
            try:
                self.storage.set_item(key, json.dumps(to_plain(value)))
            except Exception:
                _LOGGER.error("Persisting %s failed", key)
                raise

    def __call__(self, mutation_type: str, payload: Any, state: Mapping[str, Any]) -> None:
        self.write(state)


class StoreProvider:
    """Owns the one ``SharedStore`` of a page.

    The first ``get_or_create`` call builds and rehydrates the store; every
    later call returns that same instance and ignores its declarations.
    """

    def __init__(
        self,
        storage: StorageBackend | None = None,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.key_prefix = key_prefix
        self._store: SharedStore | None = None

    @property
    def store(self) -> SharedStore | None:
        return self._store

    def get_or_create(self, modules: Iterable[StateModule] = ()) -> SharedStore:
        if self._store is not None:
            return self._store

        modules = list(modules)
        store = SharedStore(modules)
        persisted = PersistedState(
            self.storage,
            collect_persistent_paths(modules),
            key_prefix=self.key_prefix,
        )
        restored = persisted.rehydrate(store)
        store.subscribe(persisted)
        self._store = store

        _LOGGER.info(
            "Shared store created: %d state modules, %d/%d persistent paths restored",
            len(modules), restored, len(persisted.paths),
        )
        return store

    def install(self, instance: Any) -> None:
        """Point a module instance's own ``store`` attribute at the shared store."""
        if self._store is None or not hasattr(instance, "store"):
            return
        if getattr(instance, "store") is self._store:
            return
        try:
            setattr(instance, "store", self._store)
        except AttributeError:
            _LOGGER.warning("Cannot install shared store on %s", type(instance).__name__)
            return
        _LOGGER.debug("Installed shared store on %s", type(instance).__name__)

    def reset(self) -> None:
        self._store = None
