"""Persistence collaborator: key-value stores and the write-behind saver.

The library (every shelf plus the shared inbox) is saved as a whole under a
fixed key set (``config.STORAGE_KEYS``) after every committed mutation.
Stores report failures as ``PersistenceError``; the saver logs them and
carries on, so the next mutation's full-state save is the retry.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Protocol

from .errors import PersistenceError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable, Mapping
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

ChangeCallback = Callable[[dict[str, Any]], None]


class KeyValueStore(Protocol):
    """Storage interface the shelf model depends on."""

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for ``keys``; missing keys are omitted."""
        ...

    def set(self, record: Mapping[str, Any]) -> None:
        """Store every key of ``record``."""
        ...

    def remove(self, keys: Iterable[str]) -> None:
        """Delete ``keys``; keys that are not stored are ignored."""
        ...

    def subscribe(self, callback: ChangeCallback) -> None:
        """Register ``callback`` for ``{key: new_value}`` change events."""
        ...


class _NotifyingStore:
    """Shared subscriber bookkeeping. Every ``set`` is reported to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> None:
        self._subscribers.append(callback)

    def _notify(self, changes: dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            callback(copy.deepcopy(changes))


class InMemoryStore(_NotifyingStore):
    """Dictionary-backed store, used by tests and as the default."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = threading.Lock()

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    def set(self, record: Mapping[str, Any]) -> None:
        snapshot = copy.deepcopy(dict(record))
        with self._lock:
            self._data.update(snapshot)
        self._notify(snapshot)

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def publish_external(self, changes: Mapping[str, Any]) -> None:
        """Simulate another process writing ``changes`` to the store."""
        self.set(changes)


class JsonFileStore(_NotifyingStore):
    """Store persisting all keys in one JSON document on disk."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            data = self._read()
        return {key: data[key] for key in keys if key in data}

    def set(self, record: Mapping[str, Any]) -> None:
        with self._lock:
            data = self._read()
            data.update(record)
            self._write(data)
        LOGGER.debug("Wrote %d keys to %s", len(record), self._path)
        self._notify(dict(record))

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            data = self._read()
            removed = [key for key in keys if key in data]
            for key in removed:
                del data[key]
            if removed:
                self._write(data)
        LOGGER.debug("Removed keys %s from %s", removed, self._path)

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            msg = f"Failed to read shelf store {self._path}: {exc}"
            raise PersistenceError(msg) from exc
        if not isinstance(raw, dict):
            msg = f"Shelf store {self._path} does not contain a JSON object"
            raise PersistenceError(msg)
        return raw

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as exc:
            msg = f"Failed to write shelf store {self._path}: {exc}"
            raise PersistenceError(msg) from exc


class ShelfSaver:
    """Hands full-shelf records to a store, inline or on a background worker.

    With ``write_behind=True`` saves are queued on a single worker thread so
    they are applied in commit order; ``flush`` waits for the queue to drain.
    A failed save is logged and remembered in ``last_error`` but never raised.
    """

    def __init__(self, store: KeyValueStore, *, write_behind: bool = False) -> None:
        self._store = store
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="linkshelf-save")
            if write_behind
            else None
        )
        self._pending: list[Future[bool]] = []
        self.failed_saves = 0
        self.last_error: PersistenceError | None = None

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def save(self, record: dict[str, Any], obsolete_keys: tuple[str, ...] = ()) -> None:
        """Save ``record``; returns immediately in write-behind mode.

        ``obsolete_keys`` are removed from the store once ``record`` is written.
        """
        if self._executor is None:
            self._write(record, obsolete_keys)
            return
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(self._executor.submit(self._write, record, obsolete_keys))

    def flush(self) -> None:
        """Block until every queued save has been attempted."""
        pending, self._pending = self._pending, []
        for future in pending:
            future.result()

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    def _write(self, record: dict[str, Any], obsolete_keys: tuple[str, ...]) -> bool:
        try:
            self._store.set(record)
            if obsolete_keys:
                self._store.remove(obsolete_keys)
        except PersistenceError as exc:
            self.failed_saves += 1
            self.last_error = exc
            LOGGER.warning(
                "Saving shelf failed (%s); in-memory state kept, next change retries", exc,
            )
            return False
        self.last_error = None
        return True
