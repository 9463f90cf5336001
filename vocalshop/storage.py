from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("vocalshop.storage")


class KeyValueStore:
    """Session-scoped key-value storage persisted to a JSON file."""

    def __init__(self, path: Optional[Path] = None, max_scopes: Optional[int] = None) -> None:
        """Purpose: Initialize the store and hydrate it from disk if available.
        Inputs/Outputs: Inputs are an optional file path (None keeps data in memory
            only) and an optional cap on stored sessions; no return value.
        Side Effects / State: Loads persisted scopes into memory and prunes them to the cap.
        Dependencies: Calls _load; uses a JSON file on disk.
        Failure Modes: JSON decode errors are ignored, leaving an empty store.
        If Removed: Carts and the last parsed intent do not survive restarts.
        Testing Notes: Write a value, build a new store on the same path, read it back.
        """
        # Keep the backing file path and hydrate cached scopes.
        self._path = path
        self._max_scopes = max_scopes
        self._lock = threading.Lock()
        # Insertion order is write recency: the first scope is the stalest.
        self._scopes: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _load(self) -> None:
        # Read and parse persisted JSON if present.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("storage=%s unreadable, starting empty", self._path)
            return
        scopes = data.get("scopes", {}) if isinstance(data, dict) else {}
        if isinstance(scopes, dict):
            self._scopes = {scope: items for scope, items in scopes.items() if isinstance(items, dict)}
        if self._prune_scopes():
            self._persist()

    def _prune_scopes(self) -> bool:
        """Purpose: Keep only the most recently written scopes.
        Inputs/Outputs: No inputs; returns True if any scope was removed.
        Side Effects / State: Drops the stalest scopes from memory.
        Dependencies: max_scopes setting.
        Failure Modes: None.
        If Removed: Every visitor's cart stays in memory and on disk forever.
        Testing Notes: Write 50 scopes with max_scopes=10; only the last 10 remain.
        """
        # Trim from the front of the recency order.
        if not self._max_scopes or len(self._scopes) <= self._max_scopes:
            return False
        stale = list(self._scopes)[: len(self._scopes) - self._max_scopes]
        for scope in stale:
            self._scopes.pop(scope, None)
        logger.info("storage pruned scopes=%d kept=%d", len(stale), len(self._scopes))
        return True

    def _persist(self) -> bool:
        """Purpose: Write all scopes to disk.
        Inputs/Outputs: Writes a JSON file; returns True on success.
        Side Effects / State: Persists the current scopes.
        Dependencies: json.dumps and Path.write_text.
        Failure Modes: IO errors are logged and swallowed (best-effort persistence).
        If Removed: State is kept in memory only.
        Testing Notes: Point the store at an unwritable path; mutations must not raise.
        """
        # Persist best-effort; the in-memory state stays authoritative.
        if not self._path:
            return True
        payload = {"scopes": self._scopes}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("storage=%s write failed: %s", self._path, exc)
            return False
        return True

    def _write(self, scope: str, key: str, value: Any) -> None:
        # Caller holds the lock. None removes the key; writes refresh recency.
        items = self._scopes.pop(scope, {})
        if value is None:
            items.pop(key, None)
        else:
            items[key] = value
        if items:
            self._scopes[scope] = items
            self._prune_scopes()

    def get_item(self, scope: str, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._scopes.get(scope, {}).get(key, default)

    def set_item(self, scope: str, key: str, value: Any) -> bool:
        with self._lock:
            self._write(scope, key, value)
            return self._persist()

    def remove_item(self, scope: str, key: str) -> bool:
        with self._lock:
            items = self._scopes.get(scope)
            if not items or key not in items:
                return True
            items.pop(key, None)
            if not items:
                self._scopes.pop(scope, None)
            return self._persist()

    def update(self, scope: str, key: str, fn: Callable[[Any], Any]) -> Any:
        """Purpose: Read-modify-write one key as a single locked step.
        Inputs/Outputs: Inputs are the scope, key and a function from the current
            value (None when absent) to the new one; output is the new value.
        Side Effects / State: Stores the new value (None removes the key) and persists.
        Dependencies: _write, _persist.
        Failure Modes: Exceptions raised by fn propagate and leave the value unchanged.
        If Removed: Concurrent cart edits on one session lose updates.
        Testing Notes: Run many concurrent increments; none may be lost.
        """
        # fn runs under the lock, so it must not call back into the store.
        with self._lock:
            value = fn(self._scopes.get(scope, {}).get(key))
            self._write(scope, key, value)
            self._persist()
            return value

    def scope(self, scope: str) -> "ScopedStorage":
        """Return a view bound to one session, mirroring browser local storage."""
        return ScopedStorage(self, scope)


class ScopedStorage:
    """Key-value view over a single KeyValueStore scope."""

    def __init__(self, store: KeyValueStore, scope: str) -> None:
        self._store = store
        self.scope = scope

    def get_item(self, key: str, default: Any = None) -> Any:
        return self._store.get_item(self.scope, key, default)

    def set_item(self, key: str, value: Any) -> bool:
        return self._store.set_item(self.scope, key, value)

    def remove_item(self, key: str) -> bool:
        return self._store.remove_item(self.scope, key)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        return self._store.update(self.scope, key, fn)
