"""Persistent reverse lookup from canonical forum group names to their source names."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class GroupNameCache:
    """Append-only ``canonical -> original`` mapping backed by a JSON file.

    The mapping only serves diagnostics. :meth:`open` reads the file once,
    :meth:`register` records names in memory and :meth:`flush` merges the new
    entries into whatever is on disk under an exclusive file lock. Entries are
    never removed; on collision the most recent registration wins. One instance
    may be shared by request threads.
    """

    def __init__(self, path: Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._path = Path(path)
        self._lock_timeout = lock_timeout
        self._entries: Dict[str, str] = {}
        self._pending: Dict[str, str] = {}
        self._opened = False
        self._mutex = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        with self._mutex:
            return bool(self._pending)

    def _lock(self) -> FileLock:
        lock_path = self._path.parent / f"{self._path.name}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(lock_path), timeout=self._lock_timeout)

    def _read(self) -> Dict[str, str]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load group name cache from %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring group name cache %s: root is not an object", self._path)
            return {}
        return {str(key): str(value) for key, value in payload.items()}

    def open(self) -> "GroupNameCache":
        """Load the persisted mapping. Stale reads are fine, so no lock is taken."""
        loaded = self._read()
        with self._mutex:
            loaded.update(self._pending)
            self._entries = loaded
            self._opened = True
        return self

    def register(self, canonical: str, original: str) -> None:
        with self._mutex:
            if self._entries.get(canonical) == original:
                return
            self._entries[canonical] = original
            self._pending[canonical] = original

    def lookup(self, canonical: str) -> Optional[str]:
        if not self._opened:
            self.open()
        with self._mutex:
            return self._entries.get(canonical)

    def entries(self) -> Mapping[str, str]:
        with self._mutex:
            return dict(self._entries)

    def _requeue(self, pending: Mapping[str, str]) -> None:
        with self._mutex:
            for canonical, original in pending.items():
                self._pending.setdefault(canonical, original)

    def flush(self) -> bool:
        """Merge pending entries into the file. Returns ``True`` when something was written."""

        with self._mutex:
            pending = dict(self._pending)
            self._pending.clear()
        if not pending:
            return False
        try:
            with self._lock():
                merged = self._read()
                merged.update(pending)
                tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
                tmp_path.write_text(json.dumps(merged, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")
                tmp_path.replace(self._path)
        except Timeout as exc:
            logger.error("Group name cache lock timeout at %s: %s", self._path, exc)
            self._requeue(pending)
            return False
        except OSError as exc:
            logger.error("Failed to write group name cache to %s: %s", self._path, exc)
            self._requeue(pending)
            return False
        logger.debug("Persisted %d group name(s) to %s", len(pending), self._path)
        with self._mutex:
            # names registered while writing stay pending and keep their newer value
            for canonical, original in merged.items():
                if canonical not in self._pending:
                    self._entries[canonical] = original
        return True

    def __enter__(self) -> "GroupNameCache":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.flush()


__all__ = ["GroupNameCache"]
