"""In-process expiring key/value store used when the shared store is unreachable.

Notes:
- Per-process only: every worker has its own map, so counters and circuit
  records are not shared while the service runs in memory mode.
- Thread-safe: uses a lock around shared state.
- Expiry is enforced lazily on every read. ``sweep()`` only bounds memory.
"""

from __future__ import annotations

import copy
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from resilient_state.adapters.state_store.base import (
    TTL_MISSING,
    TTL_NO_EXPIRY,
    CommandKind,
    PipelineCommand,
)

logger = logging.getLogger(__name__)


@dataclass
class StoredEntry:
    """A stored value and its absolute expiry (UNIX seconds), if any."""

    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class LocalFallbackStore:
    """Expiring map with the externally observable semantics of Redis.

    Mirrors GET/SET EX/DEL/INCR/EXPIRE/TTL/EXISTS closely enough that the
    layers above cannot tell which backend served a call. None of the
    operations perform I/O, so none of them fail for infrastructure reasons.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize an empty store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, StoredEntry] = {}
        self._sweeps = 0
        self._purged = 0
        self._pipeline_handlers: dict[CommandKind, Callable[[PipelineCommand], Any]] = {
            CommandKind.GET: self._run_get,
            CommandKind.SET: self._run_set,
            CommandKind.INCR: self._run_incr,
            CommandKind.EXPIRE: self._run_expire,
            CommandKind.DEL: self._run_del,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live_entry(self, key: str, now: float) -> StoredEntry | None:
        """Return the entry for key, deleting it first if it has expired.

        Caller must hold the lock.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return None
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store value unconditionally, replacing any previous expiry.

        Args:
            key: Key to write.
            value: Any value; a deep copy is stored.
            ttl_seconds: Optional lifetime in seconds. ``None`` or 0 means no expiry.
        """
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[key] = StoredEntry(value=copy.deepcopy(value), expires_at=expires_at)

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._entries.pop(key, None) is not None else 0

    def incr(self, key: str) -> int:
        """Increment the integer at key, keeping its current expiry.

        Absent or expired keys start from 0, like Redis INCR. Only ints
        count as integers: the shared store keeps strings JSON-quoted, so
        INCR on a stored string fails there too.

        Raises:
            ValueError: If the stored value is not an integer.
        """
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                self._entries[key] = StoredEntry(value=1)
                return 1

            current = entry.value
            if isinstance(current, bool) or not isinstance(current, int):
                raise ValueError(f"value at '{key}' is not an integer")
            new_value = current + 1

            entry.value = new_value
            return new_value

    def expire(self, key: str, seconds: int) -> bool:
        """Set the expiry of an existing key. Returns False when the key is absent."""
        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None:
                return False
            entry.expires_at = now + seconds
            return True

    def ttl(self, key: str) -> int:
        """Remaining lifetime in whole seconds, rounded up.

        Returns:
            -2 if the key is absent, -1 if it has no expiry.
        """
        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None:
                return TTL_MISSING
            if entry.expires_at is None:
                return TTL_NO_EXPIRY
            remaining = math.ceil(entry.expires_at - now)
            if remaining <= 0:
                del self._entries[key]
                return TTL_MISSING
            return remaining

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key, self._clock()) is not None

    def pipeline(self, commands: list[PipelineCommand]) -> list[Any]:
        """Execute commands one after another.

        Unlike the shared store, the batch is not atomic: another thread may
        interleave between two commands, and a failing command leaves the
        earlier ones applied.
        """
        return [self._pipeline_handlers[command.kind](command) for command in commands]

    def sweep(self) -> int:
        """Purge every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._sweeps += 1
            self._purged += len(expired)

        if expired:
            logger.debug(
                "local_store.swept",
                extra={"purged": len(expired), "entries": len(self)},
            )
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        """Return lightweight store metrics without exposing values."""

        with self._lock:
            return {
                "entries": len(self._entries),
                "sweeps": self._sweeps,
                "purged": self._purged,
            }

    # Pipeline handlers return the reply Redis would give for the same command.

    def _run_get(self, command: PipelineCommand) -> Any | None:
        return self.get(command.key)

    def _run_set(self, command: PipelineCommand) -> str:
        self.set(command.key, command.value, command.seconds)
        return "OK"

    def _run_incr(self, command: PipelineCommand) -> int:
        return self.incr(command.key)

    def _run_expire(self, command: PipelineCommand) -> int:
        self.expire(command.key, command.seconds or 0)
        return 1

    def _run_del(self, command: PipelineCommand) -> int:
        self.delete(command.key)
        return 1
