"""
Keyed lock manager.

Serializes read-modify-write cycles per key (one account row, one loan row)
while letting unrelated keys proceed in parallel. Locks for several keys are
always taken in sorted order so two transfers in opposite directions cannot
deadlock.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Tuple


def account_key(account_id: str) -> str:
    return f"account:{account_id}"


def loan_key(loan_id: str) -> str:
    return f"loan:{loan_id}"


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class KeyedLockManager:
    """Reentrant per-key locks, created on demand and dropped when unused"""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    def _checkout(self, key: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
            return entry

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str):
        """Hold the locks of all given keys for the duration of the block"""
        acquired: List[Tuple[str, _LockEntry]] = []
        try:
            for key in sorted(set(keys)):
                entry = self._checkout(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key)

    def active_keys(self) -> List[str]:
        """Keys currently held or waited on"""
        with self._guard:
            return sorted(self._entries)
