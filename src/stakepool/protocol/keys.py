"""
stakepool/protocol/keys.py

Deterministic record addressing.

Records are located by hashing a purpose tag together with the identifiers
of the entities that own them, so no secondary index is needed:

    pool key      = derive_key("pool_config", stake_asset_id)
    position key  = derive_key("position", stake_asset_id, user_id)
    authority key = derive_key("authority", purpose, stake_asset_id)

KeyedStore holds the records and one lock per key. Operations that touch
several records take every lock they need through ``locked()``, which
acquires them in sorted order.
"""

import hashlib
import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from ..config import POOL_SEED, POSITION_SEED, AUTHORITY_SEED

logger = logging.getLogger("stakepool.protocol.keys")

T = TypeVar('T')


def derive_key(*seeds: str) -> str:
    """
    Derive a record key from an ordered list of seeds.

    Each seed is length-prefixed before hashing so that ("ab", "c") and
    ("a", "bc") never collide.
    """
    if not seeds:
        raise ValueError("At least one seed is required")
    h = hashlib.sha256()
    for seed in seeds:
        data = seed.encode("utf-8")
        h.update(len(data).to_bytes(4, "big"))
        h.update(data)
    return h.hexdigest()


def pool_key(stake_asset_id: str) -> str:
    return derive_key(POOL_SEED, stake_asset_id)


def position_key(stake_asset_id: str, user_id: str) -> str:
    return derive_key(POSITION_SEED, stake_asset_id, user_id)


def authority_key(purpose: str, stake_asset_id: str) -> str:
    return derive_key(AUTHORITY_SEED, purpose, stake_asset_id)


class KeyedStore:
    """
    Key-addressed record table with per-key locks.

    Records are replaced, never mutated in place, so a reader holding a
    record reference always sees a consistent snapshot.
    """

    def __init__(self):
        self._records: Dict[str, Any] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get the record stored at key, or None."""
        with self._guard:
            return self._records.get(key)

    def put(self, key: str, record: Any) -> None:
        """Store (or replace) the record at key."""
        with self._guard:
            self._records[key] = record

    def contains(self, key: str) -> bool:
        with self._guard:
            return key in self._records

    def records(self, kind: Type[T]) -> List[T]:
        """All stored records of a given type."""
        with self._guard:
            return [r for r in self._records.values() if isinstance(r, kind)]

    def __len__(self) -> int:
        with self._guard:
            return len(self._records)

    def lock_for(self, key: str) -> threading.Lock:
        """Get (creating if needed) the lock that serializes writers of key."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def locked(self, *keys: str) -> Iterator[None]:
        """Hold the locks of every given key, acquired in sorted order."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.lock_for(key))
            yield
