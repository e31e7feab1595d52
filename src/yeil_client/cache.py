"""Last-known derived state with fetch ordering and staleness tracking."""

from __future__ import annotations

import itertools
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class StateKind(str, Enum):
    TOKEN = "token"
    BALANCE = "balance"
    SUPPLY_AT = "total_supply_at"
    ALLOWANCE = "allowance"


def _normalise(address: str | None) -> str | None:
    return address.lower() if address else None


@dataclass(frozen=True)
class CacheKey:
    network_id: int
    kind: StateKind
    account: str | None = None
    snapshot_id: int | None = None
    spender: str | None = None

    @classmethod
    def token(cls, network_id: int) -> CacheKey:
        return cls(network_id, StateKind.TOKEN)

    @classmethod
    def balance(
        cls, network_id: int, account: str, snapshot_id: int | None = None
    ) -> CacheKey:
        return cls(
            network_id,
            StateKind.BALANCE,
            account=_normalise(account),
            snapshot_id=snapshot_id,
        )

    @classmethod
    def supply_at(cls, network_id: int, snapshot_id: int) -> CacheKey:
        return cls(network_id, StateKind.SUPPLY_AT, snapshot_id=snapshot_id)

    @classmethod
    def allowance(cls, network_id: int, owner: str, spender: str) -> CacheKey:
        return cls(
            network_id,
            StateKind.ALLOWANCE,
            account=_normalise(owner),
            spender=_normalise(spender),
        )


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    sequence: int


Subscriber = Callable[[CacheKey, Any], None]


class DerivedStateCache:
    """Hold the latest fetched value per key.

    Every fetch takes a sequence number from :meth:`begin_fetch` before it
    starts. :meth:`apply` drops a result whose sequence is lower than the one
    already stored, or lower than the key's last invalidation, so reads that
    complete out of order never overwrite newer data.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._invalidated_at: dict[CacheKey, int] = {}
        self._sequence = itertools.count(1)
        self._subscribers: defaultdict[CacheKey, list[Subscriber]] = defaultdict(list)

    def begin_fetch(self, key: CacheKey) -> int:
        return next(self._sequence)

    def apply(self, key: CacheKey, sequence: int, value: Any) -> bool:
        """Store ``value`` unless a newer fetch or invalidation got there first.

        Returns:
            True if the value was stored
        """
        current = self._entries.get(key)
        if current is not None and sequence < current.sequence:
            logger.debug(
                "Discarding out-of-order result for %s (seq %d < %d)",
                key,
                sequence,
                current.sequence,
            )
            return False

        invalidated = self._invalidated_at.get(key)
        if invalidated is not None:
            if sequence < invalidated:
                logger.debug(
                    "Discarding result for %s fetched before invalidation", key
                )
                return False
            del self._invalidated_at[key]

        self._entries[key] = CacheEntry(value=value, sequence=sequence)
        self._notify(key, value)
        return True

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def entry(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(key)

    def invalidate(self, key: CacheKey) -> None:
        # The old value stays readable; it is just marked stale.
        self._invalidated_at[key] = next(self._sequence)

    def is_stale(self, key: CacheKey) -> bool:
        return key not in self._entries or key in self._invalidated_at

    def subscribe(self, key: CacheKey, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(key, value)`` whenever a new value is stored.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[key]

        return unsubscribe

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def clear(self, network_id: int | None = None) -> None:
        """Drop entries, optionally only those for one network."""
        if network_id is None:
            self._entries.clear()
            self._invalidated_at.clear()
            return
        for key in [k for k in self._entries if k.network_id == network_id]:
            del self._entries[key]
        for key in [k for k in self._invalidated_at if k.network_id == network_id]:
            del self._invalidated_at[key]

    def _notify(self, key: CacheKey, value: Any) -> None:
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(key, value)
            except Exception:
                logger.exception("Cache subscriber failed for %s", key)
