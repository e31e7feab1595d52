"""Re-fetch derived state after a confirmed write."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .cache import CacheKey, DerivedStateCache, StateKind
from .dispatcher import CallDispatcher
from .lifecycle import TransactionLifecycle, TxStatus
from .types import (
    BalanceRecord,
    SessionContext,
    TokenSnapshot,
    WriteCallDescriptor,
    WriteKind,
)

logger = logging.getLogger(__name__)


def affected_keys(call: WriteCallDescriptor) -> list[CacheKey]:
    """Cache keys a confirmed write makes out of date.

    The mapping is fixed per write kind. ``snapshot()`` affects nothing: a new
    snapshot id is only read when a caller asks for it.
    """
    network_id = call.network_id
    sender = call.sender
    args = call.args
    keys: list[CacheKey] = []

    if call.kind is WriteKind.TRANSFER:
        to = args[0]
        if sender:
            keys.append(CacheKey.balance(network_id, sender))
        keys.append(CacheKey.balance(network_id, to))
    elif call.kind is WriteKind.APPROVE:
        spender = args[0]
        if sender:
            keys.append(CacheKey.allowance(network_id, sender, spender))
    elif call.kind is WriteKind.TRANSFER_FROM:
        owner, to = args[0], args[1]
        keys.append(CacheKey.balance(network_id, owner))
        keys.append(CacheKey.balance(network_id, to))
        if sender:
            keys.append(CacheKey.allowance(network_id, owner, sender))
    elif call.kind in (WriteKind.MINT, WriteKind.BURN):
        keys.append(CacheKey.token(network_id))
        keys.append(CacheKey.balance(network_id, args[0]))

    # transfer-to-self and friends would otherwise fetch the same key twice
    return list(dict.fromkeys(keys))


class StateLoader:
    """Fetch the value behind a cache key and store it in sequence order."""

    def __init__(
        self,
        dispatcher: CallDispatcher,
        cache: DerivedStateCache,
        *,
        display_precision: int | None = None,
        is_current: Callable[[SessionContext], bool] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = cache
        self._precision = display_precision
        self._is_current = is_current or (lambda _ctx: True)

    async def load(self, key: CacheKey, context: SessionContext | None = None) -> Any:
        """Fetch ``key`` and apply it to the cache.

        The result is returned either way, but it is only stored if
        ``context`` is still the active one when the fetch completes.
        """
        sequence = self._cache.begin_fetch(key)
        value = await self._fetch(key)

        if context is not None and not self._is_current(context):
            logger.debug("Context changed while fetching %s; result discarded", key)
            return value

        self._cache.apply(key, sequence, value)
        return value

    async def _fetch(self, key: CacheKey) -> Any:
        network_id = key.network_id

        if key.kind is StateKind.TOKEN:
            return await self._dispatcher.fetch_token_snapshot(network_id)

        if key.kind is StateKind.BALANCE:
            assert key.account is not None
            raw, decimals = await asyncio.gather(
                self._dispatcher.fetch_balance(
                    network_id, key.account, key.snapshot_id
                ),
                self._decimals(network_id),
            )
        elif key.kind is StateKind.SUPPLY_AT:
            assert key.snapshot_id is not None
            raw, decimals = await asyncio.gather(
                self._dispatcher.fetch_total_supply_at(network_id, key.snapshot_id),
                self._decimals(network_id),
            )
        elif key.kind is StateKind.ALLOWANCE:
            assert key.account is not None and key.spender is not None
            raw, decimals = await asyncio.gather(
                self._dispatcher.fetch_allowance(
                    network_id, key.account, key.spender
                ),
                self._decimals(network_id),
            )
        else:  # pragma: no cover
            raise ValueError(f"Unsupported cache key kind: {key.kind}")

        return BalanceRecord.from_raw(raw, decimals, self._precision)

    async def _decimals(self, network_id: int) -> int:
        snapshot: TokenSnapshot | None = self._cache.get(CacheKey.token(network_id))
        if snapshot is not None:
            return snapshot.decimals
        return await self._dispatcher.fetch_decimals(network_id)


@dataclass
class RefreshReport:
    lifecycle_id: str
    refreshed: list[CacheKey] = field(default_factory=list)
    failed: dict[CacheKey, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class RefreshCoordinator:
    """Invalidate and re-fetch what a confirmed write changed.

    Runs at most once per lifecycle and only for ``Confirmed`` ones. Refresh
    failures are reported but leave the lifecycle's state alone; the write
    already happened on chain.
    """

    def __init__(self, loader: StateLoader, cache: DerivedStateCache):
        self._loader = loader
        self._cache = cache

    async def on_terminal(
        self, lifecycle: TransactionLifecycle
    ) -> RefreshReport | None:
        if lifecycle.status is not TxStatus.CONFIRMED:
            logger.debug(
                "No refresh for %s in state %s",
                lifecycle.call.function,
                lifecycle.state,
            )
            return None
        if lifecycle.refresh_handled:
            return None
        lifecycle.refresh_handled = True

        keys = affected_keys(lifecycle.call)
        report = RefreshReport(lifecycle_id=lifecycle.id)
        if not keys:
            return report

        for key in keys:
            self._cache.invalidate(key)

        results = await asyncio.gather(
            *(self._loader.load(key, lifecycle.context) for key in keys),
            return_exceptions=True,
        )
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to refresh %s after %s: %s",
                    key,
                    lifecycle.call.function,
                    result,
                )
                report.failed[key] = result
            else:
                report.refreshed.append(key)

        logger.info(
            "Refreshed %d/%d keys after %s",
            len(report.refreshed),
            len(keys),
            lifecycle.call.function,
        )
        return report
