"""Context-scoped facade over dispatch, lifecycle, refresh and cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .addresses import AddressResolver, ContractKey
from .cache import CacheKey, DerivedStateCache
from .connections import ChainConnections
from .dispatcher import CallDispatcher
from .exceptions import UnresolvedAddress
from .lifecycle import TransactionLifecycle, TxStatus
from .refresh import RefreshCoordinator, RefreshReport, StateLoader
from .settings import ClientSettings
from .signer import LocalAccountSigner, Signer
from .types import BalanceRecord, SessionContext, TokenSnapshot, WriteKind

logger = logging.getLogger(__name__)

_UNCHANGED: Any = object()


class TokenSession:
    """One caller's view of the token on its selected network and account.

    Every operation captures the current :class:`SessionContext` when it
    starts. Switching network or account replaces the context, cancels receipt
    watches started under the old one, and makes late read results from the
    old context be dropped instead of cached.
    """

    def __init__(
        self,
        dispatcher: CallDispatcher,
        cache: DerivedStateCache,
        context: SessionContext,
        *,
        receipt_poll_interval: float = 1.0,
        display_precision: int | None = None,
        connections: ChainConnections | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = cache
        self._context = context
        self._poll_interval = receipt_poll_interval
        self._connections = connections
        self._loader = StateLoader(
            dispatcher,
            cache,
            display_precision=display_precision,
            is_current=self.is_current,
        )
        self._coordinator = RefreshCoordinator(self._loader, cache)
        self._watches: dict[str, TransactionLifecycle] = {}

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        signer: Signer | None = None,
        connections: ChainConnections | None = None,
    ) -> TokenSession:
        """Wire a session from configuration.

        A ``LocalAccountSigner`` is built from ``settings.private_key`` when no
        signer is passed in.
        """
        resolver = AddressResolver.from_overrides(settings.address_overrides)
        if connections is None:
            connections = ChainConnections(
                settings.rpc_urls, request_timeout=settings.request_timeout
            )
        cache = DerivedStateCache()
        dispatcher = CallDispatcher(
            resolver,
            connections,
            cache,
            max_concurrent_calls=settings.rpc_max_concurrent_calls,
            max_tries=settings.rpc_max_tries,
            max_time=settings.rpc_max_time,
        )

        if signer is None and settings.private_key is not None:
            signer = LocalAccountSigner.from_key(
                settings.private_key.get_secret_value(), connections
            )
        account = settings.account or (signer.address if signer else None)

        context = SessionContext(
            network_id=settings.network_id, account=account, signer=signer
        )
        return cls(
            dispatcher,
            cache,
            context,
            receipt_poll_interval=settings.receipt_poll_interval,
            display_precision=settings.display_precision,
            connections=connections,
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------
    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def cache(self) -> DerivedStateCache:
        return self._cache

    @property
    def dispatcher(self) -> CallDispatcher:
        return self._dispatcher

    @property
    def resolver(self) -> AddressResolver:
        return self._dispatcher.resolver

    def is_current(self, context: SessionContext) -> bool:
        return context is self._context

    @property
    def is_supported(self) -> bool:
        return self.resolver.is_supported(self._context.network_id)

    def switch_context(
        self,
        network_id: int | None = None,
        account: str | None = _UNCHANGED,
        signer: Signer | None = _UNCHANGED,
    ) -> SessionContext:
        """Replace the active context and stop watches from the old one."""
        previous = self._context
        context = SessionContext(
            network_id=previous.network_id if network_id is None else network_id,
            account=previous.account if account is _UNCHANGED else account,
            signer=previous.signer if signer is _UNCHANGED else signer,
        )

        for lifecycle in list(self._watches.values()):
            if lifecycle.context is previous and lifecycle.status.is_pending:
                logger.info(
                    "Cancelling watch of %s after context switch", lifecycle.tx_hash
                )
                lifecycle.cancel()

        self._context = context
        logger.info(
            "Session context: network=%s account=%s",
            context.network_id,
            context.account,
        )
        return context

    def _require_supported(self, context: SessionContext) -> None:
        if not self.resolver.is_supported(context.network_id):
            raise UnresolvedAddress(context.network_id, ContractKey.TOKEN.value)

    def _require_account(self, account: str | None) -> str:
        account = account or self._context.account
        if not account:
            raise ValueError("No account selected")
        return account

    # ------------------------------------------------------------------
    # Cached state
    # ------------------------------------------------------------------
    def token(self) -> TokenSnapshot | None:
        return self._cache.get(CacheKey.token(self._context.network_id))

    def balance(
        self, account: str | None = None, snapshot_id: int | None = None
    ) -> BalanceRecord | None:
        account = self._require_account(account)
        key = CacheKey.balance(self._context.network_id, account, snapshot_id)
        return self._cache.get(key)

    def is_stale(self, key: CacheKey) -> bool:
        return self._cache.is_stale(key)

    def subscribe(
        self, key: CacheKey, callback: Callable[[CacheKey, Any], None]
    ) -> Callable[[], None]:
        return self._cache.subscribe(key, callback)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def refresh_token(self) -> TokenSnapshot:
        context = self._context
        self._require_supported(context)
        return await self._loader.load(CacheKey.token(context.network_id), context)

    async def refresh_balance(
        self, account: str | None = None, snapshot_id: int | None = None
    ) -> BalanceRecord:
        context = self._context
        self._require_supported(context)
        key = CacheKey.balance(
            context.network_id, self._require_account(account), snapshot_id
        )
        return await self._loader.load(key, context)

    async def refresh_allowance(
        self, spender: str, owner: str | None = None
    ) -> BalanceRecord:
        context = self._context
        self._require_supported(context)
        key = CacheKey.allowance(
            context.network_id, self._require_account(owner), spender
        )
        return await self._loader.load(key, context)

    async def refresh_supply_at(self, snapshot_id: int) -> BalanceRecord:
        context = self._context
        self._require_supported(context)
        key = CacheKey.supply_at(context.network_id, snapshot_id)
        return await self._loader.load(key, context)

    async def refresh(self) -> None:
        """Load the token snapshot and, if an account is selected, its balance."""
        await self.refresh_token()
        if self._context.account:
            await self.refresh_balance()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def transfer(self, to: str, amount: str) -> TransactionLifecycle:
        return await self._dispatcher.transfer(self._context, to, amount)

    async def approve(self, spender: str, amount: str) -> TransactionLifecycle:
        return await self._dispatcher.approve(self._context, spender, amount)

    async def transfer_from(
        self, owner: str, to: str, amount: str
    ) -> TransactionLifecycle:
        return await self._dispatcher.transfer_from(self._context, owner, to, amount)

    async def mint(self, to: str, amount: str) -> TransactionLifecycle:
        return await self._dispatcher.mint(self._context, to, amount)

    async def burn(self, owner: str, amount: str) -> TransactionLifecycle:
        return await self._dispatcher.burn(self._context, owner, amount)

    async def snapshot(self) -> TransactionLifecycle:
        return await self._dispatcher.snapshot(self._context)

    async def wait(self, lifecycle: TransactionLifecycle) -> RefreshReport | None:
        """Watch a submitted write until it settles, then refresh on success.

        Returns:
            The refresh report for a confirmed write; None if it failed, was
            cancelled, or the session moved to another context meanwhile
        """
        task = asyncio.create_task(
            lifecycle.watch(
                self._dispatcher.fetch_receipt,
                poll_interval=self._poll_interval,
                fetch_revert_reason=self._dispatcher.fetch_revert_reason,
            )
        )
        lifecycle.track(task)
        self._watches[lifecycle.id] = lifecycle
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._watches.pop(lifecycle.id, None)

        if task.cancelled():
            return None
        task.result()

        if not self.is_current(lifecycle.context):
            logger.info(
                "Ignoring outcome of %s: session context changed", lifecycle.tx_hash
            )
            return None
        if lifecycle.status is not TxStatus.CONFIRMED:
            return None
        return await self._coordinator.on_terminal(lifecycle)

    def snapshot_id(self, lifecycle: TransactionLifecycle) -> int | None:
        """Snapshot id created by a confirmed ``snapshot()`` call."""
        if lifecycle.call.kind is not WriteKind.SNAPSHOT or lifecycle.receipt is None:
            return None
        if lifecycle.status is not TxStatus.CONFIRMED:
            return None
        return self._dispatcher.decode_snapshot_id(
            lifecycle.call.network_id, lifecycle.receipt
        )

    async def close(self) -> None:
        for lifecycle in list(self._watches.values()):
            lifecycle.cancel()
        if self._connections is not None:
            await self._connections.close()
