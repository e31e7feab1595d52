"""Transaction lifecycle state machine for write calls."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import InvalidTransition, YeilClientError
from .types import SessionContext, WriteCallDescriptor

logger = logging.getLogger(__name__)


class TxStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TxStatus.CONFIRMED, TxStatus.FAILED)

    @property
    def is_pending(self) -> bool:
        return self in (TxStatus.SUBMITTED, TxStatus.CONFIRMING)


@dataclass(frozen=True)
class TransactionState:
    status: TxStatus
    tx_hash: str | None = None
    reason: str | None = None

    def __str__(self) -> str:
        if self.status is TxStatus.IDLE:
            return "Idle"
        label = self.status.value.capitalize()
        if self.status is TxStatus.FAILED:
            return f"{label}({self.tx_hash}, {self.reason})"
        return f"{label}({self.tx_hash})"


IDLE = TransactionState(TxStatus.IDLE)
_REVERTED = "execution reverted"

# Any state may also return to IDLE through reset().
_ALLOWED: dict[TxStatus, frozenset[TxStatus]] = {
    TxStatus.IDLE: frozenset({TxStatus.SUBMITTED, TxStatus.FAILED}),
    TxStatus.SUBMITTED: frozenset({TxStatus.CONFIRMING}),
    TxStatus.CONFIRMING: frozenset({TxStatus.CONFIRMED, TxStatus.FAILED}),
    TxStatus.CONFIRMED: frozenset(),
    TxStatus.FAILED: frozenset(),
}

Listener = Callable[["TransactionLifecycle", TransactionState], None]
ReceiptFetcher = Callable[[int, str], Awaitable[Mapping[str, Any] | None]]
RevertReasonFetcher = Callable[[int, str, Mapping[str, Any]], Awaitable[str]]


class TransactionLifecycle:
    """Track one submitted write from broadcast to inclusion.

    A lifecycle belongs to exactly one write call. It is never reused for a
    later submission; a new write gets a new instance with a new ``id``.
    """

    def __init__(self, call: WriteCallDescriptor, context: SessionContext):
        self.id = uuid.uuid4().hex
        self.call = call
        self.context = context
        self.receipt: Mapping[str, Any] | None = None
        self._state = IDLE
        self._history: list[TransactionState] = [IDLE]
        self._listeners: list[Listener] = []
        self._watch_task: asyncio.Task[TransactionState] | None = None
        # Set by RefreshCoordinator once the post-confirmation refresh ran.
        self.refresh_handled = False

    def __repr__(self) -> str:
        return (
            f"TransactionLifecycle(id={self.id[:8]}, {self.call.function}, {self._state})"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def status(self) -> TxStatus:
        return self._state.status

    @property
    def tx_hash(self) -> str | None:
        return self._state.tx_hash

    @property
    def history(self) -> tuple[TransactionState, ...]:
        return tuple(self._history)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def mark_submitted(self, tx_hash: str) -> None:
        self._transition(TransactionState(TxStatus.SUBMITTED, tx_hash))

    def begin_confirming(self) -> None:
        self._transition(TransactionState(TxStatus.CONFIRMING, self._require_hash()))

    def mark_confirmed(self, receipt: Mapping[str, Any]) -> None:
        self.receipt = receipt
        self._transition(TransactionState(TxStatus.CONFIRMED, self._require_hash()))

    def mark_failed(self, reason: str) -> None:
        self._transition(TransactionState(TxStatus.FAILED, self.tx_hash, reason))

    def reset(self) -> None:
        """Return to Idle, stopping any receipt watch in progress."""
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None
        if self._state.status is not TxStatus.IDLE:
            self._set(IDLE)

    cancel = reset

    def track(self, task: asyncio.Task[TransactionState]) -> None:
        """Register the task running :meth:`watch` so :meth:`cancel` reaches it
        even before its first step."""
        self._watch_task = task

    def _require_hash(self) -> str:
        if self.tx_hash is None:
            raise InvalidTransition(str(self._state), "a state that needs a hash")
        return self.tx_hash

    def _transition(self, target: TransactionState) -> None:
        if target.status not in _ALLOWED[self._state.status]:
            raise InvalidTransition(str(self._state), target.status.value)
        self._set(target)

    def _set(self, target: TransactionState) -> None:
        previous = self._state
        self._state = target
        self._history.append(target)
        logger.debug(
            "Transaction %s (%s): %s -> %s",
            self.id[:8],
            self.call.function,
            previous,
            target,
        )
        for listener in list(self._listeners):
            try:
                listener(self, target)
            except Exception:
                logger.exception("Lifecycle listener failed for %s", self.id[:8])

    # ------------------------------------------------------------------
    # Receipt watching
    # ------------------------------------------------------------------
    async def watch(
        self,
        fetch_receipt: ReceiptFetcher,
        *,
        poll_interval: float = 1.0,
        fetch_revert_reason: RevertReasonFetcher | None = None,
    ) -> TransactionState:
        """Wait for inclusion and settle on Confirmed or Failed.

        Moves Submitted → Confirming, then polls ``fetch_receipt`` until it
        returns a receipt. No timeout is applied; call :meth:`cancel` to stop.
        Transport errors end the watch in Failed.

        Returns:
            The terminal state, or Idle if the watch was cancelled
        """
        if self.status is TxStatus.SUBMITTED:
            self.begin_confirming()
        elif self.status is not TxStatus.CONFIRMING:
            raise InvalidTransition(str(self._state), TxStatus.CONFIRMING.value)

        self._watch_task = asyncio.current_task()
        network_id = self.call.network_id
        tx_hash = self._require_hash()

        try:
            while True:
                try:
                    receipt = await fetch_receipt(network_id, tx_hash)
                except YeilClientError as exc:
                    logger.warning("Lost track of %s: %s", tx_hash, exc)
                    self.mark_failed(f"transport error while waiting: {exc.message}")
                    return self._state

                if receipt is not None:
                    break
                await asyncio.sleep(poll_interval)

            if receipt.get("status", 0) == 1:
                logger.info(
                    "Transaction confirmed: %s hash=%s block=%s",
                    self.call.function,
                    tx_hash,
                    receipt.get("blockNumber"),
                )
                self.mark_confirmed(receipt)
                return self._state

            reason = _REVERTED
            if fetch_revert_reason is not None:
                try:
                    reason = await fetch_revert_reason(network_id, tx_hash, receipt)
                except Exception as exc:
                    logger.debug("Revert reason for %s unavailable: %s", tx_hash, exc)
            logger.warning(
                "Transaction reverted: %s hash=%s reason=%s",
                self.call.function,
                tx_hash,
                reason,
            )
            self.receipt = receipt
            self.mark_failed(reason)
            return self._state
        except asyncio.CancelledError:
            logger.info("Stopped watching %s", tx_hash)
            if self.status is not TxStatus.IDLE:
                self._set(IDLE)
            raise
        finally:
            self._watch_task = None
