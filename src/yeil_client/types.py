"""Type definitions and data models for the Yeil token client."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .units import format_units

if TYPE_CHECKING:
    from .signer import Signer


@dataclass(frozen=True)
class TokenSnapshot:
    """Token-wide state read in one batch.

    Fields are never mixed across fetch cycles; the whole record is replaced
    on every refresh.
    """

    network_id: int
    name: str
    symbol: str
    decimals: int
    total_supply: int
    verified_reserves: int
    oracle_address: str

    @property
    def is_fully_backed(self) -> bool:
        return self.verified_reserves >= self.total_supply

    def format(self, raw: int, precision: int | None = None) -> str:
        return format_units(raw, self.decimals, precision)


@dataclass(frozen=True)
class BalanceRecord:
    """A raw balance plus its display rendering.

    Only ``raw`` is used for arithmetic; ``formatted`` is for display.
    """

    raw: int
    formatted: str

    @classmethod
    def from_raw(
        cls, raw: int, decimals: int, precision: int | None = None
    ) -> BalanceRecord:
        return cls(raw=raw, formatted=format_units(raw, decimals, precision))


@dataclass(frozen=True)
class SessionContext:
    """Immutable (network, account, signer) captured when an operation starts."""

    network_id: int
    account: str | None = None
    signer: Signer | None = field(default=None, compare=False)


class WriteKind(str, Enum):
    TRANSFER = "transfer"
    APPROVE = "approve"
    TRANSFER_FROM = "transferFrom"
    MINT = "mint"
    BURN = "burn"
    SNAPSHOT = "snapshot"

    @property
    def function(self) -> str:
        return self.value


@dataclass(frozen=True)
class WriteCallDescriptor:
    """Everything a signer needs to build and send one contract call."""

    network_id: int
    contract_address: str
    kind: WriteKind
    args: tuple[Any, ...]
    sender: str | None = None

    @property
    def function(self) -> str:
        return self.kind.function
