"""Fixed call schema for the Yeil token contract.

Every function and event the client touches is declared once here. The web3
ABI is generated from this table, and values coming back from read calls are
checked against the declared return type before they reach the cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from web3 import Web3

from .exceptions import DecodeError


@dataclass(frozen=True)
class Param:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    inputs: tuple[Param, ...] = ()
    output: str | None = None
    mutability: str = "view"
    privileged: bool = False

    @property
    def is_read(self) -> bool:
        return self.mutability in ("view", "pure")

    def to_abi(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "inputs": [
                {"internalType": p.type, "name": p.name, "type": p.type}
                for p in self.inputs
            ],
            "outputs": (
                [{"internalType": self.output, "name": "", "type": self.output}]
                if self.output
                else []
            ),
            "stateMutability": self.mutability,
        }


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[Param, ...]

    def to_abi(self) -> dict[str, Any]:
        return {
            "type": "event",
            "name": self.name,
            "anonymous": False,
            "inputs": [
                {
                    "indexed": p.indexed,
                    "internalType": p.type,
                    "name": p.name,
                    "type": p.type,
                }
                for p in self.inputs
            ],
        }


READ_FUNCTIONS: dict[str, FunctionSpec] = {
    spec.name: spec
    for spec in (
        FunctionSpec("name", output="string"),
        FunctionSpec("symbol", output="string"),
        FunctionSpec("decimals", output="uint8"),
        FunctionSpec("totalSupply", output="uint256"),
        FunctionSpec(
            "balanceOf", (Param("account", "address"),), output="uint256"
        ),
        FunctionSpec(
            "balanceOfAt",
            (Param("account", "address"), Param("snapshotId", "uint256")),
            output="uint256",
        ),
        FunctionSpec(
            "totalSupplyAt", (Param("snapshotId", "uint256"),), output="uint256"
        ),
        FunctionSpec(
            "allowance",
            (Param("owner", "address"), Param("spender", "address")),
            output="uint256",
        ),
        FunctionSpec("getVerifiedReserves", output="uint256"),
        FunctionSpec("isFullyBacked", output="bool"),
        FunctionSpec("getProofOfReserveAddress", output="address"),
    )
}

WRITE_FUNCTIONS: dict[str, FunctionSpec] = {
    spec.name: spec
    for spec in (
        FunctionSpec(
            "transfer",
            (Param("to", "address"), Param("amount", "uint256")),
            output="bool",
            mutability="nonpayable",
        ),
        FunctionSpec(
            "approve",
            (Param("spender", "address"), Param("amount", "uint256")),
            output="bool",
            mutability="nonpayable",
        ),
        FunctionSpec(
            "transferFrom",
            (
                Param("from", "address"),
                Param("to", "address"),
                Param("amount", "uint256"),
            ),
            output="bool",
            mutability="nonpayable",
        ),
        FunctionSpec(
            "mint",
            (Param("to", "address"), Param("amount", "uint256")),
            mutability="nonpayable",
            privileged=True,
        ),
        FunctionSpec(
            "burn",
            (Param("from", "address"), Param("amount", "uint256")),
            mutability="nonpayable",
            privileged=True,
        ),
        FunctionSpec(
            "snapshot", output="uint256", mutability="nonpayable", privileged=True
        ),
    )
}

EVENTS: dict[str, EventSpec] = {
    spec.name: spec
    for spec in (
        EventSpec(
            "Transfer",
            (
                Param("from", "address", indexed=True),
                Param("to", "address", indexed=True),
                Param("value", "uint256"),
            ),
        ),
        EventSpec(
            "Approval",
            (
                Param("owner", "address", indexed=True),
                Param("spender", "address", indexed=True),
                Param("value", "uint256"),
            ),
        ),
        EventSpec("SnapshotCheckpointed", (Param("snapshotId", "uint256"),)),
    )
}


def load_token_abi() -> list[dict[str, Any]]:
    """Return the web3 ABI for every declared function and event."""
    return [
        *(spec.to_abi() for spec in READ_FUNCTIONS.values()),
        *(spec.to_abi() for spec in WRITE_FUNCTIONS.values()),
        *(spec.to_abi() for spec in EVENTS.values()),
    ]


def _matches(abi_type: str, value: Any) -> bool:
    if abi_type == "bool":
        return isinstance(value, bool)
    if abi_type == "string":
        return isinstance(value, str)
    if abi_type == "address":
        return isinstance(value, str) and Web3.is_address(value)
    if abi_type.startswith("uint"):
        bits = int(abi_type[4:] or 256)
        return (
            isinstance(value, int)
            and not isinstance(value, bool)
            and 0 <= value < 2**bits
        )
    return False


def check_result(spec: FunctionSpec, value: Any) -> Any:
    """Validate a decoded return value against the declared output type.

    Raises:
        DecodeError: If the value does not have the declared type.
    """
    if spec.output is None:
        return value
    if not _matches(spec.output, value):
        raise DecodeError(spec.name, spec.output, value)
    return value


def check_arguments(spec: FunctionSpec, args: tuple[Any, ...]) -> None:
    """Validate positional arguments against the declared input types.

    Raises:
        ValueError: On arity or type mismatch.
    """
    if len(args) != len(spec.inputs):
        raise ValueError(
            f"{spec.name}() takes {len(spec.inputs)} argument(s), got {len(args)}"
        )
    for param, value in zip(spec.inputs, args):
        if not _matches(param.type, value):
            raise ValueError(
                f"{spec.name}(): argument '{param.name}' must be {param.type}, got {value!r}"
            )
