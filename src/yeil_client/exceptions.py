"""Exception hierarchy for the Yeil token client."""

from __future__ import annotations

from typing import Any


class YeilClientError(Exception):
    """Base exception for all client errors."""

    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ----------------------------------------------------------------------
# Read path
# ----------------------------------------------------------------------
class ReadError(YeilClientError):
    """Raised when a read call cannot produce a value."""


class UnresolvedAddress(ReadError):
    """Raised when no contract is configured for the requested network."""

    def __init__(self, network_id: int, contract_key: str):
        super().__init__(
            f"No {contract_key} contract configured for network {network_id}",
            details={"network_id": network_id, "contract_key": contract_key},
        )
        self.network_id = network_id
        self.contract_key = contract_key


class RpcError(ReadError):
    """Raised when the underlying transport fails. Safe to retry."""

    retryable = True

    def __init__(
        self,
        message: str,
        function: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.function = function


class DecodeError(ReadError):
    """Raised when returned data does not match the expected return type."""

    def __init__(self, function: str, expected: str, value: Any):
        super().__init__(
            f"{function}() returned {value!r}, expected {expected}",
            details={"function": function, "expected": expected},
        )
        self.function = function
        self.expected = expected
        self.value = value


class ReadReverted(ReadError):
    """Raised when a view call reverts, e.g. for a snapshot id that does not exist."""

    def __init__(self, function: str, reason: str):
        super().__init__(
            f"{function}() reverted: {reason}",
            details={"function": function, "reason": reason},
        )
        self.function = function
        self.reason = reason


# ----------------------------------------------------------------------
# Write path
# ----------------------------------------------------------------------
class WriteError(YeilClientError):
    """Raised when a write call cannot be submitted. Never retried."""


class SignerUnavailable(WriteError):
    """Raised when a write is attempted without a signer capability."""

    def __init__(self, function: str):
        super().__init__(
            f"Cannot call {function}(): no signer available",
            details={"function": function},
        )
        self.function = function


class UserRejected(WriteError):
    """Raised by a signer when the user declines to sign."""


class SubmissionError(WriteError):
    """Raised on transport-level failures while submitting a transaction."""

    def __init__(
        self,
        message: str,
        function: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.function = function


class MissingTokenMetadata(WriteError):
    """Raised when an amount must be encoded before token decimals are known."""

    def __init__(self, network_id: int):
        super().__init__(
            f"Token metadata for network {network_id} has not been fetched yet",
            details={"network_id": network_id},
        )
        self.network_id = network_id


class InvalidAmount(WriteError):
    """Raised when a human-readable amount cannot be encoded."""

    def __init__(self, amount: str, reason: str):
        super().__init__(f"Invalid amount {amount!r}: {reason}")
        self.amount = amount
        self.reason = reason


class RemoteRevert(WriteError):
    """Raised when the contract rejects a call. Carries its reason verbatim."""

    def __init__(self, function: str, reason: str):
        super().__init__(
            f"{function}() reverted: {reason}",
            details={"function": function, "reason": reason},
        )
        self.function = function
        self.reason = reason


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------
class InvalidTransition(YeilClientError):
    """Raised on an illegal transaction lifecycle state change."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move transaction from {current} to {target}")
        self.current = current
        self.target = target
