"""Typed read/write dispatch against the Yeil token contract."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import aiohttp
import backoff
from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TransactionNotFound,
    Web3Exception,
)
from web3.logs import DISCARD

from .abi import (
    READ_FUNCTIONS,
    WRITE_FUNCTIONS,
    check_arguments,
    check_result,
    load_token_abi,
)
from .addresses import AddressResolver, ContractKey
from .cache import CacheKey, DerivedStateCache
from .connections import ChainConnections
from .exceptions import (
    DecodeError,
    MissingTokenMetadata,
    RemoteRevert,
    ReadReverted,
    RpcError,
    SignerUnavailable,
    SubmissionError,
    UnresolvedAddress,
    UserRejected,
)
from .lifecycle import TransactionLifecycle
from .types import SessionContext, TokenSnapshot, WriteCallDescriptor, WriteKind
from .units import parse_units

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, Web3Exception)
_REVERT_PREFIX = "execution reverted"


def revert_reason(exc: ContractLogicError) -> str:
    """Extract the contract's revert string without web3's prefix."""
    message = getattr(exc, "message", None) or str(exc)
    if message.startswith(_REVERT_PREFIX):
        stripped = message[len(_REVERT_PREFIX) :].lstrip(": ").strip()
        return stripped or message
    return message


class CallDispatcher:
    """Issue schema-checked reads and signer-backed writes.

    Reads are throttled by a semaphore and retried with exponential backoff
    on transport failures. Writes are submitted once; a failed write is never
    resent without a new call from the caller.
    """

    def __init__(
        self,
        resolver: AddressResolver,
        connections: ChainConnections,
        cache: DerivedStateCache,
        *,
        max_concurrent_calls: int = 5,
        max_tries: int = 4,
        max_time: float = 30.0,
        retry_factor: float = 1.0,
    ) -> None:
        self._resolver = resolver
        self._connections = connections
        self._cache = cache
        self._abi = load_token_abi()
        self._rpc_sem = asyncio.Semaphore(max_concurrent_calls)
        self._max_tries = max_tries
        self._max_time = max_time
        self._retry_factor = retry_factor

    @property
    def resolver(self) -> AddressResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _require_address(self, network_id: int) -> str:
        address = self._resolver.token_address(network_id)
        if address is None:
            raise UnresolvedAddress(network_id, ContractKey.TOKEN.value)
        return address

    def _contract(self, network_id: int):
        address = self._require_address(network_id)
        w3 = self._connections.get(network_id)
        return w3.eth.contract(address=address, abi=self._abi)

    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` under the semaphore, retrying transport failures."""

        @backoff.on_exception(
            backoff.expo,
            RpcError,
            max_tries=self._max_tries,
            max_time=self._max_time,
            jitter=backoff.full_jitter,
            factor=self._retry_factor,
        )
        async def attempt() -> T:
            async with self._rpc_sem:
                try:
                    return await call()
                except (BadFunctionCallOutput, DecodingError) as exc:
                    raise DecodeError(label, "decodable return data", str(exc)) from exc
                except ContractLogicError as exc:
                    raise ReadReverted(label, revert_reason(exc)) from exc
                except TRANSPORT_ERRORS as exc:
                    logger.debug("RPC %s failed: %s", label, exc)
                    raise RpcError(
                        f"RPC call {label} failed",
                        function=label,
                        details={"error": str(exc)},
                    ) from exc

        return await attempt()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def read(
        self,
        network_id: int,
        function: str,
        *args: Any,
        block_identifier: int | str | None = None,
    ) -> Any:
        """Call a view function and check its result against the schema.

        Args:
            network_id: Network to query
            function: Name of a read function from the schema
            *args: Positional arguments matching the schema
            block_identifier: Optional block to read at

        Returns:
            The decoded, type-checked return value

        Raises:
            UnresolvedAddress: If the network has no deployment (no RPC is made)
            RpcError: If the transport keeps failing after retries
            DecodeError: If the result does not match the declared type
        """
        spec = READ_FUNCTIONS.get(function)
        if spec is None:
            raise ValueError(f"Unknown read function: {function}")
        check_arguments(spec, args)

        contract = self._contract(network_id)
        contract_fn = getattr(contract.functions, function)(*args)

        async def call() -> Any:
            if block_identifier is None:
                return await contract_fn.call()
            return await contract_fn.call(block_identifier=block_identifier)

        value = await self._with_retry(function, call)
        return check_result(spec, value)

    async def fetch_token_snapshot(self, network_id: int) -> TokenSnapshot:
        """Read token-wide state in one concurrent batch."""
        self._require_address(network_id)
        (
            name,
            symbol,
            decimals,
            total_supply,
            reserves,
            reported_backed,
            oracle,
        ) = await asyncio.gather(
            self.read(network_id, "name"),
            self.read(network_id, "symbol"),
            self.read(network_id, "decimals"),
            self.read(network_id, "totalSupply"),
            self.read(network_id, "getVerifiedReserves"),
            self.read(network_id, "isFullyBacked"),
            self.read(network_id, "getProofOfReserveAddress"),
        )
        snapshot = TokenSnapshot(
            network_id=network_id,
            name=name,
            symbol=symbol,
            decimals=decimals,
            total_supply=total_supply,
            verified_reserves=reserves,
            oracle_address=oracle,
        )
        if reported_backed != snapshot.is_fully_backed:
            logger.warning(
                "isFullyBacked() returned %s but reserves=%d supply=%d",
                reported_backed,
                reserves,
                total_supply,
            )
        configured_oracle = self._resolver.oracle_address(network_id)
        if configured_oracle and configured_oracle.lower() != oracle.lower():
            logger.warning(
                "Token reports proof-of-reserve feed %s, configured %s",
                oracle,
                configured_oracle,
            )
        return snapshot

    async def fetch_decimals(self, network_id: int) -> int:
        return await self.read(network_id, "decimals")

    async def fetch_balance(
        self, network_id: int, account: str, snapshot_id: int | None = None
    ) -> int:
        account = Web3.to_checksum_address(account)
        if snapshot_id is None:
            return await self.read(network_id, "balanceOf", account)
        return await self.read(network_id, "balanceOfAt", account, snapshot_id)

    async def fetch_total_supply_at(self, network_id: int, snapshot_id: int) -> int:
        return await self.read(network_id, "totalSupplyAt", snapshot_id)

    async def fetch_allowance(self, network_id: int, owner: str, spender: str) -> int:
        return await self.read(
            network_id,
            "allowance",
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        )

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------
    async def fetch_receipt(
        self, network_id: int, tx_hash: str
    ) -> Mapping[str, Any] | None:
        """Return the receipt, or None while the transaction is not yet mined."""
        w3 = self._connections.get(network_id)

        async def call() -> Mapping[str, Any] | None:
            try:
                return await w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return await self._with_retry("eth_getTransactionReceipt", call)

    async def fetch_revert_reason(
        self, network_id: int, tx_hash: str, receipt: Mapping[str, Any]
    ) -> str:
        """Replay a reverted transaction at its block to recover the reason."""
        w3 = self._connections.get(network_id)
        try:
            tx = await w3.eth.get_transaction(tx_hash)
            await w3.eth.call(
                {
                    "from": tx["from"],
                    "to": tx["to"],
                    "data": tx["input"],
                    "value": tx.get("value", 0),
                },
                block_identifier=receipt["blockNumber"],
            )
        except ContractLogicError as exc:
            return revert_reason(exc)
        except TRANSPORT_ERRORS as exc:
            logger.debug("Could not replay %s: %s", tx_hash, exc)
        return _REVERT_PREFIX

    def decode_snapshot_id(
        self, network_id: int, receipt: Mapping[str, Any]
    ) -> int | None:
        """Pull the new snapshot id out of a confirmed ``snapshot()`` receipt."""
        contract = self._contract(network_id)
        events = contract.events.SnapshotCheckpointed().process_receipt(
            receipt, errors=DISCARD
        )
        if not events:
            return None
        return int(events[-1]["args"]["snapshotId"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def encode_amount(self, network_id: int, amount: str) -> int:
        """Convert a human-readable amount using the cached token decimals.

        Raises:
            MissingTokenMetadata: If no token snapshot has been fetched for
                the network yet
            InvalidAmount: If the amount is malformed
        """
        snapshot: TokenSnapshot | None = self._cache.get(CacheKey.token(network_id))
        if snapshot is None:
            raise MissingTokenMetadata(network_id)
        return parse_units(amount, snapshot.decimals)

    def prepare(
        self, context: SessionContext, kind: WriteKind, *args: Any
    ) -> TransactionLifecycle:
        """Build an Idle lifecycle for a write call.

        Raises:
            SignerUnavailable: If the context carries no signer
            UnresolvedAddress: If the network has no deployment
            ValueError: If ``args`` do not match the schema
        """
        if context.signer is None:
            raise SignerUnavailable(kind.function)
        address = self._require_address(context.network_id)
        check_arguments(WRITE_FUNCTIONS[kind.function], args)

        call = WriteCallDescriptor(
            network_id=context.network_id,
            contract_address=address,
            kind=kind,
            args=tuple(args),
            sender=context.account or context.signer.address,
        )
        return TransactionLifecycle(call, context)

    async def submit(self, lifecycle: TransactionLifecycle) -> str:
        """Hand the call to the signer and move the lifecycle to Submitted.

        On failure the lifecycle moves to Failed (without a hash) and the
        typed error is raised.

        Raises:
            SignerUnavailable: If the context carries no signer
            UserRejected: If the signer reports the user declined
            RemoteRevert: If the contract rejected the call
            SubmissionError: On any other submission failure
        """
        call = lifecycle.call
        signer = lifecycle.context.signer
        if signer is None:
            raise SignerUnavailable(call.function)

        logger.info("Submitting %s on network %s", call.function, call.network_id)
        try:
            tx_hash = await signer.submit(call)
        except (UserRejected, RemoteRevert) as exc:
            lifecycle.mark_failed(exc.message)
            raise
        except ContractLogicError as exc:
            error = RemoteRevert(call.function, revert_reason(exc))
            lifecycle.mark_failed(error.message)
            raise error from exc
        except Exception as exc:
            error = SubmissionError(
                f"Failed to submit {call.function}",
                function=call.function,
                details={"args": list(call.args), "error": str(exc)},
            )
            lifecycle.mark_failed(error.message)
            raise error from exc

        lifecycle.mark_submitted(tx_hash)
        logger.info("Transaction sent for %s hash=%s", call.function, tx_hash)
        return tx_hash

    async def write(
        self, context: SessionContext, kind: WriteKind, *args: Any
    ) -> TransactionLifecycle:
        lifecycle = self.prepare(context, kind, *args)
        await self.submit(lifecycle)
        return lifecycle

    async def transfer(
        self, context: SessionContext, to: str, amount: str
    ) -> TransactionLifecycle:
        return await self._amount_write(context, WriteKind.TRANSFER, [to], amount)

    async def approve(
        self, context: SessionContext, spender: str, amount: str
    ) -> TransactionLifecycle:
        return await self._amount_write(context, WriteKind.APPROVE, [spender], amount)

    async def transfer_from(
        self, context: SessionContext, owner: str, to: str, amount: str
    ) -> TransactionLifecycle:
        return await self._amount_write(
            context, WriteKind.TRANSFER_FROM, [owner, to], amount
        )

    async def mint(
        self, context: SessionContext, to: str, amount: str
    ) -> TransactionLifecycle:
        return await self._amount_write(context, WriteKind.MINT, [to], amount)

    async def burn(
        self, context: SessionContext, owner: str, amount: str
    ) -> TransactionLifecycle:
        return await self._amount_write(context, WriteKind.BURN, [owner], amount)

    async def snapshot(self, context: SessionContext) -> TransactionLifecycle:
        return await self.write(context, WriteKind.SNAPSHOT)

    async def _amount_write(
        self,
        context: SessionContext,
        kind: WriteKind,
        addresses: list[str],
        amount: str,
    ) -> TransactionLifecycle:
        if context.signer is None:
            raise SignerUnavailable(kind.function)
        self._require_address(context.network_id)
        raw = self.encode_amount(context.network_id, amount)
        args = [Web3.to_checksum_address(a) for a in addresses]
        return await self.write(context, kind, *args, raw)
