"""Shared fakes for the token client tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from yeil_client.addresses import AddressResolver, ContractAddresses
from yeil_client.cache import DerivedStateCache
from yeil_client.connections import ChainConnections
from yeil_client.dispatcher import CallDispatcher
from yeil_client.session import TokenSession
from yeil_client.types import SessionContext

NETWORK_ID = 5003
OTHER_NETWORK_ID = 5000
UNKNOWN_NETWORK_ID = 424242

TOKEN_ADDRESS = "0x1111111111111111111111111111111111111111"
ORACLE_ADDRESS = "0x2222222222222222222222222222222222222222"
OTHER_TOKEN_ADDRESS = "0x3333333333333333333333333333333333333333"
OTHER_ORACLE_ADDRESS = "0x4444444444444444444444444444444444444444"

ALICE = "0x00000000000000000000000000000000000000a1"
BOB = "0x0000000000000000000000000000000000000b0b"
CAROL = "0x00000000000000000000000000000000000000c0"

TX_HASH = "0x" + "ab" * 32


class FakeToken:
    """In-memory token state exposed through a MagicMock web3 contract.

    ``calls`` records every view function invocation as ``(name, args)``.
    """

    def __init__(
        self,
        *,
        decimals: int = 18,
        total_supply: int = 100 * 10**18,
        reserves: int = 100 * 10**18,
        balances: dict[str, int] | None = None,
        name: str = "Yeil",
        symbol: str = "YEIL",
        oracle: str = ORACLE_ADDRESS,
    ):
        self.decimals = decimals
        self.total_supply = total_supply
        self.reserves = reserves
        self.balances = {k.lower(): v for k, v in (balances or {}).items()}
        self.allowances: dict[tuple[str, str], int] = {}
        self.supply_at: dict[int, int] = {}
        self.name = name
        self.symbol = symbol
        self.oracle = oracle
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.snapshot_events: list[dict[str, Any]] = []

    def _views(self) -> dict[str, Any]:
        return {
            "name": lambda: self.name,
            "symbol": lambda: self.symbol,
            "decimals": lambda: self.decimals,
            "totalSupply": lambda: self.total_supply,
            "balanceOf": lambda account: self.balances.get(account.lower(), 0),
            "balanceOfAt": lambda account, _sid: self.balances.get(account.lower(), 0),
            "totalSupplyAt": lambda sid: self.supply_at[sid],
            "allowance": lambda owner, spender: self.allowances.get(
                (owner.lower(), spender.lower()), 0
            ),
            "getVerifiedReserves": lambda: self.reserves,
            "isFullyBacked": lambda: self.reserves >= self.total_supply,
            "getProofOfReserveAddress": lambda: self.oracle,
        }

    def count(self, function: str, *args: Any) -> int:
        normalised = tuple(a.lower() if isinstance(a, str) else a for a in args)
        return sum(
            1
            for name, call_args in self.calls
            if name == function
            and (
                not args
                or tuple(a.lower() if isinstance(a, str) else a for a in call_args)
                == normalised
            )
        )

    def contract(self) -> MagicMock:
        contract = MagicMock()
        for function, getter in self._views().items():
            setattr(contract.functions, function, self._bind(function, getter))
        contract.events.SnapshotCheckpointed.return_value.process_receipt = MagicMock(
            side_effect=lambda receipt, errors=None: list(self.snapshot_events)
        )
        return contract

    def _bind(self, function: str, getter: Any) -> MagicMock:
        def factory(*args: Any) -> MagicMock:
            bound = MagicMock()

            def call(**_kwargs: Any) -> Any:
                self.calls.append((function, args))
                return getter(*args)

            bound.call = AsyncMock(side_effect=call)
            return bound

        return MagicMock(side_effect=factory)


def create_mock_web3(token: FakeToken) -> MagicMock:
    """Helper to create a mock AsyncWeb3 instance backed by ``token``."""
    mock = MagicMock()
    mock.to_checksum_address = lambda addr: addr
    mock.eth.contract.return_value = token.contract()
    mock.eth.get_transaction_receipt = AsyncMock(
        return_value={"status": 1, "blockNumber": 10, "logs": []}
    )
    mock.provider = MagicMock()
    mock.provider.disconnect = AsyncMock()
    return mock


def create_signer(address: str = ALICE, tx_hash: str = TX_HASH) -> MagicMock:
    signer = MagicMock()
    signer.address = address
    signer.submit = AsyncMock(return_value=tx_hash)
    return signer


@pytest.fixture
def address_map() -> dict[int, ContractAddresses]:
    return {
        NETWORK_ID: ContractAddresses(TOKEN_ADDRESS, ORACLE_ADDRESS),
        OTHER_NETWORK_ID: ContractAddresses(OTHER_TOKEN_ADDRESS, OTHER_ORACLE_ADDRESS),
    }


@pytest.fixture
def resolver(address_map) -> AddressResolver:
    return AddressResolver(address_map)


@pytest.fixture
def token() -> FakeToken:
    return FakeToken(balances={ALICE: 10 * 10**18, BOB: 0})


@pytest.fixture
def other_token() -> FakeToken:
    return FakeToken(
        balances={ALICE: 7 * 10**18}, oracle=OTHER_ORACLE_ADDRESS, symbol="YEIL-M"
    )


@pytest.fixture
def web3(token) -> MagicMock:
    return create_mock_web3(token)


@pytest.fixture
def other_web3(other_token) -> MagicMock:
    return create_mock_web3(other_token)


@pytest.fixture
def connections(web3, other_web3) -> ChainConnections:
    return ChainConnections(
        web3_by_network={NETWORK_ID: web3, OTHER_NETWORK_ID: other_web3}
    )


@pytest.fixture
def cache() -> DerivedStateCache:
    return DerivedStateCache()


@pytest.fixture
def dispatcher(resolver, connections, cache) -> CallDispatcher:
    return CallDispatcher(
        resolver, connections, cache, max_tries=3, retry_factor=0
    )


@pytest.fixture
def signer() -> MagicMock:
    return create_signer()


@pytest.fixture
def context(signer) -> SessionContext:
    return SessionContext(network_id=NETWORK_ID, account=ALICE, signer=signer)


@pytest.fixture
def session(dispatcher, cache, context) -> TokenSession:
    return TokenSession(dispatcher, cache, context, receipt_poll_interval=0)
