from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from yeil_client.cache import CacheKey
from yeil_client.exceptions import (
    DecodeError,
    InvalidAmount,
    MissingTokenMetadata,
    ReadReverted,
    RemoteRevert,
    RpcError,
    SignerUnavailable,
    SubmissionError,
    UnresolvedAddress,
    UserRejected,
)
from yeil_client.lifecycle import TxStatus
from yeil_client.types import SessionContext, TokenSnapshot, WriteKind

from conftest import (
    ALICE,
    BOB,
    NETWORK_ID,
    ORACLE_ADDRESS,
    TOKEN_ADDRESS,
    UNKNOWN_NETWORK_ID,
)


def _seed_token(cache, decimals: int = 18) -> None:
    key = CacheKey.token(NETWORK_ID)
    snapshot = TokenSnapshot(
        network_id=NETWORK_ID,
        name="Yeil",
        symbol="YEIL",
        decimals=decimals,
        total_supply=100 * 10**18,
        verified_reserves=100 * 10**18,
        oracle_address=ORACLE_ADDRESS,
    )
    cache.apply(key, cache.begin_fetch(key), snapshot)


def _stub_function(web3, name: str, **call_kwargs) -> AsyncMock:
    """Replace one contract function with a fresh AsyncMock ``call``."""
    function = MagicMock()
    function.return_value.call = AsyncMock(**call_kwargs)
    setattr(web3.eth.contract.return_value.functions, name, function)
    return function.return_value.call


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_read_unknown_network_makes_no_rpc(dispatcher, web3, token):
    with pytest.raises(UnresolvedAddress) as exc_info:
        await dispatcher.read(UNKNOWN_NETWORK_ID, "totalSupply")

    assert exc_info.value.network_id == UNKNOWN_NETWORK_ID
    assert token.calls == []
    web3.eth.contract.assert_not_called()


@pytest.mark.asyncio
async def test_read_uses_resolved_address(dispatcher, web3):
    assert await dispatcher.read(NETWORK_ID, "totalSupply") == 100 * 10**18

    _, kwargs = web3.eth.contract.call_args
    assert kwargs["address"] == TOKEN_ADDRESS


@pytest.mark.asyncio
async def test_read_is_idempotent(dispatcher, token):
    first = await dispatcher.fetch_balance(NETWORK_ID, ALICE)
    second = await dispatcher.fetch_balance(NETWORK_ID, ALICE)

    assert first == second == 10 * 10**18
    assert token.count("balanceOf", ALICE) == 2


@pytest.mark.asyncio
async def test_read_retries_transport_errors(dispatcher, web3):
    call = _stub_function(
        web3,
        "totalSupply",
        side_effect=[aiohttp.ClientError("reset"), TimeoutError(), 42],
    )

    assert await dispatcher.read(NETWORK_ID, "totalSupply") == 42
    assert call.await_count == 3


@pytest.mark.asyncio
async def test_read_gives_up_after_max_tries(dispatcher, web3):
    call = _stub_function(
        web3, "totalSupply", side_effect=aiohttp.ClientError("down")
    )

    with pytest.raises(RpcError) as exc_info:
        await dispatcher.read(NETWORK_ID, "totalSupply")

    assert exc_info.value.retryable
    assert exc_info.value.function == "totalSupply"
    assert call.await_count == 3


@pytest.mark.asyncio
async def test_read_wrong_type_is_decode_error(dispatcher, web3):
    call = _stub_function(web3, "totalSupply", return_value="lots")

    with pytest.raises(DecodeError):
        await dispatcher.read(NETWORK_ID, "totalSupply")
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_read_undecodable_output_is_decode_error(dispatcher, web3):
    _stub_function(
        web3, "decimals", side_effect=BadFunctionCallOutput("could not decode")
    )

    with pytest.raises(DecodeError):
        await dispatcher.fetch_decimals(NETWORK_ID)


@pytest.mark.asyncio
async def test_read_revert_is_not_retried(dispatcher, web3):
    call = _stub_function(
        web3,
        "totalSupplyAt",
        side_effect=ContractLogicError("execution reverted: ERC20Snapshot: nonexistent id"),
    )

    with pytest.raises(ReadReverted) as exc_info:
        await dispatcher.fetch_total_supply_at(NETWORK_ID, 99)

    assert exc_info.value.reason == "ERC20Snapshot: nonexistent id"
    assert call.await_count == 1


@pytest.mark.asyncio
async def test_read_rejects_unknown_function(dispatcher):
    with pytest.raises(ValueError, match="Unknown read function"):
        await dispatcher.read(NETWORK_ID, "owner")


@pytest.mark.asyncio
async def test_token_snapshot_fully_backed(dispatcher, token):
    snapshot = await dispatcher.fetch_token_snapshot(NETWORK_ID)

    assert snapshot.network_id == NETWORK_ID
    assert snapshot.symbol == "YEIL"
    assert snapshot.decimals == 18
    assert snapshot.total_supply == snapshot.verified_reserves == 100 * 10**18
    assert snapshot.is_fully_backed
    assert snapshot.format(snapshot.total_supply) == "100.0"


@pytest.mark.asyncio
async def test_token_snapshot_under_collateralised(dispatcher, token):
    token.reserves = 99 * 10**18

    snapshot = await dispatcher.fetch_token_snapshot(NETWORK_ID)

    assert not snapshot.is_fully_backed


@pytest.mark.asyncio
async def test_balance_at_snapshot(dispatcher, token):
    assert await dispatcher.fetch_balance(NETWORK_ID, ALICE, snapshot_id=3) == (
        10 * 10**18
    )
    assert token.count("balanceOfAt") == 1
    assert token.count("balanceOf") == 0


@pytest.mark.asyncio
async def test_fetch_receipt_pending_returns_none(dispatcher, web3):
    from web3.exceptions import TransactionNotFound

    web3.eth.get_transaction_receipt = AsyncMock(
        side_effect=TransactionNotFound("not yet")
    )

    assert await dispatcher.fetch_receipt(NETWORK_ID, "0xabc") is None


@pytest.mark.asyncio
async def test_fetch_revert_reason_replays_call(dispatcher, web3):
    web3.eth.get_transaction = AsyncMock(
        return_value={"from": ALICE, "to": TOKEN_ADDRESS, "input": "0x", "value": 0}
    )
    web3.eth.call = AsyncMock(
        side_effect=ContractLogicError("execution reverted: Ownable: caller is not the owner")
    )

    reason = await dispatcher.fetch_revert_reason(
        NETWORK_ID, "0xabc", {"blockNumber": 12}
    )

    assert reason == "Ownable: caller is not the owner"
    _, kwargs = web3.eth.call.call_args
    assert kwargs["block_identifier"] == 12


def test_decode_snapshot_id(dispatcher, token):
    token.snapshot_events = [{"args": {"snapshotId": 4}}]

    assert dispatcher.decode_snapshot_id(NETWORK_ID, {"logs": []}) == 4


def test_decode_snapshot_id_without_event(dispatcher):
    assert dispatcher.decode_snapshot_id(NETWORK_ID, {"logs": []}) is None


# ----------------------------------------------------------------------
# Writes
# ----------------------------------------------------------------------
def test_encode_amount_needs_token_metadata(dispatcher):
    with pytest.raises(MissingTokenMetadata):
        dispatcher.encode_amount(NETWORK_ID, "5")


def test_encode_amount_uses_cached_decimals(dispatcher, cache):
    _seed_token(cache, decimals=6)

    assert dispatcher.encode_amount(NETWORK_ID, "5") == 5_000_000
    with pytest.raises(InvalidAmount):
        dispatcher.encode_amount(NETWORK_ID, "0.0000001")


@pytest.mark.asyncio
async def test_transfer_encodes_and_submits(dispatcher, cache, context, signer):
    _seed_token(cache)

    lifecycle = await dispatcher.transfer(context, BOB, "5")

    assert lifecycle.status is TxStatus.SUBMITTED
    assert lifecycle.tx_hash == signer.submit.return_value
    call = signer.submit.call_args.args[0]
    assert call.kind is WriteKind.TRANSFER
    assert call.contract_address == TOKEN_ADDRESS
    assert call.args[0].lower() == BOB
    assert call.args[1] == 5 * 10**18
    assert call.sender == ALICE


@pytest.mark.asyncio
async def test_write_without_signer_never_submits(dispatcher, cache, signer):
    _seed_token(cache)
    context = SessionContext(NETWORK_ID, ALICE, signer=None)

    with pytest.raises(SignerUnavailable):
        await dispatcher.transfer(context, BOB, "5")
    with pytest.raises(SignerUnavailable):
        await dispatcher.snapshot(context)

    signer.submit.assert_not_called()


@pytest.mark.asyncio
async def test_write_unknown_network(dispatcher, signer):
    context = SessionContext(UNKNOWN_NETWORK_ID, ALICE, signer=signer)

    with pytest.raises(UnresolvedAddress):
        await dispatcher.transfer(context, BOB, "5")
    signer.submit.assert_not_called()


@pytest.mark.asyncio
async def test_write_before_metadata(dispatcher, context, signer):
    with pytest.raises(MissingTokenMetadata):
        await dispatcher.transfer(context, BOB, "5")
    signer.submit.assert_not_called()


@pytest.mark.asyncio
async def test_user_rejection_fails_lifecycle(dispatcher, context, signer):
    signer.submit.side_effect = UserRejected("User denied transaction signature")
    lifecycle = dispatcher.prepare(context, WriteKind.SNAPSHOT)

    with pytest.raises(UserRejected):
        await dispatcher.submit(lifecycle)

    assert lifecycle.status is TxStatus.FAILED
    assert lifecycle.tx_hash is None
    assert lifecycle.state.reason == "User denied transaction signature"


@pytest.mark.asyncio
async def test_contract_revert_on_submit(dispatcher, cache, context, signer):
    _seed_token(cache)
    signer.submit.side_effect = ContractLogicError(
        "execution reverted: Ownable: caller is not the owner"
    )

    with pytest.raises(RemoteRevert) as exc_info:
        await dispatcher.mint(context, BOB, "1")

    assert exc_info.value.reason == "Ownable: caller is not the owner"
    assert exc_info.value.function == "mint"


@pytest.mark.asyncio
async def test_transport_failure_on_submit(dispatcher, context, signer):
    signer.submit.side_effect = aiohttp.ClientError("connection refused")
    lifecycle = dispatcher.prepare(context, WriteKind.SNAPSHOT)

    with pytest.raises(SubmissionError):
        await dispatcher.submit(lifecycle)

    assert signer.submit.await_count == 1
    assert lifecycle.status is TxStatus.FAILED


@pytest.mark.asyncio
async def test_each_write_gets_new_lifecycle(dispatcher, cache, context):
    _seed_token(cache)

    first = await dispatcher.approve(context, BOB, "1")
    second = await dispatcher.approve(context, BOB, "1")

    assert first.id != second.id


def test_prepare_checks_arguments(dispatcher, context):
    with pytest.raises(ValueError):
        dispatcher.prepare(context, WriteKind.TRANSFER, BOB)
