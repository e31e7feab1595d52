from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account

from yeil_client.connections import ChainConnections
from yeil_client.exceptions import RpcError
from yeil_client.lifecycle import TxStatus
from yeil_client.session import TokenSession
from yeil_client.settings import ClientSettings
from yeil_client.signer import LocalAccountSigner, Signer
from yeil_client.types import WriteCallDescriptor, WriteKind

from conftest import (
    ALICE,
    BOB,
    NETWORK_ID,
    ORACLE_ADDRESS,
    OTHER_NETWORK_ID,
    OTHER_ORACLE_ADDRESS,
    OTHER_TOKEN_ADDRESS,
    TOKEN_ADDRESS,
    TX_HASH,
)

PRIVATE_KEY = "0x" + "11" * 32


def create_mock_account(address: str = ALICE) -> MagicMock:
    account = MagicMock()
    account.address = address
    account.sign_transaction.return_value.raw_transaction = b"\x02signed"
    return account


def prepare_broadcast(web3: MagicMock, nonce: int = 7) -> MagicMock:
    """Stub the transfer build, nonce and broadcast calls on ``web3``."""
    fn = web3.eth.contract.return_value.functions.transfer.return_value
    fn.build_transaction = AsyncMock(
        side_effect=lambda params: {**params, "gas": 60_000}
    )
    web3.eth.get_transaction_count = AsyncMock(return_value=nonce)
    sent = MagicMock()
    sent.to_0x_hex.return_value = TX_HASH
    web3.eth.send_raw_transaction = AsyncMock(return_value=sent)
    return fn


def _transfer(network_id: int, token_address: str) -> WriteCallDescriptor:
    return WriteCallDescriptor(
        network_id=network_id,
        contract_address=token_address,
        kind=WriteKind.TRANSFER,
        args=(BOB, 5 * 10**18),
        sender=ALICE,
    )


def test_from_key_derives_address(connections):
    signer = LocalAccountSigner.from_key(PRIVATE_KEY, connections)

    assert signer.address == Account.from_key(PRIVATE_KEY).address
    assert isinstance(signer, Signer)


@pytest.mark.asyncio
async def test_submit_builds_signs_and_broadcasts(connections, web3):
    account = create_mock_account()
    fn = prepare_broadcast(web3, nonce=7)
    signer = LocalAccountSigner(account, connections)

    tx_hash = await signer.submit(_transfer(NETWORK_ID, TOKEN_ADDRESS))

    assert tx_hash == TX_HASH
    web3.eth.contract.return_value.functions.transfer.assert_called_with(
        BOB, 5 * 10**18
    )
    web3.eth.get_transaction_count.assert_awaited_once_with(ALICE, "pending")
    params = fn.build_transaction.await_args.args[0]
    assert params == {"from": ALICE, "nonce": 7, "chainId": NETWORK_ID}
    account.sign_transaction.assert_called_once_with({**params, "gas": 60_000})
    web3.eth.send_raw_transaction.assert_awaited_once_with(b"\x02signed")


@pytest.mark.asyncio
async def test_submit_uses_connection_of_call_network(connections, web3, other_web3):
    prepare_broadcast(web3)
    fn = prepare_broadcast(other_web3, nonce=3)
    signer = LocalAccountSigner(create_mock_account(), connections)

    await signer.submit(_transfer(OTHER_NETWORK_ID, OTHER_TOKEN_ADDRESS))

    assert fn.build_transaction.await_args.args[0]["chainId"] == OTHER_NETWORK_ID
    other_web3.eth.send_raw_transaction.assert_awaited_once()
    web3.eth.get_transaction_count.assert_not_awaited()
    web3.eth.send_raw_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_submit_without_endpoint_raises(connections):
    signer = LocalAccountSigner(create_mock_account(), connections)

    with pytest.raises(RpcError):
        await signer.submit(_transfer(424242, TOKEN_ADDRESS))


def test_connections_without_endpoint_raise():
    with pytest.raises(RpcError, match="No RPC endpoint"):
        ChainConnections({}).get(NETWORK_ID)


@pytest.mark.asyncio
async def test_session_signer_follows_network_switch(connections, web3, other_web3):
    settings = ClientSettings(
        network_id=NETWORK_ID,
        private_key=PRIVATE_KEY,
        networks={
            NETWORK_ID: {
                "token_contract": TOKEN_ADDRESS,
                "oracle_contract": ORACLE_ADDRESS,
            },
            OTHER_NETWORK_ID: {
                "token_contract": OTHER_TOKEN_ADDRESS,
                "oracle_contract": OTHER_ORACLE_ADDRESS,
            },
        },
    )
    session = TokenSession.from_settings(settings, connections=connections)
    assert isinstance(session.context.signer, LocalAccountSigner)

    signer = LocalAccountSigner(create_mock_account(), connections)
    session = TokenSession.from_settings(
        settings, signer=signer, connections=connections
    )
    prepare_broadcast(web3)
    fn = prepare_broadcast(other_web3)

    session.switch_context(network_id=OTHER_NETWORK_ID)
    await session.refresh_token()
    lifecycle = await session.transfer(BOB, "1")

    assert lifecycle.status is TxStatus.SUBMITTED
    assert fn.build_transaction.await_args.args[0]["chainId"] == OTHER_NETWORK_ID
    other_web3.eth.send_raw_transaction.assert_awaited_once()
    web3.eth.send_raw_transaction.assert_not_awaited()
