"""Signer capability consumed by write calls."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .abi import load_token_abi
from .connections import ChainConnections
from .types import WriteCallDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    """Anything that can sign and broadcast a contract call.

    ``submit`` returns the transaction hash once the transaction is broadcast.
    It raises :class:`~yeil_client.exceptions.UserRejected` when the user
    declines; any other exception is treated as a submission failure.
    """

    @property
    def address(self) -> str: ...

    async def submit(self, call: WriteCallDescriptor) -> str: ...


class LocalAccountSigner:
    """Sign with a local private key and broadcast through AsyncWeb3.

    The connection is picked per call from ``call.network_id``, so one signer
    stays valid across network switches.
    """

    def __init__(self, account: LocalAccount, connections: ChainConnections):
        self._account = account
        self._connections = connections

    @classmethod
    def from_key(
        cls, private_key: str, connections: ChainConnections
    ) -> LocalAccountSigner:
        return cls(Account.from_key(private_key), connections)

    @property
    def address(self) -> str:
        return self._account.address

    async def submit(self, call: WriteCallDescriptor) -> str:
        w3 = self._connections.get(call.network_id)
        contract = w3.eth.contract(
            address=w3.to_checksum_address(call.contract_address),
            abi=load_token_abi(),
        )
        fn = getattr(contract.functions, call.function)(*call.args)

        nonce = await w3.eth.get_transaction_count(self._account.address, "pending")
        # Gas estimation runs here, so contract reverts surface before signing.
        tx = await fn.build_transaction(
            {
                "from": self._account.address,
                "nonce": nonce,
                "chainId": call.network_id,
            }
        )
        signed = self._account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug(
            "Broadcast %s from %s on network %s",
            call.function,
            self._account.address,
            call.network_id,
        )
        return tx_hash.to_0x_hex()
