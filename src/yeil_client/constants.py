"""Network identifiers and deployed contract addresses."""

from typing import TypedDict


class DeploymentAddresses(TypedDict):
    token_contract: str
    oracle_contract: str


ANVIL_CHAIN_ID = 1337
MANTLE_CHAIN_ID = 5000
MANTLE_SEPOLIA_CHAIN_ID = 5003

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

NETWORK_NAMES: dict[int, str] = {
    ANVIL_CHAIN_ID: "anvil",
    MANTLE_CHAIN_ID: "mantle",
    MANTLE_SEPOLIA_CHAIN_ID: "mantle-sepolia",
}

# Mantle entries stay zero until the token is deployed there; zero entries
# are dropped when the address map is built.
DEFAULT_DEPLOYMENTS: dict[int, DeploymentAddresses] = {
    ANVIL_CHAIN_ID: {
        "token_contract": "0xA15BB66138824a1c7167f5E85b957d04Dd34E468",
        "oracle_contract": "0x700b6A60ce7EaaEA56F065753d8dcB9653dbAD35",
    },
    MANTLE_CHAIN_ID: {
        "token_contract": ZERO_ADDRESS,
        "oracle_contract": ZERO_ADDRESS,
    },
    MANTLE_SEPOLIA_CHAIN_ID: {
        "token_contract": ZERO_ADDRESS,
        "oracle_contract": ZERO_ADDRESS,
    },
}

DEFAULT_RPC_URLS: dict[int, str] = {
    ANVIL_CHAIN_ID: "http://127.0.0.1:8545",
    MANTLE_CHAIN_ID: "https://rpc.mantle.xyz",
    MANTLE_SEPOLIA_CHAIN_ID: "https://rpc.sepolia.mantle.xyz",
}
