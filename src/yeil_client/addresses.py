"""Network-keyed contract address resolution."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from web3 import Web3

from .constants import DEFAULT_DEPLOYMENTS, ZERO_ADDRESS

logger = logging.getLogger(__name__)


class ContractKey(str, Enum):
    TOKEN = "token_contract"
    ORACLE = "oracle_contract"


@dataclass(frozen=True)
class ContractAddresses:
    """Complete deployment record for one network."""

    token_contract: str
    oracle_contract: str

    def get(self, key: ContractKey) -> str:
        return getattr(self, key.value)


def _is_unset(address: str | None) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def build_address_map(
    overrides: Mapping[int, Mapping[str, str]] | None = None,
    *,
    include_defaults: bool = True,
) -> Mapping[int, ContractAddresses]:
    """Build the immutable network → deployment map.

    Built-in deployments are overlaid with ``overrides``. Records with a
    missing or zero address are incomplete and are left out, so such a
    network is reported as unsupported.

    Args:
        overrides: Per-network ``{"token_contract", "oracle_contract"}`` entries
        include_defaults: Start from the built-in deployments

    Returns:
        Read-only mapping of network id to checksummed addresses

    Raises:
        ValueError: If an entry holds something that is not an address
    """
    raw: dict[int, Mapping[str, str]] = {}
    if include_defaults:
        raw.update(DEFAULT_DEPLOYMENTS)
    if overrides:
        raw.update({int(network_id): entry for network_id, entry in overrides.items()})

    resolved: dict[int, ContractAddresses] = {}
    for network_id, entry in raw.items():
        token = entry.get(ContractKey.TOKEN.value)
        oracle = entry.get(ContractKey.ORACLE.value)
        if _is_unset(token) or _is_unset(oracle):
            logger.debug("Skipping incomplete deployment for network %s", network_id)
            continue
        try:
            resolved[network_id] = ContractAddresses(
                token_contract=Web3.to_checksum_address(token),
                oracle_contract=Web3.to_checksum_address(oracle),
            )
        except ValueError as exc:
            raise ValueError(
                f"Invalid contract address configured for network {network_id}: {exc}"
            ) from exc

    return MappingProxyType(resolved)


class AddressResolver:
    """Resolve deployed contract addresses by network id.

    Lookups never raise: an unknown network resolves to ``None`` and callers
    must treat that as unsupported. Whether a contract is actually live at the
    address is not checked here.
    """

    def __init__(self, address_map: Mapping[int, ContractAddresses] | None = None):
        if address_map is None:
            address_map = build_address_map()
        self._map: Mapping[int, ContractAddresses] = MappingProxyType(dict(address_map))

    @classmethod
    def from_overrides(
        cls, overrides: Mapping[int, Mapping[str, str]] | None
    ) -> AddressResolver:
        return cls(build_address_map(overrides))

    def resolve(self, network_id: int | None, contract_key: ContractKey) -> str | None:
        if network_id is None:
            return None
        record = self._map.get(network_id)
        if record is None:
            return None
        return record.get(contract_key)

    def token_address(self, network_id: int | None) -> str | None:
        return self.resolve(network_id, ContractKey.TOKEN)

    def oracle_address(self, network_id: int | None) -> str | None:
        return self.resolve(network_id, ContractKey.ORACLE)

    def addresses_for(self, network_id: int) -> ContractAddresses | None:
        return self._map.get(network_id)

    def is_supported(self, network_id: int | None) -> bool:
        return network_id is not None and network_id in self._map

    def supported_networks(self) -> list[int]:
        return sorted(self._map)
