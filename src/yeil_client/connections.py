"""Per-network AsyncWeb3 handles."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from aiohttp import ClientTimeout
from web3 import AsyncWeb3

from .exceptions import RpcError

logger = logging.getLogger(__name__)


class ChainConnections:
    """Hand out one AsyncWeb3 instance per network id.

    Providers are created lazily from ``rpc_urls``. Tests and embedding
    applications can pass ready-made instances through ``web3_by_network``.
    """

    def __init__(
        self,
        rpc_urls: Mapping[int, str] | None = None,
        *,
        request_timeout: float = 15.0,
        web3_by_network: Mapping[int, AsyncWeb3] | None = None,
        web3_factory: Callable[[str, float], AsyncWeb3] | None = None,
    ) -> None:
        self._rpc_urls = dict(rpc_urls or {})
        self._request_timeout = request_timeout
        self._web3: dict[int, AsyncWeb3] = dict(web3_by_network or {})
        self._factory = web3_factory or _build_web3

    def get(self, network_id: int) -> AsyncWeb3:
        """Return the AsyncWeb3 handle for ``network_id``.

        Raises:
            RpcError: If no endpoint is configured for the network.
        """
        w3 = self._web3.get(network_id)
        if w3 is not None:
            return w3

        url = self._rpc_urls.get(network_id)
        if not url:
            raise RpcError(
                f"No RPC endpoint configured for network {network_id}",
                details={"network_id": network_id},
            )
        logger.debug("Creating provider for network %s at %s", network_id, url)
        w3 = self._factory(url, self._request_timeout)
        self._web3[network_id] = w3
        return w3

    async def close(self) -> None:
        """Disconnect every provider created so far."""
        for network_id, w3 in list(self._web3.items()):
            try:
                await w3.provider.disconnect()  # type: ignore[union-attr]
            except AttributeError as e:
                logger.debug(
                    f"Provider disconnect expected (no disconnect method): {e}"
                )
            self._web3.pop(network_id, None)


def _build_web3(url: str, timeout: float) -> AsyncWeb3:
    provider = AsyncWeb3.AsyncHTTPProvider(
        url, request_kwargs={"timeout": ClientTimeout(total=timeout)}
    )
    return AsyncWeb3(provider)
