"""Readers for NFT parameters that only exist on chain."""

from typing import Any, Callable, Dict, Protocol

from .errors import ChainReadError


class ChainReader(Protocol):
    def read_mint_params(self, token_id: int, network_id: int) -> Dict[str, Any]:
        """Return the mint-time parameters stored with a freshly minted LP NFT.

        Raises ``ChainReadError`` when the chain cannot be queried.
        """


class NullChainReader:
    """Reader for deployments that track ownership only."""

    def read_mint_params(self, token_id: int, network_id: int) -> Dict[str, Any]:
        return {}


class CallableChainReader:
    """Adapts a plain ``(token_id, network_id) -> dict`` function.

    Whatever the function raises (RPC or HTTP client errors) surfaces as
    ``ChainReadError`` so the transfer fails on its own.
    """

    def __init__(self, fn: Callable[[int, int], Dict[str, Any]]):
        self._fn = fn

    def read_mint_params(self, token_id: int, network_id: int) -> Dict[str, Any]:
        try:
            return dict(self._fn(token_id, network_id))
        except ChainReadError:
            raise
        except Exception as exc:
            raise ChainReadError(f"cannot read mint params of nft {token_id} on {network_id}: {exc}") from exc
