"""Exact token amount helpers."""

from decimal import Decimal, InvalidOperation
from typing import Dict, Union

from .errors import MalformedEventError

# USDC precision per chain id. BNB Smart Chain's bridged USDC uses 18 decimals.
STABLECOIN_DECIMALS: Dict[int, int] = {
    1: 6,          # Ethereum
    10: 6,         # Optimism
    56: 18,        # BNB Smart Chain
    137: 6,        # Polygon
    8453: 6,       # Base
    42161: 6,      # Arbitrum One
    84532: 6,      # Base Sepolia
    11155111: 6,   # Sepolia
    11155420: 6,   # Optimism Sepolia
}


def stablecoin_decimals(network_id: int) -> int:
    try:
        return STABLECOIN_DECIMALS[network_id]
    except KeyError:
        raise MalformedEventError(f"no stablecoin precision known for network {network_id}") from None


def format_units(raw: Union[str, int], decimals: int) -> Decimal:
    """Scale a raw on-chain integer amount down by ``decimals`` without rounding."""

    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise MalformedEventError(f"amount {raw!r} is not an integer") from exc
    try:
        return Decimal(value).scaleb(-decimals)
    except InvalidOperation as exc:
        raise MalformedEventError(f"amount {raw!r} cannot be scaled by {decimals}") from exc
