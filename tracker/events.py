"""Typed views over the events returned by the upstream indexer."""

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from .errors import MalformedEventError
from .utils import parse_db_timestamp

BURN_ADDRESS = "0x0000000000000000000000000000000000000000"


class StreamId(str, Enum):
    """Independently checkpointed event streams, valued by their GraphQL entity name."""

    START_MINTING = "LpManager_StartMinting"
    END_MINTING = "LpManager_EndMinting"
    NFT_TRANSFER = "LpNft_Transfer"


def network_id_from_event_id(event_id: str) -> int:
    """Return the chain id prefix of an indexer event id (``"10-5"`` -> ``10``)."""

    prefix, sep, _ = event_id.partition("-")
    if not sep or not prefix.isdigit():
        raise MalformedEventError(f"event id {event_id!r} does not start with a network id")
    return int(prefix)


def parse_int(raw: Optional[str], field: str) -> int:
    if raw is None:
        raise MalformedEventError(f"{field} is missing")
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise MalformedEventError(f"{field} {raw!r} is not an integer") from exc


def require(raw: Optional[str], field: str) -> str:
    if not raw:
        raise MalformedEventError(f"{field} is missing")
    return raw


E = TypeVar("E", bound="Event")


@dataclass(frozen=True)
class Event:
    """Common envelope: the indexer's composite id and its write timestamp.

    Only the envelope is mandatory when a batch is decoded, since it decides
    the stream watermark. Payload fields are validated by the processors so a
    single bad event is a per-item failure instead of a failed fetch.
    """

    id: str
    db_write_timestamp: str

    stream = None  # type: StreamId
    wire_names = None  # type: Optional[Dict[str, str]]

    @classmethod
    def from_payload(cls: Type[E], payload: Mapping[str, Any]) -> E:
        renames = cls.wire_names or {}
        values = {}
        for f in fields(cls):
            raw = payload.get(renames.get(f.name, f.name))
            values[f.name] = None if raw is None else str(raw)
        if not values["id"] or not values["db_write_timestamp"]:
            raise MalformedEventError(f"{cls.__name__} without id or db_write_timestamp: {dict(payload)}")
        return cls(**values)

    def payload(self) -> Dict[str, Optional[str]]:
        renames = self.wire_names or {}
        return {renames.get(name, name): value for name, value in asdict(self).items()}

    @property
    def network_id(self) -> int:
        return network_id_from_event_id(self.id)

    @property
    def written_at(self) -> datetime:
        """Parsed ``db_write_timestamp``; raises ``MalformedEventError`` when unreadable."""
        try:
            return parse_db_timestamp(self.db_write_timestamp)
        except ValueError as exc:
            raise MalformedEventError(f"db_write_timestamp {self.db_write_timestamp!r}: {exc}") from exc


@dataclass(frozen=True)
class StartMintingEvent(Event):
    txid: Optional[str] = None
    usdc_amount: Optional[str] = None
    deposit_id: Optional[str] = None
    creator: Optional[str] = None

    stream = StreamId.START_MINTING
    wire_names = {"usdc_amount": "usdcAmount", "deposit_id": "depositId"}


@dataclass(frozen=True)
class EndMintingEvent(Event):
    token_id: Optional[str] = None
    creator: Optional[str] = None
    ustc_plus_amount: Optional[str] = None

    stream = StreamId.END_MINTING
    wire_names = {"token_id": "depositIdIsTokenId", "ustc_plus_amount": "_ustcPlusAmount"}


@dataclass(frozen=True)
class NftTransferEvent(Event):
    token_id: Optional[str] = None
    sender: Optional[str] = None
    to: Optional[str] = None

    stream = StreamId.NFT_TRANSFER
    wire_names = {"token_id": "tokenId", "sender": "from"}

    @property
    def is_burn(self) -> bool:
        return (self.to or "").lower() == BURN_ADDRESS


EVENT_TYPES = {
    StreamId.START_MINTING: StartMintingEvent,
    StreamId.END_MINTING: EndMintingEvent,
    StreamId.NFT_TRANSFER: NftTransferEvent,
}
