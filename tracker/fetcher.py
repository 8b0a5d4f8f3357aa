"""Combined GraphQL fetch of the three event streams."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import requests

from .checkpoints import Checkpoint
from .errors import FetchError, MalformedEventError
from .events import EVENT_TYPES, Event, StreamId

logger = logging.getLogger(__name__)

# Selected columns per stream, in upstream (wire) names.
STREAM_FIELDS = {
    StreamId.START_MINTING: ("id", "txid", "usdcAmount", "depositId", "db_write_timestamp", "creator"),
    StreamId.END_MINTING: ("id", "depositIdIsTokenId", "db_write_timestamp", "creator", "_ustcPlusAmount"),
    StreamId.NFT_TRANSFER: ("db_write_timestamp", "from", "id", "to", "tokenId"),
}

VARIABLE_PREFIX = {
    StreamId.START_MINTING: "startMinting",
    StreamId.END_MINTING: "endMinting",
    StreamId.NFT_TRANSFER: "nftTransfer",
}

TIMESTAMP_TYPE = "timestamp"


@dataclass
class EventBatch:
    """One cycle's result sets, each ascending by ``(db_write_timestamp, id)``."""

    events: Dict[StreamId, List[Event]] = field(default_factory=dict)

    def for_stream(self, stream_id: StreamId) -> List[Event]:
        return self.events.get(stream_id, [])

    def __len__(self) -> int:
        return sum(len(events) for events in self.events.values())


def build_query() -> str:
    """Build the combined query.

    Each stream selects events strictly after its ``(timestamp, id)``
    watermark so siblings sharing the boundary timestamp survive truncation.
    """

    declarations = []
    selections = []
    for stream_id, columns in STREAM_FIELDS.items():
        prefix = VARIABLE_PREFIX[stream_id]
        selected = " ".join(columns)
        declarations.append(
            f"${prefix}Ts: {TIMESTAMP_TYPE}!, ${prefix}Id: String!, ${prefix}Limit: Int!"
        )
        selections.append(
            f"""  {stream_id.value}(
    where: {{_or: [
      {{db_write_timestamp: {{_gt: ${prefix}Ts}}}},
      {{db_write_timestamp: {{_eq: ${prefix}Ts}}, id: {{_gt: ${prefix}Id}}}}
    ]}}
    order_by: [{{db_write_timestamp: asc}}, {{id: asc}}]
    limit: ${prefix}Limit
  ) {{
    {selected}
  }}"""
        )
    return "query TrackerEvents(" + ", ".join(declarations) + ") {\n" + "\n".join(selections) + "\n}\n"


QUERY = build_query()


class EventFetcher:
    """Queries the upstream indexer for events newer than each stream's watermark."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        minting_batch_size: int = 50,
        transfer_batch_size: int = 59,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.limits = {
            StreamId.START_MINTING: minting_batch_size,
            StreamId.END_MINTING: minting_batch_size,
            StreamId.NFT_TRANSFER: transfer_batch_size,
        }
        self.session = session or requests.Session()

    def variables(self, checkpoints: Mapping[StreamId, Checkpoint]) -> Dict[str, object]:
        values: Dict[str, object] = {}
        for stream_id, prefix in VARIABLE_PREFIX.items():
            checkpoint = checkpoints[stream_id]
            values[f"{prefix}Ts"] = checkpoint.watermark
            values[f"{prefix}Id"] = checkpoint.last_event_id
            values[f"{prefix}Limit"] = self.limits[stream_id]
        return values

    def fetch(self, checkpoints: Mapping[StreamId, Checkpoint]) -> EventBatch:
        """Fetch all three streams in one request; any failure fails the whole batch."""

        try:
            resp = self.session.post(
                self.url,
                json={"query": QUERY, "variables": self.variables(checkpoints)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            raise FetchError(f"indexer request failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"indexer returned invalid JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise FetchError(f"indexer returned a {type(body).__name__} instead of a GraphQL response object")
        if body.get("errors"):
            raise FetchError(f"indexer returned errors: {body['errors']}")
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise FetchError(f"indexer response data is a {type(data).__name__}, not an object")

        batch = EventBatch()
        for stream_id, event_type in EVENT_TYPES.items():
            rows = data.get(stream_id.value)
            if not isinstance(rows, list):
                raise FetchError(f"indexer response has no {stream_id.value} result set")
            if not all(isinstance(row, dict) for row in rows):
                raise FetchError(f"indexer returned non-object rows for {stream_id.value}")
            try:
                batch.events[stream_id] = [event_type.from_payload(row) for row in rows]
            except MalformedEventError as exc:
                raise FetchError(str(exc)) from exc
        logger.debug(
            "Fetched %s",
            ", ".join(f"{len(events)} {stream_id.value}" for stream_id, events in batch.events.items()),
        )
        return batch
