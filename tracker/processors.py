"""Per-stream processors that fold one upstream event into the domain records.

Each processor is idempotent: replaying an event that was already applied is
a successful no-op. Failures are returned as ``ProcessOutcome`` values rather
than raised, so one bad event never stops the rest of its batch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .amounts import format_units, stablecoin_decimals
from .chain import ChainReader, NullChainReader
from .errors import ChainReadError, MalformedEventError, RecordExistsError, StoreError
from .events import EndMintingEvent, Event, NftTransferEvent, StartMintingEvent, StreamId, parse_int, require
from .models import Minting, Nft
from .store import MintingStore, NftStore
from .utils import to_unix_seconds

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"     # already applied, or nothing to do
    FAILED = "failed"


class FailureKind(str, Enum):
    DUPLICATE = "duplicate"
    MISSING_DEPENDENCY = "missing_dependency"
    MALFORMED_EVENT = "malformed_event"
    STORE_ERROR = "store_error"
    CHAIN_READ_ERROR = "chain_read_error"


@dataclass(frozen=True)
class ProcessOutcome:
    event: Event
    status: OutcomeStatus
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    @classmethod
    def applied(cls, event: Event) -> "ProcessOutcome":
        return cls(event, OutcomeStatus.APPLIED)

    @classmethod
    def skipped(cls, event: Event, detail: str = "") -> "ProcessOutcome":
        return cls(event, OutcomeStatus.SKIPPED, detail=detail)

    @classmethod
    def failed(cls, event: Event, failure: FailureKind, detail: str) -> "ProcessOutcome":
        logger.warning(
            "%s event %s not applied (%s: %s), process it manually: %s",
            event.stream.value, event.id, failure.value, detail, event.payload(),
        )
        return cls(event, OutcomeStatus.FAILED, failure, detail)


Handler = Callable[[Event], ProcessOutcome]


class MintingProcessor:
    """Drives a minting through ``unseen -> started -> completed``."""

    def __init__(self, mintings: MintingStore):
        self.mintings = mintings

    def process_start(self, event: StartMintingEvent) -> ProcessOutcome:
        try:
            network_id = event.network_id
            txid = require(event.txid, "txid")
            existing = self.mintings.get(txid, network_id)
            if existing is not None:
                logger.debug("Start minting %s on network %s already processed", txid, network_id)
                return ProcessOutcome.skipped(event, "already started")

            minting = Minting(
                wallet_address=require(event.creator, "creator"),
                network_id=network_id,
                txid=txid,
                timestamp=to_unix_seconds(event.db_write_timestamp),
                deposit_amount=format_units(require(event.usdc_amount, "usdcAmount"), stablecoin_decimals(network_id)),
                ustc_amount=0,
                order_completed=False,
                order_id=0,
                nft_id=parse_int(event.deposit_id, "depositId"),
                manual=False,
                deposit_status=-1,
                mint_completed=False,
            )
        except (MalformedEventError, ValueError) as exc:
            return ProcessOutcome.failed(event, FailureKind.MALFORMED_EVENT, str(exc))
        except StoreError as exc:
            return ProcessOutcome.failed(event, FailureKind.STORE_ERROR, str(exc))

        try:
            self.mintings.add(minting)
        except RecordExistsError as exc:
            return ProcessOutcome.failed(event, FailureKind.DUPLICATE, str(exc))
        except StoreError as exc:
            return ProcessOutcome.failed(event, FailureKind.STORE_ERROR, str(exc))
        logger.info("Minting %s started on network %s by %s", txid, network_id, minting.wallet_address)
        return ProcessOutcome.applied(event)

    def process_end(self, event: EndMintingEvent) -> ProcessOutcome:
        try:
            network_id = event.network_id
            nft_id = parse_int(event.token_id, "depositIdIsTokenId")
        except MalformedEventError as exc:
            return ProcessOutcome.failed(event, FailureKind.MALFORMED_EVENT, str(exc))

        try:
            minting = self.mintings.get_by_nft_id(nft_id, network_id)
            if minting is None:
                return ProcessOutcome.failed(
                    event,
                    FailureKind.MISSING_DEPENDENCY,
                    f"no started minting for nft {nft_id} on network {network_id}",
                )
            if minting.mint_completed:
                return ProcessOutcome.skipped(event, "already completed")
            self.mintings.mark_mint_completed(minting)
        except StoreError as exc:
            return ProcessOutcome.failed(event, FailureKind.STORE_ERROR, f"{nft_id} on {network_id}: {exc}")
        logger.info("Minting of nft %s on network %s completed", nft_id, network_id)
        return ProcessOutcome.applied(event)


class NftProcessor:
    """Keeps LP NFT ownership in line with transfer events."""

    def __init__(self, nfts: NftStore, chain_reader: Optional[ChainReader] = None):
        self.nfts = nfts
        self.chain_reader = chain_reader or NullChainReader()

    def process_transfer(self, event: NftTransferEvent) -> ProcessOutcome:
        try:
            network_id = event.network_id
            token_id = parse_int(event.token_id, "tokenId")
            owner = require(event.to, "to")
        except MalformedEventError as exc:
            return ProcessOutcome.failed(event, FailureKind.MALFORMED_EVENT, str(exc))

        try:
            found = self.nfts.get(token_id, network_id)
            if found is None:
                if event.is_burn:
                    return ProcessOutcome.skipped(event, "burn of untracked nft")
                return self._mint(event, token_id, network_id, owner)
            if event.is_burn:
                self.nfts.delete(token_id, network_id)
                logger.info("Nft %s on network %s burned", token_id, network_id)
                return ProcessOutcome.applied(event)
            if found.owner == owner:
                return ProcessOutcome.skipped(event, "owner unchanged")
            self.nfts.update_owner(token_id, network_id, owner)
        except StoreError as exc:
            return ProcessOutcome.failed(event, FailureKind.STORE_ERROR, str(exc))
        return ProcessOutcome.applied(event)

    def _mint(self, event: NftTransferEvent, token_id: int, network_id: int, owner: str) -> ProcessOutcome:
        try:
            params = self.chain_reader.read_mint_params(token_id, network_id)
        except ChainReadError as exc:
            return ProcessOutcome.failed(event, FailureKind.CHAIN_READ_ERROR, str(exc))
        try:
            self.nfts.add(Nft(token_id=token_id, network_id=network_id, owner=owner, params=params))
        except RecordExistsError as exc:
            return ProcessOutcome.failed(event, FailureKind.DUPLICATE, str(exc))
        logger.info("Nft %s on network %s minted to %s", token_id, network_id, owner)
        return ProcessOutcome.applied(event)


def build_handlers(minting: MintingProcessor, nft: NftProcessor) -> Dict[StreamId, Handler]:
    return {
        StreamId.START_MINTING: minting.process_start,
        StreamId.END_MINTING: minting.process_end,
        StreamId.NFT_TRANSFER: nft.process_transfer,
    }


def fold(events: Iterable[Event], handler: Handler) -> List[ProcessOutcome]:
    """Apply events strictly in fetch order and collect one outcome per event.

    An event whose write timestamp cannot be read is failed without reaching
    the handler; it can never serve as a watermark.
    """

    outcomes = []
    for event in events:
        try:
            event.written_at
        except MalformedEventError as exc:
            outcomes.append(ProcessOutcome.failed(event, FailureKind.MALFORMED_EVENT, str(exc)))
            continue
        outcomes.append(handler(event))
    return outcomes
