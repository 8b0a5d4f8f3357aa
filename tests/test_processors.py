from decimal import Decimal

import pytest
from sqlalchemy import func, select

from tests.helpers import end_minting, start_minting, transfer
from tracker.chain import CallableChainReader
from tracker.errors import ChainReadError, StoreError
from tracker.events import EndMintingEvent, NftTransferEvent, StartMintingEvent
from tracker.models import Minting, Nft
from tracker.processors import FailureKind, NftProcessor, OutcomeStatus

BURN = "0x0000000000000000000000000000000000000000"


def _count(Session, model) -> int:
    with Session() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def _columns(row) -> dict:
    return {c.name: getattr(row, c.name) for c in row.__table__.columns}


def test_start_minting_creates_record(minting_processor, mintings) -> None:
    outcome = minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))

    assert outcome.status is OutcomeStatus.APPLIED
    record = mintings.get("0xabc", 10)
    assert record.wallet_address == "0xuser"
    assert record.network_id == 10
    assert record.txid == "0xabc"
    assert record.deposit_amount == Decimal("1")
    assert record.deposit_amount == 1.0
    assert record.ustc_amount == 0
    assert record.order_completed is False
    assert record.order_id == 0
    assert record.nft_id == 7
    assert record.deposit_status == -1
    assert record.mint_completed is False
    assert record.manual is False
    assert record.timestamp == 1725926400


def test_start_minting_is_idempotent(minting_processor, mintings, Session) -> None:
    event = StartMintingEvent.from_payload(start_minting())
    minting_processor.process_start(event)
    before = _columns(mintings.get("0xabc", 10))

    outcome = minting_processor.process_start(event)

    assert outcome.status is OutcomeStatus.SKIPPED
    assert _count(Session, Minting) == 1
    assert _columns(mintings.get("0xabc", 10)) == before


def test_same_txid_on_another_network_is_a_new_minting(minting_processor, Session) -> None:
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting(id="10-5")))
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting(id="8453-5")))
    assert _count(Session, Minting) == 2


def test_start_minting_with_18_decimal_stablecoin(minting_processor, mintings) -> None:
    minting_processor.process_start(
        StartMintingEvent.from_payload(start_minting(id="56-1", amount="2500000000000000000"))
    )
    assert mintings.get("0xabc", 56).deposit_amount == Decimal("2.5")


def test_start_minting_with_malformed_amount_fails(minting_processor, Session) -> None:
    outcome = minting_processor.process_start(StartMintingEvent.from_payload(start_minting(amount="12.5")))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.failure is FailureKind.MALFORMED_EVENT
    assert _count(Session, Minting) == 0


def test_start_minting_on_unknown_network_fails(minting_processor) -> None:
    outcome = minting_processor.process_start(StartMintingEvent.from_payload(start_minting(id="424242-1")))
    assert outcome.failure is FailureKind.MALFORMED_EVENT


def test_start_minting_insert_race_is_reported_as_duplicate(minting_processor, mintings) -> None:
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))
    # Another writer inserted between the lookup and the insert.
    mintings.get = lambda txid, network_id: None

    outcome = minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))

    assert outcome.failure is FailureKind.DUPLICATE


def test_end_minting_before_start_fails_without_creating(minting_processor, Session) -> None:
    outcome = minting_processor.process_end(EndMintingEvent.from_payload(end_minting()))

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.failure is FailureKind.MISSING_DEPENDENCY
    assert _count(Session, Minting) == 0


def test_end_minting_completes_and_replays(minting_processor, mintings) -> None:
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))
    event = EndMintingEvent.from_payload(end_minting())

    assert minting_processor.process_end(event).status is OutcomeStatus.APPLIED
    assert mintings.get("0xabc", 10).mint_completed is True
    assert minting_processor.process_end(event).status is OutcomeStatus.SKIPPED


def test_end_minting_keeps_fulfillment_fields(minting_processor, mintings, Session) -> None:
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))
    with Session() as session:
        row = session.execute(select(Minting)).scalar_one()
        row.order_completed = True
        row.ustc_amount = Decimal("3.25")
        row.order_id = 42
        row.deposit_status = 1
        session.commit()

    minting_processor.process_end(EndMintingEvent.from_payload(end_minting()))

    record = mintings.get("0xabc", 10)
    assert record.mint_completed is True
    assert record.order_completed is True
    assert record.ustc_amount == Decimal("3.25")
    assert record.order_id == 42
    assert record.deposit_status == 1


def test_mint_completion_refuses_stale_version(minting_processor, mintings, Session) -> None:
    minting_processor.process_start(StartMintingEvent.from_payload(start_minting()))
    stale = mintings.get("0xabc", 10)
    with Session() as session:
        row = session.execute(select(Minting)).scalar_one()
        row.order_completed = True
        session.commit()

    with pytest.raises(StoreError):
        mintings.mark_mint_completed(stale)
    record = mintings.get("0xabc", 10)
    assert record.order_completed is True
    assert record.mint_completed is False


def test_transfer_mints_new_nft(nft_processor, nfts) -> None:
    outcome = nft_processor.process_transfer(NftTransferEvent.from_payload(transfer()))

    assert outcome.status is OutcomeStatus.APPLIED
    nft = nfts.get(7, 10)
    assert nft.owner == "0xowner"
    assert nft.params == {}


def test_transfer_is_idempotent(nft_processor, nfts, Session) -> None:
    event = NftTransferEvent.from_payload(transfer())
    nft_processor.process_transfer(event)
    outcome = nft_processor.process_transfer(event)

    assert outcome.ok
    assert _count(Session, Nft) == 1
    assert nfts.get(7, 10).owner == "0xowner"


def test_burn_of_unseen_nft_is_a_noop(nft_processor, Session) -> None:
    outcome = nft_processor.process_transfer(NftTransferEvent.from_payload(transfer(to=BURN, sender="0xowner")))

    assert outcome.status is OutcomeStatus.SKIPPED
    assert _count(Session, Nft) == 0


def test_burn_deletes_nft(nft_processor, nfts) -> None:
    nft_processor.process_transfer(NftTransferEvent.from_payload(transfer()))
    outcome = nft_processor.process_transfer(
        NftTransferEvent.from_payload(transfer(id="10-10", to=BURN, sender="0xowner"))
    )

    assert outcome.status is OutcomeStatus.APPLIED
    assert nfts.get(7, 10) is None


def test_transfer_updates_owner_only(nfts, Session) -> None:
    processor = NftProcessor(nfts, CallableChainReader(lambda token_id, network_id: {"tickLower": -10, "tickUpper": 10}))
    processor.process_transfer(NftTransferEvent.from_payload(transfer()))
    before = _columns(nfts.get(7, 10))

    outcome = processor.process_transfer(
        NftTransferEvent.from_payload(transfer(id="10-10", sender="0xowner", to="0xbuyer"))
    )

    assert outcome.status is OutcomeStatus.APPLIED
    after = _columns(nfts.get(7, 10))
    assert after.pop("owner") == "0xbuyer"
    before.pop("owner")
    assert after == before
    assert after["params"] == {"tickLower": -10, "tickUpper": 10}


def test_chain_read_failure_is_per_item(nfts, Session) -> None:
    def broken(token_id, network_id):
        raise ChainReadError("rpc down")

    outcome = NftProcessor(nfts, CallableChainReader(broken)).process_transfer(
        NftTransferEvent.from_payload(transfer())
    )

    assert outcome.failure is FailureKind.CHAIN_READ_ERROR
    assert _count(Session, Nft) == 0


def test_transfer_with_malformed_token_id(nft_processor) -> None:
    outcome = nft_processor.process_transfer(NftTransferEvent.from_payload(transfer(token_id="0x07")))
    assert outcome.failure is FailureKind.MALFORMED_EVENT


def test_chain_client_errors_are_per_item(nfts, Session) -> None:
    def flaky(token_id, network_id):
        raise ConnectionError("rpc reset by peer")

    outcome = NftProcessor(nfts, CallableChainReader(flaky)).process_transfer(
        NftTransferEvent.from_payload(transfer())
    )

    assert outcome.failure is FailureKind.CHAIN_READ_ERROR
    assert "rpc reset by peer" in outcome.detail
    assert _count(Session, Nft) == 0
