import pytest

from tests.helpers import FakeIndexer
from tracker.checkpoints import CheckpointStore
from tracker.db import make_session
from tracker.fetcher import EventFetcher
from tracker.processors import MintingProcessor, NftProcessor, build_handlers
from tracker.store import FailedEventStore, MintingStore, NftStore


@pytest.fixture
def Session():
    return make_session("sqlite://")


@pytest.fixture
def mintings(Session):
    return MintingStore(Session)


@pytest.fixture
def nfts(Session):
    return NftStore(Session)


@pytest.fixture
def checkpoints(Session):
    return CheckpointStore(Session)


@pytest.fixture
def failed_events(Session):
    return FailedEventStore(Session)


@pytest.fixture
def minting_processor(mintings):
    return MintingProcessor(mintings)


@pytest.fixture
def nft_processor(nfts):
    return NftProcessor(nfts)


@pytest.fixture
def handlers(minting_processor, nft_processor):
    return build_handlers(minting_processor, nft_processor)


@pytest.fixture
def indexer():
    return FakeIndexer()


@pytest.fixture
def fetcher(indexer):
    return EventFetcher("http://indexer.test/v1/graphql", timeout=3, session=indexer)
