import pytest

from back_end.search import SearchService
from constants.config import SearchConfig
from indexor.ingestion import IngestionPipeline
from indexor.router import IndexRouter
from preprocessing.preprocessor import Preprocessor


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def term_on_shard(router, shard_id, prefix="term"):
    """First `{prefix}{i}` owned by `shard_id`"""
    for i in range(10_000):
        term = f"{prefix}{i}"
        if router.shard_id_for(term) == shard_id:
            return term
    raise AssertionError(f"no term found for shard {shard_id}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def preprocessor():
    return Preprocessor()


@pytest.fixture
def router():
    return IndexRouter(4)


@pytest.fixture
def pipeline(router, preprocessor):
    pipeline = IngestionPipeline(router, preprocessor, queue_depth=1000, batch_size=16)
    pipeline.start()
    yield pipeline
    pipeline.stop()


@pytest.fixture
def config():
    return SearchConfig(
        num_shards=4,
        compaction_interval=0,
        query_timeout=5.0,
        fan_out_workers=4,
        cache_ttl=30.0,
    )


@pytest.fixture
def service(config, clock):
    service = SearchService(config, clock=clock)
    service.start()
    yield service
    service.close()


def index_all(target, documents):
    """Indexes {doc_id: text} through a pipeline or service and waits for the writers"""
    for doc_id, text in documents.items():
        target.index_document(doc_id, [text])
    target.flush()
