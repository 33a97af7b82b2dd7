import time

from indexor.compactor import Compactor
from indexor.ingestion import IngestionPipeline
from indexor.router import IndexRouter

from tests.conftest import FakeClock, index_all


def test_run_once_compacts_every_shard(preprocessor):
    clock = FakeClock()
    router = IndexRouter(3, shard_kwargs={"segment_size": 2, "clock": clock})
    pipeline = IngestionPipeline(router, preprocessor)
    pipeline.start()
    try:
        index_all(pipeline, {f"doc{i}": f"apple word{i % 3} extra{i}" for i in range(12)})
        for i in range(0, 12, 4):
            pipeline.delete_document(f"doc{i}")
        pipeline.flush()
    finally:
        pipeline.stop()

    terms = {term for shard in router.all_shards() for term in shard.terms()}
    before = {term: router.shard_for(term).lookup(term) for term in terms}

    clock.advance(100)
    compactor = Compactor(router, retention=10, interval=60)
    stats = compactor.run_once()

    assert len(stats) == 3
    assert sum(x.purged_postings for x in stats) > 0
    for shard in router.all_shards():
        assert len(shard.segments) <= 1
        assert shard.tombstone_count == 0
    assert {term: router.shard_for(term).lookup(term) for term in terms} == before


def test_background_thread_starts_and_stops():
    compactor = Compactor(IndexRouter(2), retention=0, interval=0.01)
    compactor.start()
    try:
        deadline = time.time() + 5
        while compactor.runs == 0 and time.time() < deadline:
            time.sleep(0.01)
        assert compactor.runs > 0
        assert compactor.running
    finally:
        compactor.stop(timeout=5)

    assert not compactor.running
