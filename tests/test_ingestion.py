import threading

import pytest

from indexor.errors import IngestionOverloaded
from indexor.ingestion import DocumentTable, IngestionPipeline
from indexor.router import IndexRouter

from tests.conftest import index_all, term_on_shard


def lookup(router, term):
    return [p.doc_id for p in router.shard_for(term).lookup(term)]


def test_index_document_is_applied_by_shard_writers(pipeline, router):
    ack = pipeline.index_document("doc1", ["apple banana"])

    assert ack.version == 1
    assert ack.wait(timeout=5.0)
    assert ack.applied
    key = pipeline.documents.key_for("doc1")
    assert lookup(router, "apple") == [key]
    assert lookup(router, "banana") == [key]


def test_sequence_numbers_are_monotonic_per_shard(pipeline, router):
    acks = [pipeline.index_document(f"doc{i}", [f"apple word{i}"]) for i in range(40)]
    pipeline.flush()

    per_shard = {}
    for ack in acks:
        for shard_id, sequence_numbers in ack.sequence_numbers.items():
            per_shard.setdefault(shard_id, []).extend(sequence_numbers)

    for shard_id, sequence_numbers in per_shard.items():
        assert sequence_numbers == list(range(1, len(sequence_numbers) + 1))
        assert router.shard(shard_id).sequence_number == len(sequence_numbers)


def test_reindex_replaces_previous_version(pipeline, router):
    index_all(pipeline, {"doc1": "apple banana"})
    ack = pipeline.index_document("doc1", ["apple mango"])
    pipeline.flush()

    key = pipeline.documents.key_for("doc1")
    assert ack.version == 2
    assert lookup(router, "apple") == [key]
    assert lookup(router, "banana") == []
    assert lookup(router, "mango") == [key]


def test_reindex_identical_content_leaves_one_posting(pipeline, router):
    index_all(pipeline, {"doc1": "apple banana"})
    for shard in router.all_shards():
        shard.seal()

    ack = pipeline.index_document("doc1", ["apple banana"])
    assert ack.wait(timeout=5.0)

    key = pipeline.documents.key_for("doc1")
    for term in ("apple", "banana"):
        shard = router.shard_for(term)
        assert len(shard.segments) == 1
        postings = shard.lookup(term)
        assert len(postings) == 1
        assert postings[0].doc_id == key
    assert pipeline.documents.get("doc1").version == 2


def test_last_write_wins_without_flush(pipeline, router):
    pipeline.index_document("doc1", ["apple"])
    pipeline.index_document("doc1", ["mango"])
    pipeline.flush()

    assert lookup(router, "apple") == []
    assert lookup(router, "mango") == [pipeline.documents.key_for("doc1")]


def test_delete_document(pipeline, router):
    index_all(pipeline, {"doc1": "apple", "doc2": "apple"})

    ack = pipeline.delete_document("doc1")
    assert ack.wait(timeout=5.0)

    assert lookup(router, "apple") == [pipeline.documents.key_for("doc2")]
    assert "doc1" not in pipeline.documents
    assert len(pipeline.documents) == 1


def test_delete_unknown_document_is_a_no_op(pipeline):
    ack = pipeline.delete_document("missing")

    assert ack.futures == []
    assert ack.wait(timeout=0.1)


def test_backpressure_rejects_the_whole_request():
    router = IndexRouter(2)
    pipeline = IngestionPipeline(router, queue_depth=1)
    term_0 = term_on_shard(router, 0)
    term_1 = term_on_shard(router, 1)

    pipeline.index_document("doc1", [term_0])
    with pytest.raises(IngestionOverloaded) as e:
        pipeline.index_document("doc2", [f"{term_0} {term_1}"])

    assert e.value.shard_id == 0
    assert pipeline.queue_size(0) == 1
    assert pipeline.queue_size(1) == 0
    assert "doc2" not in pipeline.documents

    pipeline.start()
    try:
        pipeline.flush()
        assert lookup(router, term_0) == [pipeline.documents.key_for("doc1")]
        assert lookup(router, term_1) == []
    finally:
        pipeline.stop()


def test_flush_requires_running_writers():
    pipeline = IngestionPipeline(IndexRouter(1))

    with pytest.raises(RuntimeError):
        pipeline.flush()


def test_concurrent_producers(pipeline, router):
    def produce(worker):
        for i in range(25):
            pipeline.index_document(f"w{worker}-{i}", [f"common w{worker}"])

    threads = [threading.Thread(target=produce, args=(w,)) for w in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    pipeline.flush()

    doc_ids = lookup(router, "common")
    assert len(doc_ids) == 100
    assert doc_ids == sorted(set(doc_ids))
    for w in range(4):
        assert len(lookup(router, f"w{w}")) == 25


def test_document_table_keys_are_stable():
    table = DocumentTable()
    first = table.key_for("a")

    assert table.key_for("b") == first + 1
    assert table.key_for("a") == first
    assert table.doc_id_for(first) == "a"


def test_document_table_collection_stats():
    table = DocumentTable()
    for doc_id, length in (("a", 2), ("b", 4)):
        table.key_for(doc_id)
        table.mark_indexed(doc_id, length, {0})

    stats = table.collection_stats()
    assert stats.doc_count == 2
    assert stats.avg_doc_length == 3.0

    table.mark_deleted("a")
    assert table.collection_stats().doc_count == 1

    restored = DocumentTable.from_json(table.to_json())
    assert restored.key_for("b") == table.key_for("b")
    assert "a" not in restored and "b" in restored


def test_document_table_len_while_keys_are_added():
    table = DocumentTable()
    stop = threading.Event()
    errors = []

    def add_keys():
        for i in range(20_000):
            doc_id = f"d{i}"
            table.key_for(doc_id)
            table.mark_indexed(doc_id, 1, {0})
        stop.set()

    def count():
        try:
            while not stop.is_set():
                len(table)
        except RuntimeError as e:
            errors.append(e)

    threads = [threading.Thread(target=add_keys)] + [threading.Thread(target=count) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(table) == 20_000
