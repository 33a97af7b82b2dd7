import pytest

from indexor.errors import OutOfOrderMutation, ShardUnavailable
from indexor.shard import Shard
from indexor.structures import Mutation, MutationKind, Posting, Segment, merge_posting_lists

from tests.conftest import FakeClock


def doc_ids(postings):
    return [p.doc_id for p in postings]


def test_postings_are_sorted_by_doc_id():
    shard = Shard(0)
    shard.add(5, {"apple": [0]}, 1)
    shard.add(2, {"apple": [3]}, 2)
    shard.add(9, {"apple": [1]}, 3)

    assert doc_ids(shard.lookup("apple")) == [2, 5, 9]
    assert shard.sequence_number == 3


def test_out_of_order_mutation_is_rejected():
    shard = Shard(0)
    shard.add(1, {"apple": [0]}, 5)

    with pytest.raises(OutOfOrderMutation) as e:
        shard.add(2, {"apple": [0]}, 5)
    assert e.value.last_sequence_number == 5

    with pytest.raises(OutOfOrderMutation):
        shard.remove(1, 3)

    assert doc_ids(shard.lookup("apple")) == [1]


def test_re_adding_a_document_replaces_its_postings():
    shard = Shard(0)
    shard.add(1, {"apple": [0]}, 1)
    shard.add(1, {"apple": [0, 3]}, 2)

    postings = shard.lookup("apple")
    assert len(postings) == 1
    assert postings[0].doc_term_frequency == 2
    assert postings[0].positions == (0, 3)

    shard.add(1, {"banana": [0]}, 3)
    assert shard.lookup("apple") == ()
    assert doc_ids(shard.lookup("banana")) == [1]


def test_remove_is_idempotent():
    shard = Shard(0)
    shard.add(1, {"apple": [0]}, 1)

    assert shard.remove(1, 2) is True
    assert shard.remove(1, 3) is False
    assert shard.remove(42, 4) is False
    assert shard.sequence_number == 4
    assert shard.lookup("apple") == ()


def test_lookup_returns_an_immutable_snapshot():
    shard = Shard(0)
    shard.add(1, {"apple": [0]}, 1)
    snapshot = shard.lookup("apple")

    shard.add(2, {"apple": [0]}, 2)
    shard.remove(1, 3)

    assert doc_ids(snapshot) == [1]
    assert doc_ids(shard.lookup("apple")) == [2]


def test_active_segment_is_sealed_at_segment_size():
    shard = Shard(0, segment_size=2)
    for seq, doc_id in enumerate((3, 1, 2), start=1):
        shard.add(doc_id, {"a": [0]}, seq)

    assert len(shard.segments) == 1
    assert doc_ids(shard.lookup("a")) == [1, 2, 3]


def test_newest_posting_wins_across_segments():
    shard = Shard(0, segment_size=1)
    shard.add(1, {"a": [0]}, 1)
    shard.add(1, {"a": [0, 1]}, 2)

    postings = shard.lookup("a")
    assert len(shard.segments) == 2
    assert len(postings) == 1
    assert postings[0].sequence_number == 2


def test_unavailable_shard_refuses_lookups():
    shard = Shard(3)
    shard.set_available(False)

    with pytest.raises(ShardUnavailable) as e:
        shard.lookup("apple")
    assert e.value.shard_id == 3


def test_apply_batch_reports_per_mutation_outcome():
    shard = Shard(0)
    outcomes = shard.apply_batch(
        [
            Mutation(MutationKind.ADD, 1, 1, {"apple": [0]}),
            Mutation(MutationKind.ADD, 2, 1, {"apple": [0]}),
            Mutation(MutationKind.REMOVE, 1, 2),
        ]
    )

    assert outcomes[0] is None
    assert isinstance(outcomes[1], OutOfOrderMutation)
    assert outcomes[2] is None
    assert shard.lookup("apple") == ()


def test_compact_purges_expired_tombstones():
    clock = FakeClock()
    shard = Shard(0, clock=clock)
    shard.add(1, {"apple": [0]}, 1)
    shard.add(2, {"apple": [0]}, 2)
    shard.remove(1, 3)

    clock.advance(10)
    stats = shard.compact(retention=5)

    assert stats.purged_postings == 1
    assert stats.dropped_tombstones == 1
    assert stats.postings_after == 1
    assert shard.tombstone_count == 0
    assert len(shard.segments) == 1
    assert doc_ids(shard.lookup("apple")) == [2]


def test_compact_keeps_tombstones_inside_retention():
    clock = FakeClock()
    shard = Shard(0, clock=clock)
    shard.add(1, {"apple": [0]}, 1)
    shard.add(2, {"apple": [0]}, 2)
    shard.remove(1, 3)

    stats = shard.compact(retention=100)

    assert stats.purged_postings == 0
    assert stats.postings_after == 2
    assert shard.tombstone_count == 1
    assert doc_ids(shard.lookup("apple")) == [2]


def test_compaction_does_not_change_results():
    clock = FakeClock()
    shard = Shard(0, segment_size=3, clock=clock)
    seq = 0
    for doc_id in range(20):
        seq += 1
        shard.add(doc_id, {f"t{doc_id % 4}": [0, 1], "all": [2]}, seq)
    for doc_id in range(0, 20, 3):
        seq += 1
        shard.remove(doc_id, seq)

    terms = sorted(shard.terms())
    before = {term: shard.lookup(term) for term in terms}

    clock.advance(60)
    shard.compact(retention=1)

    assert {term: shard.lookup(term) for term in terms} == before


def test_restore_requires_an_empty_shard():
    segment = Segment({"apple": (Posting(1, 1, (0,), 1),)})
    shard = Shard(0)
    shard.restore(segment, sequence_number=7)

    assert shard.sequence_number == 7
    assert shard.document_count() == 1
    with pytest.raises(ValueError):
        shard.restore(segment, sequence_number=7)


def test_merge_posting_lists_prefers_highest_sequence():
    old = (Posting(1, 1, (0,), 1), Posting(3, 1, (0,), 1))
    new = (Posting(1, 2, (0, 4), 5), Posting(2, 1, (1,), 4))

    merged = merge_posting_lists([old, new])

    assert doc_ids(merged) == [1, 2, 3]
    assert merged[0].sequence_number == 5
