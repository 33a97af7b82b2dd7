import logging
import threading
import time

from dataclasses import dataclass

from indexor.errors import OutOfOrderMutation, ShardUnavailable
from indexor.structures import (
    IndexBase,
    Mutation,
    MutationKind,
    Posting,
    Segment,
    Term,
    Tombstone,
    is_live,
    merge_posting_lists,
)

logger = logging.getLogger(__name__)


@dataclass
class CompactionStats:
    shard_id: int
    segments_merged: int = 0
    postings_before: int = 0
    postings_after: int = 0
    purged_postings: int = 0
    dropped_tombstones: int = 0
    time_taken: float = 0.0


class Shard(IndexBase):
    """
    Owns a disjoint partition of the term space.

    Postings are written to a mutable *active* term map. Once it holds `segment_size`
    postings it is sealed into an immutable `Segment`. Lookups copy the active posting
    list under the lock and read sealed segments without it, so compaction can swap
    the sealed tuple while a read is in flight.

    Deletes write a tombstone keyed by document; the postings stay on disk/in memory
    until `compact` drops them after the retention window.
    """

    def __init__(self, shard_id: int, segment_size: int = 50_000, clock=time.monotonic):
        self.shard_id = shard_id
        self.segment_size = segment_size
        self.clock = clock

        self._lock = threading.RLock()
        self._compaction_lock = threading.Lock()

        self._active: dict[str, Term] = {}
        self._active_postings = 0
        self._sealed: tuple[Segment, ...] = ()
        # replaced wholesale on write, readers keep whichever dict they captured
        self._tombstones: dict[int, Tombstone] = {}
        self._doc_terms: dict[int, frozenset[str]] = {}

        self._sequence_number = 0
        self._next_segment_id = 0
        self.available = True

    def __repr__(self):
        return (
            f"Shard(id={self.shard_id}, seq={self._sequence_number}, "
            f"docs={len(self._doc_terms)}, segments={len(self._sealed)}, "
            f"tombstones={len(self._tombstones)})"
        )

    @property
    def sequence_number(self) -> int:
        return self._sequence_number

    @property
    def segments(self) -> tuple[Segment, ...]:
        return self._sealed

    @property
    def tombstone_count(self) -> int:
        return len(self._tombstones)

    def set_available(self, available: bool):
        logger.info(f"Shard {self.shard_id} availability set to {available}")
        self.available = available

    def document_count(self) -> int:
        return len(self._doc_terms)

    def add(self, doc_id: int, doc_terms: dict[str, list[int]], sequence_number: int):
        with self._lock:
            tombstones = dict(self._tombstones)
            try:
                self._add(doc_id, doc_terms, sequence_number, tombstones)
            finally:
                self._tombstones = tombstones

    def remove(self, doc_id: int, sequence_number: int) -> bool:
        with self._lock:
            tombstones = dict(self._tombstones)
            try:
                return self._remove(doc_id, sequence_number, tombstones)
            finally:
                self._tombstones = tombstones

    def apply_batch(self, mutations: list[Mutation]) -> list[Exception | None]:
        """
        Applies the mutations in order under one lock acquisition. A rejected mutation
        does not stop the rest of the batch.
        """
        outcomes = []
        with self._lock:
            tombstones = dict(self._tombstones)
            try:
                for mutation in mutations:
                    try:
                        if mutation.kind == MutationKind.ADD:
                            self._add(
                                mutation.doc_id,
                                mutation.doc_terms,
                                mutation.sequence_number,
                                tombstones,
                            )
                        else:
                            self._remove(mutation.doc_id, mutation.sequence_number, tombstones)
                        outcomes.append(None)
                    except OutOfOrderMutation as e:
                        logger.error(f"Shard {self.shard_id}: {e}")
                        outcomes.append(e)
            finally:
                self._tombstones = tombstones

        return outcomes

    def _check_sequence(self, sequence_number: int):
        if sequence_number <= self._sequence_number:
            raise OutOfOrderMutation(self.shard_id, sequence_number, self._sequence_number)

        self._sequence_number = sequence_number

    def _add(self, doc_id, doc_terms, sequence_number, tombstones):
        self._check_sequence(sequence_number)

        if doc_id in self._doc_terms:
            # re-adding a live document replaces every posting it had here
            tombstones[doc_id] = Tombstone(sequence_number, self.clock())

        for term, positions in doc_terms.items():
            positions = tuple(sorted(positions))
            posting = Posting(doc_id, len(positions), positions, sequence_number)

            term_obj = self._active.get(term)
            if term_obj is None:
                term_obj = self._active[term] = Term(term)
            if term_obj.update_with_posting(posting):
                self._active_postings += 1

        if doc_terms:
            self._doc_terms[doc_id] = frozenset(doc_terms)
        else:
            self._doc_terms.pop(doc_id, None)

        if self._active_postings >= self.segment_size:
            self._seal()

    def _remove(self, doc_id, sequence_number, tombstones) -> bool:
        self._check_sequence(sequence_number)

        if self._doc_terms.pop(doc_id, None) is None:
            logger.debug(f"Shard {self.shard_id}: remove of unknown doc {doc_id} is a no-op")
            return False

        tombstones[doc_id] = Tombstone(sequence_number, self.clock())
        return True

    def _seal(self):
        if not self._active:
            return

        segment = Segment.from_terms(self._active, segment_id=self._next_segment_id)
        self._next_segment_id += 1
        self._sealed = self._sealed + (segment,)
        self._active = {}
        self._active_postings = 0

        logger.info(f"Shard {self.shard_id} sealed {segment}")

    def seal(self):
        with self._lock:
            self._seal()

    def lookup(self, term: str) -> tuple[Posting, ...]:
        if not self.available:
            raise ShardUnavailable(self.shard_id)

        with self._lock:
            term_obj = self._active.get(term)
            active = term_obj.snapshot() if term_obj is not None else ()
            sealed = self._sealed
            tombstones = self._tombstones

        posting_lists = [segment.get_term(term) for segment in sealed]
        posting_lists.append(active)

        return tuple(
            posting
            for posting in merge_posting_lists(x for x in posting_lists if x)
            if is_live(posting, tombstones)
        )

    def terms(self) -> set[str]:
        with self._lock:
            terms = set(self._active)
            sealed = self._sealed

        for segment in sealed:
            terms.update(segment.terms())

        return terms

    def live_postings(self):
        """Yields (term, postings) for every term with at least one live posting, in term order"""
        for term in sorted(self.terms()):
            postings = self.lookup(term)
            if postings:
                yield term, postings

    def restore(self, segment: Segment, sequence_number: int):
        """Installs a segment loaded from disk. Only valid on an empty shard."""
        with self._lock:
            if self._sequence_number != 0 or self._sealed or self._active:
                raise ValueError(f"Shard {self.shard_id} is not empty, cannot restore")

            doc_terms: dict[int, set[str]] = {}
            for term, postings in segment.postings.items():
                for posting in postings:
                    doc_terms.setdefault(posting.doc_id, set()).add(term)

            self._sealed = (segment,) if len(segment) else ()
            self._next_segment_id = segment.segment_id + 1
            self._doc_terms = {k: frozenset(v) for k, v in doc_terms.items()}
            self._sequence_number = sequence_number

    def compact(self, retention: float, now: float | None = None) -> CompactionStats:
        """
        Merges every sealed segment (the active one is sealed first) into a single
        segment and drops postings shadowed by a tombstone older than `retention`
        seconds. The merge runs outside the shard lock; only the final swap takes it.
        """
        start = time.time()
        stats = CompactionStats(self.shard_id)

        with self._compaction_lock:
            with self._lock:
                self._seal()
                captured = self._sealed
                tombstones = self._tombstones
                segment_id = self._next_segment_id
                self._next_segment_id += 1

            now = self.clock() if now is None else now
            expired = {
                doc_id: tombstone
                for doc_id, tombstone in tombstones.items()
                if now - tombstone.deleted_at > retention
            }

            stats.segments_merged = len(captured)
            stats.postings_before = sum(len(x) for x in captured)

            terms = set()
            for segment in captured:
                terms.update(segment.terms())

            merged_postings = {}
            for term in sorted(terms):
                kept = []
                for posting in merge_posting_lists(segment.get_term(term) for segment in captured):
                    if posting.doc_id in expired and not is_live(posting, tombstones):
                        stats.purged_postings += 1
                        continue
                    kept.append(posting)

                if kept:
                    merged_postings[term] = tuple(kept)

            merged = Segment(merged_postings, segment_id=segment_id)
            stats.postings_after = len(merged)

            with self._lock:
                remaining = self._sealed[len(captured):]
                self._sealed = ((merged,) if len(merged) else ()) + remaining

                # every posting older than an expired tombstone lived in `captured`
                current = dict(self._tombstones)
                for doc_id, tombstone in expired.items():
                    if current.get(doc_id) == tombstone:
                        del current[doc_id]
                        stats.dropped_tombstones += 1
                self._tombstones = current

        stats.time_taken = time.time() - start
        logger.info(
            f"Compacted shard {self.shard_id}: {stats.segments_merged} segments, "
            f"{stats.postings_before} -> {stats.postings_after} postings, "
            f"purged {stats.purged_postings}, dropped {stats.dropped_tombstones} tombstones "
            f"in {stats.time_taken:.4f} seconds"
        )

        return stats
