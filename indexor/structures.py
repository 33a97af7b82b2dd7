import bisect
import heapq
import logging
import pprint

from abc import ABC, abstractmethod
from collections import namedtuple
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

logger = logging.getLogger(__name__)


# Positions are stored as tuples so a posting can be shared between segments and readers
Posting = namedtuple(
    "Posting", ["doc_id", "doc_term_frequency", "positions", "sequence_number"]
)
Tombstone = namedtuple("Tombstone", ["sequence_number", "deleted_at"])


def is_live(posting: Posting, tombstones) -> bool:
    tombstone = tombstones.get(posting.doc_id)
    # an add that replaces a document writes its tombstone at its own sequence number
    return tombstone is None or posting.sequence_number >= tombstone.sequence_number


def merge_posting_lists(posting_lists) -> list[Posting]:
    """
    k-way merge of doc-id ordered posting lists. When several lists hold a posting
    for the same document, the one with the highest sequence number wins.
    """
    merged: list[Posting] = []
    for posting in heapq.merge(*posting_lists, key=lambda x: x.doc_id):
        if merged and merged[-1].doc_id == posting.doc_id:
            if posting.sequence_number > merged[-1].sequence_number:
                merged[-1] = posting
            continue

        merged.append(posting)

    return merged


@dataclass
class Term:
    """
    Mutable posting list for a single term, kept sorted by doc id.
    Only the owning shard's writer touches it, readers receive copies.
    """

    term: str
    posting_lists: list[Posting] = field(default_factory=list)
    doc_ids: list[int] = field(default_factory=list)

    def __str__(self):
        posting_list = [x for x in self.posting_lists if x is not None][:10]
        if len(self.posting_lists) > 10:
            posting_list[-1] = "..."
        str_posting_list = pprint.pformat(posting_list)

        return f"{self.term}({self.document_frequency},{str_posting_list})"

    def __len__(self):
        return len(self.posting_lists)

    @property
    def document_frequency(self):
        return len(self.posting_lists)

    def update_with_posting(self, posting: Posting):
        """Inserts the posting in doc id order, replacing any posting for the same document"""
        idx = bisect.bisect_left(self.doc_ids, posting.doc_id)
        if idx < len(self.doc_ids) and self.doc_ids[idx] == posting.doc_id:
            self.posting_lists[idx] = posting
            return False

        self.doc_ids.insert(idx, posting.doc_id)
        self.posting_lists.insert(idx, posting)
        return True

    def snapshot(self) -> tuple[Posting, ...]:
        return tuple(self.posting_lists)


class Segment:
    """
    Immutable term -> postings mapping. Once built it is only ever read, which lets
    lookups run against it without holding the shard lock.
    """

    def __init__(self, postings: dict[str, tuple[Posting, ...]], segment_id: int = 0):
        self.segment_id = segment_id
        self.postings = MappingProxyType(dict(postings))
        self.posting_count = sum(len(x) for x in self.postings.values())

    def __repr__(self):
        return f"Segment(id={self.segment_id}, terms={len(self.postings)}, postings={self.posting_count})"

    def __len__(self):
        return self.posting_count

    def get_term(self, term: str) -> tuple[Posting, ...]:
        return self.postings.get(term, ())

    def terms(self):
        return self.postings.keys()

    @staticmethod
    def from_terms(term_map: dict[str, Term], segment_id: int = 0) -> "Segment":
        return Segment(
            {term: term_obj.snapshot() for term, term_obj in term_map.items() if len(term_obj)},
            segment_id=segment_id,
        )


class IndexBase(ABC):
    """What the router and query engine need from a shard or one of its replicas"""

    shard_id: int

    @property
    @abstractmethod
    def sequence_number(self) -> int:
        pass

    @abstractmethod
    def lookup(self, term: str) -> tuple[Posting, ...]:
        pass

    @abstractmethod
    def add(self, doc_id: int, doc_terms: dict[str, list[int]], sequence_number: int):
        pass

    @abstractmethod
    def remove(self, doc_id: int, sequence_number: int):
        pass

    def lookup_many(self, terms) -> dict[str, tuple[Posting, ...]]:
        return {term: self.lookup(term) for term in terms}


class MutationKind(Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass
class Mutation:
    kind: MutationKind
    doc_id: int
    sequence_number: int
    doc_terms: dict[str, list[int]] = field(default_factory=dict)
    future: Future = field(default_factory=Future, repr=False, compare=False)
