import hashlib
import logging

from collections import defaultdict

from indexor.shard import Shard
from indexor.structures import IndexBase

logger = logging.getLogger(__name__)


def shard_id_for(term: str, num_shards: int) -> int:
    """Stable across processes and runs, unlike `hash()`"""
    digest = hashlib.blake2b(term.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little") % num_shards


class IndexRouter:
    """
    Maps each term to exactly one shard. The shard count is fixed for the lifetime of
    the router; changing it goes through `repartition`, which builds a new router.
    """

    def __init__(self, num_shards: int = 8, shards: list[IndexBase] | None = None, shard_kwargs: dict | None = None):
        shard_kwargs = shard_kwargs or {}
        if shards is None:
            if num_shards < 1:
                raise ValueError(f"num_shards must be positive, got {num_shards}")
            shards = [Shard(i, **shard_kwargs) for i in range(num_shards)]

        for idx, shard in enumerate(shards):
            if shard.shard_id != idx:
                raise ValueError(f"Shard at position {idx} has id {shard.shard_id}")

        self._shards = tuple(shards)
        self._replicas: dict[int, list[IndexBase]] = defaultdict(list)
        self.shard_kwargs = shard_kwargs

    def __len__(self):
        return len(self._shards)

    @property
    def num_shards(self) -> int:
        return len(self._shards)

    def shard_id_for(self, term: str) -> int:
        return shard_id_for(term, len(self._shards))

    def shard_for(self, term: str) -> IndexBase:
        return self._shards[self.shard_id_for(term)]

    def shard(self, shard_id: int) -> IndexBase:
        return self._shards[shard_id]

    def all_shards(self) -> tuple[IndexBase, ...]:
        return self._shards

    def sequence_of(self, shard_id: int) -> int:
        return self._shards[shard_id].sequence_number

    def group_terms(self, terms) -> dict[int, list[str]]:
        grouped = defaultdict(list)
        for term in dict.fromkeys(terms):
            grouped[self.shard_id_for(term)].append(term)

        return dict(grouped)

    def add_replica(self, shard_id: int, replica: IndexBase):
        if replica.shard_id != shard_id:
            raise ValueError(f"Replica id {replica.shard_id} does not match shard {shard_id}")

        self._replicas[shard_id].append(replica)
        logger.info(f"Registered replica for shard {shard_id}")

    def replicas(self, shard_id: int) -> list[IndexBase]:
        return list(self._replicas.get(shard_id, ()))

    def repartition(self, num_shards: int) -> "IndexRouter":
        """
        Offline migration: copies every live posting into `num_shards` fresh shards.
        Writers must be stopped while this runs. Replicas are not carried over.
        """
        new_router = IndexRouter(num_shards, shard_kwargs=self.shard_kwargs)

        # doc -> terms, per destination shard, so each document is one add
        pending: dict[int, dict[int, dict[str, list[int]]]] = defaultdict(lambda: defaultdict(dict))
        for shard in self._shards:
            for term, postings in shard.live_postings():
                destination = new_router.shard_id_for(term)
                for posting in postings:
                    pending[destination][posting.doc_id][term] = list(posting.positions)

        for destination, documents in pending.items():
            shard = new_router.shard(destination)
            for sequence_number, doc_id in enumerate(sorted(documents), start=1):
                shard.add(doc_id, documents[doc_id], sequence_number)

        logger.info(f"Repartitioned {len(self._shards)} shards into {num_shards}")
        return new_router
