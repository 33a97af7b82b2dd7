import logging
import queue
import threading
import time

from collections import defaultdict
from concurrent.futures import wait
from dataclasses import dataclass, field

from indexor.errors import IngestionOverloaded
from indexor.router import IndexRouter
from indexor.scoring import CollectionStats
from indexor.structures import Mutation, MutationKind
from preprocessing.preprocessor import Preprocessor

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class DocumentRecord:
    key: int
    version: int = 0
    length: int = 0
    # shards holding at least one posting of the current version
    shards: frozenset = frozenset()
    live: bool = False


class DocumentTable:
    """
    External document id <-> integer document key.

    Keys are handed out once and reused when a document is re-indexed, so posting
    lists can stay ordered by key and deltas stay small.
    """

    def __init__(self):
        self._records: dict[str, DocumentRecord] = {}
        self._doc_ids: list[str] = []
        self._lock = threading.Lock()
        self._stats: CollectionStats | None = None

    def __len__(self):
        with self._lock:
            return sum(1 for record in self._records.values() if record.live)

    def __contains__(self, doc_id):
        record = self._records.get(doc_id)
        return record is not None and record.live

    def get(self, doc_id: str) -> DocumentRecord | None:
        return self._records.get(doc_id)

    def key_for(self, doc_id: str) -> int:
        with self._lock:
            record = self._records.get(doc_id)
            if record is None:
                record = self._records[doc_id] = DocumentRecord(key=len(self._doc_ids))
                self._doc_ids.append(doc_id)
            return record.key

    def doc_id_for(self, key: int) -> str:
        return self._doc_ids[key]

    def mark_indexed(self, doc_id: str, length: int, shards) -> DocumentRecord:
        with self._lock:
            record = self._records[doc_id]
            record.version += 1
            record.length = length
            record.shards = frozenset(shards)
            record.live = True
            self._stats = None
            return record

    def mark_deleted(self, doc_id: str) -> DocumentRecord:
        with self._lock:
            record = self._records[doc_id]
            record.live = False
            record.shards = frozenset()
            self._stats = None
            return record

    def collection_stats(self) -> CollectionStats:
        stats = self._stats
        if stats is not None:
            return stats

        with self._lock:
            doc_lengths = {r.key: r.length for r in self._records.values() if r.live}
            doc_count = len(doc_lengths)
            avg_doc_length = sum(doc_lengths.values()) / doc_count if doc_count else 0.0
            stats = self._stats = CollectionStats(doc_count, avg_doc_length, doc_lengths)

        return stats

    def to_json(self) -> dict:
        with self._lock:
            return {
                "documents": [
                    {
                        "doc_id": doc_id,
                        "version": self._records[doc_id].version,
                        "length": self._records[doc_id].length,
                        "shards": sorted(self._records[doc_id].shards),
                        "live": self._records[doc_id].live,
                    }
                    for doc_id in self._doc_ids
                ]
            }

    @staticmethod
    def from_json(data: dict) -> "DocumentTable":
        table = DocumentTable()
        for key, item in enumerate(data["documents"]):
            table._records[item["doc_id"]] = DocumentRecord(
                key=key,
                version=item["version"],
                length=item["length"],
                shards=frozenset(item["shards"]),
                live=item["live"],
            )
            table._doc_ids.append(item["doc_id"])

        return table


@dataclass
class IngestAck:
    """Returned once every mutation of a request is enqueued"""

    doc_id: str
    version: int
    # shard id -> sequence numbers assigned to this request's mutations
    sequence_numbers: dict[int, list[int]] = field(default_factory=dict)
    futures: list = field(default_factory=list, repr=False)

    @property
    def applied(self) -> bool:
        return all(f.done() for f in self.futures)

    def wait(self, timeout: float | None = None) -> bool:
        """
        Blocks until every mutation is applied by its shard writer. Returns False on
        timeout and re-raises the first error a shard reported.
        """
        done, not_done = wait(self.futures, timeout=timeout)
        for future in self.futures:
            if future in done:
                future.result()

        return not not_done


class IngestionPipeline:
    """
    Routes document mutations to per-shard queues drained by one writer thread per shard.

    Sequence numbers are assigned under a single enqueue lock, so for every shard they
    follow the order in which requests were accepted. A request either lands on every
    shard it targets or on none of them: if any target queue is full the whole request
    is rejected with `IngestionOverloaded`.

    Re-indexing a live document may need two slots on one shard (the remove of the old
    version and the add of the new one), so `queue_depth` below 2 rejects such requests.
    """

    def __init__(
        self,
        router: IndexRouter,
        preprocessor: Preprocessor | None = None,
        queue_depth: int = 10_000,
        batch_size: int = 256,
        documents: DocumentTable | None = None,
    ):
        self.router = router
        self.preprocessor = preprocessor or Preprocessor()
        self.queue_depth = queue_depth
        self.batch_size = batch_size
        self.documents = documents if documents is not None else DocumentTable()

        self._lock = threading.Lock()
        self._queues = [queue.Queue() for _ in range(router.num_shards)]
        self._next_sequence = [shard.sequence_number + 1 for shard in router.all_shards()]
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return bool(self._threads)

    def queue_size(self, shard_id: int) -> int:
        return self._queues[shard_id].qsize()

    def start(self):
        if self._threads:
            return

        for shard in self.router.all_shards():
            thread = threading.Thread(
                target=self._writer_loop,
                args=(shard.shard_id,),
                name=f"shard-writer-{shard.shard_id}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        logger.info(f"Started {len(self._threads)} shard writers")

    def stop(self, timeout: float | None = None):
        """Lets every writer finish what is already queued, then joins it"""
        if not self._threads:
            return

        for q in self._queues:
            q.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)

        self._threads = []
        logger.info("Stopped shard writers")

    def flush(self):
        if not self._threads:
            raise RuntimeError("Ingestion pipeline is not running, call start() first")

        start = time.time()
        for q in self._queues:
            q.join()
        logger.info(f"Flushed ingestion queues in {time.time() - start:.4f} seconds")

    def index_document(self, doc_id: str, fields) -> IngestAck:
        if isinstance(fields, str):
            fields = [fields]

        terms, length = self.preprocessor.preprocess_fields(fields)
        key = self.documents.key_for(doc_id)

        by_shard: dict[int, dict[str, list[int]]] = defaultdict(lambda: defaultdict(list))
        for term in terms:
            by_shard[self.router.shard_id_for(term.term)][term.term].append(term.position)

        with self._lock:
            record = self.documents.get(doc_id)
            previous_shards = record.shards if record.live else frozenset()

            pending = [(shard_id, Mutation(MutationKind.REMOVE, key, 0)) for shard_id in sorted(previous_shards)]
            pending.extend(
                (shard_id, Mutation(MutationKind.ADD, key, 0, dict(doc_terms)))
                for shard_id, doc_terms in sorted(by_shard.items())
            )

            ack = self._enqueue(doc_id, pending)
            record = self.documents.mark_indexed(doc_id, length, by_shard)
            ack.version = record.version

        logger.debug(
            f"Enqueued {doc_id} v{ack.version}: {len(terms)} terms on {len(by_shard)} shards"
        )
        return ack

    def delete_document(self, doc_id: str) -> IngestAck:
        with self._lock:
            record = self.documents.get(doc_id)
            if record is None or not record.live:
                logger.debug(f"Delete of unknown document {doc_id} is a no-op")
                return IngestAck(doc_id, record.version if record else 0)

            pending = [
                (shard_id, Mutation(MutationKind.REMOVE, record.key, 0))
                for shard_id in sorted(record.shards)
            ]
            ack = self._enqueue(doc_id, pending)
            ack.version = self.documents.mark_deleted(doc_id).version

        logger.debug(f"Enqueued delete of {doc_id} on {len(pending)} shards")
        return ack

    def _enqueue(self, doc_id, pending) -> IngestAck:
        """Must be called with the enqueue lock held"""
        counts = defaultdict(int)
        for shard_id, _ in pending:
            counts[shard_id] += 1

        for shard_id, count in counts.items():
            if self._queues[shard_id].qsize() + count > self.queue_depth:
                logger.warning(f"Rejected {doc_id}: shard {shard_id} queue is full")
                raise IngestionOverloaded(shard_id, self.queue_depth)

        ack = IngestAck(doc_id, 0)
        for shard_id, mutation in pending:
            mutation.sequence_number = self._next_sequence[shard_id]
            self._next_sequence[shard_id] += 1

            ack.sequence_numbers.setdefault(shard_id, []).append(mutation.sequence_number)
            ack.futures.append(mutation.future)
            self._queues[shard_id].put(mutation)

        return ack

    def _writer_loop(self, shard_id: int):
        shard = self.router.shard(shard_id)
        q = self._queues[shard_id]

        running = True
        while running:
            batch = [q.get()]
            while len(batch) < self.batch_size:
                try:
                    batch.append(q.get_nowait())
                except queue.Empty:
                    break

            mutations = []
            for item in batch:
                if item is _STOP:
                    running = False
                else:
                    mutations.append(item)

            try:
                if mutations:
                    self._apply(shard, mutations)
            finally:
                for _ in batch:
                    q.task_done()

    def _apply(self, shard, mutations):
        try:
            outcomes = shard.apply_batch(mutations)
        except Exception as e:
            logger.exception(f"Shard {shard.shard_id} failed to apply a batch of {len(mutations)}")
            for mutation in mutations:
                mutation.future.set_exception(e)
            return

        for mutation, error in zip(mutations, outcomes):
            if error is None:
                mutation.future.set_result(mutation.sequence_number)
            else:
                mutation.future.set_exception(error)

        logger.debug(f"Shard {shard.shard_id} applied {len(mutations)} mutations")
