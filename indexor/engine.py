import logging
import threading
import time

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from indexor.errors import InvalidQuery, ShardTimeout, ShardUnavailable
from indexor.merge import difference, intersect, top_k, union
from indexor.query import AND, NOT, OR, BooleanQuery, PhraseQuery, TermQuery
from indexor.router import IndexRouter
from indexor.scoring import FrequencyScorer, Scorer
from preprocessing.preprocessor import Preprocessor

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    # (score, doc_id) best first, at most `k` of them
    hits: list[tuple[float, int]]
    total_results: int
    partial: bool = False
    failed_shards: tuple[int, ...] = ()
    time_taken: float = 0.0


@dataclass
class EngineStats:
    queries: int = 0
    fan_outs: int = 0
    shard_lookups: int = 0
    replica_retries: int = 0
    timeouts: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def incr(self, name: str, value: int = 1):
        with self._lock:
            setattr(self, name, getattr(self, name) + value)


class QueryEngine:
    """
    Executes boolean plans over the shards of a router.

    Terms are grouped by owning shard and each shard receives one lookup task, so a
    single-term query touches one shard. The per-query timeout bounds the whole
    fan-out; shards that miss it fail the query unless the caller opted into partial
    results.
    """

    def __init__(
        self,
        router: IndexRouter,
        preprocessor: Preprocessor | None = None,
        scorer: Scorer | None = None,
        timeout: float | None = 2.0,
        max_workers: int = 16,
        collection_stats=None,
    ):
        self.router = router
        self.preprocessor = preprocessor or Preprocessor()
        self.scorer = scorer or FrequencyScorer()
        self.timeout = timeout
        self.collection_stats = collection_stats

        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="shard-lookup"
        )
        self.stats = EngineStats()

    def close(self):
        self.executor.shutdown(wait=False, cancel_futures=True)

    def parse(self, query: str) -> BooleanQuery:
        plan = BooleanQuery(query, self.preprocessor)
        plan.parse()

        return plan

    def shards_for(self, plan: BooleanQuery) -> list[int]:
        return sorted(self.router.group_terms(plan.terms()))

    def execute(self, plan: BooleanQuery, k: int, allow_partial: bool = False) -> EngineResult:
        start = time.time()
        root = plan.parse()
        self.stats.incr("queries")

        postings, failed_shards = self._fan_out(plan.terms(), allow_partial)
        by_doc = {}

        def postings_by_doc(term):
            if term not in by_doc:
                by_doc[term] = {p.doc_id: p for p in postings.get(term, ())}
            return by_doc[term]

        doc_ids = self._evaluate(root, postings, postings_by_doc)

        term_postings = {term: postings_by_doc(term) for term in plan.positive_terms()}
        stats = self.collection_stats() if self.collection_stats is not None else None
        scores = self.scorer.score(doc_ids, term_postings, stats)
        hits = top_k(zip(doc_ids, scores.tolist()), k)

        result = EngineResult(
            hits=hits,
            total_results=len(doc_ids),
            partial=bool(failed_shards),
            failed_shards=tuple(sorted(failed_shards)),
            time_taken=time.time() - start,
        )
        logger.debug(
            f"Executed {root.canonical()} -> {result.total_results} results in {result.time_taken:.4f} seconds"
        )

        return result

    def _fan_out(self, terms, allow_partial):
        grouped = self.router.group_terms(terms)
        self.stats.incr("fan_outs")

        futures = {
            self.executor.submit(self._lookup_shard, shard_id, shard_terms): shard_id
            for shard_id, shard_terms in grouped.items()
        }
        done, not_done = wait(futures, timeout=self.timeout)
        for future in not_done:
            # best-effort, a lookup that already started runs to completion and is discarded
            future.cancel()

        postings = {}
        failed = set()
        for future in done:
            shard_id = futures[future]
            try:
                postings.update(future.result())
            except ShardUnavailable:
                if not allow_partial:
                    raise
                logger.warning(f"Shard {shard_id} unavailable, returning partial results")
                failed.add(shard_id)

        if not_done:
            timed_out = {futures[f] for f in not_done}
            self.stats.incr("timeouts")
            if not allow_partial:
                raise ShardTimeout(timed_out, self.timeout)
            logger.warning(f"Shards {sorted(timed_out)} timed out, returning partial results")
            failed.update(timed_out)

        for shard_id in failed:
            for term in grouped[shard_id]:
                postings[term] = ()

        return postings, failed

    def _lookup_shard(self, shard_id: int, terms: list[str]):
        candidates = [self.router.shard(shard_id)] + self.router.replicas(shard_id)

        last_error = None
        for idx, shard in enumerate(candidates):
            try:
                result = shard.lookup_many(terms)
                self.stats.incr("shard_lookups")
                if idx > 0:
                    logger.info(f"Shard {shard_id} served by replica {idx}")
                return result
            except ShardUnavailable as e:
                last_error = e
                if idx + 1 < len(candidates):
                    self.stats.incr("replica_retries")
                    logger.warning(f"{e}, retrying against replica {idx + 1}")

        raise last_error

    def _evaluate(self, node, postings, postings_by_doc) -> list[int]:
        if isinstance(node, TermQuery):
            return [p.doc_id for p in postings.get(node.term, ())]
        elif isinstance(node, PhraseQuery):
            return self._phrase_search(node, postings, postings_by_doc)
        elif isinstance(node, AND):
            positive = [
                self._evaluate(child, postings, postings_by_doc)
                for child in node.children
                if not isinstance(child, NOT)
            ]
            result = intersect(positive)
            for child in node.children:
                if isinstance(child, NOT) and result:
                    result = difference(result, self._evaluate(child.child, postings, postings_by_doc))
            return result
        elif isinstance(node, OR):
            return union([self._evaluate(child, postings, postings_by_doc) for child in node.children])

        raise InvalidQuery(f"Query node {node!r} cannot be evaluated on its own")

    def _phrase_search(self, query: PhraseQuery, postings, postings_by_doc) -> list[int]:
        candidates = intersect([[p.doc_id for p in postings.get(t, ())] for t in query.terms])

        offsets = [0]
        for distance in query.distances:
            offsets.append(offsets[-1] + distance)

        result = []
        for doc_id in candidates:
            positions = [set(postings_by_doc(term)[doc_id].positions) for term in query.terms]
            if any(
                all(start + offset in positions[i] for i, offset in enumerate(offsets))
                for start in positions[0]
            ):
                result.append(doc_id)

        return result
