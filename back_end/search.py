import os
import time
import logging
import dataclasses

from constants.config import SearchConfig
from indexor.cache import ResultCache, fingerprint
from indexor.compactor import Compactor
from indexor.engine import QueryEngine
from indexor.errors import InvalidQuery
from indexor.ingestion import DocumentTable, IngestionPipeline
from indexor.router import IndexRouter
from indexor.scoring import BuildScorer
from indexor.segment_io import load_config, load_index, save_index
from preprocessing.preprocessor import Preprocessor

from back_end.modeling_outputs import SearchResult

logger = logging.getLogger(__name__)


def load_backend(index_path=None, config: SearchConfig | None = None) -> "SearchService":
    if index_path is None or not os.path.exists(index_path):
        logger.warning(f"Index path {index_path} does not exist. Starting with an empty index")
        return SearchService(config or SearchConfig.from_env())

    return SearchService.load(index_path, config)


class SearchService:
    """
    Ties the pieces together: documents go through the ingestion pipeline into the
    router's shards, queries are parsed, looked up in the result cache and otherwise
    executed by the query engine.

    Call `start()` before indexing (or use the service as a context manager) so the
    shard writers and the compactor are running.
    """

    def __init__(
        self,
        config: SearchConfig | None = None,
        router: IndexRouter | None = None,
        documents: DocumentTable | None = None,
        clock=time.monotonic,
    ):
        self.config = config or SearchConfig()

        shard_kwargs = {"segment_size": self.config.segment_size, "clock": clock}
        self.router = router or IndexRouter(self.config.num_shards, shard_kwargs=shard_kwargs)
        self.documents = documents if documents is not None else DocumentTable()

        self.preprocessor = Preprocessor(
            parser_kwargs={"parser_type": self.config.parser_type},
            normalizer_type=self.config.normalizer,
        )
        self.pipeline = IngestionPipeline(
            self.router,
            self.preprocessor,
            queue_depth=self.config.queue_depth,
            batch_size=self.config.batch_size,
            documents=self.documents,
        )
        self.engine = QueryEngine(
            self.router,
            preprocessor=self.preprocessor,
            scorer=BuildScorer(self.config.scorer),
            timeout=self.config.query_timeout,
            max_workers=self.config.fan_out_workers,
            collection_stats=self.documents.collection_stats,
        )
        self.cache = ResultCache(
            ttl=self.config.cache_ttl,
            max_size=self.config.cache_max_size,
            sequence_of=self.router.sequence_of,
            clock=clock,
        )
        self.compactor = Compactor(
            self.router,
            retention=self.config.retention_window,
            interval=self.config.compaction_interval,
        )

        logger.info(
            f"Search service initialized with {self.router.num_shards} shards, "
            f"scorer={self.config.scorer}, normalizer={self.config.normalizer}"
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.close()

    def start(self):
        self.pipeline.start()
        if self.config.compaction_interval > 0:
            self.compactor.start()

    def close(self):
        self.compactor.stop()
        self.pipeline.stop()
        self.engine.close()
        logger.info("Search service closed")

    def flush(self):
        self.pipeline.flush()

    def index_document(self, doc_id: str, fields):
        return self.pipeline.index_document(doc_id, fields)

    def delete_document(self, doc_id: str):
        return self.pipeline.delete_document(doc_id)

    def search(self, query: str, page: int = 0, size: int = 20, allow_partial: bool = False) -> SearchResult:
        start = time.time()
        if page < 0:
            raise InvalidQuery(f"page must be >= 0, got {page}")
        if size < 1:
            raise InvalidQuery(f"size must be >= 1, got {size}")

        plan = self.engine.parse(query)
        key = fingerprint(plan.canonical(), page, size, allow_partial)

        result = self.cache.get_or_compute(
            key,
            self.engine.shards_for(plan),
            lambda: self._execute(query, plan, page, size, allow_partial),
            cacheable=lambda x: not x.partial,
        )
        # equivalent queries share an entry, report the text this caller sent
        result = dataclasses.replace(result, query=query, time_taken=time.time() - start)

        logger.info(
            f"Search took {result.time_taken:.4f} seconds to return {len(result.documents)} of {result.total_results} results."
        )
        return result

    def _execute(self, query, plan, page, size, allow_partial) -> SearchResult:
        k = (page + 1) * size
        engine_result = self.engine.execute(plan, k=k, allow_partial=allow_partial)

        hits = engine_result.hits[page * size :]

        return SearchResult(
            query=query,
            documents=[self.documents.doc_id_for(doc_key) for _, doc_key in hits],
            scores=[score for score, _ in hits],
            truncated=engine_result.total_results > k or engine_result.partial,
            total_results=engine_result.total_results,
            partial=engine_result.partial,
            time_taken=engine_result.time_taken,
            page=page,
            size=size,
            failed_shards=list(engine_result.failed_shards),
        )

    def save(self, index_path: str | None = None):
        index_path = index_path or self.config.index_path
        if not index_path:
            raise ValueError("No index path given and SEARCH_INDEX_PATH is not set")

        if self.pipeline.running:
            self.pipeline.flush()
        save_index(index_path, self.router, self.documents, config=self.config.to_json())

    @staticmethod
    def load(index_path: str, config: SearchConfig | None = None, clock=time.monotonic) -> "SearchService":
        """
        Restores a saved index. The shard count always comes from the saved index,
        every other setting from `config` when given, otherwise from the saved one.
        """
        config = config or SearchConfig.from_json(load_config(index_path))
        shard_kwargs = {"segment_size": config.segment_size, "clock": clock}
        router, documents, _ = load_index(index_path, shard_kwargs=shard_kwargs)

        config = dataclasses.replace(config, num_shards=router.num_shards, index_path=index_path)
        return SearchService(
            config,
            router=router,
            documents=DocumentTable.from_json(documents),
            clock=clock,
        )
