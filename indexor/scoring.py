import logging
import numpy as np

from abc import ABC, abstractmethod
from dataclasses import dataclass

from numba import jit

logger = logging.getLogger(__name__)


@dataclass
class CollectionStats:
    doc_count: int
    avg_doc_length: float
    doc_lengths: dict[int, int]

    def get_document_length(self, doc_id: int) -> int:
        return self.doc_lengths.get(doc_id, 0)


@jit(nopython=True, cache=True, fastmath=True)
def calculate_bm25_numba(
    scores,
    term_frequencies,
    doc_lengths,
    doc_freq,
    doc_count,
    avg_doc_length,
    k1,
    b,
):
    idf = np.log((doc_count - doc_freq + 0.5) / (doc_freq + 0.5) + 1.0)
    for i in range(len(scores)):
        tf = term_frequencies[i]
        if tf == 0:
            continue

        denominator = tf + k1 * (1.0 - b + b * (doc_lengths[i] / avg_doc_length))
        scores[i] += idf * (tf * (k1 + 1.0)) / denominator

    return scores


def _term_frequencies(doc_ids, postings_by_doc) -> np.ndarray:
    return np.fromiter(
        (
            postings_by_doc[doc_id].doc_term_frequency if doc_id in postings_by_doc else 0
            for doc_id in doc_ids
        ),
        dtype=np.float64,
        count=len(doc_ids),
    )


class Scorer(ABC):
    name = "base"

    @abstractmethod
    def score(
        self,
        doc_ids: list[int],
        term_postings: dict[str, dict],
        stats: CollectionStats | None = None,
    ) -> np.ndarray:
        """
        Args:
            doc_ids: matching documents, ascending
            term_postings: term -> {doc_id: Posting} for every positive query term
            stats: collection statistics, only needed by length-normalised scorers
        """
        pass


class FrequencyScorer(Scorer):
    """Sum of the query terms' frequencies in the document"""

    name = "frequency"

    def score(self, doc_ids, term_postings, stats=None):
        scores = np.zeros(len(doc_ids), dtype=np.float64)
        for postings_by_doc in term_postings.values():
            scores += _term_frequencies(doc_ids, postings_by_doc)

        return scores


class BM25Scorer(Scorer):
    """
    Okapi BM25. Terms live on exactly one shard, so the document frequency taken from
    the posting list is already the global one.
    """

    name = "bm25"

    def __init__(self, k1=1.2, b=0.75):
        self.k1 = k1
        self.b = b

    def score(self, doc_ids, term_postings, stats=None):
        scores = np.zeros(len(doc_ids), dtype=np.float64)
        if stats is None or stats.doc_count == 0 or stats.avg_doc_length <= 0:
            logger.warning("BM25 called without collection stats, returning zero scores")
            return scores

        doc_lengths = np.fromiter(
            (stats.get_document_length(doc_id) for doc_id in doc_ids),
            dtype=np.float64,
            count=len(doc_ids),
        )

        # rarest term first keeps float accumulation stable across runs
        for term in sorted(term_postings, key=lambda x: len(term_postings[x])):
            postings_by_doc = term_postings[term]
            scores = calculate_bm25_numba(
                scores,
                _term_frequencies(doc_ids, postings_by_doc),
                doc_lengths,
                float(len(postings_by_doc)),
                float(stats.doc_count),
                float(stats.avg_doc_length),
                float(self.k1),
                float(self.b),
            )

        return scores


SCORERS = {
    FrequencyScorer.name: FrequencyScorer,
    BM25Scorer.name: BM25Scorer,
}


def BuildScorer(scorer_type: str, **kwargs) -> Scorer:
    if scorer_type not in SCORERS:
        raise ValueError(f"Unknown scorer {scorer_type}, use one of {sorted(SCORERS)}")

    return SCORERS[scorer_type](**kwargs)
