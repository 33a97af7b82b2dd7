"""
On-disk layout of a saved index directory:

    config.json         settings the index was built with
    documents.json      document table (external id, version, length, shards)
    shard_{i}.index     varint posting lists, one block per term
    shard_{i}.terms     marisa BytesTrie term -> "<Q" offset into shard_{i}.index
    shard_{i}.json      shard metadata (sequence number, counts)

A posting block is: document frequency, then for each posting the doc-id delta,
term frequency, sequence number, position count and position deltas. Postings are
written in ascending doc-id order and read back in the order they were written.
"""

import os
import json
import mmap
import struct
import logging

import filelock
import marisa_trie
import numpy as np

from numba import jit, types, int64

from indexor.router import IndexRouter
from indexor.shard import Shard
from indexor.structures import Posting, Segment
from utils.varint import decode_bytes_jit, encode, encode_deltas

logger = logging.getLogger(__name__)

OFFSET_KEY = "<Q"
CONFIG_FILE = "config.json"
DOCUMENTS_FILE = "documents.json"


def shard_paths(index_path: str, shard_id: int) -> tuple[str, str, str]:
    prefix = os.path.join(index_path, f"shard_{shard_id}")
    return prefix + ".index", prefix + ".terms", prefix + ".json"


@jit(
    types.Tuple(
        (
            types.Array(int64, 1, "C"),
            types.Array(int64, 1, "C"),
            types.Array(int64, 1, "C"),
            types.Array(int64, 1, "C"),
            types.Array(int64, 1, "C"),
            int64,
        )
    )(types.Array(types.uint8, 1, "A", readonly=True), int64),
    nopython=True,
    cache=True,
)
def decode_posting_block(data, offset):
    doc_freq, offset = decode_bytes_jit(data, offset)

    doc_ids = np.zeros(doc_freq, dtype=np.int64)
    term_frequencies = np.zeros(doc_freq, dtype=np.int64)
    sequence_numbers = np.zeros(doc_freq, dtype=np.int64)
    position_counts = np.zeros(doc_freq, dtype=np.int64)

    capacity = max(16, doc_freq * 2)
    positions = np.zeros(capacity, dtype=np.int64)
    n_positions = 0

    current_doc_id = 0
    for i in range(doc_freq):
        delta, offset = decode_bytes_jit(data, offset)
        term_frequency, offset = decode_bytes_jit(data, offset)
        sequence_number, offset = decode_bytes_jit(data, offset)
        position_count, offset = decode_bytes_jit(data, offset)

        current_doc_id += delta
        doc_ids[i] = current_doc_id
        term_frequencies[i] = term_frequency
        sequence_numbers[i] = sequence_number
        position_counts[i] = position_count

        if n_positions + position_count > capacity:
            capacity = max(capacity * 2, n_positions + position_count)
            grown = np.zeros(capacity, dtype=np.int64)
            grown[:n_positions] = positions[:n_positions]
            positions = grown

        current_position = 0
        for _ in range(position_count):
            position_delta, offset = decode_bytes_jit(data, offset)
            current_position += position_delta
            positions[n_positions] = current_position
            n_positions += 1

    return (
        doc_ids,
        term_frequencies,
        sequence_numbers,
        position_counts,
        positions[:n_positions].copy(),
        offset,
    )


def encode_posting_block(postings) -> bytes:
    buf = bytearray(encode(len(postings)))

    previous_doc_id = 0
    for posting in postings:
        buf += encode(posting.doc_id - previous_doc_id)
        buf += encode(posting.doc_term_frequency)
        buf += encode(posting.sequence_number)
        buf += encode(len(posting.positions))
        buf += encode_deltas(posting.positions)
        previous_doc_id = posting.doc_id

    return bytes(buf)


def read_postings(data: np.ndarray, offset: int) -> tuple[Posting, ...]:
    doc_ids, tfs, seqs, counts, positions, _ = decode_posting_block(data, offset)

    postings = []
    start = 0
    for doc_id, tf, seq, count in zip(
        doc_ids.tolist(), tfs.tolist(), seqs.tolist(), counts.tolist()
    ):
        postings.append(Posting(doc_id, tf, tuple(positions[start : start + count].tolist()), seq))
        start += count

    return tuple(postings)


def save_shard(shard: Shard, index_path: str) -> dict:
    """Writes the live postings of `shard`. Tombstoned postings are not persisted."""
    index_file, terms_file, meta_file = shard_paths(index_path, shard.shard_id)

    # captured first, a concurrent write can only make the saved image older, never torn
    sequence_number = shard.sequence_number
    items = []
    num_postings = 0

    with filelock.FileLock(index_file + ".lock"):
        with open(index_file, "wb") as f:
            for term, postings in shard.live_postings():
                items.append((term, struct.pack(OFFSET_KEY, f.tell())))
                f.write(encode_posting_block(postings))
                num_postings += len(postings)

        marisa_trie.BytesTrie(items).save(terms_file)

        meta = {
            "shard_id": shard.shard_id,
            "sequence_number": sequence_number,
            "num_terms": len(items),
            "num_postings": num_postings,
        }
        with open(meta_file, "w") as f:
            json.dump(meta, f)

    logger.info(f"Saved shard {shard.shard_id}: {len(items)} terms, {num_postings} postings")
    return meta


def load_shard(shard_id: int, index_path: str, shard_kwargs: dict | None = None) -> Shard:
    shard_kwargs = shard_kwargs or {}
    index_file, terms_file, meta_file = shard_paths(index_path, shard_id)

    with filelock.FileLock(index_file + ".lock"):
        with open(meta_file, "r") as f:
            meta = json.load(f)

        term_fst = marisa_trie.BytesTrie()
        term_fst.load(terms_file)

        postings = {}
        if os.path.getsize(index_file) > 0:
            with open(index_file, "rb") as f:
                with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mm:
                    data = np.frombuffer(mm, dtype=np.uint8)
                    for term in term_fst.keys():
                        (offset,) = struct.unpack(OFFSET_KEY, term_fst[term][0])
                        postings[term] = read_postings(data, offset)
                    # the mmap cannot close while a numpy view still exports its buffer
                    del data

    shard = Shard(shard_id, **shard_kwargs)
    shard.restore(Segment(postings), meta["sequence_number"])

    logger.info(f"Loaded shard {shard_id}: {len(postings)} terms, seq {meta['sequence_number']}")
    return shard


def save_index(index_path: str, router: IndexRouter, documents, config: dict | None = None):
    os.makedirs(index_path, exist_ok=True)

    for shard in router.all_shards():
        save_shard(shard, index_path)

    documents_file = os.path.join(index_path, DOCUMENTS_FILE)
    with filelock.FileLock(documents_file + ".lock"):
        with open(documents_file, "w") as f:
            json.dump(documents.to_json(), f)

    config = dict(config or {})
    config["num_shards"] = router.num_shards
    with open(os.path.join(index_path, CONFIG_FILE), "w") as f:
        json.dump(config, f, indent=2)

    logger.info(f"Saved index with {router.num_shards} shards to {index_path}")


def load_config(index_path: str) -> dict:
    with open(os.path.join(index_path, CONFIG_FILE), "r") as f:
        return json.load(f)


def load_index(index_path: str, shard_kwargs: dict | None = None):
    """
    Returns:
        router: IndexRouter - one restored shard per saved shard
        documents: dict - raw document table, see `DocumentTable.from_json`
        config: dict - the saved configuration
    """
    config = load_config(index_path)

    shards = [
        load_shard(shard_id, index_path, shard_kwargs=shard_kwargs)
        for shard_id in range(config["num_shards"])
    ]
    router = IndexRouter(len(shards), shards=shards, shard_kwargs=shard_kwargs)

    documents_file = os.path.join(index_path, DOCUMENTS_FILE)
    with filelock.FileLock(documents_file + ".lock"):
        with open(documents_file, "r") as f:
            documents = json.load(f)

    logger.info(f"Loaded index with {router.num_shards} shards from {index_path}")
    return router, documents, config
