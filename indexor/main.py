import json
import logging
import time

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from constants.config import SearchConfig
from back_end.search import SearchService, load_backend
from indexor.errors import IngestionOverloaded, SearchError

logger = logging.getLogger(__name__)


def read_documents(path: str):
    """
    Yields (doc_id, fields) from a JSON lines file. Each line holds a `doc_id` and
    either a list of `fields` or a single `text`.
    """
    with open(path, "r") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            item = json.loads(line)
            if "doc_id" not in item:
                raise ValueError(f"{path}:{line_no} has no doc_id")

            fields = item.get("fields")
            if fields is None:
                fields = [item.get("text", "")]
            yield str(item["doc_id"]), fields


def index_file(service: SearchService, path: str, max_retries: int = 50, max_wait: float = 2.0) -> int:
    """
    Enqueues every document of `path` and waits for the shard writers. A request
    rejected with `IngestionOverloaded` is retried with exponential backoff while the
    writers drain their queues.
    """
    retrying = Retrying(
        retry=retry_if_exception_type(IngestionOverloaded),
        wait=wait_random_exponential(multiplier=0.01, max=max_wait),
        stop=stop_after_attempt(max_retries),
        reraise=True,
    )

    start = time.time()
    count = 0
    for doc_id, fields in read_documents(path):
        retrying(service.index_document, doc_id, fields)

        count += 1
        if count % 10_000 == 0:
            logger.info(f"Enqueued {count} documents")

    service.flush()
    logger.info(f"Indexed {count} documents in {time.time() - start:.2f} seconds")
    return count


if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Build and query a sharded index")
    parser.add_argument("--documents", type=str, help="JSON lines file to index")
    parser.add_argument("--index-path", type=str, help="Directory to load from and save to")
    parser.add_argument("--num-shards", type=int, default=None)
    parser.add_argument("--page-size", type=int, default=10)
    parser.add_argument("--no-interactive", action="store_true")
    args = parser.parse_args()

    overrides = {}
    if args.num_shards is not None:
        overrides["num_shards"] = args.num_shards
    service = load_backend(args.index_path, SearchConfig.from_env(**overrides) if overrides else None)

    with service:
        if args.documents:
            index_file(service, args.documents)
            if args.index_path:
                service.save(args.index_path)

        if args.no_interactive:
            raise SystemExit(0)

        while True:
            try:
                query = input("Enter query: ")
            except EOFError:
                break

            try:
                result = service.search(query, size=args.page_size)
            except SearchError as e:
                print(f"Error: {e}")
                continue

            print(result)
