import logging

from flask import Flask, request, jsonify

from back_end.search import load_backend
from indexor.errors import (
    IngestionOverloaded,
    InvalidQuery,
    SearchError,
    ShardTimeout,
    ShardUnavailable,
)

logger = logging.getLogger(__name__)

app = Flask(__name__)

# set by `__main__` or by whoever embeds the app
search_module = None

RETRY_AFTER_SECONDS = 1


def _parse_bool(value) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


def _ack_json(ack) -> dict:
    return {
        "doc_id": ack.doc_id,
        "version": ack.version,
        "sequence_numbers": {str(k): v for k, v in ack.sequence_numbers.items()},
        # false while shard writers still hold some of the mutations
        "applied": ack.applied,
    }


def _parse_int(name, default):
    value = request.args.get(name, default)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidQuery(f"{name} must be an integer, got {value!r}") from e


@app.errorhandler(InvalidQuery)
def handle_invalid_query(e):
    return jsonify({"error": "invalid_query", "message": str(e)}), 400


@app.errorhandler(IngestionOverloaded)
def handle_overloaded(e):
    response = jsonify(
        {"error": "overloaded", "message": str(e), "shard_id": e.shard_id}
    )
    response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return response, 429


@app.errorhandler(ShardUnavailable)
def handle_unavailable(e):
    return jsonify(
        {"error": "shard_unavailable", "message": str(e), "shard_id": e.shard_id}
    ), 503


@app.errorhandler(ShardTimeout)
def handle_timeout(e):
    return jsonify(
        {"error": "shard_timeout", "message": str(e), "shard_ids": list(e.shard_ids)}
    ), 504


@app.errorhandler(SearchError)
def handle_search_error(e):
    logger.error(f"Unhandled search error: {e}")
    return jsonify({"error": "search_error", "message": str(e)}), 500


@app.route("/", methods=["GET"])
def hello_world():
    return "<h1>backend is running!!!</h1>"


@app.route("/health", methods=["GET"])
def health():
    shards = [
        {
            "shard_id": shard.shard_id,
            "available": shard.available,
            "sequence_number": shard.sequence_number,
        }
        for shard in search_module.router.all_shards()
    ]
    return jsonify(
        {
            "status": "ok" if all(x["available"] for x in shards) else "degraded",
            "documents": len(search_module.documents),
            "shards": shards,
        }
    ), 200


@app.route("/search", methods=["GET"])
def search():
    """
    Structure of the request:
        query: str - boolean query (AND, OR, NOT, parentheses, "phrases")
        page: int [default: 0]
        size: int [default: 20]
        partial: bool [default: False] - accept results missing timed out shards

    Structure of the response:
        query: str
        documents: list[str] - document ids, best match first
        scores: list[float]
        truncated: bool
        total_results: int # Total number from the search (not on the page)
        partial: bool
        page: int
        size: int
        has_next: bool
        has_prev: bool

    Error Codes:
        200: OK
        400: Bad Request
        503: Shard Unavailable
        504: Shard Timeout
    """
    query = request.args.get("query", "")
    page = _parse_int("page", 0)
    size = _parse_int("size", 20)
    allow_partial = _parse_bool(request.args.get("partial", False))

    result = search_module.search(
        query, page=page, size=size, allow_partial=allow_partial
    )

    return jsonify(result.to_json()), 200


@app.route("/documents/<doc_id>", methods=["PUT"])
def index_document(doc_id):
    """
    Structure of the request:
        fields: list[str]

    Error Codes:
        202: Accepted (applied asynchronously)
        400: Bad Request
        429: Ingestion Overloaded
    """
    body = request.get_json(silent=True) or {}
    fields = body.get("fields")
    if isinstance(fields, str):
        fields = [fields]
    if not isinstance(fields, list) or not all(isinstance(x, str) for x in fields):
        raise InvalidQuery("Body must be JSON with a list of strings under 'fields'")

    ack = search_module.index_document(doc_id, fields)

    return jsonify(_ack_json(ack)), 202


@app.route("/documents/<doc_id>", methods=["DELETE"])
def delete_document(doc_id):
    ack = search_module.delete_document(doc_id)

    return jsonify(_ack_json(ack)), 202


# main driver function
if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Search Engine")
    parser.add_argument("--index-path", type=str, help="Path to load index")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8088)
    args = parser.parse_args()

    search_module = load_backend(args.index_path)
    search_module.start()
    try:
        app.run(host=args.host, port=args.port)
    finally:
        search_module.close()
