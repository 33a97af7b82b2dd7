class SearchError(Exception):
    """Base class for every error raised by the index and query engine"""


class InvalidQuery(SearchError, ValueError):
    """Malformed or unbounded boolean expression, rejected before any shard is contacted"""


class OutOfOrderMutation(SearchError):
    def __init__(self, shard_id: int, sequence_number: int, last_sequence_number: int):
        self.shard_id = shard_id
        self.sequence_number = sequence_number
        self.last_sequence_number = last_sequence_number
        super().__init__(
            f"Shard {shard_id} rejected mutation {sequence_number}: "
            f"last applied sequence number is {last_sequence_number}"
        )


class ShardTimeout(SearchError):
    def __init__(self, shard_ids, timeout: float):
        self.shard_ids = tuple(sorted(shard_ids))
        self.timeout = timeout
        super().__init__(
            f"Shards {list(self.shard_ids)} did not answer within {timeout} seconds"
        )


class ShardUnavailable(SearchError):
    def __init__(self, shard_id: int, reason: str = "shard is offline"):
        self.shard_id = shard_id
        self.reason = reason
        super().__init__(f"Shard {shard_id} is unavailable: {reason}")


class IngestionOverloaded(SearchError):
    def __init__(self, shard_id: int, queue_depth: int):
        self.shard_id = shard_id
        self.queue_depth = queue_depth
        super().__init__(
            f"Ingestion queue for shard {shard_id} is full ({queue_depth} mutations), retry with backoff"
        )
