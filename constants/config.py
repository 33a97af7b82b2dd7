import os
from dataclasses import asdict, dataclass, fields

from dotenv import load_dotenv

load_dotenv()


def _env(name, default, cast):
    value = os.getenv(name)
    if value is None or value == "":
        return default

    try:
        return cast(value)
    except ValueError as e:
        raise ValueError(f"Invalid value {value!r} for {name}") from e


@dataclass
class SearchConfig:
    num_shards: int = 8
    # result cache
    cache_ttl: float = 30.0
    cache_max_size: int = 100_000
    # query fan-out
    query_timeout: float = 2.0
    fan_out_workers: int = 16
    scorer: str = "frequency"
    normalizer: str = "default"
    parser_type: str = "raw"
    # ingestion
    queue_depth: int = 10_000
    batch_size: int = 256
    segment_size: int = 50_000
    # compaction
    retention_window: float = 3600.0
    compaction_interval: float = 300.0
    index_path: str = ""

    def __post_init__(self):
        if self.num_shards < 1:
            raise ValueError(f"num_shards must be positive, got {self.num_shards}")
        # re-indexing can put a remove and an add on the same shard in one request
        if self.queue_depth < 2:
            raise ValueError(f"queue_depth must be at least 2, got {self.queue_depth}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.cache_ttl < 0 or self.retention_window < 0:
            raise ValueError("cache_ttl and retention_window cannot be negative")

    @staticmethod
    def from_env(**overrides) -> "SearchConfig":
        config = {
            "num_shards": _env("SEARCH_SHARD_COUNT", 8, int),
            "cache_ttl": _env("SEARCH_CACHE_TTL", 30.0, float),
            "cache_max_size": _env("SEARCH_CACHE_MAX_SIZE", 100_000, int),
            "query_timeout": _env("SEARCH_QUERY_TIMEOUT", 2.0, float),
            "fan_out_workers": _env("SEARCH_FAN_OUT_WORKERS", 16, int),
            "scorer": _env("SEARCH_SCORER", "frequency", str),
            "normalizer": _env("SEARCH_NORMALIZER", "default", str),
            "parser_type": _env("SEARCH_PARSER", "raw", str),
            "queue_depth": _env("SEARCH_QUEUE_DEPTH", 10_000, int),
            "batch_size": _env("SEARCH_BATCH_SIZE", 256, int),
            "segment_size": _env("SEARCH_SEGMENT_SIZE", 50_000, int),
            "retention_window": _env("SEARCH_RETENTION_WINDOW", 3600.0, float),
            "compaction_interval": _env("SEARCH_COMPACTION_INTERVAL", 300.0, float),
            "index_path": _env("SEARCH_INDEX_PATH", "", str),
        }
        config.update(overrides)

        return SearchConfig(**config)

    @staticmethod
    def from_json(data: dict) -> "SearchConfig":
        known = {f.name for f in fields(SearchConfig)}
        return SearchConfig(**{k: v for k, v in data.items() if k in known})

    def to_json(self) -> dict:
        return asdict(self)
