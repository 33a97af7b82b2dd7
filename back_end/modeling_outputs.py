from dataclasses import asdict, dataclass, field


@dataclass
class SearchResult:
    query: str
    # external document ids, best match first
    documents: list[str] = field(default_factory=list)
    scores: list[float] = field(default_factory=list)
    truncated: bool = False
    total_results: int = 0
    partial: bool = False
    time_taken: float = 0.0
    page: int = 0
    size: int = 20
    failed_shards: list[int] = field(default_factory=list)

    def __str__(self):
        return f"Search Result(\n\tdocuments={self.documents[:5]}\n\ttime_taken={self.time_taken}\n\ttotal_results={self.total_results}\n\ttruncated={self.truncated}\n\tquery={self.query}\n)"

    @property
    def has_next(self) -> bool:
        return (self.page + 1) * self.size < self.total_results

    @property
    def has_prev(self) -> bool:
        return self.page > 0

    def to_json(self) -> dict:
        out = asdict(self)
        out["has_next"] = self.has_next
        out["has_prev"] = self.has_prev
        return out
