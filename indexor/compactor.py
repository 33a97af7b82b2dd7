import logging
import threading

from indexor.router import IndexRouter
from indexor.shard import CompactionStats

logger = logging.getLogger(__name__)


class Compactor:
    """
    Background thread that periodically compacts every shard of a router.

    Compaction of a shard merges its sealed segments and purges postings whose
    tombstone is older than `retention` seconds. Lookups are never blocked: they keep
    reading whichever segment tuple they captured before the swap.
    """

    def __init__(self, router: IndexRouter, retention: float = 3600.0, interval: float = 300.0):
        self.router = router
        self.retention = retention
        self.interval = interval

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: float | None = None) -> list[CompactionStats]:
        stats = []
        for shard in self.router.all_shards():
            try:
                stats.append(shard.compact(self.retention, now=now))
            except Exception:
                # the next run retries, the shard keeps serving its current segments
                logger.exception(f"Compaction of shard {shard.shard_id} failed")

        self.runs += 1
        return stats

    def _run(self):
        logger.info(f"Compactor started, interval {self.interval}s, retention {self.retention}s")
        while not self._stop_event.wait(self.interval):
            self.run_once()
        logger.info("Compactor stopped")

    def start(self):
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="compactor", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
