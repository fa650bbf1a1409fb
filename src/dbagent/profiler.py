"""
Connection and query timing.
"""
import logging
import time

logger = logging.getLogger(__name__)

__all__ = ['Profiler']


class Profiler:
    """Track connection/query timings, query count and the last query.

    Each profile keeps the duration of the last measurement (`last`) and
    the running sum over all measurements (`total`).

    Examples
        profiler = Profiler()
        profiler.start(Profiler.QUERY)
        ...
        profiler.stop(Profiler.QUERY)
        profiler.get(Profiler.QUERY)['last']
    """

    CONNECTION = 'connection'
    QUERY = 'query'

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._profiles: dict[str, dict[str, float]] = {}
        self._started: dict[str, float] = {}
        self.query_count = 0
        self.last_query: str | None = None

    def add_query(self, sql: str) -> None:
        self.query_count += 1
        self.last_query = sql

    def start(self, key: str) -> None:
        self._started[key] = time.perf_counter()

    def stop(self, key: str) -> None:
        if key not in self._started:
            raise KeyError(f'Could not find a profile for {key!r}, call start() first')
        elapsed = time.perf_counter() - self._started.pop(key)
        profile = self._profiles.setdefault(key, {'last': 0.0, 'total': 0.0, 'count': 0})
        profile['last'] = elapsed
        profile['total'] += elapsed
        profile['count'] += 1
        logger.debug(f'Profile {key}: {elapsed:.4f}s')

    def get(self, key: str) -> dict[str, float] | None:
        return self._profiles.get(key)

    @property
    def total_time(self) -> float:
        """Sum of all measured time across profiles."""
        return sum(p['total'] for p in self._profiles.values())
