import asyncio
import random
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from rpclb.logger import logger
from rpclb.twoqueue import TwoQueueCache


class ExclusionCache:
    """
    Endpoints temporarily taken out of rotation.

    Every admission expires exactly ``ttl`` seconds after it was made; a
    repeated ``exclude`` before that is a no-op and does not extend it.
    The store is bounded, so under pressure an endpoint may come back early,
    but an endpoint that was never excluded is never reported as excluded.
    """

    def __init__(
        self,
        ttl: float,
        size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: TwoQueueCache[str, float] = TwoQueueCache(size)
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._lock = threading.Lock()

    def is_excluded(self, endpoint: str) -> bool:
        with self._lock:
            deadline = self._entries.get(endpoint)
            if deadline is None:
                return False
            if self._clock() >= deadline:
                self._drop(endpoint)
                return False
            return True

    def exclude(self, endpoint: str) -> bool:
        """Returns False when the endpoint was already excluded."""
        with self._lock:
            deadline = self._entries.peek(endpoint)
            if deadline is not None and self._clock() < deadline:
                return False

            deadline = self._clock() + self.ttl
            self._entries.set(endpoint, deadline)
            self._schedule_removal(endpoint, deadline)
            return True

    def remove(self, endpoint: str) -> None:
        with self._lock:
            self._drop(endpoint)

    def excluded(self) -> List[str]:
        with self._lock:
            now = self._clock()
            return [
                endpoint
                for endpoint in self._entries.keys()
                if self._entries.peek(endpoint) > now
            ]

    def close(self) -> None:
        with self._lock:
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _schedule_removal(self, endpoint: str, deadline: float) -> None:
        old = self._timers.pop(endpoint, None)
        if old is not None:
            old.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: expiry is enforced lazily through the deadline
            return

        self._timers[endpoint] = loop.call_later(
            self.ttl, self._expire, endpoint, deadline
        )

    def _expire(self, endpoint: str, deadline: float) -> None:
        with self._lock:
            # a re-admission replaces the timer, so a firing timer is current
            self._timers.pop(endpoint, None)
            if self._entries.peek(endpoint) == deadline:
                self._entries.remove(endpoint)
                logger.info(f"[exclusion] {endpoint} is back in rotation")

    def _drop(self, endpoint: str) -> None:
        self._entries.remove(endpoint)
        handle = self._timers.pop(endpoint, None)
        if handle is not None:
            handle.cancel()


def shuffled(urls: Sequence[str], rng: Optional[random.Random] = None) -> List[str]:
    """Uniformly random permutation of ``urls``; the input is left untouched."""
    order = list(urls)
    (rng or random).shuffle(order)
    return order


class BackendPool:
    def __init__(self, name: str, urls: Sequence[str], exclusions: ExclusionCache):
        if not urls:
            raise ValueError(f"{name} pool is empty")
        self.name = name
        self.urls = tuple(urls)
        self.exclusions = exclusions

    def iter_candidates(self) -> Iterator[str]:
        # exclusion state is checked at the moment each candidate comes up
        for url in shuffled(self.urls):
            if self.exclusions.is_excluded(url):
                logger.debug(f"[{self.name}] skipping excluded {url}")
                continue
            yield url
