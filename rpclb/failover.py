"""
Two-phase failover routing.

A request is tried against the primary pool in random order, skipping
endpoints that are currently excluded. Endpoints that answer 429 or fail at
the transport level are excluded for the configured TTL and the next
candidate is tried. When the primary pool has nothing usable left, operators
get a warning and the fallback pool is tried the same way; when that is
exhausted too, a fatal alert goes out and the caller gets a 500.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Union

from rpclb.alerts import FALLBACK_EXHAUSTED, PRIMARY_EXHAUSTED
from rpclb.backends import BackendPool
from rpclb.forwarder import Forwarder, ForwardResult, RequestSnapshot
from rpclb.logger import logger

EXHAUSTED_STATUS = 500
EXHAUSTED_BODY = "All RPCs are reaching their ratelimits."


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


@dataclass(frozen=True)
class Relayed:
    result: ForwardResult


@dataclass(frozen=True)
class PrimaryExhausted:
    pass


@dataclass(frozen=True)
class FallbackExhausted:
    pass


RoutingOutcome = Union[Relayed, PrimaryExhausted, FallbackExhausted]


class FailoverRouter:
    def __init__(
        self,
        primary: BackendPool,
        fallback: BackendPool,
        forwarder: Forwarder,
        notifier: Notifier,
    ):
        self.primary = primary
        self.fallback = fallback
        self.forwarder = forwarder
        self.notifier = notifier

    async def route(self, snapshot: RequestSnapshot) -> RoutingOutcome:
        outcome = await self.run_phase(self.primary, snapshot, PrimaryExhausted())
        if isinstance(outcome, Relayed):
            return outcome

        logger.warning(f"All {self.primary.name} RPCs exhausted for {snapshot.method} {snapshot.path}, trying {self.fallback.name}")
        self.notifier.notify(PRIMARY_EXHAUSTED)

        outcome = await self.run_phase(self.fallback, snapshot, FallbackExhausted())
        if isinstance(outcome, FallbackExhausted):
            logger.error(f"All {self.fallback.name} RPCs exhausted for {snapshot.method} {snapshot.path}")
            self.notifier.notify(FALLBACK_EXHAUSTED)
        return outcome

    async def run_phase(
        self,
        pool: BackendPool,
        snapshot: RequestSnapshot,
        exhausted: RoutingOutcome,
    ) -> RoutingOutcome:
        result = await self.try_pool(pool, snapshot)
        if result is None:
            return exhausted
        return Relayed(result)

    async def try_pool(self, pool: BackendPool, snapshot: RequestSnapshot) -> Optional[ForwardResult]:
        for endpoint in pool.iter_candidates():
            result = await self.forwarder.forward(endpoint, snapshot)
            if result.usable:
                logger.info(f"{result.status_code} {endpoint}")
                return result

            if pool.exclusions.exclude(endpoint):
                logger.info(f"[{pool.name}] excluded {endpoint} for {pool.exclusions.ttl:g}s ({result.outcome.value})")

        return None
