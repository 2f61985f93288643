import enum
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import httpx
from fastapi import Request

from rpclb.logger import logger

# not forwarded upstream: the transport frames the request for the target
REQUEST_SKIP_HEADERS = {
    "host",
    "content-length",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "te",
    "trailer",
    "upgrade",
}
# not relayed back; the body is relayed decoded and re-framed
RESPONSE_SKIP_HEADERS = {
    "content-length",
    "content-encoding",
    "transfer-encoding",
    "connection",
    "keep-alive",
}


@dataclass(frozen=True)
class RequestSnapshot:
    method: str
    path: str
    query: str = ""
    headers: Tuple[Tuple[str, str], ...] = ()
    body: bytes = b""

    @classmethod
    async def from_request(cls, request: Request) -> "RequestSnapshot":
        # buffered once, replayed for every candidate
        body = await request.body()
        return cls(
            method=request.method,
            path=request.url.path,
            query=request.url.query,
            headers=tuple(request.headers.items()),
            body=body,
        )

    def target(self, endpoint: str) -> str:
        url = endpoint + self.path
        if self.query:
            url += "?" + self.query
        return url

    def upstream_headers(self) -> list:
        return [(k, v) for k, v in self.headers if k.lower() not in REQUEST_SKIP_HEADERS]


class Outcome(enum.Enum):
    USABLE = "usable"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class ForwardResult:
    endpoint: str
    outcome: Outcome
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    error: Optional[BaseException] = None

    @property
    def usable(self) -> bool:
        return self.outcome is Outcome.USABLE


def classify(status_code: int) -> Outcome:
    if status_code == httpx.codes.TOO_MANY_REQUESTS:
        return Outcome.RATE_LIMITED
    return Outcome.USABLE


class Forwarder:
    """Sends one request snapshot to one endpoint, exactly once."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def forward(self, endpoint: str, snapshot: RequestSnapshot) -> ForwardResult:
        url = snapshot.target(endpoint)
        request = self.client.build_request(
            snapshot.method,
            url,
            headers=snapshot.upstream_headers(),
            content=snapshot.body,
        )

        try:
            r = await self.client.send(request)
        except httpx.HTTPError as exc:
            logger.warning(f"Request to {url} failed: {exc!r}")
            return ForwardResult(endpoint, Outcome.TRANSPORT_ERROR, error=exc)

        outcome = classify(r.status_code)
        if outcome is Outcome.RATE_LIMITED:
            logger.warning(f"{endpoint} answered {r.status_code}, rate limited")

        return ForwardResult(
            endpoint,
            outcome,
            status_code=r.status_code,
            headers={
                k: v for k, v in r.headers.items()
                if k.lower() not in RESPONSE_SKIP_HEADERS
            },
            content=r.content,
        )
