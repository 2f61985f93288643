import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from rpclb.alerts import SlackNotifier
from rpclb.backends import BackendPool, ExclusionCache
from rpclb.config import ConfigError, Settings, load_settings
from rpclb.failover import EXHAUSTED_BODY, EXHAUSTED_STATUS, FailoverRouter, Notifier, Relayed
from rpclb.forwarder import Forwarder, RequestSnapshot
from rpclb.logger import logger, setup_logging


class ProxyEndpoint:
    """
    Forward whatever came in to a live upstream and relay its answer.

    Registered as a plain ASGI app so the route matches every HTTP method,
    including non-standard verbs.
    """

    async def __call__(self, scope, receive, send):
        request = Request(scope, receive)
        snapshot = await RequestSnapshot.from_request(request)
        outcome = await request.app.state.router.route(snapshot)

        if isinstance(outcome, Relayed):
            result = outcome.result
            response = Response(
                status_code=result.status_code,
                content=result.content,
                headers=result.headers,
            )
        else:
            response = PlainTextResponse(EXHAUSTED_BODY, status_code=EXHAUSTED_STATUS)

        await response(scope, receive, send)


def create_app(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http = client or httpx.AsyncClient(timeout=settings.upstream_timeout)
        exclusions = ExclusionCache(settings.ttl_seconds, size=settings.cache_size)
        alerts = notifier or SlackNotifier(settings.slack_webhook_url, http)

        app.state.exclusions = exclusions
        app.state.router = FailoverRouter(
            primary=BackendPool("primary", settings.primary, exclusions),
            fallback=BackendPool("fallback", settings.fallback, exclusions),
            forwarder=Forwarder(http),
            notifier=alerts,
        )
        try:
            yield
        finally:
            if isinstance(alerts, SlackNotifier):
                await alerts.drain()
            exclusions.close()
            if client is None:
                await http.aclose()

    app = FastAPI(lifespan=lifespan)
    app.router.add_route("/{full_path:path}", ProxyEndpoint())

    return app


def run() -> None:
    setup_logging()

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error(str(exc))
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info(f"RPCs: {list(settings.primary)}")
    logger.info(f"Fallback RPCs: {list(settings.fallback)}")
    logger.info(f"Exclusion TTL: {settings.ttl_seconds:g}s")
    logger.info(f"Slack URL: {settings.slack_webhook_url}")
    logger.info(f"Load balancer started on http://{settings.host}:{settings.port}")

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
