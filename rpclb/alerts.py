import asyncio
from typing import Any, Dict, Set

import httpx

from rpclb.logger import logger

PRIMARY_EXHAUSTED = "WARNING : All RPCs are reaching their ratelimits."
FALLBACK_EXHAUSTED = "FATAL : Even fallback RPCs are reaching their ratelimits."

ALERT_COLOR = "#FF0000"
ALERT_TITLE = "Load Balancer Error"
ALERT_DETAIL = (
    "All RPCs are reaching their ratelimits, consider increasing the number "
    "of RPCs or the rate limit for each one."
)


def build_payload(source: str, message: str) -> Dict[str, Any]:
    text = f"{source} > {message}"
    return {
        "attachments": [
            {
                "fallback": text,
                "pretext": text,
                "color": ALERT_COLOR,
                "fields": [
                    {"title": ALERT_TITLE, "value": ALERT_DETAIL, "short": False},
                ],
            }
        ]
    }


class SlackNotifier:
    """
    Best-effort operator alerts through a Slack incoming webhook.

    ``notify`` never blocks or raises: delivery runs as a background task
    and any failure ends up in the log only.
    """

    def __init__(self, webhook_url: str, client: httpx.AsyncClient, source: str = "LoadBalancer"):
        self.webhook_url = webhook_url
        self.client = client
        self.source = source
        self._pending: Set[asyncio.Task] = set()

    def notify(self, message: str) -> None:
        task = asyncio.get_running_loop().create_task(self.deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def deliver(self, message: str) -> bool:
        try:
            r = await self.client.post(self.webhook_url, json=build_payload(self.source, message))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error(f"Failed to send alert to Slack: {exc!r}")
            return False

        if r.status_code != httpx.codes.OK:
            logger.error(f"Slack notification failed with status {r.status_code}: {r.text}")
            return False

        logger.info("Slack notification sent successfully")
        return True

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
