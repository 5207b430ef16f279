"""Webhook notifier — posts each run result as JSON to an automation hook.

Message formatting (e-mail, chat) is left to the receiving automation;
this sink only delivers the structured payload.
"""

import logging
from typing import TYPE_CHECKING

import httpx

from turtledesk.errors import Unavailable
from turtledesk.market.http import request_with_retry

if TYPE_CHECKING:
    from turtledesk.engine import RunResult

logger = logging.getLogger("turtledesk")


class WebhookNotifier:
    """``SignalSink`` that POSTs ``RunResult.to_dict()`` to *url*.

    Args:
        url: Webhook endpoint.
        timeout: Per-request timeout in seconds.
        only_with_signals: Skip delivery for runs without any signal.
    """

    def __init__(self, url: str, timeout: float = 10.0, only_with_signals: bool = False) -> None:
        if not url:
            raise ValueError("Webhook URL must not be empty")
        self._url = url
        self._timeout = timeout
        self._only_with_signals = only_with_signals

    async def publish(self, result: "RunResult") -> None:
        if self._only_with_signals and not result.signals:
            logger.debug("Run %s has no signals, webhook skipped", result.run_id)
            return

        payload = {"type": "turtle_daily_run", **result.to_dict()}
        try:
            await request_with_retry(
                "post", self._url,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise Unavailable(f"Webhook delivery failed for run {result.run_id}: {exc}") from exc
        logger.info(
            "Run %s delivered to webhook (%d signals)", result.run_id, len(result.signals),
        )
