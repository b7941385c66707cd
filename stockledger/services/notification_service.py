"""Threshold notifications.

Delivery is fire-and-forget: a failing sink is logged and never propagates
back into the stock mutation that produced the event.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx
from fastapi import BackgroundTasks

from stockledger.config import settings

logger = logging.getLogger(__name__)

STOCK_THRESHOLD_REACHED = "STOCK_THRESHOLD_REACHED"


@dataclass(frozen=True)
class ThresholdEvent:
    product_id: str
    message: str
    type: str = STOCK_THRESHOLD_REACHED

    def to_payload(self) -> dict:
        return asdict(self)


class Notifier(Protocol):
    def notify(self, event: ThresholdEvent) -> None: ...


class LogNotifier:
    def notify(self, event: ThresholdEvent) -> None:
        logger.warning("%s: %s", event.type, event.message)


class WebhookNotifier:
    """POST each event to every configured callback URL."""

    def __init__(self, urls: list[str], timeout: float = 10.0):
        self.urls = urls
        self.timeout = timeout

    def notify(self, event: ThresholdEvent) -> list[dict]:
        if not self.urls:
            return []

        payload = event.to_payload()
        results = []

        with httpx.Client(timeout=self.timeout) as client:
            for url in self.urls:
                try:
                    resp = client.post(url, json=payload)
                    results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
                except httpx.HTTPError as e:
                    logger.error("Notification failed for %s: %s", url, e)
                    results.append({"url": url, "status": 0, "success": False, "error": str(e)})

        return results


class BackgroundNotifier:
    """Defer delivery until after the response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, inner: Notifier):
        self.background_tasks = background_tasks
        self.inner = inner

    def notify(self, event: ThresholdEvent) -> None:
        self.background_tasks.add_task(self.inner.notify, event)


def build_notifier() -> Notifier:
    urls = settings.webhook_urls
    if urls:
        return WebhookNotifier(urls, timeout=settings.NOTIFY_TIMEOUT_SECONDS)
    return LogNotifier()


def dispatch(notifier: Notifier | None, event: ThresholdEvent) -> bool:
    """Hand ``event`` to ``notifier``; returns False if delivery raised."""
    if notifier is None:
        return False
    try:
        notifier.notify(event)
    except Exception:
        logger.exception("Notifier %s failed for product %s", type(notifier).__name__, event.product_id)
        return False
    return True
