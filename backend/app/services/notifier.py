import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Best-effort delivery of job outcomes to the caller's webhook URL."""

    def __init__(self, timeout_seconds: float = 10.0, http_client: httpx.Client | None = None):
        self.http_client = http_client or httpx.Client(timeout=timeout_seconds)

    def notify(self, url: str | None, payload: dict[str, Any]) -> bool:
        if not url:
            return False
        try:
            response = self.http_client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to deliver %s webhook for job %s to %s: %s", payload.get("status"), payload.get("jobId"), url, exc)
            return False
        return True
