"""Bounded local retries for outbound HTTP calls made during population."""

from collections.abc import Callable
import logging
import time

import httpx

from app.core.errors import TransientExternalError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def send_with_retries(
    send: Callable[[], httpx.Response],
    description: str,
    max_attempts: int = 4,
    backoff_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """Return the first response that is not retryable.

    429, 5xx gateway errors and transport failures are retried with exponential
    backoff, or after ``Retry-After`` when the server sends one. Running out of
    attempts raises ``TransientExternalError``.
    """
    max_attempts = max(1, max_attempts)
    last_error = "unknown"
    for attempt in range(1, max_attempts + 1):
        try:
            response = send()
        except httpx.TransportError as exc:
            last_error = str(exc) or exc.__class__.__name__
            delay = _backoff(backoff_seconds, attempt)
        else:
            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response
            last_error = f"status={response.status_code}"
            delay = retry_after(response)
            if delay is None:
                delay = _backoff(backoff_seconds, attempt)

        if attempt < max_attempts:
            logger.warning("%s failed (%s), retrying in %.1fs", description, last_error, delay)
            sleep(delay)

    raise TransientExternalError(f"{description} failed after {max_attempts} attempts: {last_error}")


def retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _backoff(backoff_seconds: float, attempt: int) -> float:
    return backoff_seconds * (2 ** (attempt - 1))
