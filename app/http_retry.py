"""Transport-level retry for outbound provider calls."""

from __future__ import annotations

import time
from typing import Callable

import requests

from app.constants import TRANSPORT_BACKOFF_BASE_SECONDS, TRANSPORT_MAX_RETRIES
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="http_retry")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient(response: requests.Response) -> bool:
    """True for rate limiting, request timeouts and server-side failures."""
    return response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500


def send_with_retry(
    send: Callable[[], requests.Response],
    *,
    operation: str,
    max_retries: int = TRANSPORT_MAX_RETRIES,
    backoff_base: float = TRANSPORT_BACKOFF_BASE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Call `send` until it returns a non-transient response or retries run out.

    Waits backoff_base ** attempt seconds (2, 4, 8) between tries. The last
    response is returned as-is when retries are exhausted so callers can map
    its status; connection errors and timeouts are re-raised on the final try.
    """
    attempt = 0
    while True:
        try:
            response = send()
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            if attempt >= max_retries:
                logger.error("%s failed after %d retries: %s", operation, attempt, exc)
                raise
            attempt += 1
            delay = backoff_base ** attempt
            logger.warning("%s transport error, retry %d after %.1fs: %s", operation, attempt, delay, exc)
            sleep(delay)
            continue

        if not is_transient(response) or attempt >= max_retries:
            return response

        attempt += 1
        delay = backoff_base ** attempt
        logger.warning(
            "%s returned %d, retry %d after %.1fs",
            operation, response.status_code, attempt, delay,
        )
        sleep(delay)
