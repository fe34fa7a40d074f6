"""Bounded retries around the activity processor for webhook deliveries.

Strava sometimes notifies us before the activity is readable through the
API, so not-found (and timeout) results are retried after short fixed
delays. The whole session is bounded by a wall-clock deadline so the
webhook acknowledgment is never held up indefinitely.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, List, Optional, Sequence, Tuple

from app.activity_processor import ActivityProcessor
from app.app_types import ProcessingResult
from app.constants import (
    WEBHOOK_MAX_PROCESSING_SECONDS,
    WEBHOOK_MAX_RETRY_ATTEMPTS,
    WEBHOOK_RETRY_DELAYS_SECONDS,
)
from app.errors import ErrorKind
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="webhook_retry")


def _summarize(errors: List[Tuple[int, str]]) -> str:
    return "; ".join(f"Attempt {attempt}: {error}" for attempt, error in errors)


class WebhookRetryController:
    """Run `ActivityProcessor.process` up to `max_attempts` times before a deadline."""

    def __init__(
        self,
        processor: ActivityProcessor,
        *,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[float], None] = time.sleep,
        max_attempts: int = WEBHOOK_MAX_RETRY_ATTEMPTS,
        delays: Sequence[float] = WEBHOOK_RETRY_DELAYS_SECONDS,
        deadline_seconds: float = WEBHOOK_MAX_PROCESSING_SECONDS,
    ) -> None:
        self.processor = processor
        self.clock = clock
        self.wait = wait
        self.max_attempts = max_attempts
        self.delays = tuple(delays)
        self.deadline_seconds = deadline_seconds

    def _delay_before(self, attempt: int) -> float:
        if not self.delays:
            return 0.0
        return self.delays[min(attempt - 1, len(self.delays) - 1)]

    def process_with_retry(
        self, activity_id: str, user_id: str, deadline_seconds: Optional[float] = None
    ) -> ProcessingResult:
        activity_id = str(activity_id)
        deadline = self.clock() + (deadline_seconds if deadline_seconds is not None else self.deadline_seconds)
        # One worker per session: attempts never queue behind other deliveries.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"webhook-{activity_id}")
        try:
            return self._run_attempts(executor, activity_id, user_id, deadline)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_attempts(
        self, executor: ThreadPoolExecutor, activity_id: str, user_id: str, deadline: float
    ) -> ProcessingResult:
        errors: List[Tuple[int, str]] = []
        last_kind = ErrorKind.INTERNAL

        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self._delay_before(attempt)
                if self.clock() + delay >= deadline:
                    logger.warning(
                        "Deadline reached before attempt %d for activity %s", attempt + 1, activity_id,
                        extra={"attempts": attempt},
                    )
                    return self._deadline_result(activity_id, errors)
                logger.info(
                    "Retrying activity %s in %.1fs (attempt %d/%d)",
                    activity_id, delay, attempt + 1, self.max_attempts,
                )
                self.wait(delay)

            remaining = deadline - self.clock()
            if remaining <= 0:
                return self._deadline_result(activity_id, errors)

            future = executor.submit(self.processor.process, activity_id, user_id)
            try:
                result = future.result(timeout=remaining)
            except FutureTimeout:
                future.cancel()
                logger.error(
                    "Attempt %d for activity %s did not finish before the deadline", attempt + 1, activity_id,
                )
                errors.append((attempt + 1, "Attempt timed out"))
                return self._deadline_result(activity_id, errors)

            if result.success or result.skipped:
                if attempt > 0:
                    logger.info("Activity %s processed on attempt %d", activity_id, attempt + 1)
                return result

            kind = result.error_kind or ErrorKind.INTERNAL
            if not kind.retryable:
                logger.info(
                    "Non-retryable failure for activity %s: %s", activity_id, result.error,
                    extra={"error_kind": kind.value},
                )
                return result

            errors.append((attempt + 1, result.error or kind.value))
            last_kind = kind
            logger.warning(
                "Attempt %d for activity %s failed: %s", attempt + 1, activity_id, result.error,
                extra={"error_kind": kind.value},
            )

        message = f"Max retry attempts exceeded. Errors: {_summarize(errors)}"
        logger.error("Giving up on activity %s: %s", activity_id, message)
        return ProcessingResult.failed(activity_id, message, last_kind)

    def _deadline_result(self, activity_id: str, errors: List[Tuple[int, str]]) -> ProcessingResult:
        message = "Processing deadline exceeded"
        if errors:
            message = f"{message}. Errors: {_summarize(errors)}"
        logger.error("Giving up on activity %s: %s", activity_id, message)
        return ProcessingResult.failed(activity_id, message, ErrorKind.TIMEOUT)

