import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor

from app.app_types import ProcessingResult, SkipReason
from app.errors import ErrorKind
from app.webhook_retry import WebhookRetryController


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _not_found(activity_id):
    return ProcessingResult.failed(
        activity_id, "Resource not found or not accessible", ErrorKind.UPSTREAM_NOT_FOUND,
        reason=SkipReason.UPSTREAM_NOT_FOUND,
    )


class ScriptedProcessor:
    """Return queued results; optionally advance the fake clock per attempt."""

    def __init__(self, results, clock=None, attempt_seconds=0.0):
        self.results = list(results)
        self.clock = clock
        self.attempt_seconds = attempt_seconds
        self.calls = []

    def process(self, activity_id, user_id):
        self.calls.append((activity_id, user_id))
        if self.clock is not None:
            self.clock.now += self.attempt_seconds
        return self.results.pop(0)


class TestWebhookRetryController(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.waits = []

    def _wait(self, seconds):
        self.waits.append(seconds)
        self.clock.now += seconds

    def _controller(self, processor, **kwargs):
        return WebhookRetryController(
            processor, clock=self.clock, wait=self._wait, **kwargs
        )

    def test_success_on_first_attempt_does_not_wait(self):
        processor = ScriptedProcessor([ProcessingResult(success=True, activity_id="1")])
        result = self._controller(processor).process_with_retry("1", "u")
        self.assertTrue(result.success)
        self.assertEqual(self.waits, [])

    def test_two_not_found_then_success(self):
        processor = ScriptedProcessor([_not_found("1"), _not_found("1"), ProcessingResult(success=True, activity_id="1")])
        result = self._controller(processor).process_with_retry("1", "u")

        self.assertTrue(result.success)
        self.assertEqual(self.waits, [1.5, 3.0])
        self.assertEqual(len(processor.calls), 3)

    def test_all_attempts_fail_with_combined_message(self):
        processor = ScriptedProcessor([_not_found("1")] * 3)
        result = self._controller(processor).process_with_retry("1", "u")

        self.assertFalse(result.success)
        self.assertIs(result.error_kind, ErrorKind.UPSTREAM_NOT_FOUND)
        self.assertEqual(
            result.error,
            "Max retry attempts exceeded. Errors: "
            "Attempt 1: Resource not found or not accessible; "
            "Attempt 2: Resource not found or not accessible; "
            "Attempt 3: Resource not found or not accessible",
        )

    def test_third_attempt_past_deadline_fails_instead(self):
        # Each attempt burns 3s: 0->3, wait 1.5 -> 4.5, 4.5->7.5, then 7.5 + 3.0 >= 8.
        processor = ScriptedProcessor(
            [_not_found("1"), _not_found("1"), ProcessingResult(success=True, activity_id="1")],
            clock=self.clock,
            attempt_seconds=3.0,
        )
        result = self._controller(processor).process_with_retry("1", "u")

        self.assertFalse(result.success)
        self.assertIs(result.error_kind, ErrorKind.TIMEOUT)
        self.assertEqual(len(processor.calls), 2)
        self.assertEqual(self.waits, [1.5])
        self.assertIn("Attempt 2", result.error)

    def test_non_retryable_error_returns_immediately(self):
        failure = ProcessingResult.failed("1", "Strava access token expired or invalid", ErrorKind.CREDENTIAL_INVALID)
        processor = ScriptedProcessor([failure])
        result = self._controller(processor).process_with_retry("1", "u")
        self.assertIs(result, failure)
        self.assertEqual(self.waits, [])

    def test_skip_returns_immediately(self):
        skip = ProcessingResult.skip("1", SkipReason.NO_COORDINATES, success=False)
        processor = ScriptedProcessor([skip])
        self.assertIs(self._controller(processor).process_with_retry("1", "u"), skip)

    def test_hung_attempt_is_abandoned_at_deadline(self):
        release = threading.Event()
        self.addCleanup(release.set)

        class HangingProcessor:
            def process(self, activity_id, user_id):
                release.wait(5)
                return ProcessingResult(success=True, activity_id=activity_id)

        controller = WebhookRetryController(HangingProcessor())
        result = controller.process_with_retry("1", "u", deadline_seconds=0.1)
        self.assertFalse(result.success)
        self.assertIs(result.error_kind, ErrorKind.TIMEOUT)

    def test_concurrent_sessions_do_not_queue_behind_each_other(self):
        class SlowProcessor:
            def process(self, activity_id, user_id):
                time.sleep(0.3)
                return ProcessingResult(success=True, activity_id=activity_id)

        controller = WebhookRetryController(SlowProcessor())
        ids = [str(n) for n in range(8)]
        with ThreadPoolExecutor(max_workers=len(ids)) as pool:
            results = list(pool.map(lambda aid: controller.process_with_retry(aid, "u", deadline_seconds=2.0), ids))

        self.assertTrue(all(r.success for r in results), [r.error for r in results])
        self.assertEqual(sorted(r.activity_id for r in results), sorted(ids))

    def test_abandoned_attempts_do_not_starve_later_sessions(self):
        release = threading.Event()
        self.addCleanup(release.set)

        class Processor:
            def process(self, activity_id, user_id):
                if activity_id.startswith("hang"):
                    release.wait(5)
                return ProcessingResult(success=True, activity_id=activity_id)

        controller = WebhookRetryController(Processor())
        for n in range(6):
            hung = controller.process_with_retry(f"hang-{n}", "u", deadline_seconds=0.05)
            self.assertIs(hung.error_kind, ErrorKind.TIMEOUT)

        result = controller.process_with_retry("42", "u", deadline_seconds=2.0)
        self.assertTrue(result.success, result.error)


if __name__ == "__main__":
    unittest.main()
