import threading
import unittest

import pytest

from cookbook.background import BackgroundWorker
from cookbook.cancel import CancellationToken, CancelledError
from cookbook.parallel import parallel_for_each


class BackgroundWorkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.worker = BackgroundWorker(name="test-worker")
        self.addCleanup(self.worker.stop)

    def test_jobs_run_in_queue_order(self) -> None:
        seen = []
        for number in range(5):
            self.worker.queue_background_work(lambda token, number=number: seen.append(number))

        self.assertTrue(self.worker.wait_until_idle(timeout=5))
        self.assertEqual([0, 1, 2, 3, 4], seen)

    def test_failing_job_does_not_stop_the_worker(self) -> None:
        seen = []

        def explode(token):
            raise RuntimeError("disk full")

        with self.assertLogs("cookbook.background", level="ERROR"):
            self.worker.queue_background_work(explode)
            self.worker.queue_background_work(lambda token: seen.append("after"))
            self.assertTrue(self.worker.wait_until_idle(timeout=5))

        self.assertEqual(["after"], seen)
        self.assertTrue(self.worker.running)

    def test_wait_until_idle_times_out_while_busy(self) -> None:
        release = threading.Event()
        self.worker.queue_background_work(lambda token: release.wait(5))
        threads_before = threading.active_count()

        for _ in range(5):
            self.assertFalse(self.worker.wait_until_idle(timeout=0.01))
        self.assertEqual(threads_before, threading.active_count())
        release.set()
        self.assertTrue(self.worker.wait_until_idle(timeout=5))

    def test_stop_cancels_the_worker_token(self) -> None:
        tokens = []
        self.worker.queue_background_work(tokens.append)
        self.worker.wait_until_idle(timeout=5)

        self.worker.stop()

        self.assertTrue(tokens[0].cancelled)
        self.assertFalse(self.worker.running)


def test_linked_token_follows_parent():
    parent = CancellationToken()
    child = CancellationToken.linked(parent)

    assert not child.cancelled
    parent.request_cancel()
    assert child.cancelled
    with pytest.raises(CancelledError):
        child.raise_if_cancelled()


def test_parallel_for_each_visits_every_item():
    seen = []
    lock = threading.Lock()

    def record(item, token):
        with lock:
            seen.append(item)

    parallel_for_each(range(10), record, max_parallelism=4)

    assert sorted(seen) == list(range(10))


def test_parallel_for_each_skips_items_after_cancellation():
    seen = []

    def stop_at_two(item, token):
        seen.append(item)
        if len(seen) == 2:
            token.request_cancel()

    parallel_for_each(range(6), stop_at_two, max_parallelism=1)

    assert seen == [0, 1]


def test_parallel_for_each_respects_caller_token():
    token = CancellationToken()
    token.request_cancel()
    seen = []

    parallel_for_each([1, 2, 3], lambda item, _: seen.append(item), max_parallelism=2, cancellation=token)

    assert seen == []


def test_parallel_for_each_reraises_first_error():
    seen = []

    def fail_on_one(item, token):
        if item == 1:
            raise ValueError("bad item")
        seen.append(item)

    with pytest.raises(ValueError, match="bad item"):
        parallel_for_each([0, 1, 2, 3], fail_on_one, max_parallelism=1)

    assert seen == [0]


def test_cancelled_error_inside_action_is_not_raised():
    def abort(item, token):
        raise CancelledError("stop")

    parallel_for_each([1, 2], abort, max_parallelism=2)
