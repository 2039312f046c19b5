"""Unit tests for the bounded batch runner."""
import threading
import time

import psycopg2
import pytest

from eips_insight.exceptions import NotFoundError, UpstreamUnavailableError
from eips_insight.lifecycle.batch import run_batch


class TestRunBatch:
    """Per-item isolation and bounded concurrency."""

    def test_all_succeed_in_key_order(self):
        outcome = run_batch(lambda n: n * n, [3, 1, 2])
        assert outcome.ok
        assert outcome.ordered([3, 1, 2]) == [9, 1, 4]

    def test_upstream_failure_isolated(self):
        """One unavailable item does not fail its siblings."""
        def fetch(n):
            if n == 2:
                raise UpstreamUnavailableError("db down")
            return n

        outcome = run_batch(fetch, [1, 2, 3])
        assert not outcome.ok
        assert outcome.ordered([1, 2, 3]) == [1, 3]
        assert isinstance(outcome.failures[2], UpstreamUnavailableError)

    def test_other_lifecycle_errors_isolated(self):
        def fetch(n):
            raise NotFoundError(f"{n} missing")

        outcome = run_batch(fetch, [1])
        assert outcome.failures[1].code == 404

    def test_programming_errors_propagate(self):
        def fetch(n):
            raise KeyError(n)

        with pytest.raises(KeyError):
            run_batch(fetch, [1])

    @pytest.mark.parametrize("error", [psycopg2.OperationalError("server closed the connection"), ConnectionResetError()])
    def test_transient_driver_errors_isolated(self, error):
        def fetch(n):
            if n == 2:
                raise error
            return n

        outcome = run_batch(fetch, [1, 2, 3])
        assert outcome.ordered([1, 2, 3]) == [1, 3]
        assert isinstance(outcome.failures[2], UpstreamUnavailableError)

    def test_duplicate_keys_run_once(self):
        calls = []
        lock = threading.Lock()

        def fetch(n):
            with lock:
                calls.append(n)
            return n

        run_batch(fetch, [1, 1, 2])
        assert sorted(calls) == [1, 2]

    def test_empty(self):
        outcome = run_batch(lambda n: n, [])
        assert outcome.ok and outcome.results == {}

    def test_concurrency_bounded(self):
        active = 0
        peak = 0
        lock = threading.Lock()

        def fetch(n):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return n

        run_batch(fetch, range(12), max_workers=3)
        assert 1 <= peak <= 3
