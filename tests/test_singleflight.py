"""Tests for the single-flight guard."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from skloader.singleflight import SingleFlight


class TestSingleFlight:
    def test_sequential_calls_run_each_time(self):
        flight: SingleFlight[int] = SingleFlight()
        counter = iter(range(10))
        assert flight.do("k", lambda: next(counter)) == 0
        assert flight.do("k", lambda: next(counter)) == 1
        assert not flight.in_flight("k")

    def test_concurrent_calls_coalesce(self):
        flight: SingleFlight[str] = SingleFlight()
        calls = []
        release = threading.Event()

        def work() -> str:
            calls.append(1)
            release.wait(timeout=5)
            return "done"

        barrier = threading.Barrier(5)

        def call() -> str:
            barrier.wait(timeout=5)
            return flight.do("k", work)

        with ThreadPoolExecutor(max_workers=5) as pool:
            futures = [pool.submit(call) for _ in range(5)]
            deadline = time.monotonic() + 5
            while not flight.in_flight("k") and time.monotonic() < deadline:
                time.sleep(0.01)
            time.sleep(0.1)
            release.set()
            results = [f.result(timeout=5) for f in futures]

        assert results == ["done"] * 5
        assert len(calls) == 1

    def test_exception_shared_and_key_released(self):
        flight: SingleFlight[int] = SingleFlight()

        def boom() -> int:
            raise OSError("disk gone")

        with pytest.raises(OSError, match="disk gone"):
            flight.do("k", boom)
        assert not flight.in_flight("k")
        assert flight.do("k", lambda: 7) == 7

    def test_distinct_keys_independent(self):
        flight: SingleFlight[str] = SingleFlight()
        assert flight.do("a", lambda: "a") == "a"
        assert flight.do("b", lambda: "b") == "b"
