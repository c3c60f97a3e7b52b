"""
Unit tests for the fan-out helper.
"""

import threading

import pytest

from warehouse_recon.utils.concurrency import fan_out


class TestFanOut:

    def test_empty(self):
        assert fan_out({}) == {}

    def test_results_keyed_by_task_name(self):
        results = fan_out({"a": lambda: 1, "b": lambda: 2, "c": lambda: 3}, max_workers=2)

        assert results == {"a": 1, "b": 2, "c": 3}

    def test_single_worker_runs_inline(self):
        caller = threading.current_thread()

        results = fan_out({"a": threading.current_thread, "b": threading.current_thread}, max_workers=1)

        assert results["a"] is caller
        assert results["b"] is caller

    def test_tasks_run_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)

        results = fan_out({"a": barrier.wait, "b": barrier.wait}, max_workers=2)

        assert sorted(results.values()) == [0, 1]

    def test_first_failure_in_task_order_is_raised(self):
        def fail(message):
            def task():
                raise ValueError(message)
            return task

        with pytest.raises(ValueError, match="first"):
            fan_out({"ok": lambda: 1, "one": fail("first"), "two": fail("second")}, max_workers=3)

    def test_all_tasks_finish_before_raising(self):
        finished = []

        def slow():
            finished.append("slow")
            return True

        def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            fan_out({"broken": broken, "slow": slow}, max_workers=2)

        assert finished == ["slow"]
