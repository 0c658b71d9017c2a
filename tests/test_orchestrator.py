#!/usr/bin/env python
"""
Unit tests for the orchestrator module.

These tests verify that results come back in task order whatever order the
workers finish in, that the worker bound holds, and that failures are
annotated with their stage and task.
"""

import time
import logging
import threading
import pytest

from sdpquartets.errors import ConfigurationError, OracleInvocationError
from sdpquartets.orchestrator import ConcurrencyOrchestrator

# Set up logging
logging.basicConfig(level=logging.ERROR)


class ConcurrencyCounter:
    """Counts how many calls are running at the same time."""

    def __init__(self):
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0

    def __call__(self, payload):
        with self.lock:
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            time.sleep(payload)
            return payload
        finally:
            with self.lock:
                self.running -= 1


# Tests
@pytest.mark.parametrize("forks", [0, -2, 1.5, True, "4"])
def test_invalid_forks(forks):
    with pytest.raises(ConfigurationError):
        ConcurrencyOrchestrator(forks)


def test_sequential_run_keeps_order():
    orchestrator = ConcurrencyOrchestrator(1)
    results = orchestrator.run("square", [(str(i), i) for i in range(6)], lambda x: x * x)
    assert results == [0, 1, 4, 9, 16, 25]


def test_parallel_run_keeps_task_order():
    """Test that early tasks finishing last still come first."""
    orchestrator = ConcurrencyOrchestrator(4)
    delays = [0.08, 0.06, 0.04, 0.02, 0.0, 0.01]
    results = orchestrator.run("sleep", [(str(i), d) for i, d in enumerate(delays)],
                               lambda d: time.sleep(d) or d)
    assert results == delays


def test_worker_bound():
    counter = ConcurrencyCounter()
    orchestrator = ConcurrencyOrchestrator(3)
    orchestrator.run("count", [(str(i), 0.02) for i in range(12)], counter)

    assert 1 < counter.peak <= 3


def test_nested_runs_stay_within_bound():
    counter = ConcurrencyCounter()
    orchestrator = ConcurrencyOrchestrator(2)

    def outer(n):
        return orchestrator.run("inner", [(f"{n}.{i}", 0.01) for i in range(4)], counter)

    results = orchestrator.run("outer", [(str(n), n) for n in range(4)], outer)

    assert results == [[0.01] * 4] * 4
    assert counter.peak <= 2


def test_failure_is_annotated():
    orchestrator = ConcurrencyOrchestrator(3)

    def work(payload):
        if payload == 3:
            raise OracleInvocationError("PAUP* exited with status 2")
        return payload

    with pytest.raises(OracleInvocationError) as excinfo:
        orchestrator.run("quartets", [(f"0_1_2_{i}", i) for i in range(3, 9)], work)

    assert excinfo.value.stage == "quartets"
    assert excinfo.value.task == "0_1_2_3"
    assert "stage=quartets" in str(excinfo.value)


def test_existing_annotation_is_kept():
    orchestrator = ConcurrencyOrchestrator(1)

    def work(payload):
        raise OracleInvocationError("failed", stage="search", task="7")

    with pytest.raises(OracleInvocationError) as excinfo:
        orchestrator.run("bootstrap", [("1", None)], work)

    assert excinfo.value.stage == "search"
    assert excinfo.value.task == "7"


def test_other_exceptions_propagate():
    orchestrator = ConcurrencyOrchestrator(2)

    def work(payload):
        raise KeyError(payload)

    with pytest.raises(KeyError):
        orchestrator.run("lookup", [("a", "a"), ("b", "b")], work)


def test_earliest_failure_in_task_order_is_raised():
    """Test that a slow early failure wins over a fast later one."""
    orchestrator = ConcurrencyOrchestrator(3)

    def work(payload):
        delay, fail = payload
        time.sleep(delay)
        if fail:
            raise OracleInvocationError(f"failed after {delay}s")
        return delay

    tasks = [("t0", (0.0, False)), ("t1", (0.2, True)), ("t2", (0.0, False)),
             ("t3", (0.0, False)), ("t4", (0.0, True)), ("t5", (0.0, False))]
    with pytest.raises(OracleInvocationError) as excinfo:
        orchestrator.run("quartets", tasks, work)

    assert excinfo.value.task == "t1"
    assert excinfo.value.message == "failed after 0.2s"
