#!/usr/bin/env python
"""
Orchestrator Module - Bounded worker pool for independent PAUP* requests

Workers only compute and return values; the caller receives them in task
order whatever order the workers finish in, and does all output writing
itself.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from sdpquartets.errors import ConfigurationError, SDPQuartetsError


class ConcurrencyOrchestrator:
    """Runs a stage of independent tasks with at most ``forks`` workers."""

    def __init__(self, forks=1):
        """
        Args:
            forks (int): Maximum number of concurrent workers (1 = sequential).

        Raises:
            ConfigurationError: If forks is not a positive integer.
        """
        if isinstance(forks, bool) or not isinstance(forks, int) or forks < 1:
            raise ConfigurationError(f"forks must be a positive integer, got {forks!r}")

        self.forks = forks
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

    def run(self, stage, tasks, func):
        """
        Execute ``func(payload)`` for every task and collect the results.

        A call made from inside one of this orchestrator's workers runs its
        tasks inline, so nested stages never exceed ``forks`` workers in total.

        Args:
            stage (str): Stage name used in log messages and errors.
            tasks (iterable): (task_id, payload) pairs in canonical order.
            func (callable): Worker function taking a payload.

        Returns:
            list: Results in the order of ``tasks``.

        Raises:
            SDPQuartetsError: The failure of the earliest failing task in task
                              order, annotated with its stage and task id.
                              Pending tasks are cancelled; running ones finish.
        """
        tasks = list(tasks)
        nested = getattr(self._local, 'in_worker', False)

        if self.forks == 1 or len(tasks) <= 1 or nested:
            self.logger.debug(f"Running {len(tasks)} {stage} task(s) sequentially")
            return [self._call(stage, task_id, func, payload) for task_id, payload in tasks]

        self.logger.debug(f"Running {len(tasks)} {stage} task(s) with {self.forks} workers")
        results = [None] * len(tasks)
        failures = {}

        with ThreadPoolExecutor(max_workers=self.forks) as executor:
            futures = {
                executor.submit(self._work, stage, task_id, func, payload): index
                for index, (task_id, payload) in enumerate(tasks)
            }
            try:
                for future in as_completed(futures):
                    if future.cancelled():
                        continue
                    index = futures[future]
                    error = future.exception()
                    if error is None:
                        results[index] = future.result()
                        continue
                    if not failures:
                        for pending in futures:
                            pending.cancel()
                    failures[index] = error
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

        # Tasks start in order, so every task before a failed one has run
        if failures:
            raise failures[min(failures)]
        return results

    def _work(self, stage, task_id, func, payload):
        self._local.in_worker = True
        try:
            return self._call(stage, task_id, func, payload)
        finally:
            self._local.in_worker = False

    def _call(self, stage, task_id, func, payload):
        try:
            return func(payload)
        except SDPQuartetsError as e:
            if e.stage is None:
                e.stage = stage
            if e.task is None:
                e.task = task_id
            self.logger.error(f"{stage} task {task_id} failed: {e.message}")
            raise
        except Exception as e:
            self.logger.error(f"{stage} task {task_id} failed: {str(e)}")
            raise
