# runner.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from .executor import CommandExecutor
from .model import FailureRecord, TestQueue, TestUnit
from .narrowing import Narrower
from .ui.console import get_console

logger = logging.getLogger(__name__)


class Progress:
    """
    Titles of units that have not finished yet, shared by all workers.

    Only used for the "still running" report; failures never go through here.
    """

    def __init__(self, titles: Sequence[str] = ()):
        self._lock = threading.Lock()
        self._pending: List[str] = list(titles)
        self._started = time.monotonic()

    def done(self, title: str) -> List[str]:
        with self._lock:
            if title in self._pending:
                self._pending.remove(title)
            return list(self._pending)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_unit(unit: TestUnit, executor: CommandExecutor, narrower: Narrower) -> List[FailureRecord]:
    console = get_console()
    try:
        output, exit_code = executor.run(unit.command, unit.timeout)
    except OSError as e:
        # executor could not even start the command
        logger.error("Could not run %s: %s", unit.title, e)
        output, exit_code = "", 1

    console.print_test_output(unit.command, output)
    console.print_test_result(unit.title, exit_code)

    if exit_code == 0:
        return []
    return narrower.narrow(unit, output)


def run_queue(
    queue: TestQueue,
    executor: CommandExecutor,
    narrower: Narrower,
    progress: Optional[Progress] = None,
) -> List[FailureRecord]:
    """
    Run one queue front to back and return its failures.

    Every unit runs to completion (or timeout) before the next starts; a
    failure never stops the queue.
    """
    console = get_console()
    failures: List[FailureRecord] = []
    for unit in list(queue):
        failures.extend(_run_unit(unit, executor, narrower))
        if progress is not None:
            pending = progress.done(unit.title)
            if pending:
                console.print_pending(pending, progress.elapsed)
    return failures


def run_queues(
    queues: Sequence[TestQueue],
    executor: CommandExecutor,
    narrower: Narrower,
) -> List[FailureRecord]:
    """
    Run every queue on its own worker thread.

    Each worker fills a private failure list; the lists are merged in queue
    order once all workers are done.
    """
    console = get_console()
    if not queues:
        return []

    progress = Progress([u.title for q in queues for u in q])

    with ThreadPoolExecutor(max_workers=len(queues), thread_name_prefix="queue") as pool:
        futures = []
        for idx, queue in enumerate(queues):
            console.print_queue_started(idx, len(queue))
            futures.append(pool.submit(run_queue, queue, executor, narrower, progress))
        # wait for all, in submission order
        results = [f.result() for f in futures]

    merged: List[FailureRecord] = []
    for r in results:
        merged.extend(r)
    return merged
