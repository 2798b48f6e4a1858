# retry.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from .config import TestPlanConfig
from .errors import InfrastructureOverload
from .executor import CommandExecutor
from .model import FailureRecord, RunReport, TestQueue, dedupe_failures
from .narrowing import Narrower
from .plan import total_units
from .runner import run_queue, run_queues
from .ui.console import get_console

logger = logging.getLogger(__name__)


def retry_threshold(unit_count: int, multiplier: int) -> int:
    return multiplier * unit_count


def run_plan(
    queues: Sequence[TestQueue],
    executor: CommandExecutor,
    config: Optional[TestPlanConfig] = None,
    narrower: Optional[Narrower] = None,
) -> RunReport:
    """
    Run all queues in parallel, then retry what failed.

    - failures are deduplicated by (title, command)
    - more failures than retry_multiplier x unit count raises
      InfrastructureOverload without retrying anything
    - otherwise up to retry_passes sequential passes run the remaining
      failures as a single queue, stopping as soon as one comes back clean

    The returned report carries whatever is still failing.
    """
    config = config or TestPlanConfig()
    narrower = narrower or Narrower.from_config(config)
    console = get_console()

    count = total_units(queues)
    threshold = retry_threshold(count, config.retry_multiplier)

    failures: List[FailureRecord] = dedupe_failures(run_queues(queues, executor, narrower))
    logger.debug("%d failures after the parallel run (threshold %d)", len(failures), threshold)

    if len(failures) > threshold:
        raise InfrastructureOverload(failures=failures, threshold=threshold)

    passes = 0
    for number in range(1, config.retry_passes + 1):
        if not failures:
            break
        passes = number
        console.print_retry_pass(number, [f.title for f in failures])
        # retried units are titled after the narrowed record; map back to the unit that first failed
        originals = {f.title: f.original_title or f.title for f in failures}
        new_failures = run_queue([f.as_unit() for f in failures], executor, narrower)
        failures = dedupe_failures([
            replace(f, original_title=originals.get(f.original_title, f.original_title))
            for f in new_failures
        ])

    return RunReport(failures=failures, passes=passes, total_units=count, threshold=threshold)

