# runner.py
from __future__ import annotations

import logging
import runpy
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .cache import CacheLayer
from .dag import Wave, build_waves
from .errors import WorkflowLoadError
from .executor import StepExecutor
from .hooks import HookDispatcher, HookSet
from .config import RunOptions
from .model import (
    SKIP_CANCELED,
    SKIP_CONFIGURED,
    SKIP_DRY_RUN,
    SKIP_UPSTREAM_FAILURE,
    CancellationToken,
    Step,
    StepResult,
    StepStatus,
)
from .summary import ResultAggregator, RunSummary

logger = logging.getLogger(__name__)

ABORT_INTERRUPTED = "interrupted"


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[Step]:
    """
    Load step definitions from a python file.

    The file must define either:
      - workflow() -> List[Step]
      - STEPS = [Step, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"updateflow_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise WorkflowLoadError(f"Could not execute workflow {wf_path.name}: {e}") from e

    steps = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        steps = globals_dict["workflow"]()
    elif "STEPS" in globals_dict:
        steps = globals_dict["STEPS"]

    if not isinstance(steps, list) or not all(isinstance(s, Step) for s in steps):
        raise WorkflowLoadError(
            "Workflow must return/define a List[Step]. "
            "Define workflow() -> List[Step] or STEPS = [Step, ...]."
        )
    return steps


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class Scheduler:
    """
    Runs waves in order. Steps in a wave run concurrently; the wave is
    joined before the next one starts, so a step never starts before its
    dependencies (all in earlier waves) have finished.
    """

    def __init__(
        self,
        executor: StepExecutor,
        options: Optional[RunOptions] = None,
        *,
        run_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.executor = executor
        self.hooks: HookDispatcher = executor.hooks
        self.options = options or RunOptions()
        self.run_id = run_id or uuid.uuid4().hex
        self._clock = clock

    def execute(
        self,
        waves: Sequence[Wave],
        steps: Sequence[Step],
        token: Optional[CancellationToken] = None,
    ) -> RunSummary:
        token = token or CancellationToken()
        by_id: Dict[str, Step] = {s.id: s for s in steps}
        agg = ResultAggregator(self.run_id, clock=self._clock)
        agg.start()

        logger.info("run %s: %d step(s) in %d wave(s)", self.run_id, len(by_id), len(waves))
        self.hooks.fire_run_pre(self.run_id)

        stopped = False
        for wave in waves:
            if stopped:
                self._skip_wave(agg, wave, by_id, SKIP_UPSTREAM_FAILURE)
                continue
            if token.canceled:
                agg.abort(SKIP_CANCELED)
                self._skip_wave(agg, wave, by_id, SKIP_CANCELED)
                continue

            logger.info("=== Wave %d: %s ===", wave.index, list(wave.step_ids))
            self._run_wave(agg, wave, by_id, token)

            if token.canceled:
                agg.abort(SKIP_CANCELED)
            if self.options.stop_on_failure and any(
                r.status is StepStatus.FAILED for r in agg.results(wave.index)
            ):
                logger.info("wave %d had failures; skipping remaining waves", wave.index)
                agg.abort("stop on first failure")
                stopped = True

        summary = agg.finalize()
        self.hooks.fire_run_post(self.run_id, summary)
        return summary

    # ---- per wave ----

    def _skip_wave(self, agg: ResultAggregator, wave: Wave, by_id: Dict[str, Step], reason: str) -> None:
        for sid in wave.step_ids:
            agg.record(wave.index, self.executor.skip(by_id[sid], self.run_id, reason))

    def _run_wave(
        self,
        agg: ResultAggregator,
        wave: Wave,
        by_id: Dict[str, Step],
        token: CancellationToken,
    ) -> None:
        done = agg.all_results()
        to_run: List[Step] = []

        for sid in wave.step_ids:
            step = by_id[sid]
            if self.options.dry_run:
                agg.record(wave.index, StepResult.skipped(sid, SKIP_DRY_RUN, self._clock()))
                continue
            if sid in self.options.skip:
                agg.record(wave.index, self.executor.skip(step, self.run_id, SKIP_CONFIGURED))
                continue
            blocker = self._failed_dependency(step, done)
            if blocker is not None:
                reason = f"dependency {blocker} did not succeed"
                agg.record(wave.index, self.executor.skip(step, self.run_id, reason))
                continue
            to_run.append(step)

        if not to_run:
            return

        # one worker keeps sequential mode in wave order
        workers = self.options.max_workers if self.options.parallel else 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            pending = {pool.submit(self._run_one, step, token) for step in to_run}
            while pending:
                try:
                    # record in completion order
                    for fut in as_completed(pending):
                        pending.discard(fut)
                        agg.record(wave.index, fut.result())
                except KeyboardInterrupt:
                    logger.warning("run %s interrupted; canceling running steps", self.run_id)
                    agg.abort(ABORT_INTERRUPTED)
                    token.cancel(ABORT_INTERRUPTED)

    def _run_one(self, step: Step, token: CancellationToken) -> StepResult:
        if token.canceled:
            return self.executor.skip(step, self.run_id, SKIP_CANCELED)
        return self.executor.run(step, self.run_id, token)

    @staticmethod
    def _failed_dependency(step: Step, done: Dict[str, StepResult]) -> str | None:
        if not step.requires_success:
            return None
        for dep in step.needs:
            r = done.get(dep)
            if r is None or r.status is not StepStatus.SUCCESS:
                return dep
        return None


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_steps(
    steps: Sequence[Step],
    *,
    options: Optional[RunOptions] = None,
    cache: Optional[CacheLayer] = None,
    hooks: Optional[HookSet] = None,
    token: Optional[CancellationToken] = None,
    run_id: str | None = None,
    default_ttl: float | None = None,
) -> RunSummary:
    """
    Group steps into waves and execute them.

    Raises DuplicateStep / UnknownDependency / CyclicDependency before any
    hook or step runs.
    """
    options = options or RunOptions()
    steps = list(steps)
    waves = build_waves(steps)

    executor = StepExecutor(
        cache if cache is not None else CacheLayer(),
        HookDispatcher(hooks),
        use_cache=options.use_cache,
        force_refresh=options.force_refresh,
        default_ttl=default_ttl,
    )
    return Scheduler(executor, options, run_id=run_id).execute(waves, steps, token)
