# executor.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .cache import CacheLayer
from .errors import CacheComputeError, StepCanceled, StepFailure, StepTimeout
from .hooks import HookDispatcher
from .model import (
    CancellationToken,
    Step,
    StepContext,
    StepError,
    StepResult,
    StepStatus,
    WorkOutcome,
)

logger = logging.getLogger(__name__)

KIND_TIMEOUT = "Timeout"
KIND_FAILURE = "StepFailure"
KIND_CANCELED = "Canceled"

# how often a waiting executor re-checks the cancellation token
POLL_INTERVAL = 0.05


@dataclass
class _Attempt:
    ok: bool
    value: Any = None
    kind: str | None = None
    message: str = ""
    cached: bool = False
    cache_source: str | None = None
    exit_code: int | None = None


@dataclass
class _Box:
    """Hand-off between the worker thread and the waiting executor."""
    done: threading.Event = field(default_factory=threading.Event)
    attempt: Optional[_Attempt] = None


def _message(exc: BaseException) -> str:
    if isinstance(exc, StepFailure):
        return exc.message
    return str(exc) or type(exc).__name__


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, StepTimeout):
        return KIND_TIMEOUT
    if isinstance(exc, StepCanceled):
        return KIND_CANCELED
    return KIND_FAILURE


class StepExecutor:
    """
    Runs one step to completion: hooks, cache, timeout, retry.

    Timeouts are best effort. The work runs on a daemon thread; when the
    timeout (or run cancellation) fires, the step's token is canceled and
    the executor stops waiting. Work that never looks at ctx.token keeps
    running in the background until it returns on its own.
    """

    def __init__(
        self,
        cache: Optional[CacheLayer] = None,
        hooks: Optional[HookDispatcher] = None,
        *,
        use_cache: bool = True,
        force_refresh: bool = False,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.hooks = hooks or HookDispatcher()
        self.use_cache = use_cache
        self.force_refresh = force_refresh
        self.default_ttl = default_ttl
        self._clock = clock
        self._timer = timer

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, step: Step, run_id: str, token: Optional[CancellationToken] = None) -> StepResult:
        token = token or CancellationToken()
        started_at = self._clock()
        t0 = self._timer()

        attempt_no = 0
        while True:
            attempt_no += 1
            step_token = token.child()
            ctx = StepContext(run_id=run_id, step_id=step.id, attempt=attempt_no, token=step_token)

            hook_errors = self.hooks.fire_pre(run_id, step)
            attempt = self._attempt(step, ctx, token)
            result = self._result(step, attempt, attempt_no, started_at, self._timer() - t0, hook_errors)
            self.hooks.fire_post(run_id, step, result)

            if attempt.ok:
                return result
            if not self._should_retry(step, attempt, attempt_no, token):
                logger.info("[%s] failed after %d attempt(s): %s", step.id, attempt_no, attempt.message)
                return result

            logger.info("[%s] attempt %d failed (%s), retrying", step.id, attempt_no, attempt.kind)
            if step.retry_backoff and token.wait(step.retry_backoff):
                return result

    def skip(self, step: Step, run_id: str, reason: str) -> StepResult:
        """Record a step that never ran. Post-hooks still see it."""
        result = StepResult.skipped(step.id, reason, self._clock())
        self.hooks.fire_post(run_id, step, result)
        return result

    # ------------------------------------------------------------------
    # Execution primitives
    # ------------------------------------------------------------------

    def _should_retry(self, step: Step, attempt: _Attempt, attempt_no: int, token: CancellationToken) -> bool:
        if attempt_no > step.retries:
            return False
        if attempt.kind == KIND_CANCELED or token.canceled:
            return False
        if attempt.kind == KIND_TIMEOUT and not step.retry_timeouts:
            return False
        return True

    def _attempt(self, step: Step, ctx: StepContext, run_token: CancellationToken) -> _Attempt:
        if run_token.canceled:
            return _Attempt(ok=False, kind=KIND_CANCELED, message="run canceled before step started")

        box = _Box()

        def target() -> None:
            try:
                box.attempt = self._call(step, ctx)
            except Exception as e:
                box.attempt = _Attempt(ok=False, kind=KIND_FAILURE, message=f"{type(e).__name__}: {e}")
            finally:
                box.done.set()

        worker = threading.Thread(target=target, name=f"updateflow-step-{step.id}", daemon=True)
        worker.start()

        deadline = None if step.timeout is None else self._timer() + step.timeout
        while not box.done.is_set():
            if run_token.canceled:
                ctx.token.cancel("run canceled")
                return _Attempt(ok=False, kind=KIND_CANCELED, message="run canceled while step was running")
            wait = POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - self._timer()
                if remaining <= 0:
                    ctx.token.cancel("timeout")
                    logger.warning("[%s] timed out after %ss; detaching", step.id, step.timeout)
                    return _Attempt(ok=False, kind=KIND_TIMEOUT, message=str(StepTimeout(step.id, step.timeout)))
                wait = min(wait, remaining)
            box.done.wait(wait)

        return box.attempt or _Attempt(ok=False, kind=KIND_FAILURE, message="step worker exited without a result")

    def _call(self, step: Step, ctx: StepContext) -> _Attempt:
        use_cache = bool(step.cache_key) and self.use_cache and self.cache is not None
        try:
            if use_cache:
                ttl = step.cache_ttl if step.cache_ttl is not None else self.default_ttl
                lookup = self.cache.fetch(
                    step.cache_key,
                    ttl,
                    lambda: self._cacheable(self._invoke(step, ctx)),
                    force=self.force_refresh,
                )
                value = WorkOutcome.from_cache(lookup.value)
                return _Attempt(ok=True, value=value, cached=lookup.hit, cache_source=lookup.source)
            return _Attempt(ok=True, value=self._invoke(step, ctx))
        except CacheComputeError as e:
            # report the step's own failure, not the cache wrapper
            cause = e.__cause__ or e
            return _Attempt(
                ok=False,
                kind=_error_kind(cause),
                message=_message(cause),
                exit_code=getattr(cause, "exit_code", None),
            )
        except Exception as e:
            return _Attempt(
                ok=False,
                kind=_error_kind(e),
                message=_message(e),
                exit_code=getattr(e, "exit_code", None),
            )

    def _invoke(self, step: Step, ctx: StepContext) -> Any:
        value = step.work.execute(ctx)
        if isinstance(value, WorkOutcome) and not value.ok:
            raise StepFailure(
                step_id=step.id,
                message=value.message or "work reported failure",
                exit_code=value.exit_code,
            )
        return value

    @staticmethod
    def _cacheable(value: Any) -> Any:
        # backings store JSON; outcomes are rebuilt on read
        if isinstance(value, WorkOutcome):
            return value.to_cache()
        return value

    def _result(
        self,
        step: Step,
        attempt: _Attempt,
        attempt_no: int,
        started_at: float,
        duration: float,
        hook_errors: List[Any],
    ) -> StepResult:
        metadata: dict = {
            "attempts": attempt_no,
            "cached": attempt.cached,
            "timed_out": attempt.kind == KIND_TIMEOUT,
        }
        if attempt.cache_source:
            metadata["cache_source"] = attempt.cache_source
        if attempt.exit_code is not None:
            metadata["exit_code"] = attempt.exit_code
        if hook_errors:
            metadata["hook_errors"] = [str(e) for e in hook_errors]

        value = attempt.value
        if isinstance(value, WorkOutcome):
            if value.exit_code is not None:
                metadata["exit_code"] = value.exit_code
            value = value.data
        if value is not None:
            metadata["output"] = value

        if attempt.ok:
            return StepResult(
                step_id=step.id,
                status=StepStatus.SUCCESS,
                started_at=started_at,
                duration=duration,
                metadata=metadata,
            )
        return StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            started_at=started_at,
            duration=duration,
            error=StepError(kind=attempt.kind or KIND_FAILURE, message=attempt.message),
            metadata=metadata,
        )
