# model.py
from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, Optional, Protocol, runtime_checkable


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Skip reasons surfaced in the summary
SKIP_CANCELED = "canceled"
SKIP_UPSTREAM_FAILURE = "upstream failure"
SKIP_CONFIGURED = "skipped by configuration"
SKIP_DRY_RUN = "dry run"


class CancellationToken:
    """
    Cooperative cancellation flag shared by a run and its steps.

    A child token is canceled when either itself or its parent is canceled,
    so the executor can stop a single timed-out step without touching the run.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._parent = parent
        self.reason: str | None = None

    def cancel(self, reason: str = "canceled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def canceled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.canceled

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to `timeout` seconds; returns True as soon as canceled."""
        if self._parent is None:
            return self._event.wait(timeout)
        # poll so a parent cancel is noticed too
        step = 0.05
        remaining = timeout
        while not self.canceled:
            if remaining is not None and remaining <= 0:
                return False
            chunk = step if remaining is None else min(step, remaining)
            self._event.wait(chunk)
            if remaining is not None:
                remaining -= chunk
        return True

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)


@dataclass(frozen=True)
class StepContext:
    """What a piece of work gets to see about its invocation."""
    run_id: str
    step_id: str
    attempt: int
    token: CancellationToken


OUTCOME_MARKER = "__work_outcome__"


@dataclass(frozen=True)
class WorkOutcome:
    """
    Optional structured return value of a Work.

    ok=False lets a tool wrapper report failure (non-zero exit code) without
    raising. `data` is kept in the step metadata under "output".
    """
    ok: bool = True
    data: Any = None
    message: str = ""
    exit_code: int | None = None

    def to_cache(self) -> dict:
        """JSON-able form stored by cache backings."""
        return {OUTCOME_MARKER: {"ok": self.ok, "data": self.data, "message": self.message, "exit_code": self.exit_code}}

    @classmethod
    def from_cache(cls, value: Any) -> Any:
        """Rebuild a WorkOutcome stored with to_cache(); other values pass through."""
        if isinstance(value, dict) and set(value) == {OUTCOME_MARKER}:
            return cls(**value[OUTCOME_MARKER])
        return value


@runtime_checkable
class Work(Protocol):
    def execute(self, ctx: StepContext) -> Any: ...


class FunctionWork:
    """Adapts a plain callable into a Work."""

    def __init__(self, fn: Callable[..., Any]):
        self.fn = fn
        self._wants_ctx = _accepts_argument(fn)

    def execute(self, ctx: StepContext) -> Any:
        if self._wants_ctx:
            return self.fn(ctx)
        return self.fn()

    def __repr__(self) -> str:
        return f"FunctionWork({getattr(self.fn, '__name__', self.fn)!r})"


def _accepts_argument(fn: Callable[..., Any]) -> bool:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    for p in sig.parameters.values():
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL):
            return True
    return False


def as_work(obj: Any) -> Work:
    if isinstance(obj, Work):
        return obj
    if callable(obj):
        return FunctionWork(obj)
    raise TypeError(f"Step work must be a Work or a callable, got {type(obj).__name__}")


HookFn = Callable[[str, Optional[str], Optional["StepResult"]], None]


@dataclass
class Step:
    """
    One unit of orchestrated work, typically driving one package manager.

    `needs` lists step ids that must finish (in an earlier wave) before this
    one starts. They order execution only; set `requires_success` to also
    skip the step when a dependency did not succeed.
    """
    id: str
    work: Any
    needs: List[str] = field(default_factory=list)

    timeout: float | None = None
    retries: int = 0
    retry_timeouts: bool = False
    retry_backoff: float = 0.0
    requires_success: bool = False

    # cache knobs
    cache_key: str | None = None
    cache_ttl: float | None = None

    # hooks
    section: str | None = None
    pre_hooks: List[HookFn] = field(default_factory=list)
    post_hooks: List[HookFn] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.work = as_work(self.work)
        self.needs = list(self.needs or [])
        if self.retries < 0:
            raise ValueError(f"Step '{self.id}': retries must be >= 0")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Step '{self.id}': timeout must be > 0")


@dataclass(frozen=True)
class StepError:
    kind: str  # Timeout | StepFailure | Canceled
    message: str


@dataclass(frozen=True)
class StepResult:
    step_id: str
    status: StepStatus
    started_at: float
    duration: float = 0.0
    error: Optional[StepError] = None
    skip_reason: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # read-only view so recorded results stay immutable
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILED

    @classmethod
    def skipped(cls, step_id: str, reason: str, started_at: float, **metadata: Any) -> "StepResult":
        return cls(
            step_id=step_id,
            status=StepStatus.SKIPPED,
            started_at=started_at,
            skip_reason=reason,
            metadata=metadata,
        )
