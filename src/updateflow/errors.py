# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class UpdateFlowError(Exception):
    """Base class for every error raised by the engine."""


# ----------------------------------------------------------------------
# Configuration errors (fatal, raised before anything executes)
# ----------------------------------------------------------------------

class ConfigurationError(UpdateFlowError):
    pass


@dataclass
class DuplicateStep(ConfigurationError):
    step_ids: List[str]

    def __str__(self) -> str:
        return f"Duplicate step ids found: {self.step_ids}"


@dataclass
class UnknownDependency(ConfigurationError):
    step_id: str
    missing: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Step '{self.step_id}' needs unknown step '{self.missing}'. "
            f"Known steps: {self.known}"
        )


@dataclass
class CyclicDependency(ConfigurationError):
    cycle: List[str]

    def __str__(self) -> str:
        return "Dependency cycle detected: " + " -> ".join(self.cycle)


class WorkflowLoadError(ConfigurationError):
    pass


# ----------------------------------------------------------------------
# Per-step errors (captured into StepResult)
# ----------------------------------------------------------------------

@dataclass
class StepTimeout(UpdateFlowError):
    step_id: str
    timeout: float

    def __str__(self) -> str:
        return f"[{self.step_id}] timed out after {self.timeout:g}s"


@dataclass
class StepFailure(UpdateFlowError):
    """
    Raised by work capabilities that want to report failure with context,
    e.g. a package manager exiting non-zero.
    """
    step_id: str
    message: str
    exit_code: int | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"[{self.step_id}] {self.message}"]
        if self.exit_code is not None:
            lines.append(f"exit_code={self.exit_code}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class StepCanceled(UpdateFlowError):
    pass


# ----------------------------------------------------------------------
# Non-fatal / infrastructure errors
# ----------------------------------------------------------------------

@dataclass
class HookError(UpdateFlowError):
    hook: str
    step_id: str | None
    phase: str  # "pre" | "post" | "run-pre" | "run-post"
    message: str

    def __str__(self) -> str:
        where = self.step_id or "<run>"
        return f"{self.phase} hook {self.hook} failed for {where}: {self.message}"


@dataclass
class CacheComputeError(UpdateFlowError):
    key: str
    message: str

    def __str__(self) -> str:
        return f"cache compute failed for key={self.key!r}: {self.message}"


class CacheBackingError(UpdateFlowError):
    pass


class SummaryFinalized(UpdateFlowError):
    pass
