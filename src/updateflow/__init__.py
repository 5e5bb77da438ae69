from .dsl import step, cmd, wf, StepBuilder, build
from .model import CancellationToken, Step, StepContext, StepResult, StepStatus, WorkOutcome
from .cache import CacheLayer
from .hooks import HookSet
from .config import RunOptions, EngineConfig
from .runner import run_steps, load_workflow, Scheduler
from .summary import RunSummary

__all__ = [
    "step", "cmd", "wf", "StepBuilder", "build",
    "CancellationToken", "Step", "StepContext", "StepResult", "StepStatus", "WorkOutcome",
    "CacheLayer", "HookSet", "RunOptions", "EngineConfig",
    "run_steps", "load_workflow", "Scheduler", "RunSummary",
]
