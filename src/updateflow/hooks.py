# hooks.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import HookError
from .model import HookFn, Step, StepResult

logger = logging.getLogger(__name__)


@dataclass
class HookSet:
    """
    Hooks registered for one run.

    Step hooks fire in this order: global, then section (Step.section),
    then the step's own hooks. Pre-hooks get result=None.
    Run hooks get step_id=None; run_post receives the finalized RunSummary.
    """
    global_pre: List[HookFn] = field(default_factory=list)
    global_post: List[HookFn] = field(default_factory=list)
    section_pre: Dict[str, List[HookFn]] = field(default_factory=dict)
    section_post: Dict[str, List[HookFn]] = field(default_factory=dict)
    run_pre: List[HookFn] = field(default_factory=list)
    run_post: List[HookFn] = field(default_factory=list)

    def add_section_pre(self, section: str, hook: HookFn) -> None:
        self.section_pre.setdefault(section, []).append(hook)

    def add_section_post(self, section: str, hook: HookFn) -> None:
        self.section_post.setdefault(section, []).append(hook)


def _hook_name(hook: Any) -> str:
    return getattr(hook, "__qualname__", None) or getattr(hook, "__name__", None) or repr(hook)


class HookDispatcher:
    """Invokes hooks synchronously; hook failures are logged, never raised."""

    def __init__(self, hooks: Optional[HookSet] = None):
        self.hooks = hooks or HookSet()

    def fire_pre(self, run_id: str, step: Step) -> List[HookError]:
        chain = list(self.hooks.global_pre)
        if step.section:
            chain += self.hooks.section_pre.get(step.section, [])
        chain += step.pre_hooks
        return self._fire(chain, "pre", run_id, step.id, None)

    def fire_post(self, run_id: str, step: Step, result: StepResult) -> List[HookError]:
        chain = list(self.hooks.global_post)
        if step.section:
            chain += self.hooks.section_post.get(step.section, [])
        chain += step.post_hooks
        return self._fire(chain, "post", run_id, step.id, result)

    def fire_run_pre(self, run_id: str) -> List[HookError]:
        return self._fire(self.hooks.run_pre, "run-pre", run_id, None, None)

    def fire_run_post(self, run_id: str, summary: Any) -> List[HookError]:
        return self._fire(self.hooks.run_post, "run-post", run_id, None, summary)

    def _fire(
        self,
        chain: List[HookFn],
        phase: str,
        run_id: str,
        step_id: Optional[str],
        payload: Any,
    ) -> List[HookError]:
        errors: List[HookError] = []
        for hook in chain:
            try:
                hook(run_id, step_id, payload)
            except Exception as e:
                err = HookError(hook=_hook_name(hook), step_id=step_id, phase=phase, message=str(e))
                logger.warning("%s", err, exc_info=True)
                errors.append(err)
        return errors
