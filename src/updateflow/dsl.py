# dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .commands import CommandWork
from .model import HookFn, Step


# ---------------------------------------------------------------------
# Work helper
# ---------------------------------------------------------------------

def cmd(
    command: Union[str, Sequence[str]],
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    ok_exit_codes: Sequence[int] = (0,),
) -> CommandWork:
    """Work that runs an external command."""
    return CommandWork(command=command, cwd=cwd, env=env or {}, ok_exit_codes=tuple(ok_exit_codes))


# ---------------------------------------------------------------------
# Functional Step helper
# ---------------------------------------------------------------------

def step(
    id: str,
    work: Any,
    *,
    needs: Optional[List[str]] = None,
    timeout: float | None = None,
    retries: int = 0,
    retry_timeouts: bool = False,
    retry_backoff: float = 0.0,
    requires_success: bool = False,
    cache_key: str | None = None,
    cache_ttl: float | None = None,
    section: str | None = None,
    pre_hooks: Optional[List[HookFn]] = None,
    post_hooks: Optional[List[HookFn]] = None,
) -> Step:
    """
    Create a Step. `work` may be a Work, a callable, or a command string
    (shorthand for cmd(...)).
    """
    if isinstance(work, (str, list, tuple)):
        work = cmd(work)
    return Step(
        id=id,
        work=work,
        needs=needs or [],
        timeout=timeout,
        retries=retries,
        retry_timeouts=retry_timeouts,
        retry_backoff=retry_backoff,
        requires_success=requires_success,
        cache_key=cache_key,
        cache_ttl=cache_ttl,
        section=section,
        pre_hooks=pre_hooks or [],
        post_hooks=post_hooks or [],
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class StepBuilder:
    def __init__(self, id: str):
        self.id = id
        self._work: Any = None
        self._kwargs: Dict[str, Any] = {}
        self._needs: List[str] = []
        self._pre: List[HookFn] = []
        self._post: List[HookFn] = []

    def depends_on(self, *step_ids: str):
        self._needs.extend(step_ids)
        return self

    def run(self, command: Union[str, Sequence[str]], cwd: str | None = None, **env: Any):
        self._work = cmd(command, cwd=cwd, env={k: str(v) for k, v in env.items()})
        return self

    def call(self, fn: Callable[..., Any]):
        self._work = fn
        return self

    def with_timeout(self, seconds: float):
        self._kwargs["timeout"] = seconds
        return self

    def with_retries(self, count: int, *, backoff: float = 0.0, on_timeout: bool = False):
        self._kwargs.update(retries=count, retry_backoff=backoff, retry_timeouts=on_timeout)
        return self

    def cached(self, key: str, ttl: float | None = None):
        self._kwargs.update(cache_key=key, cache_ttl=ttl)
        return self

    def in_section(self, section: str):
        self._kwargs["section"] = section
        return self

    def requiring_success(self, enabled: bool = True):
        self._kwargs["requires_success"] = enabled
        return self

    def before(self, hook: HookFn):
        self._pre.append(hook)
        return self

    def after(self, hook: HookFn):
        self._post.append(hook)
        return self

    def build(self) -> Step:
        if self._work is None:
            raise ValueError(f"Step '{self.id}' has no work; use .run(...) or .call(...)")
        return step(
            self.id,
            self._work,
            needs=self._needs,
            pre_hooks=self._pre,
            post_hooks=self._post,
            **self._kwargs,
        )


def build(id: str) -> StepBuilder:
    """Convenience: build('pip').run('pip list --outdated').build()"""
    return StepBuilder(id)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*steps: Union[Step, Iterable[Step]]) -> List[Step]:
    """
    Workflow definition helper:

        from updateflow import wf, step

        def workflow():
            return wf(
                step("winget", "winget upgrade --all"),
                step("report", collect, needs=["winget"]),
            )
    """
    out: List[Step] = []
    for s in steps:
        if isinstance(s, Step):
            out.append(s)
        else:
            out.extend(s)
    return out
