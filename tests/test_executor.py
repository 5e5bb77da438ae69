from __future__ import annotations

import threading
import time

from updateflow.cache import CacheLayer
from updateflow.errors import StepFailure
from updateflow.executor import StepExecutor
from updateflow.hooks import HookDispatcher, HookSet
from updateflow.model import CancellationToken, Step, StepStatus, WorkOutcome

from .conftest import Counter


def test_success_records_metadata():
    result = StepExecutor().run(Step(id="pip", work=lambda: {"upgraded": 2}), "r")
    assert result.status is StepStatus.SUCCESS
    assert result.error is None
    assert result.metadata["attempts"] == 1
    assert result.metadata["cached"] is False
    assert result.metadata["output"] == {"upgraded": 2}
    assert result.duration >= 0


def test_work_receives_context():
    seen = []
    StepExecutor().run(Step(id="s", work=lambda ctx: seen.append((ctx.run_id, ctx.step_id, ctx.attempt))), "run-9")
    assert seen == [("run-9", "s", 1)]


def test_exception_becomes_step_failure():
    result = StepExecutor().run(Step(id="s", work=Counter(fail=True)), "r")
    assert result.status is StepStatus.FAILED
    assert result.error.kind == "StepFailure"
    assert "boom" in result.error.message


def test_failed_work_outcome():
    work = lambda: WorkOutcome(ok=False, message="exit=1: E: Unable to lock", exit_code=1)  # noqa: E731
    result = StepExecutor().run(Step(id="apt", work=work), "r")
    assert result.status is StepStatus.FAILED
    assert result.error.message == "exit=1: E: Unable to lock"
    assert result.metadata["exit_code"] == 1


def test_step_failure_exit_code_kept():
    def work(ctx):
        raise StepFailure(ctx.step_id, "winget failed", exit_code=42)

    result = StepExecutor().run(Step(id="winget", work=work), "r")
    assert result.metadata["exit_code"] == 42


class TestRetry:
    def test_always_failing_makes_n_plus_one_attempts(self):
        work = Counter(fail=True)
        result = StepExecutor().run(Step(id="s", work=work, retries=3), "r")
        assert work.calls == 4
        assert result.status is StepStatus.FAILED
        assert result.metadata["attempts"] == 4

    def test_succeeds_on_later_attempt(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("mirror busy")
            return "ok"

        result = StepExecutor().run(Step(id="s", work=flaky, retries=5), "r")
        assert result.status is StepStatus.SUCCESS
        assert result.metadata["attempts"] == 3

    def test_hooks_fire_every_attempt(self):
        pre, post = [], []
        hooks = HookSet(global_pre=[lambda r, s, res: pre.append(s)], global_post=[lambda r, s, res: post.append(res.status)])
        ex = StepExecutor(hooks=HookDispatcher(hooks))
        ex.run(Step(id="s", work=Counter(fail=True), retries=2), "r")
        assert pre == ["s", "s", "s"]
        assert post == [StepStatus.FAILED] * 3

    def test_timeout_not_retried_by_default(self):
        calls = Counter()

        def slow(ctx):
            calls()
            ctx.token.wait(5)

        result = StepExecutor().run(Step(id="s", work=slow, timeout=0.1, retries=2), "r")
        assert result.error.kind == "Timeout"
        assert result.metadata["attempts"] == 1
        assert calls.calls == 1

    def test_timeout_retried_when_enabled(self):
        def slow(ctx):
            ctx.token.wait(5)

        step = Step(id="s", work=slow, timeout=0.1, retries=1, retry_timeouts=True)
        result = StepExecutor().run(step, "r")
        assert result.error.kind == "Timeout"
        assert result.metadata["attempts"] == 2


class TestTimeout:
    def test_cooperative_work_is_canceled(self):
        stopped = threading.Event()

        def work(ctx):
            if ctx.token.wait(5):
                stopped.set()

        t0 = time.monotonic()
        result = StepExecutor().run(Step(id="s", work=work, timeout=0.2), "r")
        assert time.monotonic() - t0 < 2
        assert result.status is StepStatus.FAILED
        assert result.error.kind == "Timeout"
        assert result.metadata["timed_out"] is True
        assert stopped.wait(2)

    def test_non_cooperative_work_is_detached(self):
        release = threading.Event()
        t0 = time.monotonic()
        result = StepExecutor().run(Step(id="s", work=lambda: release.wait(5), timeout=0.1), "r")
        assert time.monotonic() - t0 < 2
        assert result.error.kind == "Timeout"
        release.set()


class TestCache:
    def test_second_run_served_from_cache(self):
        cache = CacheLayer()
        work = Counter(value="list")
        ex = StepExecutor(cache)
        step = Step(id="outdated", work=work, cache_key="pip:outdated", cache_ttl=60)
        first = ex.run(step, "r")
        second = ex.run(step, "r")
        assert work.calls == 1
        assert first.metadata["cached"] is False
        assert second.metadata["cached"] is True
        assert second.metadata["output"] == "list"

    def test_force_refresh_recomputes(self):
        cache = CacheLayer()
        work = Counter()
        step = Step(id="s", work=work, cache_key="k", cache_ttl=60)
        StepExecutor(cache).run(step, "r")
        result = StepExecutor(cache, force_refresh=True).run(step, "r")
        assert work.calls == 2
        assert result.metadata["cached"] is False
        assert cache.get_or_compute("k", 60, lambda: "x") == 2

    def test_cache_disabled_runs_work(self):
        cache = CacheLayer()
        work = Counter()
        step = Step(id="s", work=work, cache_key="k", cache_ttl=60)
        ex = StepExecutor(cache, use_cache=False)
        ex.run(step, "r")
        ex.run(step, "r")
        assert work.calls == 2
        assert len(cache) == 0

    def test_compute_failure_reported_as_step_failure(self):
        result = StepExecutor(CacheLayer()).run(Step(id="s", work=Counter(fail=True), cache_key="k"), "r")
        assert result.error.kind == "StepFailure"
        assert "boom" in result.error.message

    def test_default_ttl_used_when_step_has_none(self):
        cache = CacheLayer()
        StepExecutor(cache, default_ttl=30).run(Step(id="s", work=lambda: 1, cache_key="k"), "r")
        assert cache.lookup("k").ttl == 30


class TestCancellation:
    def test_canceled_token_before_start(self):
        token = CancellationToken()
        token.cancel()
        work = Counter()
        result = StepExecutor().run(Step(id="s", work=work, retries=3), "r", token)
        assert result.error.kind == "Canceled"
        assert work.calls == 0
        assert result.metadata["attempts"] == 1

    def test_cancel_while_running_stops_waiting(self):
        token = CancellationToken()
        release = threading.Event()
        threading.Timer(0.1, token.cancel).start()
        t0 = time.monotonic()
        result = StepExecutor().run(Step(id="s", work=lambda: release.wait(5)), "r", token)
        assert time.monotonic() - t0 < 2
        assert result.error.kind == "Canceled"
        release.set()


def test_post_hooks_run_on_failure_and_skip():
    seen = []
    hooks = HookSet(global_post=[lambda r, s, res: seen.append((s, res.status, res.skip_reason))])
    ex = StepExecutor(hooks=HookDispatcher(hooks))
    ex.run(Step(id="a", work=Counter(fail=True)), "r")
    ex.skip(Step(id="b", work=lambda: None), "r", "skipped by configuration")
    assert seen == [
        ("a", StepStatus.FAILED, None),
        ("b", StepStatus.SKIPPED, "skipped by configuration"),
    ]


def test_pre_hook_errors_recorded_in_metadata():
    def broken(r, s, res):
        raise RuntimeError("toast failed")

    ex = StepExecutor(hooks=HookDispatcher(HookSet(global_pre=[broken])))
    result = ex.run(Step(id="s", work=lambda: None), "r")
    assert result.status is StepStatus.SUCCESS
    assert "toast failed" in result.metadata["hook_errors"][0]
