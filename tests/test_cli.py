from __future__ import annotations

import json
import textwrap

import pytest
from click.testing import CliRunner

from updateflow.backends.file_backend import FileCacheBacking
from updateflow.cli import cli

GOOD = """
from updateflow import wf, step

def workflow():
    return wf(
        step("pip", lambda: "pip ok", cache_key="pip:outdated"),
        step("npm", lambda: "npm ok"),
        step("report", lambda: "done", needs=["pip", "npm"]),
    )
"""

BAD = """
from updateflow import step

def boom():
    raise RuntimeError("E: Unable to lock the administration directory")

STEPS = [
    step("apt", boom),
    step("report", lambda: "done", needs=["apt"]),
]
"""

CYCLE = """
from updateflow import step

STEPS = [
    step("a", lambda: 1, needs=["b"]),
    step("b", lambda: 2, needs=["a"]),
]
"""

INTERRUPTED = """
import os
import signal
import time

from updateflow import step

def upgrade(ctx):
    time.sleep(0.2)
    os.kill(os.getpid(), signal.SIGINT)
    ctx.token.wait(10)

STEPS = [
    step("winget", upgrade),
    step("report", lambda: "done", needs=["winget"]),
]
"""

BROKEN = """
from updateflow import step

raise ImportError("no module named choco_helpers")
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("UPDATEFLOW_CACHE_BACKEND", "memory")

    def write(source: str, name: str = "updateflow_workflow.py"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return write


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


def test_run_success(project):
    project(GOOD)
    result = invoke("run")
    assert result.exit_code == 0, result.output
    assert "Wave 0: pip, npm" in result.output
    assert "Status: SUCCESS" in result.output


def test_run_failure_exit_code(project):
    project(BAD)
    result = invoke("run", "--sequential")
    assert result.exit_code == 1
    assert "apt: FAILED StepFailure" in result.output


def test_stop_on_failure_skips_rest(project):
    project(BAD)
    result = invoke("run", "--stop-on-failure")
    assert result.exit_code == 1
    assert "report: SKIPPED (upstream failure)" in result.output


def test_summary_out(project, tmp_path):
    project(GOOD)
    out = tmp_path / "reports" / "summary.json"
    result = invoke("run", "--summary-out", str(out))
    assert result.exit_code == 0, result.output
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert doc["status"] == "success"
    assert doc["counts"] == {"ok": 3, "failed": 0, "skipped": 0}


def test_dry_run(project):
    project(BAD)
    result = invoke("run", "--dry-run")
    assert result.exit_code == 0
    assert "apt: SKIPPED (dry run)" in result.output


def test_skip_option(project):
    project(BAD)
    result = invoke("run", "--skip", "apt")
    assert result.exit_code == 0
    assert "apt: SKIPPED (skipped by configuration)" in result.output


def test_unknown_skip_is_config_error(project):
    project(GOOD)
    result = invoke("run", "--skip", "brew")
    assert result.exit_code == 2
    assert "brew" in result.output


def test_cycle_is_config_error(project):
    project(CYCLE)
    result = invoke("run")
    assert result.exit_code == 2
    assert "Invalid workflow" in result.output


def test_missing_workflow(project):
    result = invoke("run")
    assert result.exit_code == 2
    assert "No workflow file found" in result.output


def test_explicit_workflow_path(project):
    project(GOOD, name="nightly.py")
    result = invoke("run", "--workflow", "nightly")
    assert result.exit_code == 0, result.output


def test_multiple_workflows_need_a_choice(project):
    project(GOOD, name="a_workflow.py")
    project(GOOD, name="b_workflow.py")
    result = invoke("plan")
    assert result.exit_code == 2
    assert "Multiple workflow files found" in result.output


def test_plan(project):
    project(GOOD)
    result = invoke("plan")
    assert result.exit_code == 0
    assert "Wave 0: pip, npm" in result.output
    assert "Wave 1: report" in result.output


def test_cache_clear(project, tmp_path):
    cache_dir = tmp_path / "cache"
    backing = FileCacheBacking(cache_dir)
    backing.store("pip:outdated", "[]", 1.0)
    result = invoke("cache", "clear", "--cache-backend", "file", "--cache-dir", str(cache_dir))
    assert result.exit_code == 0, result.output
    assert backing.load("pip:outdated") is None
    assert "Cache cleared (file)" in result.output


def test_interrupt_writes_summary_and_exits_130(project, tmp_path):
    project(INTERRUPTED)
    out = tmp_path / "summary.json"
    result = invoke("run", "--summary-out", str(out))
    assert result.exit_code == 130, result.output
    assert "Interrupted by user" in result.output
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert doc["aborted"] is True
    assert doc["abort_reason"] == "interrupted"
    assert doc["waves"][0]["steps"][0]["error"]["kind"] == "Canceled"
    assert doc["waves"][1]["steps"][0]["skip_reason"] == "canceled"


def test_debug_shows_traceback_for_broken_workflow(project):
    project(BROKEN)
    result = invoke("--debug", "run")
    assert result.exit_code == 2
    assert "Traceback" in result.output
    assert "no module named choco_helpers" in result.output
    assert "[DEBUG] workflow:" in result.output


def test_broken_workflow_without_debug_has_no_traceback(project):
    project(BROKEN)
    result = invoke("run")
    assert result.exit_code == 2
    assert "Traceback" not in result.output
