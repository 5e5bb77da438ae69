# commands.py
from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Union

from .errors import StepCanceled, StepFailure
from .model import StepContext, WorkOutcome

# Output tail kept in results; package managers can be chatty.
OUTPUT_TAIL = 4000
POLL_INTERVAL = 0.1

TOOL_HINTS = {
    "winget": "Install App Installer from the Microsoft Store or fix PATH.",
    "choco": "Install Chocolatey or fix PATH.",
    "scoop": "Install Scoop or fix PATH.",
    "pip": "Install Python (includes pip) or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "apt-get": "apt-get is only available on Debian/Ubuntu systems.",
    "brew": "Install Homebrew or fix PATH.",
}


@dataclass
class CommandWork:
    """
    Work that runs one external command (e.g. `choco upgrade all -y`).

    Honours the step's cancellation token: when the executor times the
    step out or the run is canceled, the child process is terminated.
    A non-zero exit code is reported as a failed WorkOutcome.
    """
    command: Union[str, Sequence[str]]
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    ok_exit_codes: Sequence[int] = (0,)
    kill_grace: float = 5.0

    def argv(self) -> List[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)

    def execute(self, ctx: StepContext) -> WorkOutcome:
        argv = self.argv()
        cwd = Path(self.cwd or ".").resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{ctx.step_id}] cwd not found: {cwd}")

        env = os.environ.copy()
        env.update(self.env)

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=env,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            tool = argv[0] if argv else ""
            raise StepFailure(
                step_id=ctx.step_id,
                message=f"command not found: {tool}",
                details={"hint": TOOL_HINTS.get(tool, "Check that the tool is installed and on PATH.")},
            ) from e

        # communicate() with a timeout keeps draining the pipes between checks
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if ctx.token.canceled:
                    self._stop(proc)
                    raise StepCanceled(f"[{ctx.step_id}] command stopped: {ctx.token.reason or 'canceled'}")

        data = {
            "command": " ".join(argv),
            "stdout": (stdout or "")[-OUTPUT_TAIL:],
            "stderr": (stderr or "")[-OUTPUT_TAIL:],
        }
        if proc.returncode not in self.ok_exit_codes:
            first_err = (stderr or stdout or "").strip().splitlines()
            return WorkOutcome(
                ok=False,
                data=data,
                message=f"exit={proc.returncode}: {first_err[-1] if first_err else data['command']}",
                exit_code=proc.returncode,
            )
        return WorkOutcome(ok=True, data=data, exit_code=proc.returncode)

    def _stop(self, proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
