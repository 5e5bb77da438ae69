# summary.py
from __future__ import annotations

import json
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import SummaryFinalized
from .model import StepResult, StepStatus

# -------------------- Schemas --------------------
# Stable field names: reporting / notification / delta-comparison tooling
# reads this JSON and must treat it as read-only input.


class StepErrorRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    message: str


class StepRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: StepStatus
    started_at: datetime
    duration_ms: int
    error: Optional[StepErrorRecord] = None
    skip_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WaveRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    steps: List[StepRecord]


class Counts(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.ok + self.failed + self.skipped


class RunSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    status: str  # success | failed
    aborted: bool = False
    abort_reason: Optional[str] = None
    waves: List[WaveRecord] = Field(default_factory=list)
    counts: Counts = Field(default_factory=Counts)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def steps(self) -> Iterable[StepRecord]:
        for wave in self.waves:
            yield from wave.steps

    def result_for(self, step_id: str) -> Optional[StepRecord]:
        for rec in self.steps():
            if rec.id == step_id:
                return rec
        return None

    def failed_steps(self) -> List[StepRecord]:
        return [r for r in self.steps() if r.status is StepStatus.FAILED]

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(indent=indent)

    @classmethod
    def from_json(cls, data: str) -> "RunSummary":
        return cls.model_validate_json(data)

    def write(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_json(), encoding="utf-8")
        return p


# -------------------- Aggregation --------------------

def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return repr(value)


def to_record(result: StepResult) -> StepRecord:
    return StepRecord(
        id=result.step_id,
        status=result.status,
        started_at=_utc(result.started_at),
        duration_ms=int(round(result.duration * 1000)),
        error=StepErrorRecord(kind=result.error.kind, message=result.error.message) if result.error else None,
        skip_reason=result.skip_reason,
        metadata={k: _jsonable(v) for k, v in result.metadata.items()},
    )


class ResultAggregator:
    """
    Collects StepResults wave by wave and produces the RunSummary.

    Owned by the scheduler for one run; nothing else writes to it.
    """

    def __init__(self, run_id: str | None = None, *, clock: Callable[[], float] = time.time):
        self.run_id = run_id or uuid.uuid4().hex
        self._clock = clock
        self._lock = threading.Lock()
        self._waves: Dict[int, List[StepResult]] = {}
        self._started_at: float | None = None
        self._summary: Optional[RunSummary] = None
        self._abort_reason: str | None = None

    def start(self) -> None:
        self._started_at = self._clock()

    @property
    def finalized(self) -> bool:
        return self._summary is not None

    def record(self, wave_index: int, result: StepResult) -> None:
        """Append one result in completion order."""
        with self._lock:
            if self._summary is not None:
                raise SummaryFinalized(f"run {self.run_id} is already finalized")
            self._waves.setdefault(wave_index, []).append(result)

    def record_wave(self, wave_index: int, results: Iterable[StepResult]) -> None:
        for r in results:
            self.record(wave_index, r)

    def record_skipped_wave(self, wave_index: int, step_ids: Iterable[str], reason: str) -> None:
        now = self._clock()
        self.record_wave(wave_index, [StepResult.skipped(sid, reason, now) for sid in step_ids])

    def results(self, wave_index: int) -> List[StepResult]:
        with self._lock:
            return list(self._waves.get(wave_index, []))

    def all_results(self) -> Dict[str, StepResult]:
        with self._lock:
            return {r.step_id: r for rs in self._waves.values() for r in rs}

    def abort(self, reason: str) -> None:
        if self._abort_reason is None:
            self._abort_reason = reason

    def finalize(self) -> RunSummary:
        with self._lock:
            if self._summary is not None:
                return self._summary

            finished = self._clock()
            started = self._started_at if self._started_at is not None else finished

            ok = failed = skipped = 0
            waves: List[WaveRecord] = []
            for idx in sorted(self._waves):
                records = [to_record(r) for r in self._waves[idx]]
                for r in self._waves[idx]:
                    if r.status is StepStatus.SUCCESS:
                        ok += 1
                    elif r.status is StepStatus.FAILED:
                        failed += 1
                    else:
                        skipped += 1
                waves.append(WaveRecord(index=idx, steps=records))

            self._summary = RunSummary(
                run_id=self.run_id,
                started_at=_utc(started),
                finished_at=_utc(finished),
                duration_ms=int(round((finished - started) * 1000)),
                status="failed" if failed else "success",
                aborted=self._abort_reason is not None,
                abort_reason=self._abort_reason,
                waves=waves,
                counts=Counts(ok=ok, failed=failed, skipped=skipped),
            )
            return self._summary
