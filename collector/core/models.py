"""Canonical run models (single source of truth).

These are the records shared across:
- output layout (RunContext, ArtifactPath)
- step execution (StepResult)
- reporting (RunReport, console summary and run_report.json)

Design note:
- RunContext, ArtifactPath and StepResult are frozen once built.
- RunReport is appended to while the executor runs and frozen by `finalize()`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

StepStatus = Literal["succeeded", "succeeded_via_fallback", "failed", "skipped"]

STEP_STATUSES: tuple = ("succeeded", "succeeded_via_fallback", "failed", "skipped")
OK_STATUSES: tuple = ("succeeded", "succeeded_via_fallback")


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BaseModelFrozen(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RunContext(BaseModelFrozen):
    run_id: str
    run_timestamp: datetime
    output_root: Path
    product_name: str
    elevated: bool = False
    include_mdm: bool = False
    archive: bool = False
    use_temp: bool = False

    @field_validator("run_timestamp")
    @classmethod
    def _ensure_timezone_aware(cls, v: datetime) -> datetime:
        # Prevent naive/aware mixing bugs in report timestamps.
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def log_path(self) -> Path:
        return self.output_root / "activity.log"

    @property
    def report_path(self) -> Path:
        return self.output_root / "run_report.json"


class ArtifactPath(BaseModelFrozen):
    category: str
    filename: str
    path: Path


class StepResult(BaseModelFrozen):
    step_id: str
    label: str
    status: StepStatus
    message: Optional[str] = None
    artifacts: List[Path] = Field(default_factory=list)
    fallback_used: Optional[str] = None
    attempts: List[str] = Field(default_factory=list, description="describe() of every action tried, in order")
    elapsed_s: float = 0.0
    mandatory: bool = False

    @property
    def ok(self) -> bool:
        return self.status in OK_STATUSES


class RunReport(BaseModelStrict):
    """Results in execution order. Once finalized, every field is read-only."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    context: RunContext
    results: Tuple[StepResult, ...] = ()
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    _finalized: bool = PrivateAttr(default=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __setattr__(self, name: str, value: Any) -> None:
        if name in type(self).model_fields and self._finalized:
            raise RuntimeError(f"RunReport is finalized; {name} can no longer be changed")
        super().__setattr__(name, value)

    def add(self, result: StepResult) -> None:
        if self._finalized:
            raise RuntimeError("RunReport is finalized; results can no longer be added")
        self.results = (*self.results, result)

    def finalize(self, finished_at: Optional[datetime] = None) -> "RunReport":
        if not self._finalized:
            self.finished_at = finished_at or datetime.now(timezone.utc)
            self._finalized = True
        return self

    def counts(self) -> Dict[str, int]:
        out = {s: 0 for s in STEP_STATUSES}
        for r in self.results:
            out[r.status] += 1
        return out

    def mandatory_failures(self) -> List[StepResult]:
        # A mandatory step that was skipped still counts: nothing was collected for it.
        return [r for r in self.results if r.mandatory and not r.ok]

    @property
    def exit_ready(self) -> bool:
        return not self.mandatory_failures()

    def result_for(self, step_id: str) -> Optional[StepResult]:
        for r in self.results:
            if r.step_id == step_id:
                return r
        return None

