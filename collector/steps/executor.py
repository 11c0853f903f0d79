"""Step executor: runs the step list with per-step failure isolation.

Per step:  Pending -> Running -> succeeded | succeeded_via_fallback | failed | skipped

- unmet precondition              -> skipped (nothing runs)
- primary action ok               -> succeeded
- primary failed, a fallback ok   -> succeeded_via_fallback (fallback recorded)
- every action failed             -> failed (last error recorded)
- every action's tool is missing  -> skipped ("executable not found"), not failed

"ok" means: no exception, tool exit code 0, and every artifact the action reports exists under the
output root and is non-empty.

Nothing raised by an action or precondition escapes `run_step`; every step in the list is visited
exactly once, in order.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from collector.core.activity_log import ActivityLog
from collector.core.errors import ActionFailed, ToolNotFound
from collector.core.layout import OutputLayout, layout_for
from collector.core.models import RunContext, RunReport, StepResult
from collector.runner.tool_runner import POWERSHELL, POWERSHELL_ARGS, CommandRunner, ToolResult
from collector.steps.base import (
    DEST_PLACEHOLDER,
    Action,
    ActionContext,
    ArtifactSpec,
    Cmdlet,
    Executable,
    InProcess,
    Step,
)


def _error_text(e: BaseException) -> str:
    msg = str(e).strip()
    return f"{type(e).__name__}: {msg}" if msg else type(e).__name__


class StepExecutor:
    def __init__(
        self,
        ctx: RunContext,
        *,
        runner: CommandRunner,
        log: ActivityLog,
        layout: Optional[OutputLayout] = None,
        tool_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ctx = ctx
        self.runner = runner
        self.log = log
        self.layout = layout or layout_for(ctx)
        self.tool_timeout = tool_timeout
        self._clock = clock

    def run(self, steps: Sequence[Step], *, report: Optional[RunReport] = None, finalize: bool = True) -> RunReport:
        """Run every step in declared order and collect the results into a RunReport."""
        report = report if report is not None else RunReport(context=self.ctx)
        self.log.info(f"Running {len(steps)} step(s)")
        for step in steps:
            report.add(self.run_step(step))
        counts = report.counts()
        self.log.info("Steps complete: " + ", ".join(f"{k}={v}" for k, v in counts.items()))
        if finalize:
            report.finalize()
        return report

    def run_step(self, step: Step) -> StepResult:
        started = self._clock()
        with self.log.step(step.step_id) as marker:
            try:
                result = self._execute(step, started)
            except Exception as e:
                # Executor bug or a misbehaving descriptor; still contained to this step.
                result = self._result(step, "failed", started, message=f"executor error: {_error_text(e)}")
            marker.status = result.status
            self._log_outcome(result)
        return result

    def _execute(self, step: Step, started: float) -> StepResult:
        unmet = self._unmet_precondition(step)
        if unmet is not None:
            return self._result(step, "skipped", started, message=f"precondition not met: {unmet}")

        chain = step.chain()
        attempts: List[str] = []
        last_error: Optional[str] = None
        ran_any = False

        for index, action in enumerate(chain):
            attempts.append(action.describe())
            try:
                artifacts = self._invoke(step, action)
            except ToolNotFound as e:
                last_error = str(e)
                self._log_attempt_failure(step, action, index, chain, last_error)
                continue
            except Exception as e:
                ran_any = True
                last_error = _error_text(e) if not isinstance(e, ActionFailed) else str(e)
                self._log_attempt_failure(step, action, index, chain, last_error)
                continue

            if index == 0:
                return self._result(step, "succeeded", started, artifacts=artifacts, attempts=attempts)
            return self._result(
                step,
                "succeeded_via_fallback",
                started,
                artifacts=artifacts,
                attempts=attempts,
                fallback_used=action.describe(),
                message=f"primary {chain[0].describe()} failed; used fallback {action.describe()}",
            )

        if not ran_any:
            return self._result(step, "skipped", started, message=last_error, attempts=attempts)
        return self._result(step, "failed", started, message=last_error, attempts=attempts)

    def _unmet_precondition(self, step: Step) -> Optional[str]:
        for pre in step.preconditions:
            try:
                if not pre.check(self.ctx):
                    return pre.description
            except Exception as e:
                return f"{pre.description} (check error: {_error_text(e)})"
        return None

    def _invoke(self, step: Step, action: Action) -> List[Path]:
        if isinstance(action, InProcess):
            actx = ActionContext(run=self.ctx, layout=self.layout, runner=self.runner, log=self.log, step=step)
            produced = action.fn(actx) or []
            paths = [Path(a.path) for a in produced]
            if not paths:
                raise ActionFailed(f"{action.describe()} produced no artifacts")
            return self._verify(paths)

        if isinstance(action, Cmdlet):
            spec = action.output or ArtifactSpec("logs", f"{step.step_id}.txt")
            artifact = self.layout.path_for(spec.category, spec.filename)
            self.layout.ensure_parent(artifact)
            args = [*POWERSHELL_ARGS, action.script(dest=str(artifact.path))]
            result = self.runner.run(POWERSHELL, args, self.tool_timeout)
            return self._finish_tool(result, artifact.path, capture_stdout=True)

        if isinstance(action, Executable):
            spec = action.output or ArtifactSpec("logs", f"{step.step_id}.txt")
            artifact = self.layout.path_for(spec.category, spec.filename)
            self.layout.ensure_parent(artifact)
            args = [a.replace(DEST_PLACEHOLDER, str(artifact.path)) for a in action.args]
            timeout = action.timeout if action.timeout is not None else self.tool_timeout
            result = self.runner.run(action.path, args, timeout)
            return self._finish_tool(result, artifact.path, capture_stdout=action.capture_stdout)

        raise ActionFailed(f"unsupported action type: {type(action).__name__}")

    def _finish_tool(self, result: ToolResult, dest: Path, *, capture_stdout: bool) -> List[Path]:
        if result.not_found:
            raise ToolNotFound(result.executable)
        if not result.ok:
            raise ActionFailed(result.error_summary())
        if capture_stdout:
            # Verbatim bytes: console tools print in the OEM code page, not UTF-8.
            dest.write_bytes(result.output_bytes())
        return self._verify([dest])

    def _verify(self, paths: List[Path]) -> List[Path]:
        for p in paths:
            if not self.layout.contains(p):
                raise ActionFailed(f"artifact outside the output root: {p}")
        bad = [p for p in paths if not p.is_file() or p.stat().st_size == 0]
        if bad:
            # A rejected artifact is not listed in any result, so it must not stay in the bundle.
            for p in paths:
                self._discard(p)
            raise ActionFailed(f"expected artifact missing or empty: {bad[0]}")
        return paths

    def _discard(self, path: Path) -> None:
        try:
            if path.is_file():
                path.unlink()
        except OSError as e:
            self.log.warn(f"could not remove rejected artifact {path}: {e}")

    def _log_attempt_failure(self, step: Step, action: Action, index: int, chain: List[Action], error: str) -> None:
        role = "primary" if index == 0 else f"fallback {index}"
        if index + 1 < len(chain):
            nxt = chain[index + 1].describe()
            self.log.warn(f"{step.step_id}: {role} {action.describe()} failed: {error}; trying {nxt}")
        else:
            self.log.warn(f"{step.step_id}: {role} {action.describe()} failed: {error}")

    def _log_outcome(self, result: StepResult) -> None:
        elapsed = f"{result.elapsed_s:.2f}s"
        tag = " [mandatory]" if result.mandatory else ""
        if result.status == "succeeded":
            self.log.info(f"{result.step_id}{tag}: succeeded in {elapsed} ({len(result.artifacts)} artifact(s))")
        elif result.status == "succeeded_via_fallback":
            self.log.info(
                f"{result.step_id}{tag}: succeeded via fallback {result.fallback_used} in {elapsed} "
                f"({len(result.artifacts)} artifact(s))"
            )
        elif result.status == "skipped":
            level = "ERROR" if result.mandatory else "WARN"
            self.log.log(level, f"{result.step_id}{tag}: skipped in {elapsed}: {result.message}")
        else:
            self.log.error(
                f"{result.step_id}{tag}: failed after {len(result.attempts)} attempt(s) in {elapsed}: {result.message}"
            )

    def _result(
        self,
        step: Step,
        status: str,
        started: float,
        *,
        message: Optional[str] = None,
        artifacts: Optional[List[Path]] = None,
        attempts: Optional[List[str]] = None,
        fallback_used: Optional[str] = None,
    ) -> StepResult:
        return StepResult(
            step_id=step.step_id,
            label=step.label,
            status=status,  # type: ignore[arg-type]
            message=message,
            artifacts=list(artifacts or []),
            fallback_used=fallback_used,
            attempts=list(attempts or []),
            elapsed_s=max(0.0, self._clock() - started),
            mandatory=step.mandatory,
        )
