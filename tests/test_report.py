import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from collector.core.models import RunReport, StepResult
from collector.dump import report_to_json_dict, write_report_json
from collector.report import render_summary


def _report(run_ctx) -> RunReport:  # type: ignore[no-untyped-def]
    report = RunReport(context=run_ctx)
    report.add(
        StepResult(
            step_id="volume_status",
            label="Volumes",
            status="succeeded",
            artifacts=[run_ctx.output_root / "logs" / "volume_status.jsonl"],
            mandatory=True,
        )
    )
    report.add(
        StepResult(
            step_id="events_bitlocker_management",
            label="Mgmt",
            status="succeeded_via_fallback",
            fallback_used="in_process:wevtutil epl Microsoft-Windows-BitLocker-API/Management",
            mandatory=True,
        )
    )
    report.add(StepResult(step_id="tpm_status", label="TPM", status="failed", message="Get-Tpm returned no data"))
    report.add(StepResult(step_id="mdm_diagnostics", label="MDM", status="skipped", message="precondition not met"))
    return report.finalize()


def test_summary_lists_each_step_and_totals(run_ctx) -> None:
    text = render_summary(_report(run_ctx))
    lines = text.splitlines()

    assert lines[0] == f"Run {run_ctx.run_id}"
    assert any(line.strip().startswith("volume_status") and "-> OK *" in line for line in lines)
    assert "-> OK (fallback) * [in_process:wevtutil epl Microsoft-Windows-BitLocker-API/Management]" in text
    assert "-> FAILED (Get-Tpm returned no data)" in text
    assert "-> SKIPPED (precondition not met)" in text
    assert "Totals: ok=1, ok (fallback)=1, failed=1, skipped=1" in text
    assert "All mandatory steps collected." in text
    assert lines[-1] == f"Full detail: {run_ctx.log_path}"
    assert "Archive:" not in text


def test_summary_names_mandatory_failures_and_archive(run_ctx) -> None:
    report = RunReport(context=run_ctx)
    report.add(StepResult(step_id="volume_status", label="Volumes", status="skipped", mandatory=True))
    report.finalize()

    text = render_summary(report, archive_path=Path("/tmp/x.zip"))

    assert "Mandatory steps not collected: volume_status" in text
    assert "Archive: " in text


def test_report_json_dict(run_ctx) -> None:
    data = report_to_json_dict(_report(run_ctx))

    assert data["counts"] == {"succeeded": 1, "succeeded_via_fallback": 1, "failed": 1, "skipped": 1}
    assert data["exit_ready"] is True
    assert data["context"]["output_root"] == str(run_ctx.output_root)
    assert data["results"][0]["artifacts"] == [str(run_ctx.output_root / "logs" / "volume_status.jsonl")]
    # Round-trips through json.dumps without custom encoders.
    json.dumps(data)


def test_write_report_json(run_ctx) -> None:
    path = write_report_json(_report(run_ctx), run_ctx.report_path)
    assert json.loads(path.read_text(encoding="utf-8"))["mandatory_failures"] == []


def test_finalized_report_rejects_new_results(run_ctx) -> None:
    report = _report(run_ctx)
    with pytest.raises(RuntimeError):
        report.add(StepResult(step_id="late", label="Late", status="succeeded"))


def test_finalized_report_fields_are_read_only(run_ctx) -> None:
    report = _report(run_ctx)

    with pytest.raises(RuntimeError):
        report.finished_at = None
    with pytest.raises(RuntimeError):
        report.results = ()
    # Results are a tuple, so there is no in-place append either.
    assert isinstance(report.results, tuple)
    assert len(report.results) == 4


def test_open_report_validates_assignment(run_ctx) -> None:
    report = RunReport(context=run_ctx)
    with pytest.raises(ValidationError):
        report.finished_at = "not a timestamp"
    assert report.finished_at is None
