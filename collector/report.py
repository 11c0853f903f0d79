"""Console summary for a finished run. Rendering is deterministic."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from collector.core.models import RunReport

_STATUS_LABELS = {
    "succeeded": "OK",
    "succeeded_via_fallback": "OK (fallback)",
    "failed": "FAILED",
    "skipped": "SKIPPED",
}


def render_summary(report: RunReport, *, archive_path: Optional[Path] = None) -> str:
    lines: List[str] = []
    ctx = report.context
    lines.append(f"Run {ctx.run_id}")
    lines.append(f"Output: {ctx.output_root}")

    width = max((len(r.step_id) for r in report.results), default=0)
    for r in report.results:
        outcome = _STATUS_LABELS.get(r.status, r.status)
        mark = " *" if r.mandatory else ""
        line = f"  {r.step_id.ljust(width)} -> {outcome}{mark}"
        if r.status == "succeeded_via_fallback" and r.fallback_used:
            line += f" [{r.fallback_used}]"
        elif r.status in ("failed", "skipped") and r.message:
            line += f" ({r.message})"
        lines.append(line)

    counts = report.counts()
    lines.append(
        "Totals: "
        + ", ".join(f"{_STATUS_LABELS[k].lower()}={v}" for k, v in counts.items())
        + "   (* = mandatory)"
    )
    if archive_path is not None:
        lines.append(f"Archive: {archive_path}")

    failures = report.mandatory_failures()
    if failures:
        lines.append("Mandatory steps not collected: " + ", ".join(r.step_id for r in failures))
    else:
        lines.append("All mandatory steps collected.")
    lines.append(f"Full detail: {ctx.log_path}")
    return "\n".join(lines)
