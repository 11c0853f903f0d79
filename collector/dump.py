"""JSON dump helpers (CLI-friendly, testable).

We keep CLI printing logic out of core modules; this returns plain dicts.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from collector.core.models import RunReport


def report_to_json_dict(report: RunReport) -> Dict[str, Any]:
    # Pydantic v2: mode="json" produces JSON-serializable types (paths and datetimes become strings).
    payload = report.model_dump(mode="json")
    payload["counts"] = report.counts()
    payload["exit_ready"] = report.exit_ready
    payload["mandatory_failures"] = [r.step_id for r in report.mandatory_failures()]
    return payload


def write_report_json(report: RunReport, path: Path) -> Path:
    path.write_text(json.dumps(report_to_json_dict(report), indent=2, sort_keys=False), encoding="utf-8")
    return path
