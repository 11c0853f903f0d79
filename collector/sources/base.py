"""Shared plumbing for collaborator sources (PowerShell invocation, JSON decoding, exit handling)."""

from __future__ import annotations

import json
from typing import Any, List, Optional

from collector.core.errors import ActionFailed, ToolNotFound
from collector.runner.tool_runner import POWERSHELL, POWERSHELL_ARGS, CommandRunner, ToolResult


def require_ok(result: ToolResult) -> ToolResult:
    if result.not_found:
        raise ToolNotFound(result.executable)
    if not result.ok:
        raise ActionFailed(result.error_summary())
    return result


def run_powershell(runner: CommandRunner, script: str, timeout: Optional[float] = None) -> ToolResult:
    return runner.run(POWERSHELL, [*POWERSHELL_ARGS, "$ErrorActionPreference = 'Stop'; " + script], timeout)


def decode_json_records(text: str) -> List[dict]:
    """
    Decode ConvertTo-Json output into a list of objects.

    PowerShell emits a bare object for one item and an array for several; both become a list.
    """
    raw = (text or "").strip()
    if not raw:
        return []
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ActionFailed(f"unexpected (non-JSON) output: {e}") from e
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    raise ActionFailed(f"unexpected JSON payload type: {type(data).__name__}")
