"""Windows Recovery Environment source (`reagentc /info`)."""

from __future__ import annotations

import re
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from collector.core.errors import ActionFailed
from collector.runner.tool_runner import CommandRunner
from collector.sources.base import require_ok

_STATUS_RE = re.compile(r"Windows RE status:\s*(\S+)", re.IGNORECASE)
_LOCATION_RE = re.compile(r"Windows RE location:[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)


class RecoveryEnvInfo(BaseModel):
    enabled: bool
    location: Optional[str] = None


def parse_reagentc_info(text: str) -> RecoveryEnvInfo:
    status = _STATUS_RE.search(text or "")
    if not status:
        raise ActionFailed("reagentc output has no 'Windows RE status' line")
    location = _LOCATION_RE.search(text or "")
    loc = location.group(1).strip() if location else ""
    return RecoveryEnvInfo(enabled=status.group(1).strip().lower() == "enabled", location=loc or None)


@runtime_checkable
class RecoveryEnvSource(Protocol):
    def get_recovery_env_info(self) -> RecoveryEnvInfo: ...


class ReagentcRecoverySource:
    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def get_recovery_env_info(self) -> RecoveryEnvInfo:
        result = require_ok(self.runner.run("reagentc.exe", ["/info"], self.timeout))
        return parse_reagentc_info(result.stdout)
