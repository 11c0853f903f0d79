"""Collaborator sources (read-only data acquisition).

Each source is a Protocol plus a default implementation backed by the tool runner. Steps call
sources through the Protocol, so tests and alternate backends can swap them in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from collector.runner.tool_runner import CommandRunner
from collector.sources.eventlog import EventLogSource, WevtutilEventLogSource
from collector.sources.mdm import DiagnosticsToolSource, MdmDiagnostics, MdmDiagnosticsToolSource
from collector.sources.policy import PolicySource, RegExportPolicySource
from collector.sources.recovery import RecoveryEnvInfo, RecoveryEnvSource, ReagentcRecoverySource
from collector.sources.tpm import PowerShellTpmSource, TpmStatus, TpmStatusSource
from collector.sources.volumes import PowerShellVolumeSource, VolumeStatus, VolumeStatusSource


@dataclass
class Sources:
    volumes: VolumeStatusSource
    tpm: TpmStatusSource
    recovery: RecoveryEnvSource
    policy: PolicySource
    events: EventLogSource
    diagnostics: DiagnosticsToolSource


def get_default_sources(
    runner: CommandRunner,
    *,
    timeout: Optional[float] = None,
    diagnostics_timeout: Optional[float] = None,
) -> Sources:
    """Seam for swapping source implementations (tests pass fakes instead)."""
    return Sources(
        volumes=PowerShellVolumeSource(runner, timeout=timeout),
        tpm=PowerShellTpmSource(runner, timeout=timeout),
        recovery=ReagentcRecoverySource(runner, timeout=timeout),
        policy=RegExportPolicySource(runner, timeout=timeout),
        events=WevtutilEventLogSource(runner, timeout=timeout),
        diagnostics=MdmDiagnosticsToolSource(runner, timeout=diagnostics_timeout or timeout),
    )


__all__ = [
    "DiagnosticsToolSource",
    "EventLogSource",
    "MdmDiagnostics",
    "PolicySource",
    "RecoveryEnvInfo",
    "RecoveryEnvSource",
    "Sources",
    "TpmStatus",
    "TpmStatusSource",
    "VolumeStatus",
    "VolumeStatusSource",
    "get_default_sources",
]
