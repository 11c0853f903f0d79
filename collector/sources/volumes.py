"""BitLocker volume status source (Get-BitLockerVolume)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from collector.runner.tool_runner import CommandRunner
from collector.sources.base import decode_json_records, require_ok, run_powershell

_VOLUME_SCRIPT = (
    "Get-BitLockerVolume | ForEach-Object { [pscustomobject]@{ "
    "MountPoint = $_.MountPoint; VolumeType = [string]$_.VolumeType; "
    "ProtectionStatus = [string]$_.ProtectionStatus; VolumeStatus = [string]$_.VolumeStatus; "
    "EncryptionMethod = [string]$_.EncryptionMethod; EncryptionPercentage = $_.EncryptionPercentage; "
    "LockStatus = [string]$_.LockStatus; "
    "KeyProtector = @($_.KeyProtector | ForEach-Object { [string]$_.KeyProtectorType }) } } "
    "| ConvertTo-Json -Depth 4"
)


class VolumeStatus(BaseModel):
    # Upstream cmdlet output varies across Windows builds.
    model_config = ConfigDict(extra="allow")

    mount_point: str
    volume_type: Optional[str] = None
    protection_status: Optional[str] = None
    volume_status: Optional[str] = None
    encryption_method: Optional[str] = None
    encryption_percentage: Optional[float] = None
    lock_status: Optional[str] = None
    key_protectors: List[str] = Field(default_factory=list)


def volume_from_record(rec: Dict[str, Any]) -> VolumeStatus:
    protectors = rec.get("KeyProtector")
    if isinstance(protectors, str):
        protectors = [protectors]
    elif not isinstance(protectors, list):
        protectors = []
    pct = rec.get("EncryptionPercentage")
    return VolumeStatus(
        mount_point=str(rec.get("MountPoint") or ""),
        volume_type=rec.get("VolumeType"),
        protection_status=rec.get("ProtectionStatus"),
        volume_status=rec.get("VolumeStatus"),
        encryption_method=rec.get("EncryptionMethod"),
        encryption_percentage=float(pct) if isinstance(pct, (int, float)) else None,
        lock_status=rec.get("LockStatus"),
        key_protectors=[str(p) for p in protectors if p],
    )


@runtime_checkable
class VolumeStatusSource(Protocol):
    def list_volumes(self) -> List[VolumeStatus]: ...


class PowerShellVolumeSource:
    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def list_volumes(self) -> List[VolumeStatus]:
        result = require_ok(run_powershell(self.runner, _VOLUME_SCRIPT, self.timeout))
        return [volume_from_record(r) for r in decode_json_records(result.stdout)]
