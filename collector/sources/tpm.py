from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from collector.core.errors import ActionFailed
from collector.runner.tool_runner import CommandRunner
from collector.sources.base import decode_json_records, require_ok, run_powershell

_TPM_SCRIPT = (
    "$t = Get-Tpm; "
    "$w = Get-CimInstance -Namespace root/cimv2/Security/MicrosoftTpm -ClassName Win32_Tpm -ErrorAction SilentlyContinue; "
    "[pscustomobject]@{ TpmPresent = $t.TpmPresent; TpmReady = $t.TpmReady; TpmEnabled = $t.TpmEnabled; "
    "TpmActivated = $t.TpmActivated; TpmOwned = $t.TpmOwned; SpecVersion = $w.SpecVersion; "
    "ManufacturerVersion = $t.ManufacturerVersion } | ConvertTo-Json"
)


class TpmStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    present: bool = False
    ready: bool = False
    enabled: bool = False
    activated: bool = False
    owned: bool = False
    spec_version: Optional[str] = None
    manufacturer_version: Optional[str] = None


def tpm_from_record(rec: Dict[str, Any]) -> TpmStatus:
    spec = rec.get("SpecVersion")
    return TpmStatus(
        present=bool(rec.get("TpmPresent")),
        ready=bool(rec.get("TpmReady")),
        enabled=bool(rec.get("TpmEnabled")),
        activated=bool(rec.get("TpmActivated")),
        owned=bool(rec.get("TpmOwned")),
        # Win32_Tpm reports e.g. "2.0, 0, 1.59"; the first field is the TPM family.
        spec_version=str(spec).split(",")[0].strip() if spec else None,
        manufacturer_version=rec.get("ManufacturerVersion"),
    )


@runtime_checkable
class TpmStatusSource(Protocol):
    def get_tpm_status(self) -> TpmStatus: ...


class PowerShellTpmSource:
    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def get_tpm_status(self) -> TpmStatus:
        result = require_ok(run_powershell(self.runner, _TPM_SCRIPT, self.timeout))
        records = decode_json_records(result.stdout)
        if not records:
            raise ActionFailed("Get-Tpm returned no data")
        return tpm_from_record(records[0])
