"""Default BitLocker collection step list.

Order matters only for log readability; every step is independent. Mandatory steps decide the exit
code: volume status and the BitLocker management event log.
"""

from __future__ import annotations

import json
import shutil
from typing import Dict, List, Optional, Sequence

from collector.core.config import ChannelSpec, CollectorConfig, PolicyKeySpec
from collector.core.errors import ActionFailed
from collector.core.models import ArtifactPath, RunContext
from collector.sources import Sources
from collector.steps.base import (
    ActionContext,
    ArtifactSpec,
    Executable,
    InProcess,
    Precondition,
    Step,
    validate_step_ids,
)

MDM_SCRATCH_DIR = ".tool_output"


def _volume_status(sources: Sources) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        volumes = sources.volumes.list_volumes()
        if not volumes:
            raise ActionFailed("Get-BitLockerVolume reported no volumes")
        body = "".join(v.model_dump_json() + "\n" for v in volumes)
        return [actx.write_text("logs", "volume_status.jsonl", body)]

    return InProcess(fn=collect, label="Get-BitLockerVolume")


def _tpm_status(sources: Sources) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        tpm = sources.tpm.get_tpm_status()
        return [actx.write_text("logs", "tpm_status.json", tpm.model_dump_json(indent=2))]

    return InProcess(fn=collect, label="Get-Tpm")


def _recovery_env(sources: Sources) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        info = sources.recovery.get_recovery_env_info()
        return [actx.write_text("logs", "winre.json", info.model_dump_json(indent=2))]

    return InProcess(fn=collect, label="reagentc /info")


def _policy_export(sources: Sources, spec: PolicyKeySpec) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        artifact = actx.artifact("registry", spec.filename)
        if not sources.policy.export_policy_tree(spec.registry_path, artifact.path):
            detail = getattr(sources.policy, "last_error", None)
            raise ActionFailed(f"registry export of {spec.registry_path} failed" + (f": {detail}" if detail else ""))
        return [artifact]

    return InProcess(fn=collect, label=f"reg export {spec.registry_path}")


def _channel_export(sources: Sources, channel: str, filename: str) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        artifact = actx.artifact("events", filename)
        if not sources.events.export_channel(channel, artifact.path):
            detail = getattr(sources.events, "last_error", None)
            raise ActionFailed(f"export of channel '{channel}' failed" + (f": {detail}" if detail else ""))
        return [artifact]

    return InProcess(fn=collect, label=f"wevtutil epl {channel}")


def _mdm_diagnostics(sources: Sources) -> InProcess:
    def collect(actx: ActionContext) -> List[ArtifactPath]:
        # The tool gets a scratch folder inside the bundle so nothing lands outside the output root.
        scratch = actx.layout.root / "mdm" / MDM_SCRATCH_DIR
        scratch.mkdir(parents=True, exist_ok=True)
        try:
            diag = sources.diagnostics.run_diagnostics_tool(scratch)
            out: List[ArtifactPath] = []
            xml = actx.artifact("mdm", diag.xml_path.name)
            shutil.copyfile(diag.xml_path, xml.path)
            out.append(xml)
            if diag.html_path is not None:
                html = actx.artifact("mdm", diag.html_path.name)
                shutil.copyfile(diag.html_path, html.path)
                out.append(html)
            return out
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    return InProcess(fn=collect, label="MdmDiagnosticsTool")


def _optional_diagnostics_enabled(ctx: RunContext) -> bool:
    return bool(ctx.include_mdm)


def event_log_step(sources: Sources, spec: ChannelSpec) -> Step:
    """Primary channel first; alternate channel names become the fallback chain."""
    actions = [_channel_export(sources, ch, spec.filename) for ch in spec.channels]
    return Step(
        step_id=spec.step_id,
        label=spec.label,
        action=actions[0],
        fallbacks=tuple(actions[1:]),
        mandatory=spec.mandatory,
    )


def registry_step(sources: Sources, spec: PolicyKeySpec) -> Step:
    return Step(
        step_id=spec.step_id,
        label=spec.label,
        action=_policy_export(sources, spec),
        mandatory=spec.mandatory,
    )


def build_default_steps(config: CollectorConfig, sources: Sources) -> List[Step]:
    steps: List[Step] = [
        Step(
            step_id="volume_status",
            label="BitLocker volume status",
            action=_volume_status(sources),
            fallbacks=(Executable("manage-bde.exe", ("-status",), ArtifactSpec("logs", "manage-bde_status.txt")),),
            mandatory=True,
        ),
        Step(
            step_id="tpm_status",
            label="TPM status",
            action=_tpm_status(sources),
            fallbacks=(
                Executable("tpmtool.exe", ("getdeviceinformation",), ArtifactSpec("logs", "tpmtool_deviceinfo.txt")),
            ),
        ),
        Step(
            step_id="recovery_environment",
            label="Windows Recovery Environment",
            action=_recovery_env(sources),
        ),
        Step(
            step_id="system_info",
            label="System information",
            action=Executable("systeminfo.exe", (), ArtifactSpec("logs", "systeminfo.txt")),
        ),
        Step(
            step_id="group_policy_result",
            label="Resultant group policy",
            action=Executable(
                "gpresult.exe",
                ("/h", "{dest}", "/f"),
                ArtifactSpec("logs", "gpresult.html"),
                capture_stdout=False,
            ),
        ),
    ]
    steps.extend(registry_step(sources, spec) for spec in config.policy_keys)
    steps.extend(event_log_step(sources, spec) for spec in config.event_channels)
    steps.append(
        Step(
            step_id="mdm_diagnostics",
            label="MDM diagnostics (optional)",
            action=_mdm_diagnostics(sources),
            preconditions=(
                Precondition("optional diagnostics enabled (--include-optional-diagnostics)", _optional_diagnostics_enabled),
            ),
        )
    )
    validate_step_ids(steps)
    return steps


def describe_steps(steps: Sequence[Step]) -> List[Dict[str, object]]:
    out: List[Dict[str, object]] = []
    for s in steps:
        out.append(
            {
                "step_id": s.step_id,
                "label": s.label,
                "mandatory": s.mandatory,
                "actions": [a.describe() for a in s.chain()],
                "preconditions": [p.description for p in s.preconditions],
            }
        )
    return out


def steps_to_json(steps: Sequence[Step], indent: Optional[int] = 2) -> str:
    return json.dumps(describe_steps(steps), indent=indent)
