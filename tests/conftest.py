"""
Pytest config.

Pins the repo root on sys.path so `import collector` / `import main` work whether or not the
project was pip-installed, and provides fakes for the external tools and collaborator sources.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from collector.runner.tool_runner import NOT_FOUND_EXIT_CODE, ToolResult  # noqa: E402
from collector.sources import Sources  # noqa: E402
from collector.sources.mdm import MdmDiagnostics  # noqa: E402
from collector.sources.recovery import RecoveryEnvInfo  # noqa: E402
from collector.sources.tpm import TpmStatus  # noqa: E402
from collector.sources.volumes import VolumeStatus  # noqa: E402

Handler = Union[ToolResult, Callable[[str, List[str]], ToolResult]]


def ok(executable: str = "tool", stdout: str = "", args: Optional[List[str]] = None) -> ToolResult:
    return ToolResult(executable=executable, args=list(args or []), exit_code=0, stdout=stdout)


def failed(executable: str = "tool", code: int = 1, stderr: str = "boom") -> ToolResult:
    return ToolResult(executable=executable, exit_code=code, stderr=stderr)


class FakeToolRunner:
    """Scripted stand-in for ToolRunner. Unknown executables behave as not installed."""

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None) -> None:
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.calls: List[Tuple[str, List[str], Optional[float]]] = []

    def run(self, executable: str, args: Sequence[str], timeout: Optional[float] = None) -> ToolResult:
        argv = [str(a) for a in args]
        self.calls.append((executable, argv, timeout))
        handler = self.handlers.get(executable)
        if handler is None:
            return ToolResult(
                executable=executable,
                args=argv,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=f"executable not found: {executable}",
                not_found=True,
            )
        if isinstance(handler, ToolResult):
            return handler
        return handler(executable, argv)

    def executables(self) -> List[str]:
        return [c[0] for c in self.calls]


class FakeVolumes:
    def __init__(self, volumes: Optional[List[VolumeStatus]] = None, error: Optional[Exception] = None) -> None:
        self.volumes = volumes if volumes is not None else [
            VolumeStatus(mount_point="C:", protection_status="On", key_protectors=["Tpm", "RecoveryPassword"])
        ]
        self.error = error

    def list_volumes(self) -> List[VolumeStatus]:
        if self.error:
            raise self.error
        return self.volumes


class FakeTpm:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error

    def get_tpm_status(self) -> TpmStatus:
        if self.error:
            raise self.error
        return TpmStatus(present=True, ready=True, enabled=True, activated=True, owned=True, spec_version="2.0")


class FakeRecovery:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error

    def get_recovery_env_info(self) -> RecoveryEnvInfo:
        if self.error:
            raise self.error
        return RecoveryEnvInfo(enabled=True, location=r"\\?\GLOBALROOT\device\harddisk0\partition4\Recovery\WindowsRE")


class FakePolicy:
    def __init__(self, missing: Sequence[str] = ()) -> None:
        self.missing = set(missing)
        self.exported: List[str] = []
        self.last_error: Optional[str] = None

    def export_policy_tree(self, registry_path: str, dest_file: Path) -> bool:
        if registry_path in self.missing:
            self.last_error = "ERROR: The system was unable to find the specified registry key or value."
            return False
        Path(dest_file).write_text(f"Windows Registry Editor Version 5.00\n\n[{registry_path}]\n", encoding="utf-8")
        self.exported.append(registry_path)
        return True


class FakeEvents:
    def __init__(self, missing: Sequence[str] = ()) -> None:
        self.missing = set(missing)
        self.exported: List[str] = []
        self.last_error: Optional[str] = None

    def export_channel(self, channel_name: str, dest_file: Path) -> bool:
        if channel_name in self.missing:
            self.last_error = f"Failed to read configuration for log {channel_name}."
            return False
        Path(dest_file).write_bytes(b"ElfFile\x00" + channel_name.encode("utf-8"))
        self.exported.append(channel_name)
        return True


class FakeDiagnostics:
    def __init__(self) -> None:
        self.calls: List[Path] = []

    def run_diagnostics_tool(self, output_dir: Path) -> MdmDiagnostics:
        self.calls.append(Path(output_dir))
        xml = Path(output_dir) / "MDMDiagReport.xml"
        html = Path(output_dir) / "MDMDiagReport.html"
        xml.write_text("<MDMEnterpriseDiagnosticsReport/>", encoding="utf-8")
        html.write_text("<html></html>", encoding="utf-8")
        return MdmDiagnostics(xml_path=xml, html_path=html)


def make_sources(**overrides: Any) -> Sources:
    parts: Dict[str, Any] = {
        "volumes": FakeVolumes(),
        "tpm": FakeTpm(),
        "recovery": FakeRecovery(),
        "policy": FakePolicy(),
        "events": FakeEvents(),
        "diagnostics": FakeDiagnostics(),
    }
    parts.update(overrides)
    return Sources(**parts)


def default_tool_handlers() -> Dict[str, Handler]:
    """Handlers for the executables the default catalog calls directly."""

    def gpresult(executable: str, args: List[str]) -> ToolResult:
        dest = Path(args[args.index("/h") + 1])
        dest.write_text("<html>rsop</html>", encoding="utf-8")
        return ok(executable, args=args)

    return {
        "systeminfo.exe": ok("systeminfo.exe", stdout="Host Name: TESTPC\nOS Name: Microsoft Windows 11 Pro\n"),
        "gpresult.exe": gpresult,
        "manage-bde.exe": ok("manage-bde.exe", stdout="Volume C: [OS]\n    Protection Status: Protection On\n"),
        "tpmtool.exe": ok("tpmtool.exe", stdout="TPM Present: True\n"),
    }


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner(default_tool_handlers())


@pytest.fixture
def run_ctx(tmp_path: Path):
    from collector.core.layout import init_run

    return init_run(
        str(tmp_path / "out"),
        False,
        product_name="BitLockerDiag",
        elevated=True,
        timestamp=datetime(2025, 1, 2, 3, 4, 5),
    )


@pytest.fixture
def activity_log(run_ctx):
    from collector.core.activity_log import ActivityLog

    log = ActivityLog.open(run_ctx.log_path)
    yield log
    log.close()
