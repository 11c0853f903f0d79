"""Optional enterprise diagnostics (MdmDiagnosticsTool.exe).

The tool writes MDMDiagReport.xml / MDMDiagReport.html into the directory it is given. The XML is
copied into the bundle verbatim; nothing here parses it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from collector.core.errors import ActionFailed
from collector.runner.tool_runner import CommandRunner
from collector.sources.base import require_ok

MDM_TOOL = "MdmDiagnosticsTool.exe"
REPORT_XML = "MDMDiagReport.xml"
REPORT_HTML = "MDMDiagReport.html"


class MdmDiagnostics(BaseModel):
    xml_path: Path
    html_path: Optional[Path] = None


@runtime_checkable
class DiagnosticsToolSource(Protocol):
    def run_diagnostics_tool(self, output_dir: Path) -> MdmDiagnostics: ...


class MdmDiagnosticsToolSource:
    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def run_diagnostics_tool(self, output_dir: Path) -> MdmDiagnostics:
        output_dir = Path(output_dir)
        require_ok(self.runner.run(MDM_TOOL, ["-out", str(output_dir)], self.timeout))

        xml_path = output_dir / REPORT_XML
        if not xml_path.is_file():
            raise ActionFailed(f"{MDM_TOOL} did not produce {REPORT_XML} in {output_dir}")
        html_path = output_dir / REPORT_HTML
        return MdmDiagnostics(xml_path=xml_path, html_path=html_path if html_path.is_file() else None)
