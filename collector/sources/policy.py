from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from collector.core.errors import ToolNotFound
from collector.runner.tool_runner import CommandRunner


@runtime_checkable
class PolicySource(Protocol):
    def export_policy_tree(self, registry_path: str, dest_file: Path) -> bool: ...


class RegExportPolicySource:
    """Exports a registry subtree with `reg.exe export <key> <file> /y`."""

    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout
        self.last_error: Optional[str] = None

    def export_policy_tree(self, registry_path: str, dest_file: Path) -> bool:
        result = self.runner.run("reg.exe", ["export", registry_path, str(dest_file), "/y"], self.timeout)
        if result.not_found:
            raise ToolNotFound(result.executable)
        # reg.exe exits 1 when the key does not exist (common for unset policy trees).
        self.last_error = None if result.ok else result.error_summary()
        return result.ok
