from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from collector.core.errors import ToolNotFound
from collector.runner.tool_runner import CommandRunner


@runtime_checkable
class EventLogSource(Protocol):
    def export_channel(self, channel_name: str, dest_file: Path) -> bool: ...


class WevtutilEventLogSource:
    """
    Exports one event log channel with `wevtutil.exe epl <channel> <file> /ow:true`.

    Returns False when the channel does not exist on this build or the export fails; alternate
    channel names are the caller's business.
    """

    def __init__(self, runner: CommandRunner, *, timeout: Optional[float] = None) -> None:
        self.runner = runner
        self.timeout = timeout
        self.last_error: Optional[str] = None

    def export_channel(self, channel_name: str, dest_file: Path) -> bool:
        result = self.runner.run("wevtutil.exe", ["epl", channel_name, str(dest_file), "/ow:true"], self.timeout)
        if result.not_found:
            raise ToolNotFound(result.executable)
        self.last_error = None if result.ok else result.error_summary()
        return result.ok
