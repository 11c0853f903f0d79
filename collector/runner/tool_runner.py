"""External command runner.

Never raises for a non-zero exit code, a timeout, or a missing executable; every outcome is a
ToolResult. A missing executable (`not_found`) is kept distinct from one that ran and failed.

WOW64: a 32-bit interpreter on 64-bit Windows sees `%SystemRoot%\\System32` redirected to
SysWOW64, where tools like manage-bde.exe do not exist. Those paths are rewritten to the
`Sysnative` alias so the native binaries run.

Output is captured as bytes. `stdout_bytes` is kept verbatim for artifacts; the text views are decoded
with the console code page the tools print in.

A timeout kills the whole process tree, so a grandchild holding the pipes cannot stall the run.
"""

from __future__ import annotations

import ctypes
import locale
import logging
import ntpath
import os
import shutil
import signal
import subprocess
import sys
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = -1
NOT_FOUND_EXIT_CODE = -2
LAUNCH_FAILED_EXIT_CODE = -3

DEFAULT_TIMEOUT_SECONDS = 300.0

# Upper bound on collecting leftover output after a timed-out tree is killed.
REAP_TIMEOUT_SECONDS = 5.0

POWERSHELL = "powershell.exe"
POWERSHELL_ARGS = ("-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command")


class ToolResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    executable: str
    args: List[str] = Field(default_factory=list)
    resolved_path: Optional[str] = None
    exit_code: int
    stdout: str = ""
    stdout_bytes: bytes = Field(default=b"", repr=False)
    stderr: str = ""
    duration_s: float = 0.0
    timed_out: bool = False
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.not_found

    def output_bytes(self) -> bytes:
        """Raw stdout for writing an artifact verbatim (falls back to the text view)."""
        if self.stdout_bytes:
            return self.stdout_bytes
        return self.stdout.encode("utf-8") if self.stdout else b""

    def error_summary(self, limit: int = 300) -> str:
        if self.not_found:
            return f"executable not found: {self.executable}"
        if self.timed_out:
            return f"{self.executable} timed out after {self.duration_s:.0f}s"
        detail = (self.stderr or self.stdout or "").strip().replace("\r", " ").replace("\n", " ")
        if len(detail) > limit:
            detail = detail[:limit] + "..."
        return f"{self.executable} exited with code {self.exit_code}" + (f": {detail}" if detail else "")


class CommandRunner(Protocol):
    def run(self, executable: str, args: Sequence[str], timeout: Optional[float] = None) -> ToolResult: ...


def is_wow64_process() -> bool:
    """True when a 32-bit interpreter runs on 64-bit Windows."""
    if sys.platform != "win32":
        return False
    return bool(os.environ.get("PROCESSOR_ARCHITEW6432"))


def native_system_path(path: str, *, system_root: str, redirected: bool) -> str:
    """
    Rewrite `<SystemRoot>\\System32\\...` to `<SystemRoot>\\Sysnative\\...` when `redirected`.

    Pure string transformation (Windows path rules regardless of host OS).
    """
    if not redirected or not system_root:
        return path
    system32 = ntpath.join(system_root, "System32")
    norm = ntpath.normcase(ntpath.normpath(path))
    prefix = ntpath.normcase(ntpath.normpath(system32))
    if norm == prefix or norm.startswith(prefix + "\\"):
        rest = ntpath.normpath(path)[len(ntpath.normpath(system32)) :].lstrip("\\")
        return ntpath.join(system_root, "Sysnative", rest) if rest else ntpath.join(system_root, "Sysnative")
    return path


def console_encoding() -> str:
    """Code page console tools write in (OEM on Windows, the locale encoding elsewhere)."""
    if sys.platform == "win32":
        try:
            return f"cp{ctypes.windll.kernel32.GetOEMCP()}"  # type: ignore[attr-defined]
        except (AttributeError, OSError) as e:
            logger.debug("GetOEMCP unavailable, using the locale encoding: %s", e)
    return locale.getpreferredencoding(False) or "utf-8"


class ToolRunner:
    def __init__(
        self,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        redirected: Optional[bool] = None,
        system_root: Optional[str] = None,
        encoding: Optional[str] = None,
    ) -> None:
        self.default_timeout = default_timeout
        self.redirected = is_wow64_process() if redirected is None else redirected
        self.system_root = system_root if system_root is not None else os.environ.get("SystemRoot", r"C:\Windows")
        self.encoding = encoding or console_encoding()

    def resolve(self, executable: str) -> Optional[str]:
        """Return the path that will be launched, or None when the executable does not exist."""
        if not executable:
            return None
        is_path = os.path.isabs(executable) or ntpath.isabs(executable) or os.sep in executable
        if is_path:
            candidate = native_system_path(executable, system_root=self.system_root, redirected=self.redirected)
            return candidate if os.path.exists(candidate) else None

        if self.redirected:
            native = ntpath.join(self.system_root, "Sysnative", executable)
            if os.path.exists(native):
                return native
        return shutil.which(executable)

    def run(self, executable: str, args: Sequence[str], timeout: Optional[float] = None) -> ToolResult:
        argv = [str(a) for a in args]
        limit = self.default_timeout if timeout is None else timeout

        resolved = self.resolve(executable)
        if resolved is None:
            logger.debug("Executable not found: %s", executable)
            return ToolResult(
                executable=executable,
                args=argv,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=f"executable not found: {executable}",
                not_found=True,
            )

        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                [resolved, *argv],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **_tree_kwargs(),
            )
        except FileNotFoundError:
            # Raced with removal between resolve() and launch.
            return ToolResult(
                executable=executable,
                args=argv,
                resolved_path=resolved,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=f"executable not found: {executable}",
                duration_s=time.monotonic() - started,
                not_found=True,
            )
        except OSError as e:
            return ToolResult(
                executable=executable,
                args=argv,
                resolved_path=resolved,
                exit_code=LAUNCH_FAILED_EXIT_CODE,
                stderr=f"failed to launch {executable}: {e}",
                duration_s=time.monotonic() - started,
            )

        try:
            out, err = proc.communicate(timeout=limit)
        except subprocess.TimeoutExpired:
            out = _reap_after_timeout(proc)
            return ToolResult(
                executable=executable,
                args=argv,
                resolved_path=resolved,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=self._decode(out),
                stdout_bytes=out,
                stderr="timeout",
                duration_s=time.monotonic() - started,
                timed_out=True,
            )

        return ToolResult(
            executable=executable,
            args=argv,
            resolved_path=resolved,
            exit_code=proc.returncode,
            stdout=self._decode(out),
            stdout_bytes=out or b"",
            stderr=self._decode(err),
            duration_s=time.monotonic() - started,
        )

    def _decode(self, data: Optional[bytes]) -> str:
        if not data:
            return ""
        return data.decode(self.encoding, errors="replace")


def _tree_kwargs() -> Dict[str, Any]:
    # A separate process group lets a timeout take the whole tree down, grandchildren included.
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_tree(proc: "subprocess.Popen[bytes]") -> None:
    if sys.platform == "win32":
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=REAP_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("taskkill failed for pid %s: %s", proc.pid, e)
    else:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError as e:
            logger.debug("killpg failed for pid %s: %s", proc.pid, e)
    try:
        proc.kill()
    except OSError as e:
        logger.debug("kill failed for pid %s: %s", proc.pid, e)


def _reap_after_timeout(proc: "subprocess.Popen[bytes]") -> bytes:
    """Kill the tree and collect whatever stdout arrived, without ever blocking past REAP_TIMEOUT_SECONDS."""
    _kill_tree(proc)
    try:
        out, _ = proc.communicate(timeout=REAP_TIMEOUT_SECONDS)
        return out or b""
    except subprocess.TimeoutExpired:
        # Something outside the tree still holds the pipes; abandon them.
        logger.warning("Output pipes of pid %s still open after kill; abandoning them", proc.pid)
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                try:
                    pipe.close()
                except OSError as e:
                    logger.debug("closing pipe of pid %s failed: %s", proc.pid, e)
        return b""
