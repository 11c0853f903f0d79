"""Activity trail for one collection run.

One line per event, `[YYYY-mm-dd HH:MM:SS] [LEVEL] message`, appended to `<output_root>/activity.log`.
Step boundaries are written as `STEP START: <id>` / `STEP END: <id> (<status>, <elapsed>s)` so the
trail can be split per step after the fact.

The log never raises into the caller: if the sink stops accepting writes, the line goes to stderr.
"""

from __future__ import annotations

import atexit
import itertools
import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from collector.core.errors import LogSinkUnavailable

INFO = "INFO"
WARN = "WARN"
ERROR = "ERROR"

_LEVELS: Dict[str, int] = {INFO: logging.INFO, WARN: logging.WARNING, ERROR: logging.ERROR}
_LEVEL_TAGS: Dict[int, str] = {v: k for k, v in _LEVELS.items()}

_instance_ids = itertools.count(1)


class _ActivityFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, self.datefmt)
        tag = _LEVEL_TAGS.get(record.levelno, record.levelname)
        return f"[{ts}] [{tag}] {record.getMessage()}"


class _SinkHandler(logging.FileHandler):
    """File handler whose write errors degrade to a stderr line instead of a traceback."""

    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        try:
            sys.stderr.write(f"[activity-log unavailable] {self.format(record)}\n")
        except Exception:
            pass


class _StepMarker:
    """Handle yielded by `ActivityLog.step`; the body sets the outcome reported on the END line."""

    def __init__(self) -> None:
        self.status: str = "done"


class ActivityLog:
    """Append-only run log. Construct with `ActivityLog.open(path)` and use as a context manager."""

    def __init__(self, logger: logging.Logger, handlers: List[logging.Handler]) -> None:
        self._logger = logger
        self._handlers = handlers
        self._closed = False

    @classmethod
    def open(cls, path: Path, *, echo: bool = False) -> "ActivityLog":
        try:
            handler: logging.Handler = _SinkHandler(str(path), mode="a", encoding="utf-8")
        except OSError as e:
            raise LogSinkUnavailable(f"cannot open activity log {path}: {e}") from e

        # Unique, non-propagating logger per run so lines never leak into the root handlers.
        logger = logging.getLogger(f"collector.activity.{next(_instance_ids)}")
        logger.setLevel(logging.INFO)
        logger.propagate = False

        formatter = _ActivityFormatter()
        handler.setFormatter(formatter)
        handlers: List[logging.Handler] = [handler]
        if echo:
            console = logging.StreamHandler(sys.stderr)
            console.setFormatter(formatter)
            handlers.append(console)
        for h in handlers:
            logger.addHandler(h)

        log = cls(logger, handlers)
        atexit.register(log.close)
        return log

    @property
    def closed(self) -> bool:
        return self._closed

    def log(self, level: str, message: str) -> None:
        levelno = _LEVELS.get(str(level).upper(), logging.INFO)
        if self._closed:
            self._console_fallback(levelno, message)
            return
        try:
            self._logger.log(levelno, message)
        except Exception:
            self._console_fallback(levelno, message)

    def info(self, message: str) -> None:
        self.log(INFO, message)

    def warn(self, message: str) -> None:
        self.log(WARN, message)

    def error(self, message: str) -> None:
        self.log(ERROR, message)

    @contextmanager
    def step(self, name: str) -> Iterator[_StepMarker]:
        marker = _StepMarker()
        started = time.monotonic()
        self.info(f"STEP START: {name}")
        try:
            yield marker
        except BaseException:
            marker.status = "aborted"
            raise
        finally:
            elapsed = time.monotonic() - started
            self.info(f"STEP END: {name} ({marker.status}, {elapsed:.2f}s)")

    def flush(self) -> None:
        for h in self._handlers:
            try:
                h.flush()
            except Exception:
                pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for h in self._handlers:
            try:
                h.flush()
                h.close()
            except Exception:
                pass
            self._logger.removeHandler(h)
        try:
            atexit.unregister(self.close)
        except Exception:
            pass

    def __enter__(self) -> "ActivityLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    @staticmethod
    def _console_fallback(levelno: int, message: str) -> None:
        tag = _LEVEL_TAGS.get(levelno, "INFO")
        ts = time.strftime("%Y-%m-%d %H:%M:%S")
        try:
            sys.stderr.write(f"[{ts}] [{tag}] {message}\n")
        except Exception:
            pass


def read_step_blocks(path: Path) -> Dict[str, List[str]]:
    """
    Split an activity log into per-step line blocks (STEP START .. STEP END, inclusive).

    Lines outside any step block are dropped. Used for offline triage and tests.
    """
    blocks: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for line in path.read_text(encoding="utf-8").splitlines():
        if "STEP START: " in line:
            current = line.split("STEP START: ", 1)[1].strip()
            blocks[current] = [line]
            continue
        if current is None:
            continue
        blocks[current].append(line)
        if f"STEP END: {current} (" in line:
            current = None
    return blocks
