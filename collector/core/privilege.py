from __future__ import annotations

import ctypes
import logging
import os
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from collector.core.errors import PermissionDenied

logger = logging.getLogger(__name__)


def _windows_is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except (AttributeError, OSError) as e:
        logger.warning("Elevation check failed, assuming not elevated: %s", e)
        return False


def _posix_is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return bool(geteuid is not None and geteuid() == 0)


def default_elevation_probe() -> bool:
    """Read-only check of the current process token (Windows) or effective uid (POSIX)."""
    if sys.platform == "win32":
        return _windows_is_admin()
    return _posix_is_root()


@dataclass
class PrivilegeGuard:
    probe: Optional[Callable[[], bool]] = None
    bypass: bool = False

    def is_elevated(self) -> bool:
        """The real token state; the bypass flag never changes this answer."""
        probe = self.probe or default_elevation_probe
        return bool(probe())

    def check_elevated(self) -> bool:
        return self.bypass or self.is_elevated()

    def require_elevated(self) -> bool:
        """
        Raise PermissionDenied when the process is not elevated and the check is not bypassed.
        Must run before any output is created. Returns the actual elevation state for the run record.
        """
        elevated = self.is_elevated()
        if not elevated and not self.bypass:
            raise PermissionDenied(
                "administrator privileges are required; re-run from an elevated prompt"
            )
        return elevated
