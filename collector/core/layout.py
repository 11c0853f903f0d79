"""Output directory layout for one run.

    <base_dir>/<ProductName>_<yyyyMMdd_HHmmss>/
        activity.log
        run_report.json
        logs/  events/  registry/  mdm/

`OutputLayout` is the single place artifact paths are computed; nothing else joins paths by hand.
"""

from __future__ import annotations

import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from collector.core.errors import OutputCollision, OutputInitFailed
from collector.core.models import ArtifactPath, RunContext

CATEGORIES: Tuple[str, ...] = ("logs", "events", "registry", "mdm")
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Upper bound on `_2`, `_3`, ... suffixes tried for clock-derived names.
MAX_DISAMBIGUATION_ATTEMPTS = 100

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class OutputLayout:
    root: Path

    def path_for(self, category: str, filename: str) -> ArtifactPath:
        """Deterministic `root/category/filename` join. No I/O."""
        if category not in CATEGORIES:
            raise ValueError(f"unknown artifact category: {category!r} (expected one of {', '.join(CATEGORIES)})")
        if not filename or filename in (".", "..") or "/" in filename or "\\" in filename or ":" in filename:
            raise ValueError(f"artifact filename must be a plain file name: {filename!r}")
        return ArtifactPath(category=category, filename=filename, path=self.root / category / filename)

    def ensure_parent(self, artifact: ArtifactPath) -> Path:
        artifact.path.parent.mkdir(parents=True, exist_ok=True)
        return artifact.path

    def contains(self, path: Path) -> bool:
        try:
            Path(path).resolve().relative_to(self.root.resolve())
        except ValueError:
            return False
        return True

    @property
    def archive_path(self) -> Path:
        """The only artifact written outside the root: `<root>.zip` in the root's parent."""
        return self.root.parent / f"{self.root.name}.zip"


def run_dir_name(product_name: str, timestamp: datetime) -> str:
    return f"{product_name}_{timestamp.strftime(TIMESTAMP_FORMAT)}"


def resolve_base_dir(base_dir: Optional[str], use_temp: bool) -> Path:
    if use_temp:
        return Path(tempfile.gettempdir())
    return Path(base_dir) if base_dir else Path.cwd()


def _create_root(base: Path, name: str, *, disambiguate: bool) -> Path:
    candidate = base / name
    attempt = 1
    while True:
        try:
            candidate.mkdir(parents=False, exist_ok=False)
            return candidate
        except FileExistsError:
            if not disambiguate:
                raise OutputCollision(
                    f"output directory already exists: {candidate} (another run used the same timestamp)"
                ) from None
            attempt += 1
            if attempt > MAX_DISAMBIGUATION_ATTEMPTS:
                raise OutputCollision(f"could not find a free output directory name for {base / name}") from None
            candidate = base / f"{name}_{attempt}"
        except OSError as e:
            raise OutputInitFailed(f"cannot create output directory {candidate}: {e}") from e


def init_run(
    base_dir: Optional[str],
    use_temp: bool,
    *,
    product_name: str,
    elevated: bool = False,
    include_mdm: bool = False,
    archive: bool = False,
    timestamp: Optional[datetime] = None,
) -> RunContext:
    """
    Create the run's output root and its standard subfolders, and return the RunContext.

    Collisions:
    - `timestamp` given (forced): an existing directory raises OutputCollision.
    - `timestamp` omitted (clock): a `_2`, `_3`, ... suffix is appended until a free name is found.
    """
    if not _SAFE_NAME.match(product_name or ""):
        raise OutputInitFailed(f"product name is not usable as a directory name: {product_name!r}")

    forced = timestamp is not None
    ts = timestamp if timestamp is not None else datetime.now().astimezone()

    base = resolve_base_dir(base_dir, use_temp)
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputInitFailed(f"cannot create output base directory {base}: {e}") from e

    root = _create_root(base, run_dir_name(product_name, ts), disambiguate=not forced)
    for category in CATEGORIES:
        try:
            (root / category).mkdir(exist_ok=True)
        except OSError as e:
            raise OutputInitFailed(f"cannot create output subfolder {root / category}: {e}") from e

    return RunContext(
        run_id=root.name,
        run_timestamp=ts,
        output_root=root.resolve(),
        product_name=product_name,
        elevated=elevated,
        include_mdm=include_mdm,
        archive=archive,
        use_temp=use_temp,
    )


def layout_for(ctx: RunContext) -> OutputLayout:
    return OutputLayout(root=ctx.output_root)
