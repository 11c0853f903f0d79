"""Archive the finished output directory as `<output_root>.zip` beside it."""

from __future__ import annotations

import os
import zipfile
from pathlib import Path
from typing import List, Tuple


def _iter_tree(root_dir: Path) -> Tuple[List[str], List[str]]:
    dirs: List[str] = []
    files: List[str] = []
    for cur_root, cur_dirs, cur_files in os.walk(root_dir):
        cur_dirs.sort()
        cur_files.sort()
        rel_root = os.path.relpath(cur_root, root_dir)
        rel_root = "" if rel_root == "." else rel_root.replace("\\", "/")
        for d in cur_dirs:
            dirs.append(f"{rel_root}/{d}" if rel_root else d)
        for f in cur_files:
            files.append(f"{rel_root}/{f}" if rel_root else f)
    return dirs, files


def archive(output_root: Path) -> Path:
    """
    Zip `output_root` (including empty category folders) into `<output_root>.zip`.

    Raises OSError / zipfile errors on failure; a partial archive is removed.
    """
    output_root = Path(output_root)
    if not output_root.is_dir():
        raise FileNotFoundError(f"output directory does not exist: {output_root}")

    archive_path = output_root.parent / f"{output_root.name}.zip"
    dirs, files = _iter_tree(output_root)
    try:
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            # Explicit directory entries preserve empty category folders.
            for rel_d in dirs:
                zf.writestr(f"{output_root.name}/{rel_d}/", b"")
            for rel_f in files:
                zf.write(output_root / rel_f, arcname=f"{output_root.name}/{rel_f}")
    except BaseException:
        try:
            archive_path.unlink()
        except OSError:
            pass
        raise
    return archive_path
