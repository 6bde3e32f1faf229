"""
Crash-safe replacement of key and certificate files.

New content goes to a hidden temp file beside the target, is fsync'ed, and
is then renamed over the target.  Readers see either the previous file or
the complete new one, never a truncated PEM.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, content: bytes, mode: Optional[int] = None) -> None:
    """
    Replace *path* with *content*, creating parent directories as needed.

    *mode* is applied to the temp file before the rename, so the target
    never exists with wider permissions than requested.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    tmp_path = Path(tmp.name)
    try:
        with tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        if mode is not None:
            tmp_path.chmod(mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
