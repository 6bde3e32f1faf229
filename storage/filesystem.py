"""
Local filesystem MaterialStore.

Directory layout:
  <config_dir>/
      ssl.key       — Domain private key (mode 0o600)
      ssl.cert      — Certificate chain, leaf first
      account.key   — ACME account key (mode 0o600)

All writes are atomic: temp file + fsync + atomic rename.
"""
from __future__ import annotations

import stat
from pathlib import Path
from typing import Optional

from certmanager.errors import StorageError
from storage.atomic import atomic_write_bytes
from storage.base import MaterialStore

_SECRET_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600


class FileMaterialStore(MaterialStore):
    def __init__(self, config_dir: str | Path) -> None:
        self.config_dir = Path(config_dir)

    def path(self, name: str) -> Path:
        return self.config_dir / name

    def _read(self, name: str) -> Optional[bytes]:
        path = self.path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"cannot read {path}: {exc}") from exc

    def _write(self, name: str, data: bytes, secret: bool = False) -> None:
        path = self.path(name)
        try:
            atomic_write_bytes(path, data, mode=_SECRET_MODE if secret else None)
        except OSError as exc:
            raise StorageError(f"cannot write {path}: {exc}") from exc
