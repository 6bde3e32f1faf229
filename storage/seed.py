"""
Seed-addressed remote MaterialStore.

Objects live in a small-file service under an application namespace.  Each
logical name (e.g. ``/certmanager/account.key``) is addressed by a keyed
BLAKE2b digest of the deployment seed and the name, so only holders of the
seed can locate (or overwrite) a deployment's material.

Wire protocol of the small-file service:
  GET <base_url>/<file_id>   → 200 + raw bytes, or 404
  PUT <base_url>/<file_id>   → 2xx
"""
from __future__ import annotations

import hashlib
import logging
from typing import Optional

import requests

from certmanager.errors import StorageError
from storage.base import MaterialStore

logger = logging.getLogger(__name__)


class HttpSmallFileClient:
    """Minimal client for a remote small-file service."""

    def __init__(self, base_url: str, timeout: int = 30, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def get(self, file_id: str) -> Optional[bytes]:
        try:
            resp = self._session.get(f"{self.base_url}/{file_id}", timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageError(f"small-file GET {file_id} failed: {exc}") from exc
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise StorageError(f"small-file GET {file_id} returned HTTP {resp.status_code}")
        return resp.content

    def put(self, file_id: str, data: bytes) -> None:
        try:
            resp = self._session.put(
                f"{self.base_url}/{file_id}",
                data=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageError(f"small-file PUT {file_id} failed: {exc}") from exc
        if not resp.ok:
            raise StorageError(f"small-file PUT {file_id} returned HTTP {resp.status_code}")


class SeedMaterialStore(MaterialStore):
    def __init__(self, client: HttpSmallFileClient, seed: str, namespace: str = "certmanager") -> None:
        if not seed:
            raise ValueError("SeedMaterialStore requires a non-empty seed")
        self.client = client
        self.namespace = namespace.strip("/")
        self._seed_key = hashlib.sha256(seed.encode()).digest()

    def logical_name(self, name: str) -> str:
        return f"/{self.namespace}/{name}"

    def file_id(self, name: str) -> str:
        """Address of *name* in the remote store for this seed."""
        digest = hashlib.blake2b(self.logical_name(name).encode(), key=self._seed_key, digest_size=32)
        return digest.hexdigest()

    def _read(self, name: str) -> Optional[bytes]:
        return self.client.get(self.file_id(name))

    def _write(self, name: str, data: bytes, secret: bool = False) -> None:
        logger.debug("Writing %s to remote store", self.logical_name(name))
        self.client.put(self.file_id(name), data)
