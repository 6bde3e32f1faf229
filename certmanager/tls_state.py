"""
ActiveTlsState — the single certificate/key pair currently served.

Published by replacement: readers get whole CertificateMaterial instances,
never a partially updated one.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from certmanager.material import CertificateMaterial

logger = logging.getLogger(__name__)

Subscriber = Callable[[CertificateMaterial], None]


class ActiveTlsState:
    def __init__(self) -> None:
        self._current: Optional[CertificateMaterial] = None
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def current(self) -> Optional[CertificateMaterial]:
        with self._lock:
            return self._current

    def publish(self, material: CertificateMaterial) -> None:
        """Install *material* as the served certificate and notify subscribers."""
        with self._lock:
            self._current = material
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(material)
            except Exception:
                logger.exception("TLS state subscriber %r failed", callback)

    def subscribe(self, callback: Subscriber) -> None:
        """Call *callback* with every newly published certificate."""
        with self._lock:
            self._subscribers.append(callback)
