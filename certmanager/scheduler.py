"""
Lifecycle scheduling — the boot-time check and the hourly re-check.

Every check evaluates and (if needed) renews while holding the RenewalGuard.
A tick that fires while an earlier check is still renewing simply blocks on
the guard and then re-evaluates against the freshly installed certificate,
so overlapping ticks never renew twice and never drop a later tick: each
firing runs in its own thread and the schedule loop keeps ticking.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional

import schedule

from certmanager.errors import FatalStartupError, PersistenceError, RenewalError
from certmanager.evaluator import Decision, evaluate
from certmanager.manager import CertificateManager
from certmanager.material import CertificateMaterial

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    CHECK_IN_PROGRESS = "check-in-progress"


class LifecycleScheduler:
    def __init__(self, manager: CertificateManager, poll_interval: float = 30.0) -> None:
        self.manager = manager
        self.poll_interval = poll_interval
        self._schedule = schedule.Scheduler()
        self._stop = threading.Event()
        self._active_checks = 0
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            busy = self._active_checks > 0
        return SchedulerState.CHECK_IN_PROGRESS if busy else SchedulerState.IDLE

    # ── Checks ────────────────────────────────────────────────────────────

    def boot(self) -> Decision:
        """
        First check at process start; returns once a certificate is active.

        When issuance fails, a stored certificate that is only near expiry
        keeps serving.  Raises FatalStartupError when the stored certificate
        is missing, expired, or issued for another domain or environment.
        """
        with self._in_progress(), self.manager.guard:
            stored = self.manager.store.load_certificate()
            decision = evaluate(stored, self.manager.domain, self.manager.is_staging)
            if decision.valid:
                self.manager.active.publish(stored)
                logger.info("Loaded SSL Certificate for %s", self.manager.domain)
                return decision

            logger.info("Certificate for %s %s", self.manager.domain, decision)
            try:
                self.manager.renew()
            except RenewalError as exc:
                if isinstance(exc, PersistenceError) and self.manager.active.current() is not None:
                    logger.error("Serving new certificate but could not persist it: %s", exc)
                elif _can_fall_back(stored, self.manager):
                    self.manager.active.publish(stored)
                    logger.error(
                        "Renewal failed, serving previous certificate until %s: %s",
                        stored.not_after.strftime("%Y-%m-%d"),
                        exc,
                    )
                else:
                    logger.error("Initial certificate issuance failed: %s", exc)
                    raise FatalStartupError(str(exc)) from exc
            return decision

    def check(self) -> Decision:
        """One periodic check. Renewal failures are logged; the old certificate keeps serving."""
        with self._in_progress(), self.manager.guard:
            decision = evaluate(self.manager.candidate(), self.manager.domain, self.manager.is_staging)
            if decision.valid:
                logger.debug("Certificate for %s is valid", self.manager.domain)
                return decision

            logger.info("Certificate for %s %s", self.manager.domain, decision)
            try:
                self.manager.renew()
            except RenewalError as exc:
                logger.error("Certificate renewal failed, will retry next hour: %s", exc)
            return decision

    def renew_now(self) -> CertificateMaterial:
        """On-demand renewal hook for the host; errors propagate to the caller."""
        with self._in_progress():
            return self.manager.renew()

    # ── Recurring trigger ─────────────────────────────────────────────────

    def start(self) -> None:
        """Register the hourly check at the top of every hour."""
        self._schedule.every().hour.at(":00").do(self._spawn_check)
        logger.info("Scheduling hourly certificate check at minute :00")

    def run_pending(self) -> None:
        self._schedule.run_pending()

    def run_forever(self) -> None:
        """Block running the schedule until stop() is called."""
        while not self._stop.wait(self.poll_interval):
            self._schedule.run_pending()

    def stop(self) -> None:
        self._stop.set()
        self._schedule.clear()

    @property
    def jobs(self) -> list[schedule.Job]:
        return list(self._schedule.jobs)

    def _spawn_check(self) -> None:
        threading.Thread(target=self._run_check, name="cert-check", daemon=True).start()

    def _run_check(self) -> None:
        logger.info("Scheduled certificate check triggered")
        try:
            self.check()
        except Exception as exc:
            logger.exception("Scheduled certificate check failed: %s", exc)

    @contextmanager
    def _in_progress(self) -> Iterator[None]:
        with self._state_lock:
            self._active_checks += 1
        try:
            yield
        finally:
            with self._state_lock:
                self._active_checks -= 1


def _can_fall_back(stored: Optional[CertificateMaterial], manager: CertificateManager) -> bool:
    """True when *stored* was issued for this domain and environment and has not expired."""
    return (
        stored is not None
        and stored.common_name == manager.domain
        and stored.is_staging == manager.is_staging
        and stored.not_after > datetime.now(tz=timezone.utc)
    )
