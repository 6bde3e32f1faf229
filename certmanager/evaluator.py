"""
Certificate validity evaluation.

Pure decision logic: given the stored material and the desired configuration,
say whether the certificate can keep serving or must be renewed, and why.
Nothing here raises; unreadable material reaches this module as None.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from certmanager.material import CertificateMaterial

RENEWAL_THRESHOLD_DAYS = 30
DAYS_PER_MONTH = 30


class RenewReason(str, Enum):
    MISSING = "missing"
    EXPIRING = "expiring"
    DOMAIN_MISMATCH = "domain-mismatch"
    ENVIRONMENT_MISMATCH = "environment-mismatch"


@dataclass(frozen=True)
class Decision:
    reason: Optional[RenewReason] = None

    @property
    def valid(self) -> bool:
        return self.reason is None

    @property
    def must_renew(self) -> bool:
        return self.reason is not None

    def __str__(self) -> str:
        return "valid" if self.valid else f"must renew ({self.reason.value})"


VALID = Decision()


def evaluate(
    material: Optional[CertificateMaterial],
    domain: str,
    is_staging: bool,
    now: Optional[datetime] = None,
) -> Decision:
    """
    Decide whether *material* is fit to serve *domain* in the configured
    environment.

    Checks run in order: presence, remaining lifetime, common name, then CA
    environment (a staging certificate never satisfies a production
    configuration and vice versa).
    """
    if material is None:
        return Decision(RenewReason.MISSING)

    now = now or datetime.now(tz=timezone.utc)
    if days_left(now, material.not_after) <= RENEWAL_THRESHOLD_DAYS:
        return Decision(RenewReason.EXPIRING)

    if material.common_name != domain:
        return Decision(RenewReason.DOMAIN_MISMATCH)

    if material.is_staging != is_staging:
        return Decision(RenewReason.ENVIRONMENT_MISMATCH)

    return VALID


def days_left(now: datetime, not_after: datetime) -> int:
    """
    Remaining lifetime as ``months * 30 + days`` of the calendar duration
    between *now* and *not_after* (years count as 12 months).

    "1 month, 29 days" is 59 even when the month had 31 days.  An expired
    certificate yields the (non-positive) plain day difference.
    """
    if not_after <= now:
        return (not_after - now).days

    months = (not_after.year - now.year) * 12 + (not_after.month - now.month)
    while months > 0 and _add_months(now, months) > not_after:
        months -= 1
    remainder = not_after - _add_months(now, months)
    return months * DAYS_PER_MONTH + remainder.days


def _add_months(moment: datetime, months: int) -> datetime:
    """Calendar month addition, clamping the day to the target month's length."""
    index = moment.month - 1 + months
    year = moment.year + index // 12
    month = index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
