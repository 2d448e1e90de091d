import datetime as dt
from dataclasses import dataclass
from enum import Enum

from .common import days_until


class Classification(str, Enum):
    HEALTHY = "Healthy"
    EXPIRING_SOON = "ExpiringSoon"
    EXPIRED = "Expired"


@dataclass(frozen=True)
class Verdict:
    classification: Classification
    remaining_days: int
    slack: int

    @property
    def active(self) -> bool:
        return self.classification is not Classification.EXPIRED


def classify(not_after: dt.datetime, now: dt.datetime, threshold_days: int) -> Verdict:
    """
    Pure day-granularity classification.

    remaining days are floored, so a certificate expiring in 29d23h counts
    as 29 days and falls into a 30-day warning window.
    """
    remaining = days_until(not_after, now)
    slack = remaining - threshold_days
    if remaining < 0:
        state = Classification.EXPIRED
    elif slack < 0:
        state = Classification.EXPIRING_SOON
    else:
        state = Classification.HEALTHY
    return Verdict(classification=state, remaining_days=remaining, slack=slack)
