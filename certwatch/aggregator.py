import datetime as dt
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .classifier import Classification, Verdict
from .common import human_time
from .models import (
    AlertEvent,
    CertificateRecord,
    CertificateStatus,
    MetricSample,
    PolicyKey,
    Validity,
    WatchPolicyStatus,
)

GAUGE_VALUES = {
    Classification.HEALTHY: 0.0,
    Classification.EXPIRING_SOON: 0.5,
    Classification.EXPIRED: 1.0,
}

REASON_EXPIRED = "Expired"
REASON_WILL_EXPIRE = "WillBeExpired"


@dataclass(frozen=True)
class Evaluation:
    record: CertificateRecord
    validity: Validity
    verdict: Verdict


@dataclass
class Aggregate:
    status: WatchPolicyStatus
    next_wake: Optional[dt.timedelta] = None
    events: List[AlertEvent] = field(default_factory=list)
    samples: List[MetricSample] = field(default_factory=list)


def _event_for(ev: Evaluation) -> Optional[AlertEvent]:
    rec = ev.record
    state = ev.verdict.classification
    if state is Classification.EXPIRED:
        reason, verb = REASON_EXPIRED, "is expired"
    elif state is Classification.EXPIRING_SOON:
        reason, verb = REASON_WILL_EXPIRE, "will be expired"
    else:
        return None
    return AlertEvent(
        namespace=rec.namespace,
        name=rec.name,
        uid=rec.uid,
        reason=reason,
        message=f"TLS Secret {rec.namespace}/{rec.name} {verb} at {human_time(ev.validity.not_after)}",
    )


def next_wake_delay(
    evaluations: Sequence[Evaluation],
    threshold_days: int,
    fallback: Optional[dt.timedelta] = None,
) -> Optional[dt.timedelta]:
    """
    Delay until the soonest Healthy certificate enters its warning window.

    Nothing is scheduled for an empty pass. When no record is Healthy the
    ``fallback`` (possibly None) is returned.
    """
    if not evaluations:
        return None
    healthy = [e.verdict.remaining_days for e in evaluations if e.verdict.classification is Classification.HEALTHY]
    if not healthy:
        return fallback
    return dt.timedelta(days=min(healthy) - threshold_days)


def aggregate(
    policy: PolicyKey,
    evaluations: Sequence[Evaluation],
    threshold_days: int,
    fallback: Optional[dt.timedelta] = None,
) -> Aggregate:
    certificates: List[CertificateStatus] = []
    events: List[AlertEvent] = []
    samples: List[MetricSample] = []

    for ev in evaluations:
        certificates.append(
            CertificateStatus(
                name=ev.record.name,
                not_before=ev.validity.not_before,
                not_after=ev.validity.not_after,
                active=ev.verdict.active,
            )
        )
        samples.append(
            MetricSample(
                policy=policy,
                certificate=ev.record.name,
                value=GAUGE_VALUES[ev.verdict.classification],
            )
        )
        event = _event_for(ev)
        if event is not None:
            events.append(event)

    return Aggregate(
        status=WatchPolicyStatus(target_count=len(certificates), certificates=certificates),
        next_wake=next_wake_delay(evaluations, threshold_days, fallback),
        events=events,
        samples=samples,
    )
