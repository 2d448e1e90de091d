# certwatch/reconciler.py
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .aggregator import Evaluation, aggregate
from .classifier import Verdict, classify
from .common import human_time, utcnow
from .errors import CertificateError, PolicyNotFound, StoreError
from .models import (
    ANNOTATION_ACTIVE,
    ANNOTATION_NOT_AFTER,
    ANNOTATION_NOT_BEFORE,
    CertificateRecord,
    PolicyKey,
    Validity,
    WatchPolicyStatus,
)
from .sinks import EventSink, MetricSink
from .store import Store
from .x509_utils import extract_validity

log = logging.getLogger(__name__)


class PassState(str, Enum):
    NOT_FOUND = "NotFound"
    PERSISTED = "Persisted"
    SCHEDULED = "Scheduled"


@dataclass
class ReconcileResult:
    state: PassState
    requeue_after: Optional[dt.timedelta] = None
    status: Optional[WatchPolicyStatus] = None

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "requeue_after_seconds": None if self.requeue_after is None else int(self.requeue_after.total_seconds()),
            "status": None if self.status is None else self.status.model_dump(mode="json", by_alias=True),
        }


def annotations_for(validity: Validity, verdict: Verdict) -> dict:
    return {
        ANNOTATION_ACTIVE: "true" if verdict.active else "false",
        ANNOTATION_NOT_BEFORE: human_time(validity.not_before),
        ANNOTATION_NOT_AFTER: human_time(validity.not_after),
    }


class Reconciler:
    """
    One reconciliation pass per call, fully recomputed from the store.

    Failures are raised to the caller (the scheduler owns retry/backoff).
    A single unreadable certificate aborts the pass before the status is
    written; records evaluated before it may already carry new annotations,
    which the next pass overwrites.
    """

    def __init__(
        self,
        store: Store,
        events: EventSink,
        metrics: MetricSink,
        clock: Callable[[], dt.datetime] | None = None,
        fallback_requeue: Optional[dt.timedelta] = None,
    ) -> None:
        self._store = store
        self._events = events
        self._metrics = metrics
        self._clock = clock or utcnow
        self._fallback = fallback_requeue

    def reconcile(self, key: PolicyKey) -> ReconcileResult:
        try:
            policy = self._store.get_policy(key)
        except PolicyNotFound:
            log.info("watch policy %s not found, it was probably deleted", key)
            return ReconcileResult(state=PassState.NOT_FOUND)

        log.info("got watch policy %s threshold_days=%d", key, policy.threshold_days)
        records = self._store.list_records(policy.namespace, policy.selector)
        now = self._clock()

        evaluations: List[Evaluation] = []
        for rec in records:
            log.debug("secret %s selected by %s type=%s", rec, key, rec.type)
            if not rec.is_tls:
                continue
            try:
                validity = extract_validity(rec.certificate_bytes)
            except CertificateError as exc:
                log.error("cannot read certificate of secret %s for %s: %s", rec, key, exc)
                raise
            verdict = classify(validity.not_after, now, policy.threshold_days)
            log.info(
                "secret %s not_before=%s not_after=%s state=%s remaining_days=%d",
                rec, human_time(validity.not_before), human_time(validity.not_after),
                verdict.classification.value, verdict.remaining_days,
            )
            evaluations.append(Evaluation(record=rec, validity=validity, verdict=verdict))
            self._annotate(rec, annotations_for(validity, verdict))

        agg = aggregate(key, evaluations, policy.threshold_days, self._fallback)
        self._store.update_policy_status(key, agg.status)

        if not evaluations:
            log.info("no target is found for %s", key)
            return ReconcileResult(state=PassState.PERSISTED, status=agg.status)

        for sample in agg.samples:
            self._metrics.set(sample)
        for event in agg.events:
            self._events.emit(event)

        if agg.next_wake is None:
            log.info("no healthy certificate left for %s, not requeuing", key)
            return ReconcileResult(state=PassState.PERSISTED, status=agg.status)

        log.info("requeuing %s for waiting expiration after %s", key, agg.next_wake)
        return ReconcileResult(state=PassState.SCHEDULED, requeue_after=agg.next_wake, status=agg.status)

    def _annotate(self, rec: CertificateRecord, values: dict) -> None:
        if all(rec.annotations.get(k) == v for k, v in values.items()):
            return
        updated = rec.model_copy(update={"annotations": {**rec.annotations, **values}})
        try:
            self._store.update_record(updated)
        except StoreError as exc:
            log.warning("failed to annotate secret %s: %s", rec, exc)
