import datetime as dt
from dataclasses import dataclass
from typing import Any, Optional

from prometheus_client import CollectorRegistry

from .reconciler import Reconciler
from .settings import Settings
from .sinks import EventSink, InMemoryMetricSink, MetricSink, PrometheusMetricSink, RecordingEventSink
from .store import InMemoryStore


@dataclass
class Runtime:
    store: Any
    events: EventSink
    metrics: MetricSink
    reconciler: Reconciler


def fallback_requeue(settings: Settings) -> Optional[dt.timedelta]:
    if settings.FALLBACK_REQUEUE_SEC <= 0:
        return None
    return dt.timedelta(seconds=settings.FALLBACK_REQUEUE_SEC)


def build_runtime(settings: Settings, registry: Optional[CollectorRegistry] = None) -> Runtime:
    """Wire store and sinks for the configured backend."""
    if settings.STORE == "memory":
        store: Any = InMemoryStore()
        events: EventSink = RecordingEventSink()
        metrics: MetricSink = InMemoryMetricSink()
    else:
        from . import kube

        kube.load_config(settings.KUBECONFIG)
        store = kube.KubernetesStore(settings.POLICY_GROUP, settings.POLICY_VERSION, settings.POLICY_PLURAL)
        events = kube.KubernetesEventSink()
        metrics = PrometheusMetricSink(registry)

    reconciler = Reconciler(store, events, metrics, fallback_requeue=fallback_requeue(settings))
    return Runtime(store=store, events=events, metrics=metrics, reconciler=reconciler)
