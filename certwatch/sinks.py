from typing import Dict, List, Optional, Protocol, Tuple

from prometheus_client import CollectorRegistry, Gauge

from .models import AlertEvent, MetricSample, PolicyKey

GAUGE_NAME = "is_expired_certificate"
GAUGE_HELP = "expired certificate (0 healthy, 0.5 expiring soon, 1 expired)"


class EventSink(Protocol):
    def emit(self, event: AlertEvent) -> None: ...


class MetricSink(Protocol):
    def set(self, sample: MetricSample) -> None: ...

    def samples(self) -> List[MetricSample]: ...


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: List[AlertEvent] = []

    def emit(self, event: AlertEvent) -> None:
        self.events.append(event)

    def clear(self) -> None:
        self.events.clear()


class InMemoryMetricSink:
    """Gauge semantics: the last value set for a (policy, certificate) pair wins."""

    def __init__(self) -> None:
        self._values: Dict[Tuple[PolicyKey, str], float] = {}

    def set(self, sample: MetricSample) -> None:
        self._values[(sample.policy, sample.certificate)] = sample.value

    def get(self, policy: PolicyKey, certificate: str) -> Optional[float]:
        return self._values.get((policy, certificate))

    def samples(self) -> List[MetricSample]:
        return [MetricSample(policy=p, certificate=c, value=v) for (p, c), v in self._values.items()]


class PrometheusMetricSink:
    """
    Gauge ``is_expired_certificate{certcheck, certificate}``.

    Registered on the given registry at construction; pass a fresh
    ``CollectorRegistry`` in tests to avoid clashing with the global one.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        kwargs = {} if registry is None else {"registry": registry}
        self._gauge = Gauge(GAUGE_NAME, GAUGE_HELP, ["certcheck", "certificate"], **kwargs)
        self._keys: Dict[Tuple[str, str], PolicyKey] = {}

    def set(self, sample: MetricSample) -> None:
        self._keys[(sample.policy.name, sample.certificate)] = sample.policy
        self._gauge.labels(certcheck=sample.policy.name, certificate=sample.certificate).set(sample.value)

    def samples(self) -> List[MetricSample]:
        out: List[MetricSample] = []
        for metric in self._gauge.collect():
            for s in metric.samples:
                name, cert = s.labels["certcheck"], s.labels["certificate"]
                policy = self._keys.get((name, cert)) or PolicyKey(namespace="", name=name)
                out.append(MetricSample(policy=policy, certificate=cert, value=s.value))
        return out
