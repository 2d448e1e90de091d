# certwatch/models.py
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

TLS_SECRET_TYPE = "kubernetes.io/tls"
TLS_CERT_KEY = "tls.crt"

ANNOTATION_PREFIX = "certwatch.dev"
ANNOTATION_ACTIVE = f"{ANNOTATION_PREFIX}/active"
ANNOTATION_NOT_BEFORE = f"{ANNOTATION_PREFIX}/notBefore"
ANNOTATION_NOT_AFTER = f"{ANNOTATION_PREFIX}/notAfter"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PolicyKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class LabelSelectorRequirement(_Model):
    key: str
    operator: Literal["In", "NotIn", "Exists", "DoesNotExist"]
    values: List[str] = []

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "Exists":
            return self.key in labels
        if self.operator == "DoesNotExist":
            return self.key not in labels
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        # NotIn also matches records that lack the key entirely
        return self.key not in labels or labels[self.key] not in self.values

    def to_query(self) -> str:
        if self.operator == "Exists":
            return self.key
        if self.operator == "DoesNotExist":
            return f"!{self.key}"
        op = "in" if self.operator == "In" else "notin"
        return f"{self.key} {op} ({','.join(sorted(self.values))})"


class LabelSelector(_Model):
    match_labels: Dict[str, str] = Field(default_factory=dict, alias="matchLabels")
    match_expressions: List[LabelSelectorRequirement] = Field(default_factory=list, alias="matchExpressions")

    def matches(self, labels: Optional[Mapping[str, str]]) -> bool:
        labels = labels or {}
        for k, v in self.match_labels.items():
            if labels.get(k) != v:
                return False
        return all(req.matches(labels) for req in self.match_expressions)

    def to_query(self) -> str:
        """Kubernetes label-selector string; empty means "everything"."""
        parts = [f"{k}={v}" for k, v in sorted(self.match_labels.items())]
        parts.extend(req.to_query() for req in self.match_expressions)
        return ",".join(parts)


class CertificateStatus(_Model):
    name: str
    not_before: dt.datetime = Field(..., alias="notBefore")
    not_after: dt.datetime = Field(..., alias="notAfter")
    active: bool


class WatchPolicyStatus(_Model):
    target_count: int = Field(0, alias="targetCertsCount")
    certificates: List[CertificateStatus] = []


class WatchPolicy(_Model):
    namespace: str
    name: str
    selector: Optional[LabelSelector] = None
    threshold_days: int = Field(0, alias="thresholdDays")
    status: WatchPolicyStatus = Field(default_factory=WatchPolicyStatus)

    @property
    def key(self) -> PolicyKey:
        return PolicyKey(namespace=self.namespace, name=self.name)

    def selects(self, record: "CertificateRecord") -> bool:
        if record.namespace != self.namespace:
            return False
        return (self.selector or LabelSelector()).matches(record.labels)

    @classmethod
    def from_resource(cls, obj: Mapping) -> "WatchPolicy":
        """Build from a custom-object dict (metadata/spec/status)."""
        meta = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        return cls(
            namespace=meta.get("namespace", ""),
            name=meta.get("name", ""),
            selector=spec.get("selector"),
            threshold_days=int(spec.get("thresholdDays", 0) or 0),
            status=status,
        )


class CertificateRecord(_Model):
    namespace: str
    name: str
    type: str = "Opaque"
    uid: Optional[str] = None
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    data: Dict[str, bytes] = {}

    @property
    def is_tls(self) -> bool:
        return self.type == TLS_SECRET_TYPE

    @property
    def certificate_bytes(self) -> bytes:
        return self.data.get(TLS_CERT_KEY, b"")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Validity:
    not_before: dt.datetime
    not_after: dt.datetime


@dataclass(frozen=True)
class AlertEvent:
    namespace: str
    name: str
    reason: str
    message: str
    type: str = "Warning"
    uid: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "type": self.type,
            "reason": self.reason,
            "message": self.message,
        }


@dataclass(frozen=True)
class MetricSample:
    policy: PolicyKey
    certificate: str
    value: float

    def as_dict(self) -> dict:
        return {"policy": str(self.policy), "certificate": self.certificate, "value": self.value}
