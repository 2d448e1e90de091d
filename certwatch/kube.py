# certwatch/kube.py
from __future__ import annotations

import base64
import logging
from typing import Any, Iterator, List, Optional, Tuple

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .common import iso_utc, utcnow
from .errors import PersistError, PolicyNotFound, StoreError
from .models import AlertEvent, CertificateRecord, LabelSelector, PolicyKey, WatchPolicy, WatchPolicyStatus

log = logging.getLogger(__name__)

WATCH_TIMEOUT_SEC = 300


def load_config(kubeconfig: str = "") -> None:
    try:
        if kubeconfig:
            config.load_kube_config(kubeconfig)
        else:
            config.load_incluster_config()
    except config.ConfigException:
        log.warning("Failed to load in-cluster config, trying kubeconfig")
        config.load_kube_config()


def record_from_secret(secret: Any) -> CertificateRecord:
    meta = secret.metadata
    data = {k: base64.b64decode(v) for k, v in (secret.data or {}).items()}
    return CertificateRecord(
        namespace=meta.namespace,
        name=meta.name,
        uid=meta.uid,
        type=secret.type or "Opaque",
        labels=meta.labels or {},
        annotations=meta.annotations or {},
        data=data,
    )


class KubernetesStore:
    """WatchPolicy custom objects plus core/v1 Secrets."""

    def __init__(
        self,
        group: str,
        version: str,
        plural: str,
        core_api: Optional[client.CoreV1Api] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        self._group = group
        self._version = version
        self._plural = plural
        self._core = core_api or client.CoreV1Api()
        self._custom = custom_api or client.CustomObjectsApi()
        self._records_rv: Optional[str] = None
        self._policies_rv: Optional[str] = None

    def _parse_policy(self, obj: Any) -> WatchPolicy:
        try:
            return WatchPolicy.from_resource(obj)
        except (ValueError, TypeError, AttributeError) as exc:
            meta = (obj.get("metadata") or {}) if isinstance(obj, dict) else {}
            name = f"{meta.get('namespace', '')}/{meta.get('name', '')}"
            raise StoreError(f"invalid WatchPolicy {name}: {exc}") from exc

    def get_policy(self, key: PolicyKey) -> WatchPolicy:
        try:
            obj = self._custom.get_namespaced_custom_object(
                self._group, self._version, key.namespace, self._plural, key.name,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise PolicyNotFound(f"WatchPolicy not found: {key}") from exc
            raise StoreError(f"get WatchPolicy {key}: {exc.status} {exc.reason}") from exc
        return self._parse_policy(obj)

    def list_policies(self) -> List[WatchPolicy]:
        """Valid WatchPolicies cluster-wide. Malformed objects are logged and skipped."""
        try:
            resp = self._custom.list_cluster_custom_object(self._group, self._version, self._plural)
        except ApiException as exc:
            raise StoreError(f"list WatchPolicies: {exc.status} {exc.reason}") from exc
        policies = []
        for item in resp.get("items", []):
            try:
                policies.append(self._parse_policy(item))
            except StoreError as exc:
                log.warning("skipping %s", exc)
        return policies

    def list_records(self, namespace: str, selector: Optional[LabelSelector]) -> List[CertificateRecord]:
        query = selector.to_query() if selector else ""
        try:
            resp = self._core.list_namespaced_secret(namespace, label_selector=query)
        except ApiException as exc:
            raise StoreError(f"list secrets in {namespace}: {exc.status} {exc.reason}") from exc
        return [record_from_secret(s) for s in resp.items]

    def update_record(self, record: CertificateRecord) -> None:
        body = {"metadata": {"annotations": record.annotations}}
        try:
            self._core.patch_namespaced_secret(record.name, record.namespace, body)
        except ApiException as exc:
            raise PersistError(f"annotate secret {record}: {exc.status} {exc.reason}") from exc

    def update_policy_status(self, key: PolicyKey, status: WatchPolicyStatus) -> None:
        body = {"status": status.model_dump(mode="json", by_alias=True)}
        try:
            self._custom.patch_namespaced_custom_object_status(
                self._group, self._version, key.namespace, self._plural, key.name, body,
            )
        except ApiException as exc:
            raise PersistError(f"update status of {key}: {exc.status} {exc.reason}") from exc

    def watch_records(self) -> Iterator[Tuple[str, CertificateRecord]]:
        """
        Secret change stream; ends after WATCH_TIMEOUT_SEC, callers loop.
        Each call resumes from the last resourceVersion seen, so a restart
        does not replay every secret in the cluster as ADDED.
        """
        for type_, obj in self._stream("_records_rv", self._core.list_secret_for_all_namespaces):
            yield type_, record_from_secret(obj)

    def watch_policies(self) -> Iterator[Tuple[str, WatchPolicy]]:
        for type_, obj in self._stream(
            "_policies_rv", self._custom.list_cluster_custom_object, self._group, self._version, self._plural,
        ):
            try:
                policy = self._parse_policy(obj)
            except StoreError as exc:
                log.warning("skipping %s", exc)
                continue
            yield type_, policy

    def _stream(self, rv_attr: str, func: Any, *args: Any) -> Iterator[Tuple[str, Any]]:
        kwargs: dict = {"timeout_seconds": WATCH_TIMEOUT_SEC}
        rv = getattr(self, rv_attr)
        if rv:
            kwargs["resource_version"] = rv
        w = watch.Watch()
        try:
            for event in w.stream(func, *args, **kwargs):
                if event["type"] == "ERROR":
                    raw = event.get("raw_object") or event.get("object")
                    if isinstance(raw, dict) and raw.get("code") == 410:
                        log.info("watch from resourceVersion %s expired, starting over", rv)
                        setattr(self, rv_attr, None)
                        return
                    raise StoreError(f"watch error: {raw}")
                rv = _resource_version(event["object"]) or rv
                setattr(self, rv_attr, rv)
                if event["type"] == "BOOKMARK":
                    continue
                yield event["type"], event["object"]
        except ApiException as exc:
            if exc.status == 410:
                log.info("watch from resourceVersion %s expired, starting over", rv)
                setattr(self, rv_attr, None)
                return
            raise StoreError(f"watch: {exc.status} {exc.reason}") from exc


def _resource_version(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("resourceVersion")
    meta = getattr(obj, "metadata", None)
    return getattr(meta, "resource_version", None)


class KubernetesEventSink:
    """core/v1 Events attached to the Secret. Write failures are only logged."""

    def __init__(self, core_api: Optional[client.CoreV1Api] = None, component: str = "certwatch") -> None:
        self._core = core_api or client.CoreV1Api()
        self._component = component

    def emit(self, event: AlertEvent) -> None:
        now = iso_utc(utcnow())
        body = {
            "metadata": {"generateName": f"{event.name}.", "namespace": event.namespace},
            "involvedObject": {
                "apiVersion": "v1",
                "kind": "Secret",
                "namespace": event.namespace,
                "name": event.name,
                "uid": event.uid,
            },
            "reason": event.reason,
            "message": event.message,
            "type": event.type,
            "count": 1,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "source": {"component": self._component},
        }
        try:
            self._core.create_namespaced_event(event.namespace, body)
        except ApiException as exc:
            log.warning("failed to record event %s on %s/%s: %s", event.reason, event.namespace, event.name, exc.reason)
