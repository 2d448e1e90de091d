import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from _util import cert_expiring_in, clock, tls_record
from kubernetes.client.rest import ApiException

from certwatch.controller import Controller
from certwatch.errors import PersistError, PolicyNotFound, StoreError
from certwatch.kube import KubernetesEventSink, KubernetesStore, record_from_secret
from certwatch.models import AlertEvent, LabelSelector, PolicyKey, WatchPolicyStatus
from certwatch.reconciler import Reconciler
from certwatch.sinks import InMemoryMetricSink, RecordingEventSink

KEY = PolicyKey(namespace="default", name="web-certs")


def _store():
    core, custom = MagicMock(), MagicMock()
    return KubernetesStore("certwatch.dev", "v1beta1", "watchpolicies", core_api=core, custom_api=custom), core, custom


def _secret(name="web-tls", type_="kubernetes.io/tls", data=None):
    meta = SimpleNamespace(namespace="default", name=name, uid="u-1", labels={"app": "web"}, annotations=None)
    return SimpleNamespace(metadata=meta, type=type_, data=data)


def test_record_from_secret_decodes_data():
    rec = record_from_secret(_secret(data={"tls.crt": base64.b64encode(b"PEM").decode()}))
    assert rec.is_tls
    assert rec.certificate_bytes == b"PEM"
    assert rec.annotations == {}
    assert rec.uid == "u-1"


def test_get_policy_maps_errors():
    store, _, custom = _store()
    custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
    with pytest.raises(PolicyNotFound):
        store.get_policy(KEY)

    custom.get_namespaced_custom_object.side_effect = ApiException(status=500, reason="Internal")
    with pytest.raises(StoreError) as ei:
        store.get_policy(KEY)
    assert not isinstance(ei.value, PolicyNotFound)


def test_get_policy_parses_object():
    store, _, custom = _store()
    custom.get_namespaced_custom_object.return_value = {
        "metadata": {"namespace": "default", "name": "web-certs"},
        "spec": {"selector": {"matchLabels": {"app": "web"}}, "thresholdDays": 21},
    }
    p = store.get_policy(KEY)
    assert p.threshold_days == 21
    custom.get_namespaced_custom_object.assert_called_once_with(
        "certwatch.dev", "v1beta1", "default", "watchpolicies", "web-certs"
    )


def test_list_records_uses_label_selector():
    store, core, _ = _store()
    core.list_namespaced_secret.return_value = SimpleNamespace(items=[_secret(), _secret("opaque", "Opaque", {})])
    recs = store.list_records("default", LabelSelector(match_labels={"app": "web"}))
    assert [r.name for r in recs] == ["web-tls", "opaque"]
    core.list_namespaced_secret.assert_called_once_with("default", label_selector="app=web")


def test_status_is_patched_on_subresource():
    store, _, custom = _store()
    store.update_policy_status(KEY, WatchPolicyStatus())
    args = custom.patch_namespaced_custom_object_status.call_args.args
    assert args[:5] == ("certwatch.dev", "v1beta1", "default", "watchpolicies", "web-certs")
    assert args[5] == {"status": {"targetCertsCount": 0, "certificates": []}}

    custom.patch_namespaced_custom_object_status.side_effect = ApiException(status=409, reason="Conflict")
    with pytest.raises(PersistError):
        store.update_policy_status(KEY, WatchPolicyStatus())


def test_annotation_patch_failure_is_persist_error():
    store, core, _ = _store()
    rec = record_from_secret(_secret(data={}))
    core.patch_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(PersistError):
        store.update_record(rec)


def test_event_sink_builds_event_and_swallows_api_errors():
    core = MagicMock()
    sink = KubernetesEventSink(core_api=core)
    ev = AlertEvent(namespace="default", name="web-tls", uid="u-1", reason="Expired", message="TLS Secret default/web-tls is expired")
    sink.emit(ev)
    ns, body = core.create_namespaced_event.call_args.args
    assert ns == "default"
    assert body["involvedObject"]["kind"] == "Secret"
    assert body["involvedObject"]["uid"] == "u-1"
    assert body["reason"] == "Expired" and body["type"] == "Warning"
    assert body["source"] == {"component": "certwatch"}

    core.create_namespaced_event.side_effect = ApiException(status=500, reason="boom")
    sink.emit(ev)


def _policy_obj(name, selector, threshold=30):
    return {
        "metadata": {"namespace": "default", "name": name, "resourceVersion": "7"},
        "spec": {"selector": selector, "thresholdDays": threshold},
    }


GOOD = _policy_obj("web-certs", {"matchLabels": {"app": "web"}})
BAD_OPERATOR = _policy_obj("broken", {"matchExpressions": [{"key": "app", "operator": "Gt", "values": ["1"]}]})
BAD_THRESHOLD = _policy_obj("lazy", {"matchLabels": {"app": "web"}}, threshold="soon")


def test_list_policies_skips_malformed_objects(caplog):
    store, _, custom = _store()
    custom.list_cluster_custom_object.return_value = {"items": [GOOD, BAD_OPERATOR, BAD_THRESHOLD]}
    with caplog.at_level("WARNING", logger="certwatch.kube"):
        policies = store.list_policies()
    assert [p.name for p in policies] == ["web-certs"]
    assert "default/broken" in caplog.text
    assert "default/lazy" in caplog.text


def test_get_policy_malformed_object_is_store_error():
    store, _, custom = _store()
    custom.get_namespaced_custom_object.return_value = BAD_OPERATOR
    with pytest.raises(StoreError, match="invalid WatchPolicy default/broken"):
        store.get_policy(PolicyKey(namespace="default", name="broken"))


def test_controller_survives_malformed_policy():
    store, _, custom = _store()
    custom.list_cluster_custom_object.return_value = {"items": [GOOD, BAD_OPERATOR]}
    ctl = Controller(Reconciler(store, RecordingEventSink(), InMemoryMetricSink(), clock=clock), store)

    assert ctl.resync() == 1
    keys = ctl.on_record_changed(tls_record("web-tls", cert_expiring_in(60)))
    assert keys == [KEY]


def _watched_secret(rv):
    s = _secret(data={})
    s.metadata.resource_version = rv
    return s


def test_watch_records_resumes_from_last_resource_version():
    store, core, _ = _store()
    with patch("certwatch.kube.watch.Watch") as watch_cls:
        stream = watch_cls.return_value.stream
        stream.side_effect = [
            iter([{"type": "ADDED", "object": _watched_secret("41")}, {"type": "MODIFIED", "object": _watched_secret("42")}]),
            iter([]),
        ]
        assert [t for t, _ in store.watch_records()] == ["ADDED", "MODIFIED"]
        assert list(store.watch_records()) == []

    first, second = stream.call_args_list
    assert "resource_version" not in first.kwargs
    assert second.kwargs == {"timeout_seconds": 300, "resource_version": "42"}
    assert second.args == (core.list_secret_for_all_namespaces,)


def test_watch_restarts_from_scratch_after_gone():
    store, _, _ = _store()
    with patch("certwatch.kube.watch.Watch") as watch_cls:
        stream = watch_cls.return_value.stream
        stream.side_effect = [
            iter([{"type": "ADDED", "object": _watched_secret("42")}]),
            ApiException(status=410, reason="Gone"),
            iter([
                {"type": "ADDED", "object": _watched_secret("43")},
                {"type": "ERROR", "object": {"code": 410}, "raw_object": {"kind": "Status", "code": 410}},
            ]),
            iter([]),
        ]
        list(store.watch_records())
        assert list(store.watch_records()) == []
        assert [t for t, _ in store.watch_records()] == ["ADDED"]
        list(store.watch_records())

    kwargs = [c.kwargs.get("resource_version") for c in stream.call_args_list]
    assert kwargs == [None, "42", None, None]


def test_watch_policies_tracks_version_and_skips_malformed():
    store, _, custom = _store()
    with patch("certwatch.kube.watch.Watch") as watch_cls:
        stream = watch_cls.return_value.stream
        stream.side_effect = [iter([{"type": "ADDED", "object": GOOD}, {"type": "ADDED", "object": BAD_OPERATOR}]), iter([])]
        assert [(t, p.name) for t, p in store.watch_policies()] == [("ADDED", "web-certs")]
        list(store.watch_policies())

    assert stream.call_args.args == (custom.list_cluster_custom_object, "certwatch.dev", "v1beta1", "watchpolicies")
    assert stream.call_args.kwargs["resource_version"] == "7"
