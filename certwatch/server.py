import base64
import binascii
from typing import Annotated, Optional

from fastmcp import FastMCP
from pydantic import Field

from .classifier import classify
from .common import iso_utc, utcnow
from .errors import CertificateError, CertWatchError, PolicyNotFound
from .models import PolicyKey
from .runtime import Runtime, build_runtime
from .settings import Settings
from .x509_utils import extract_validity

mcp = FastMCP(
    name="CertWatch",
    instructions=(
        "Purpose: report on TLS certificates watched by WatchPolicies (a label selector over "
        "TLS secrets plus a warning threshold in days).\n\n"
        "Use me when: you need to know whether a certificate is Healthy, ExpiringSoon or Expired, "
        "to run a reconciliation pass for a WatchPolicy, or to read the expiry gauges.\n"
        "Do NOT use me for: certificate issuance or renewal, chain/revocation validation, or key export.\n\n"
        "Tools:\n"
        "- `check_certificate_from_b64(content_b64=..., threshold_days=?)` classifies one PEM certificate.\n"
        "- `reconcile_watch_policy(namespace=..., name=...)` runs one pass and returns the new status "
        "and the requeue delay.\n"
        "- `get_watch_policy_status(namespace=..., name=...)` returns the last persisted status.\n"
        "- `list_certificate_gauges()` returns the `is_expired_certificate` samples "
        "(0 healthy, 0.5 expiring soon, 1 expired)."
    ),
)

_runtime: Optional[Runtime] = None


def configure(runtime: Runtime) -> None:
    global _runtime
    _runtime = runtime


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(Settings.from_env())
    return _runtime


@mcp.tool(
    description="Liveness probe. Returns 'pong'.",
    tags={"certwatch", "health"},
    annotations={"title": "Ping", "readOnlyHint": True, "idempotentHint": True, "openWorldHint": False},
)
def ping() -> str:
    return "pong"


@mcp.tool(
    description=(
        "Classify a PEM certificate given as base64 against a warning threshold. "
        "Read-only and idempotent; the result depends on the current time."
    ),
    tags={"certwatch", "x509", "expiry"},
    annotations={
        "title": "Check certificate expiry",
        "readOnlyHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def check_certificate_from_b64(
    content_b64: Annotated[
        str,
        Field(description="RFC 4648 base64 of the PEM bytes (e.g. the tls.crt value of a secret)."),
    ],
    threshold_days: Annotated[
        int,
        Field(description="Warning lead time in days before expiry.", ge=0),
    ] = 30,
) -> dict:
    """
    Example:
      { "content_b64": "<BASE64 of PEM>", "threshold_days": 30 }
    """
    try:
        data = base64.b64decode(content_b64, validate=True)
    except (binascii.Error, ValueError):
        return {"error": "DecodeError", "message": "content_b64 is not valid base64"}

    try:
        validity = extract_validity(data)
    except CertificateError as exc:
        return {"error": type(exc).__name__, "message": str(exc)}

    verdict = classify(validity.not_after, utcnow(), threshold_days)
    return {
        "not_before": iso_utc(validity.not_before),
        "not_after": iso_utc(validity.not_after),
        "remaining_days": verdict.remaining_days,
        "slack": verdict.slack,
        "classification": verdict.classification.value,
        "active": verdict.active,
    }


@mcp.tool(
    description=(
        "Run one reconciliation pass for a WatchPolicy: re-evaluate its TLS secrets, persist "
        "the status, emit alerts and gauges, and return the requeue delay."
    ),
    tags={"certwatch", "reconcile"},
    annotations={
        "title": "Reconcile watch policy",
        "readOnlyHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
def reconcile_watch_policy(
    namespace: Annotated[str, Field(description="Namespace of the WatchPolicy.")],
    name: Annotated[str, Field(description="Name of the WatchPolicy.")],
) -> dict:
    try:
        result = get_runtime().reconciler.reconcile(PolicyKey(namespace=namespace, name=name))
    except CertWatchError as exc:
        return {"namespace": namespace, "name": name, "error": type(exc).__name__, "message": str(exc)}
    return {"namespace": namespace, "name": name, **result.as_dict()}


@mcp.tool(
    description="Return the last persisted status of a WatchPolicy.",
    tags={"certwatch", "status"},
    annotations={"title": "Watch policy status", "readOnlyHint": True, "idempotentHint": True, "openWorldHint": False},
)
def get_watch_policy_status(
    namespace: Annotated[str, Field(description="Namespace of the WatchPolicy.")],
    name: Annotated[str, Field(description="Name of the WatchPolicy.")],
) -> dict:
    try:
        policy = get_runtime().store.get_policy(PolicyKey(namespace=namespace, name=name))
    except PolicyNotFound as exc:
        return {"error": "NotFound", "message": str(exc)}
    return {
        "namespace": namespace,
        "name": name,
        "threshold_days": policy.threshold_days,
        "status": policy.status.model_dump(mode="json", by_alias=True),
    }


@mcp.tool(
    description="List the is_expired_certificate gauge samples (0 healthy, 0.5 expiring soon, 1 expired).",
    tags={"certwatch", "metrics"},
    annotations={"title": "Expiry gauges", "readOnlyHint": True, "idempotentHint": True, "openWorldHint": False},
)
def list_certificate_gauges() -> dict:
    samples = sorted(get_runtime().metrics.samples(), key=lambda s: (str(s.policy), s.certificate))
    return {"samples": [s.as_dict() for s in samples]}


if __name__ == "__main__":
    mcp.run()
