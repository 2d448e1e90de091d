import os
from dataclasses import dataclass, field


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
        if value < minimum:
            raise ValueError
    except ValueError:
        value = default
    return value


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    LOG_LEVEL: str = field(default="INFO")
    LOG_JSON: bool = field(default=False)
    STORE: str = field(default="kubernetes")
    KUBECONFIG: str = field(default="")
    POLICY_GROUP: str = field(default="certwatch.dev")
    POLICY_VERSION: str = field(default="v1beta1")
    POLICY_PLURAL: str = field(default="watchpolicies")
    WORKERS: int = field(default=1)
    RESYNC_PERIOD_SEC: int = field(default=36000)
    FALLBACK_REQUEUE_SEC: int = field(default=0)
    METRICS_PORT: int = field(default=8080)
    BACKOFF_BASE_SEC: int = field(default=1)
    BACKOFF_MAX_SEC: int = field(default=300)

    @staticmethod
    def from_env() -> "Settings":
        store = os.getenv("CERTWATCH_STORE", "kubernetes").strip().lower()
        if store not in ("kubernetes", "memory"):
            store = "kubernetes"
        return Settings(
            LOG_LEVEL=os.getenv("CERTWATCH_LOG_LEVEL", "INFO").upper(),
            LOG_JSON=_bool_env("CERTWATCH_LOG_JSON"),
            STORE=store,
            KUBECONFIG=os.getenv("CERTWATCH_KUBECONFIG", ""),
            POLICY_GROUP=os.getenv("CERTWATCH_POLICY_GROUP", "certwatch.dev"),
            POLICY_VERSION=os.getenv("CERTWATCH_POLICY_VERSION", "v1beta1"),
            POLICY_PLURAL=os.getenv("CERTWATCH_POLICY_PLURAL", "watchpolicies"),
            WORKERS=_int_env("CERTWATCH_WORKERS", 1, minimum=1),
            RESYNC_PERIOD_SEC=_int_env("CERTWATCH_RESYNC_PERIOD_SEC", 36000, minimum=1),
            FALLBACK_REQUEUE_SEC=_int_env("CERTWATCH_FALLBACK_REQUEUE_SEC", 0),
            METRICS_PORT=_int_env("CERTWATCH_METRICS_PORT", 8080),
            BACKOFF_BASE_SEC=_int_env("CERTWATCH_BACKOFF_BASE_SEC", 1, minimum=1),
            BACKOFF_MAX_SEC=_int_env("CERTWATCH_BACKOFF_MAX_SEC", 300, minimum=1),
        )
