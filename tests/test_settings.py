# tests/test_settings.py
from certwatch.settings import Settings


def test_settings_defaults(monkeypatch):
    for var in ("CERTWATCH_LOG_LEVEL", "CERTWATCH_STORE", "CERTWATCH_WORKERS", "CERTWATCH_FALLBACK_REQUEUE_SEC"):
        monkeypatch.delenv(var, raising=False)

    s = Settings.from_env()
    assert s.LOG_LEVEL == "INFO"
    assert s.STORE == "kubernetes"
    assert s.WORKERS == 1
    assert s.RESYNC_PERIOD_SEC == 36000
    assert s.FALLBACK_REQUEUE_SEC == 0


def test_settings_parsing(monkeypatch):
    monkeypatch.setenv("CERTWATCH_LOG_LEVEL", "debug")
    monkeypatch.setenv("CERTWATCH_STORE", "Memory")
    monkeypatch.setenv("CERTWATCH_WORKERS", "4")
    monkeypatch.setenv("CERTWATCH_LOG_JSON", "yes")
    monkeypatch.setenv("CERTWATCH_FALLBACK_REQUEUE_SEC", "3600")

    s = Settings.from_env()
    assert s.LOG_LEVEL == "DEBUG"
    assert s.STORE == "memory"
    assert s.WORKERS == 4
    assert s.LOG_JSON is True
    assert s.FALLBACK_REQUEUE_SEC == 3600


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("CERTWATCH_WORKERS", "0")
    monkeypatch.setenv("CERTWATCH_RESYNC_PERIOD_SEC", "soon")
    monkeypatch.setenv("CERTWATCH_STORE", "etcd")
    s = Settings.from_env()
    assert s.WORKERS == 1
    assert s.RESYNC_PERIOD_SEC == 36000
    assert s.STORE == "kubernetes"
