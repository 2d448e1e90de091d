# certwatch/controller.py
from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Callable, Iterator, List, Optional, Tuple

from prometheus_client import start_http_server

from .errors import CertWatchError
from .logging_conf import setup_logging
from .mapper import policies_for_record
from .models import CertificateRecord, PolicyKey, WatchPolicy
from .reconciler import Reconciler
from .runtime import build_runtime
from .settings import Settings
from .workqueue import WorkQueue

log = logging.getLogger(__name__)


class Controller:
    """
    Turns triggers into reconcile requests and applies each pass' result:
    requeue after the returned delay, back off on failure, forget on success.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        store: Any,
        queue: Optional[WorkQueue] = None,
        settings: Optional[Settings] = None,
        unfiltered_mapping: bool = False,
    ) -> None:
        self._settings = settings or Settings()
        self._reconciler = reconciler
        self._store = store
        self.queue = queue or WorkQueue(
            backoff_base=self._settings.BACKOFF_BASE_SEC,
            backoff_max=self._settings.BACKOFF_MAX_SEC,
        )
        self._unfiltered = unfiltered_mapping

    def enqueue_policy(self, key: PolicyKey) -> None:
        self.queue.add(key)

    def on_policy_changed(self, policy: WatchPolicy) -> None:
        self.queue.add(policy.key)

    def on_record_changed(self, record: CertificateRecord) -> List[PolicyKey]:
        try:
            policies = self._store.list_policies()
        except CertWatchError as exc:
            log.warning("cannot list watch policies for secret %s: %s", record, exc)
            return []
        keys = policies_for_record(record, policies, unfiltered=self._unfiltered)
        for key in keys:
            self.queue.add(key)
        return keys

    def resync(self) -> int:
        try:
            policies = self._store.list_policies()
        except CertWatchError as exc:
            log.warning("resync failed: %s", exc)
            return 0
        for policy in policies:
            self.queue.add(policy.key)
        return len(policies)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Run one pass for the next ready key. Returns False when nothing was ready."""
        key = self.queue.pop_ready() if timeout is None else self.queue.get(timeout)
        if key is None:
            return False
        try:
            result = self._reconciler.reconcile(key)
        except CertWatchError as exc:
            delay = self.queue.add_rate_limited(key)
            log.warning("reconcile %s failed, retrying in %.0fs: %s", key, delay, exc)
        except Exception:
            delay = self.queue.add_rate_limited(key)
            log.exception("unexpected error reconciling %s, retrying in %.0fs", key, delay)
        else:
            self.queue.forget(key)
            if result.requeue_after is not None and result.requeue_after.total_seconds() > 0:
                self.queue.add_after(key, result.requeue_after.total_seconds())
        finally:
            self.queue.done(key)
        return True

    def _worker(self, stop: threading.Event) -> None:
        while not stop.is_set():
            self.process_next(timeout=1.0)

    def _resync_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._settings.RESYNC_PERIOD_SEC):
            log.info("periodic resync queued %d watch policies", self.resync())

    def _watch_loop(
        self,
        stop: threading.Event,
        stream: Callable[[], Iterator[Tuple[str, Any]]],
        handle: Callable[[Any], Any],
    ) -> None:
        while not stop.is_set():
            try:
                for _type, obj in stream():
                    if stop.is_set():
                        return
                    handle(obj)
            except Exception as exc:
                log.warning("watch stream interrupted: %s", exc)
                stop.wait(self._settings.BACKOFF_BASE_SEC)

    def run(self, stop: threading.Event) -> None:
        threads = [
            threading.Thread(target=self._worker, args=(stop,), name=f"certwatch-worker-{i}", daemon=True)
            for i in range(self._settings.WORKERS)
        ]
        threads.append(threading.Thread(target=self._resync_loop, args=(stop,), name="certwatch-resync", daemon=True))
        if hasattr(self._store, "watch_records"):
            threads.append(threading.Thread(
                target=self._watch_loop, args=(stop, self._store.watch_records, self.on_record_changed),
                name="certwatch-watch-secrets", daemon=True,
            ))
        if hasattr(self._store, "watch_policies"):
            threads.append(threading.Thread(
                target=self._watch_loop, args=(stop, self._store.watch_policies, self.on_policy_changed),
                name="certwatch-watch-policies", daemon=True,
            ))

        log.info("initial sync queued %d watch policies", self.resync())
        for t in threads:
            t.start()
        stop.wait()
        self.queue.shutdown()
        for t in threads:
            t.join(timeout=5)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings)
    runtime = build_runtime(settings)
    if settings.METRICS_PORT > 0:
        start_http_server(settings.METRICS_PORT)
        log.info("serving metrics on :%d", settings.METRICS_PORT)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())

    Controller(runtime.reconciler, runtime.store, settings=settings).run(stop)


if __name__ == "__main__":
    main()
