import datetime as dt
import threading

from _util import NS, cert_expiring_in, clock, policy, tls_record

from certwatch.controller import Controller
from certwatch.errors import StoreError
from certwatch.models import PolicyKey
from certwatch.reconciler import Reconciler
from certwatch.settings import Settings
from certwatch.sinks import InMemoryMetricSink, RecordingEventSink
from certwatch.store import InMemoryStore
from certwatch.workqueue import WorkQueue

KEY = PolicyKey(namespace=NS, name="web-certs")
DAY = 86400.0


def _controller(store=None):
    t = [0.0]
    store = store or InMemoryStore()
    store.put_policy(policy())
    rec = Reconciler(store, RecordingEventSink(), InMemoryMetricSink(), clock=clock)
    queue = WorkQueue(backoff_base=2.0, backoff_max=60.0, now_fn=lambda: t[0])
    return Controller(rec, store, queue=queue, settings=Settings(STORE="memory")), store, t


def test_successful_pass_requeues_after_returned_delay():
    ctl, store, t = _controller()
    store.put_record(tls_record("web-tls", cert_expiring_in(40)))
    ctl.enqueue_policy(KEY)

    assert ctl.process_next() is True
    assert ctl.queue.due_in(KEY) == 10 * DAY
    assert ctl.process_next() is False

    t[0] = 10 * DAY
    assert ctl.process_next() is True


def test_failed_pass_backs_off():
    ctl, store, t = _controller()
    store.put_record(tls_record("bad", b"garbage"))
    ctl.enqueue_policy(KEY)

    ctl.process_next()
    assert ctl.queue.num_requeues(KEY) == 1
    assert ctl.queue.due_in(KEY) == 2.0

    t[0] = 2.0
    ctl.process_next()
    assert ctl.queue.due_in(KEY) == 4.0

    store.put_record(tls_record("bad", cert_expiring_in(100)))
    t[0] = 6.0
    ctl.process_next()
    assert ctl.queue.num_requeues(KEY) == 0


def test_unexpected_error_is_contained():
    class Boom(Reconciler):
        def reconcile(self, key):
            raise RuntimeError("bug")

    store = InMemoryStore()
    ctl = Controller(Boom(store, RecordingEventSink(), InMemoryMetricSink()), store, queue=WorkQueue(now_fn=lambda: 0.0))
    ctl.enqueue_policy(KEY)
    assert ctl.process_next() is True
    assert ctl.queue.num_requeues(KEY) == 1


def test_no_requeue_without_targets():
    ctl, _, _ = _controller()
    ctl.enqueue_policy(KEY)
    ctl.process_next()
    assert ctl.queue.due_in(KEY) is None
    assert len(ctl.queue) == 0


def test_record_change_enqueues_matching_policies():
    ctl, store, _ = _controller()
    store.put_policy(policy("db-certs", labels={"app": "db"}))

    keys = ctl.on_record_changed(tls_record("web-tls", cert_expiring_in(1)))

    assert keys == [KEY]
    assert ctl.queue.pop_ready() == KEY
    assert ctl.queue.pop_ready() is None


def test_record_change_survives_store_errors():
    class Down(InMemoryStore):
        def list_policies(self):
            raise StoreError("down")

    ctl, _, _ = _controller(store=Down())
    assert ctl.on_record_changed(tls_record("x", b"")) == []
    assert ctl.resync() == 0


def test_resync_enqueues_every_policy():
    ctl, store, _ = _controller()
    store.put_policy(policy("other", labels={"app": "db"}))
    assert ctl.resync() == 2
    assert len(ctl.queue) == 2


def test_run_stops_cleanly():
    ctl, store, _ = _controller()
    store.put_record(tls_record("web-tls", cert_expiring_in(40)))
    stop = threading.Event()
    runner = threading.Thread(target=ctl.run, args=(stop,))
    runner.start()
    stop.set()
    runner.join(timeout=10)
    assert not runner.is_alive()
