"""Shared fakes for the phishing monitor tests.

The monitor only talks to its collaborators through small interfaces
(scheduler, lookup client, email sender, websocket client factory), so the
tests drive time and network by hand.
"""

from concurrent.futures import Future
from datetime import datetime, timedelta, timezone

import pytest

from services.opensquat import LookupFailure
from src.components.phishing_monitor import PhishingMonitor
from src.utils.json_store import JsonFileStore


class FakeTask:
    def __init__(self, scheduler, due, func, name, interval=None):
        self.scheduler = scheduler
        self.due = due
        self.func = func
        self.name = name
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler double; nothing runs until ``advance()`` moves the clock."""

    def __init__(self):
        self.now = 0.0
        self.tasks = []

    def call_later(self, delay_seconds, func, name=""):
        task = FakeTask(self, self.now + delay_seconds, func, name)
        self.tasks.append(task)
        return task

    def call_every(self, interval_seconds, func, name=""):
        task = FakeTask(self, self.now + interval_seconds, func, name, interval=interval_seconds)
        self.tasks.append(task)
        return task

    def pending(self, name=None):
        return [t for t in self.tasks if not t.cancelled and (name is None or t.name == name)]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.due)
            self.now = task.due
            if task.interval:
                task.due += task.interval
            else:
                task.cancelled = True
            task.func()
        self.now = target


class FakeLookupClient:
    """Opensquat double. ``responses`` maps a domain to a list or an exception."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def lookup(self, domain):
        self.calls.append(domain)
        result = self.responses.get(domain, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class RecordingEmailSender:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send(self, destination, fields):
        self.sent.append((destination, dict(fields)))
        return self.succeed


class FakeCertstreamClient:
    """Stands in for certstream's websocket client; the test triggers callbacks."""

    def __init__(self, message_callback, url, on_open, on_error):
        self.message_callback = message_callback
        self.url = url
        self.on_open = on_open
        self.on_error = on_error
        self.closed = False
        self.ran = False

    def run_forever(self, ping_interval=None):
        self.ran = True

    def close(self):
        self.closed = True


class CertstreamClientFactory:
    def __init__(self):
        self.clients = []

    def __call__(self, message_callback, url, on_open, on_error):
        client = FakeCertstreamClient(message_callback, url, on_open, on_error)
        self.clients.append(client)
        return client

    @property
    def latest(self):
        return self.clients[-1]


class SyncExecutor:
    """Runs submitted work inline so alert delivery is observable immediately."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


class MutableClock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


def cert_message(*domains, issuer="Let's Encrypt"):
    """A minimal certificate_update frame as certstream delivers it."""
    return {
        "message_type": "certificate_update",
        "data": {
            "leaf_cert": {
                "subject": {"CN": domains[0] if domains else ""},
                "all_domains": list(domains),
                "issuer": {"O": issuer},
                "not_before": 1760870400,
                "not_after": 1768646400,
            },
            "source": {"name": "Google 'Argon2026' log"},
        },
    }


def lookup_failure(domain):
    return LookupFailure(domain, "HTTP 500", status_code=500)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def lookup_client():
    return FakeLookupClient()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def certstream_factory():
    return CertstreamClientFactory()


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "phishing_monitor")


@pytest.fixture
def make_monitor(store, scheduler, lookup_client, email_sender, clock, sleeps, certstream_factory):
    """Build a monitor over the shared fakes; keyword arguments override any collaborator."""

    def _make(**overrides):
        kwargs = dict(
            store=store,
            scheduler=scheduler,
            lookup_client=lookup_client,
            email_sender=email_sender,
            default_alert_email="soc@example.com",
            clock=clock,
            sleep=sleeps.append,
            certstream_client_factory=certstream_factory,
            certstream_spawn=lambda target: None,
            alert_executor=SyncExecutor(),
        )
        kwargs.update(overrides)
        return PhishingMonitor(**kwargs)

    return _make


@pytest.fixture
def monitor(make_monitor):
    return make_monitor()
