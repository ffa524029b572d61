import threading
from datetime import datetime, timedelta

import pytest

from streamrelay.coordinator import BatchCoordinator
from streamrelay.exceptions import ResolutionError
from streamrelay.health import ProbeResult
from streamrelay.notifier import Notifier
from streamrelay.resolver import StreamInfo, VideoInfo
from streamrelay.storage import EntryRegistry, IdAllocator, RelaySettings


class StubResolver:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, original_url):
        with self._lock:
            self.calls.append(original_url)
            n = len(self.calls)
        if original_url in self.failing:
            raise ResolutionError("Video unavailable")
        return StreamInfo(
            stream_url=f"https://cdn.example/fresh/{n}",
            title=f"Title for {original_url}",
            quality="720p",
            expires_at=datetime.utcnow() + timedelta(hours=6),
        )

    def describe(self, original_url):
        return VideoInfo(title="Described", available=False)


class StubProber:
    """Answers 200 unless a status is configured for the URL."""

    def __init__(self, statuses=None):
        self.statuses = dict(statuses or {})
        self.calls = []

    def __call__(self, stream_url):
        self.calls.append(stream_url)
        code = self.statuses.get(stream_url, 200)
        return ProbeResult(reachable=code == 200, status_code=code)


class StubPublisher:
    def __init__(self, error=None):
        self.error = error
        self.published = []

    def publish(self, mapping):
        if self.error is not None:
            raise self.error
        self.published.append(mapping)

    def public_link(self, token):
        return f"https://pages.example/r/{token}"


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__(webhook_url=None)
        self.batches = []
        self.summaries = []

    def broken_links(self, links):
        if links:
            self.batches.append(list(links))
        return super().broken_links(links)

    def cycle_summary(self, report):
        self.summaries.append(report)
        super().cycle_summary(report)


@pytest.fixture
def settings():
    return RelaySettings(
        api_password="secret",
        batch_window_seconds=600,
        refresh_interval_seconds=3 * 3600,
        max_workers=4,
    )


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def prober():
    return StubProber()


@pytest.fixture
def publisher():
    return StubPublisher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_coordinator(settings, resolver, prober, publisher, notifier):
    def _factory(**overrides):
        kwargs = dict(
            settings=settings,
            registry=EntryRegistry(),
            allocator=IdAllocator(),
            resolver=resolver,
            prober=prober,
            publisher=publisher,
            notifier=notifier,
        )
        kwargs.update(overrides)
        return BatchCoordinator(**kwargs)

    return _factory
