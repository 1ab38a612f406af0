"""Shared pytest fixtures for wabridge tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import FAKE_PNG, FakeScheduler, FakeTransportFactory, RecordingDispatcher  # noqa: E402
from wabridge.session.manager import SessionManager  # noqa: E402
from wabridge.webhooks.dispatcher import WebhookDispatcher  # noqa: E402


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def recording_dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def manager(transport_factory, scheduler, recording_dispatcher):
    """Session manager without background threads: tests call drain()."""
    mgr = SessionManager(
        transport_factory,
        recording_dispatcher,
        scheduler=scheduler,
        qr_renderer=lambda token: FAKE_PNG,
        send_timeout=2.0,
        background=False,
    )
    yield mgr
    mgr.stop()


@pytest.fixture
def dispatcher():
    """Real dispatcher; tests patch requests.post."""
    d = WebhookDispatcher(sleep=lambda _: None)
    yield d
    d.shutdown()

