"""Pytest fixtures for agent-viz tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from agent_viz.services.broadcaster import shutdown_broadcaster
from agent_viz.services.tracker import AgentTracker


class FakeClock:
    """Manually advanced replacement for datetime.now(timezone.utc)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, delay, callback, generation) -> None:
        self.delay = delay
        self.callback = callback
        self.generation = generation
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback(self.generation)


class FakeTimerFactory:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay, callback, generation) -> FakeTimer:
        timer = FakeTimer(delay, callback, generation)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]

    @property
    def latest(self) -> FakeTimer:
        return self.timers[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def broadcaster():
    return MagicMock()


@pytest.fixture
def tracker(clock, timers, broadcaster):
    """Memory-only tracker with a fake clock and fake auto-reset timers."""
    tracker = AgentTracker(
        writer=None,
        broadcaster=broadcaster,
        clock=clock,
        timer_factory=timers,
    )
    yield tracker
    tracker.shutdown()


@pytest.fixture
def config_file(tmp_path):
    """Config file pointing the database and logs into tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        f"  path: {tmp_path / 'agents.db'}\n"
        f"  legacy_state_file: {tmp_path / 'state.json'}\n"
        "logging:\n"
        "  file: logs/test.log\n"
        "approval:\n"
        "  enabled: true\n"
    )
    return path


@pytest.fixture
def app(config_file, clock, timers):
    """Full application wired to a temporary SQLite file."""
    from agent_viz.app import create_app

    shutdown_broadcaster()
    app = create_app(
        config_path=str(config_file),
        testing=True,
        clock=clock,
        timer_factory=timers,
    )

    yield app

    app.extensions["tracker"].shutdown()
    app.extensions["store_writer"].stop()
    store = app.extensions.get("agent_store")
    if store is not None:
        store.dispose()
    shutdown_broadcaster()


@pytest.fixture
def client(app):
    """Create a test client for the app."""
    return app.test_client()
