"""Tests for the SSE endpoint."""

from unittest.mock import MagicMock, patch

import pytest
from flask import Flask

from agent_viz.routes.sse import generate_events, sse_bp
from agent_viz.services.broadcaster import STATE_CHANGED, Broadcaster, SSEEvent


@pytest.fixture
def app():
    """Create a test Flask application."""
    app = Flask(__name__)
    app.register_blueprint(sse_bp)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def broadcaster():
    broadcaster = Broadcaster(max_connections=1, keepalive_interval=0.01, retry_after=7)
    with patch("agent_viz.routes.sse.get_broadcaster", return_value=broadcaster):
        yield broadcaster
    broadcaster.stop()


class TestEventsEndpoint:
    """Tests for GET /events."""

    def test_stream_headers(self, client, broadcaster):
        response = client.get("/events")

        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"
        assert response.headers["Cache-Control"] == "no-cache"
        assert broadcaster.active_connections == 1
        response.close()

    def test_connection_limit_returns_503(self, client, broadcaster):
        broadcaster.register_client()

        response = client.get("/events")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "7"

    def test_register_race_returns_503(self, client):
        broadcaster = MagicMock()
        broadcaster.can_accept_connection.return_value = True
        broadcaster.register_client.return_value = None
        broadcaster.retry_after = 5
        with patch("agent_viz.routes.sse.get_broadcaster", return_value=broadcaster):
            response = client.get("/events")
        assert response.status_code == 503


class TestGenerateEvents:
    """Tests for the event generator."""

    def test_connected_then_event_then_keepalive(self, broadcaster):
        client_id = broadcaster.register_client()
        stream = generate_events(client_id)

        assert next(stream) == ": connected\n\n"

        broadcaster.broadcast(STATE_CHANGED, {"type": STATE_CHANGED, "timestamp": 5})
        frame = next(stream)
        assert frame.startswith("event: state-changed\n")
        assert '"timestamp": 5' in frame

        assert next(stream) == ": keepalive\n\n"
        stream.close()

        assert broadcaster.get_client(client_id) is None

    def test_stops_when_client_dropped(self, broadcaster):
        client_id = broadcaster.register_client()
        stream = generate_events(client_id)
        next(stream)

        broadcaster.get_client(client_id).is_active = False
        assert next(stream) == ": keepalive\n\n"
        with pytest.raises(StopIteration):
            next(stream)
        assert broadcaster.active_connections == 0

    def test_format_matches_sse_event(self):
        event = SSEEvent(event_type=STATE_CHANGED, data={}, event_id=1)
        assert event.format() == "event: state-changed\nid: 1\ndata: {}\n\n"
