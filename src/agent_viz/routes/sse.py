"""SSE (Server-Sent Events) endpoint for state change notifications."""

import logging
from typing import Generator

from flask import Blueprint, Response

from ..services.broadcaster import get_broadcaster

logger = logging.getLogger(__name__)

sse_bp = Blueprint("sse", __name__)


def generate_events(client_id: str) -> Generator[str, None, None]:
    """
    Yield SSE frames for one client until it disconnects or is dropped.

    Args:
        client_id: The registered client ID

    Yields:
        SSE-formatted event strings and keepalive comments
    """
    broadcaster = get_broadcaster()

    # Flush headers immediately so EventSource.onopen fires
    yield ": connected\n\n"

    try:
        while True:
            event = broadcaster.get_next_event(client_id)

            if event is None:
                yield ": keepalive\n\n"
            else:
                yield event.format()

            client = broadcaster.get_client(client_id)
            if client is None or not client.is_active:
                break

    except GeneratorExit:
        logger.info(f"Client {client_id} disconnected (generator exit)")
    except Exception as e:
        logger.error(f"Error in SSE generator for client {client_id}: {e}")
    finally:
        broadcaster.unregister_client(client_id)
        logger.debug(f"Client {client_id} unregistered from generator cleanup")


def _unavailable(message: str, retry_after: int) -> Response:
    response = Response(message, status=503, mimetype="text/plain")
    response.headers["Retry-After"] = str(retry_after)
    return response


@sse_bp.route("/events")
def events():
    """
    SSE stream of ``state-changed`` notifications.

    Returns:
        SSE stream or HTTP 503 if the connection limit is reached
    """
    broadcaster = get_broadcaster()

    if not broadcaster.can_accept_connection():
        logger.warning("SSE connection rejected: limit reached")
        return _unavailable(
            "Service temporarily unavailable - connection limit reached",
            broadcaster.retry_after,
        )

    client_id = broadcaster.register_client()
    if client_id is None:
        # Lost a race for the last slot
        return _unavailable("Service temporarily unavailable", broadcaster.retry_after)

    logger.info(f"SSE client {client_id} connected")

    response = Response(generate_events(client_id), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response
