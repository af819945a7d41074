"""Routes package for agent-viz."""

# SECURITY NOTE: Authentication is intentionally absent from all routes.
# The server binds to the loopback interface and only local hook scripts
# and the menu bar client talk to it.

from .approval import approval_bp
from .complete import complete_bp
from .health import health_bp
from .hooks import hooks_bp
from .sse import sse_bp
from .state import state_bp

__all__ = ["approval_bp", "complete_bp", "health_bp", "hooks_bp", "sse_bp", "state_bp"]
