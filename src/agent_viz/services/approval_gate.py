"""Approval gate: rendezvous between a blocked tool call and a human decision.

A permission hook files a request and long-polls for the outcome while
the menu bar client shows the prompt and posts allow/deny. Every waiter
is resolved at most once, and whichever of decision, timeout or
disconnect comes first removes it.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_DECISION_RETENTION_SECONDS = 300
DEFAULT_PENDING_EXPIRY_SECONDS = 90
DEFAULT_MAX_WAIT_SECONDS = 55


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    DECIDED = "decided"
    UNKNOWN = "unknown"


@dataclass
class ApprovalRequest:
    request_id: str
    tool_name: str
    tool_input: dict[str, Any]
    session_id: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "requestId": self.request_id,
            "toolName": self.tool_name,
            "toolInput": self.tool_input,
            "sessionId": self.session_id,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class ApprovalDecision:
    decision: Decision
    decided_at: datetime


@dataclass
class ApprovalWaiter:
    """One blocked long-poll reader."""

    request_id: str
    waiter_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    decision: Decision | None = None
    _event: threading.Event = field(default_factory=threading.Event)

    @property
    def resolved(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> Decision | None:
        self._event.wait(timeout)
        return self.decision

    def _resolve(self, decision: Decision) -> bool:
        if self._event.is_set():
            return False
        self.decision = decision
        self._event.set()
        return True


@dataclass
class ExpiryResult:
    decisions_expired: int = 0
    auto_allowed: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalGate:
    """Thread-safe pending/decided bookkeeping plus long-poll waiters."""

    def __init__(
        self,
        enabled: bool = False,
        decision_retention_seconds: float = DEFAULT_DECISION_RETENTION_SECONDS,
        pending_expiry_seconds: float = DEFAULT_PENDING_EXPIRY_SECONDS,
        max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._enabled = enabled
        self._decision_retention = decision_retention_seconds
        self._pending_expiry = pending_expiry_seconds
        self._max_wait = max_wait_seconds
        self._clock = clock

        self._pending: dict[str, ApprovalRequest] = {}
        self._decisions: dict[str, ApprovalDecision] = {}
        self._waiters: dict[str, list[ApprovalWaiter]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    @property
    def max_wait_seconds(self) -> float:
        return self._max_wait

    def clamp_wait(self, seconds: float | int | None) -> float:
        """Bound a requested long-poll duration to [0, max_wait_seconds]."""
        if not seconds or seconds < 0:
            return 0
        return min(seconds, self._max_wait)

    def toggle(self) -> bool:
        """Flip the gate. Turning it off allows every pending request."""
        with self._lock:
            self._enabled = not self._enabled
            enabled = self._enabled
            if not enabled:
                for request_id in list(self._pending):
                    self._decide_locked(request_id, Decision.ALLOW)
        logger.info(f"Approval gate {'enabled' if enabled else 'disabled'}")
        return enabled

    def create_request(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        session_id: str,
    ) -> ApprovalRequest:
        request = ApprovalRequest(
            request_id=str(uuid.uuid4()),
            tool_name=tool_name,
            tool_input=tool_input,
            session_id=session_id,
            created_at=self._clock(),
        )
        with self._lock:
            self._pending[request.request_id] = request
        logger.info(f"Approval requested: {request.request_id} tool={tool_name}")
        return request

    def pending_requests(self) -> list[ApprovalRequest]:
        with self._lock:
            return list(self._pending.values())

    def get_status(self, request_id: str) -> tuple[ApprovalStatus, Decision | None]:
        with self._lock:
            decision = self._decisions.get(request_id)
            if decision is not None:
                return ApprovalStatus.DECIDED, decision.decision
            if request_id in self._pending:
                return ApprovalStatus.PENDING, None
            return ApprovalStatus.UNKNOWN, None

    def add_waiter(self, request_id: str) -> ApprovalWaiter:
        """Register a long-poll waiter.

        If the decision landed between the caller's status check and this
        call, the waiter comes back already resolved and is not registered.
        """
        waiter = ApprovalWaiter(request_id=request_id)
        with self._lock:
            decided = self._decisions.get(request_id)
            if decided is not None:
                waiter._resolve(decided.decision)
                return waiter
            self._waiters.setdefault(request_id, []).append(waiter)
        return waiter

    def discard_waiter(self, waiter: ApprovalWaiter) -> bool:
        """Forget a waiter whose client timed out or went away. No other side effects."""
        with self._lock:
            waiters = self._waiters.get(waiter.request_id)
            if not waiters or waiter not in waiters:
                return False
            waiters.remove(waiter)
            if not waiters:
                del self._waiters[waiter.request_id]
            return True

    def waiter_count(self, request_id: str) -> int:
        with self._lock:
            return len(self._waiters.get(request_id, []))

    def respond(self, request_id: str, decision: Decision | str) -> bool:
        """Record a decision. Returns False if the request is unknown or already decided."""
        decision = Decision(decision)
        with self._lock:
            if request_id not in self._pending:
                return False
            resolved = self._decide_locked(request_id, decision)
        logger.info(f"Approval {request_id}: {decision.value} (resolved {resolved} waiter(s))")
        return True

    def expire(self) -> ExpiryResult:
        """Drop old decisions and auto-allow requests nobody answered in time."""
        now = self._clock()
        decision_cutoff = now - timedelta(seconds=self._decision_retention)
        pending_cutoff = now - timedelta(seconds=self._pending_expiry)
        result = ExpiryResult()

        with self._lock:
            for request_id, decision in list(self._decisions.items()):
                if decision.decided_at < decision_cutoff:
                    del self._decisions[request_id]
                    result.decisions_expired += 1

            for request_id, request in list(self._pending.items()):
                if request.created_at < pending_cutoff:
                    self._decide_locked(request_id, Decision.ALLOW)
                    result.auto_allowed.append(request_id)

        for request_id in result.auto_allowed:
            logger.warning(f"Approval {request_id} unanswered, auto-allowed")
        return result

    def _decide_locked(self, request_id: str, decision: Decision) -> int:
        self._pending.pop(request_id, None)
        self._decisions[request_id] = ApprovalDecision(decision=decision, decided_at=self._clock())
        resolved = 0
        for waiter in self._waiters.pop(request_id, []):
            if waiter._resolve(decision):
                resolved += 1
        return resolved
