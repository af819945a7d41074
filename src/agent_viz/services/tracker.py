"""AgentTracker: the single owner of all live tracker state.

Registry, message log, usage, approval gate and auto-reset scheduler all
hang off one AgentTracker instance stored in ``app.extensions["tracker"]``.
Every mutation, whether from a request thread, the auto-reset timer or the
cleanup sweeper, happens while holding ``tracker.lock``.
"""

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import get_approval_config, get_tracker_config
from .agent_registry import RESTARTED_ERROR, AgentRecord, AgentRegistry, AgentStatus
from .agent_store import AgentStore, migrate_from_json
from .approval_gate import ApprovalGate
from .auto_reset import AutoResetScheduler, ResetAction
from .broadcaster import STATE_CHANGED
from .message_log import MessageLog, MessageType
from .snapshot import build_snapshot, snapshot_timestamp

logger = logging.getLogger(__name__)

SESSION_USAGE_META_KEY = "sessionUsage"
MESSAGE_COUNTER_META_KEY = "messageCounter"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentTracker:
    """Process-wide tracker state with an explicit init/reset/shutdown lifecycle."""

    def __init__(
        self,
        writer=None,
        broadcaster=None,
        approval_gate: ApprovalGate | None = None,
        agent_tools: tuple[str, ...] = ("Task",),
        task_output_tool: str = "TaskOutput",
        controller_model: str = "opus",
        controller_active_seconds: float = 30,
        auto_reset_seconds: float = 60,
        batch_grace_seconds: float = 60,
        stale_agent_seconds: float = 300,
        retention_seconds: float = 1800,
        max_messages: int = 200,
        max_agents: int = 200,
        clock: Callable[[], datetime] = _utcnow,
        timer_factory: Callable | None = None,
    ) -> None:
        """
        Args:
            writer: StoreWriter mirroring mutations to SQLite, or None for memory-only
            broadcaster: Broadcaster receiving change notifications, or None
            approval_gate: Approval gate; a disabled one is created if omitted
            clock: Returns the current aware UTC datetime
            timer_factory: Passed to AutoResetScheduler (tests inject a fake)
        """
        self.lock = threading.RLock()
        self.writer = writer
        self.broadcaster = broadcaster
        self.clock = clock

        self.agent_tools = tuple(agent_tools)
        self.task_output_tool = task_output_tool
        self.controller_model = controller_model
        self.controller_active_window = timedelta(seconds=controller_active_seconds)
        self.batch_grace = timedelta(seconds=batch_grace_seconds)
        self.stale_after = timedelta(seconds=stale_agent_seconds)
        self.retention = timedelta(seconds=retention_seconds)
        self.max_agents = max_agents

        self.registry = AgentRegistry(writer=writer)
        self.messages = MessageLog(max_messages=max_messages, writer=writer)
        self.approval = approval_gate or ApprovalGate(clock=clock)
        self.scheduler = AutoResetScheduler(
            on_fire=self._on_auto_reset_timer,
            delay_seconds=auto_reset_seconds,
            timer_factory=timer_factory,
        )

        self._last_event_time: Optional[datetime] = None
        self._last_completion_time: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config: dict,
        writer=None,
        broadcaster=None,
        clock: Callable[[], datetime] = _utcnow,
        timer_factory: Callable | None = None,
    ) -> "AgentTracker":
        approval = ApprovalGate(clock=clock, **get_approval_config(config))
        return cls(
            writer=writer,
            broadcaster=broadcaster,
            approval_gate=approval,
            clock=clock,
            timer_factory=timer_factory,
            **get_tracker_config(config),
        )

    # --- Timing ---

    def now(self) -> datetime:
        return self.clock()

    @property
    def last_event_time(self) -> Optional[datetime]:
        return self._last_event_time

    @property
    def last_completion_time(self) -> Optional[datetime]:
        return self._last_completion_time

    def touch_controller(self) -> None:
        """Record controller activity (any valid hook event or heartbeat)."""
        with self.lock:
            self._last_event_time = self.now()

    def controller_active(self) -> bool:
        with self.lock:
            if self._last_event_time is None:
                return False
            return self.now() - self._last_event_time < self.controller_active_window

    def is_trackable(self, tool_name: str) -> bool:
        return tool_name in self.agent_tools

    def is_task_output(self, tool_name: str) -> bool:
        return tool_name == self.task_output_tool

    # --- Mutation helpers (caller holds the lock) ---

    def add_message(self, from_id: str, to_id: str, message_type: MessageType) -> None:
        self.messages.append(from_id, to_id, message_type, self.now())

    def record_completion(self, record: AgentRecord) -> None:
        """Account a finished agent in the session aggregate."""
        self.registry.usage.record_completion(record.usage)
        self._last_completion_time = self.now()

    def batch_expired(self) -> bool:
        """True when the next spawn starts a fresh batch: nothing running,
        something to clear, and the grace window since the last completion
        has passed."""
        if self.registry.has_running() or len(self.registry) == 0:
            return False
        if self._last_completion_time is None:
            return True
        return self.now() - self._last_completion_time > self.batch_grace

    # --- Lifecycle ---

    def notify(self) -> None:
        """Persist the session aggregate and tell subscribers to re-fetch."""
        with self.lock:
            if self.writer is not None:
                self.writer.save_meta(
                    SESSION_USAGE_META_KEY, json.dumps(self.registry.usage.to_dict())
                )
            timestamp = snapshot_timestamp(self.now())

        if self.broadcaster is not None:
            try:
                self.broadcaster.broadcast(
                    STATE_CHANGED, {"type": STATE_CHANGED, "timestamp": timestamp}
                )
            except Exception as e:
                logger.warning(f"State change broadcast failed (non-fatal): {e}")

    def reset(self) -> None:
        """Clear agents, messages, counters and durable tables, then notify."""
        with self.lock:
            self.scheduler.shutdown()
            self.registry.clear()
            self.messages.clear()
            self._last_event_time = None
            if self.writer is not None:
                self.writer.clear_all()
            logger.info("Tracker state cleared (memory + store)")
        self.notify()

    def recheck_auto_reset(self) -> ResetAction:
        """Re-evaluate the auto-reset arm state after a possible last completion."""
        with self.lock:
            return self.scheduler.reevaluate(
                has_running=self.registry.has_running(),
                has_agents=len(self.registry) > 0,
            )

    def cancel_auto_reset(self) -> bool:
        with self.lock:
            return self.scheduler.cancel()

    def _on_auto_reset_timer(self, generation: int) -> None:
        with self.lock:
            action = self.scheduler.fire(
                generation,
                has_running=self.registry.has_running(),
                controller_active=self.controller_active(),
            )
            if action == ResetAction.RESET:
                logger.info("[autoReset] Batch finished and controller quiet, resetting")
                self.reset()

    def snapshot(self) -> dict:
        with self.lock:
            return build_snapshot(
                records=self.registry.iterate(),
                messages=self.messages.messages(),
                usage=self.registry.usage,
                controller_active=self.controller_active(),
                controller_model=self.controller_model,
                approval_enabled=self.approval.enabled,
                pending_approvals=self.approval.pending_requests(),
                max_agents=self.max_agents,
            )

    def load_from_store(self, store: AgentStore, legacy_state_file: str | None = None) -> int:
        """
        Restore state after a restart.

        Every agent that was running when the process went down is demoted
        to errored, since no completion can arrive for it any more. A store
        that cannot be read leaves the tracker empty.

        Returns:
            Number of agents loaded
        """
        if legacy_state_file:
            migrate_from_json(store, legacy_state_file)

        try:
            records = store.load_all_agents()
            now = self.now()
            demoted = 0
            for record in records:
                if record.status == AgentStatus.RUNNING:
                    record.status = AgentStatus.ERRORED
                    record.error = RESTARTED_ERROR
                    record.ended_at = now
                    demoted += 1
            if demoted:
                store.mark_all_running_as_errored(RESTARTED_ERROR, now)

            messages = store.load_all_messages()
            counter = int(store.load_meta(MESSAGE_COUNTER_META_KEY) or 0)
            usage_raw = store.load_meta(SESSION_USAGE_META_KEY)
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to load state from store, starting empty: {e}")
            return 0

        with self.lock:
            self.registry.load(records)
            self.messages.load(messages, counter)
            if usage_raw:
                try:
                    self.registry.usage.load(json.loads(usage_raw))
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning(f"Ignoring unreadable session usage: {e}")

        logger.info(
            f"Loaded from store: {len(records)} agents ({demoted} marked restarted), "
            f"{len(self.messages)} messages"
        )
        return len(records)

    def shutdown(self) -> None:
        with self.lock:
            self.scheduler.shutdown()
        logger.info("AgentTracker shut down")
