"""Periodic cleanup sweep.

Each pass:
1. demotes running agents with no activity past the stale threshold to
   errored and re-checks auto-reset
2. removes finished agents older than the retention window (memory and store)
3. trims messages older than the same window
4. expires old approval decisions and auto-allows unanswered requests
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

from ..config import get_value
from .agent_registry import AgentStatus
from .tracker import AgentTracker

logger = logging.getLogger(__name__)

# Defaults (overridden by config.yaml -> cleanup section)
DEFAULT_INTERVAL_SECONDS = 60


def stale_error_message(stale_seconds: float) -> str:
    minutes = max(1, int(stale_seconds // 60))
    return f"Agent appears stale (no activity for {minutes}+ minutes)"


@dataclass
class SweepResult:
    """Result of a single cleanup pass."""

    checked: int = 0
    stale: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    messages_trimmed: int = 0
    approvals_expired: int = 0
    approvals_auto_allowed: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.stale or self.removed or self.messages_trimmed
            or self.approvals_auto_allowed
        )


class CleanupSweeper:
    """Background service that runs sweep_once() on an interval."""

    def __init__(self, tracker: AgentTracker, config: dict) -> None:
        self._tracker = tracker
        self._enabled = get_value(config, "cleanup", "enabled", default=True)
        self._interval = get_value(
            config, "cleanup", "interval_seconds", default=DEFAULT_INTERVAL_SECONDS
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweeper background thread."""
        if not self._enabled:
            logger.info("Cleanup sweeper disabled by config")
            return

        if self.running:
            logger.warning("Cleanup sweeper already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, daemon=True, name="CleanupSweeper"
        )
        self._thread.start()
        logger.info(f"Cleanup sweeper started (interval={self._interval}s)")

    def stop(self) -> None:
        """Stop the sweeper gracefully."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Cleanup sweeper stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                result = self.sweep_once()
                if result.changed:
                    logger.info(
                        f"Cleanup pass: checked={result.checked}, stale={len(result.stale)}, "
                        f"removed={len(result.removed)}, messages_trimmed={result.messages_trimmed}, "
                        f"approvals_auto_allowed={result.approvals_auto_allowed}"
                    )
                else:
                    logger.debug(f"Cleanup pass: checked={result.checked}, no changes")
            except Exception:
                logger.exception("Cleanup pass failed")

    def sweep_once(self, now: datetime | None = None) -> SweepResult:
        """Run a single cleanup pass. Safe to call from any thread."""
        tracker = self._tracker
        result = SweepResult()

        with tracker.lock:
            now = now or tracker.now()
            stale_cutoff = now - tracker.stale_after
            retention_cutoff = now - tracker.retention
            stale_error = stale_error_message(tracker.stale_after.total_seconds())

            for record in tracker.registry.iterate():
                result.checked += 1
                if not record.is_running:
                    continue
                last_activity = record.last_activity or record.started_at
                if last_activity < stale_cutoff:
                    record.status = AgentStatus.ERRORED
                    record.error = stale_error
                    record.ended_at = now
                    record.duration_ms = int((now - record.started_at).total_seconds() * 1000)
                    tracker.registry.upsert(record.id, record)
                    result.stale.append(record.id)
                    logger.warning(f"Agent {record.id} marked stale ({record.description!r})")

            if result.stale:
                tracker.recheck_auto_reset()

            for record in tracker.registry.iterate():
                if record.is_running:
                    continue
                if record.ended_at is None or record.ended_at < retention_cutoff:
                    tracker.registry.remove(record.id)
                    result.removed.append(record.id)

            result.messages_trimmed = tracker.messages.trim_before(retention_cutoff)

        expiry = tracker.approval.expire()
        result.approvals_expired = expiry.decisions_expired
        result.approvals_auto_allowed = len(expiry.auto_allowed)

        if result.changed:
            tracker.notify()
        return result
