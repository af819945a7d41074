"""Debounced auto-reset of the tracker once a batch of agents has finished.

The decision logic is two pure transition functions (plan_reevaluation,
plan_fire) so it can be tested without time passing. AutoResetScheduler
binds them to a single-shot timer built by an injectable factory.

The scheduler has no lock of its own. Every call, including the timer
callback's call into fire(), must be made while holding the tracker lock.
Each armed timer carries a generation number and fire() ignores callbacks
from timers that were superseded while waiting for that lock.
"""

import logging
import threading
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 60


class ResetPhase(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRING = "firing"


class ResetAction(str, Enum):
    NONE = "none"
    ARM = "arm"
    CANCEL = "cancel"
    ABORT = "abort"
    REARM = "rearm"
    RESET = "reset"


def plan_reevaluation(
    phase: ResetPhase,
    has_running: bool,
    has_agents: bool,
) -> tuple[ResetPhase, ResetAction]:
    """Transition after any event that may have finished the last running agent.

    Arming always restarts the countdown, so a stream of completions keeps
    pushing the reset out.
    """
    if has_running or not has_agents:
        action = ResetAction.CANCEL if phase == ResetPhase.ARMED else ResetAction.NONE
        return ResetPhase.IDLE, action
    return ResetPhase.ARMED, ResetAction.ARM


def plan_fire(has_running: bool, controller_active: bool) -> tuple[ResetPhase, ResetAction]:
    """Transition when the timer expires."""
    if has_running:
        # A new batch started during the delay
        return ResetPhase.IDLE, ResetAction.ABORT
    if controller_active:
        # Controller is still thinking between sub-agent calls
        return ResetPhase.ARMED, ResetAction.REARM
    return ResetPhase.IDLE, ResetAction.RESET


def _thread_timer(delay: float, callback: Callable[[int], None], generation: int):
    timer = threading.Timer(delay, callback, args=(generation,))
    timer.daemon = True
    return timer


class AutoResetScheduler:
    """Single-shot reset timer driven by the transition functions above."""

    def __init__(
        self,
        on_fire: Callable[[int], None],
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        timer_factory: Callable | None = None,
    ) -> None:
        """
        Args:
            on_fire: Called from the timer thread with the timer's generation.
                Must take the tracker lock and then call fire().
            delay_seconds: Quiet period before a reset
            timer_factory: ``(delay, callback, generation) -> timer`` where the
                timer has start() and cancel(). Defaults to threading.Timer.
        """
        self._on_fire = on_fire
        self._delay = delay_seconds
        self._timer_factory = timer_factory or _thread_timer
        self._phase = ResetPhase.IDLE
        self._timer = None
        self._generation = 0

    @property
    def phase(self) -> ResetPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def delay_seconds(self) -> float:
        return self._delay

    def reevaluate(self, has_running: bool, has_agents: bool) -> ResetAction:
        phase, action = plan_reevaluation(self._phase, has_running, has_agents)
        if action == ResetAction.ARM:
            self._arm()
            logger.info(f"[autoReset] All agents done. Resetting in {self._delay}s")
        elif action == ResetAction.CANCEL:
            self._cancel_timer()
        self._phase = phase
        return action

    def cancel(self) -> bool:
        """Disarm because new activity superseded the countdown."""
        was_armed = self._phase == ResetPhase.ARMED
        self._cancel_timer()
        self._phase = ResetPhase.IDLE
        if was_armed:
            logger.info("[autoReset] Cancelled - new agent started")
        return was_armed

    def fire(self, generation: int, has_running: bool, controller_active: bool) -> ResetAction:
        """Handle an expired timer. The caller performs the reset on RESET."""
        if generation != self._generation or self._phase != ResetPhase.ARMED:
            logger.debug(f"[autoReset] Ignoring superseded timer (generation={generation})")
            return ResetAction.NONE

        self._phase = ResetPhase.FIRING
        self._timer = None
        phase, action = plan_fire(has_running, controller_active)
        if action == ResetAction.ABORT:
            logger.info("[autoReset] Aborted - agents running again")
        elif action == ResetAction.REARM:
            logger.info("[autoReset] Controller still active, re-arming")
            self._arm()
        self._phase = phase
        return action

    def shutdown(self) -> None:
        self._cancel_timer()
        self._phase = ResetPhase.IDLE

    def _arm(self) -> None:
        self._cancel_timer()
        self._generation += 1
        self._timer = self._timer_factory(self._delay, self._on_fire, self._generation)
        self._timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
