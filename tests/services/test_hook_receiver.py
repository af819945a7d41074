"""Tests for hook event processing."""

from datetime import datetime, timezone

import pytest

from agent_viz.services.agent_registry import (
    CONTROLLER_ID,
    RESTARTED_ERROR,
    AgentRecord,
    AgentStatus,
)
from agent_viz.services.auto_reset import ResetPhase
from agent_viz.services.event_schemas import CompletionSignal, HookEvent
from agent_viz.services.hook_receiver import (
    process_completion,
    process_heartbeat,
    process_hook_event,
)
from agent_viz.services.output_parsing import make_key

USAGE_OUTPUT = (
    "Research complete.\n"
    "<usage>total_tokens: 500\ntool_uses: 3\nduration_ms: 4000</usage>"
)

LAUNCH_OUTPUT = (
    "Async agent launched successfully.\n"
    "agentId: a1\n"
    "output_file: /tmp/tasks/a1.output"
)


def _pre(tool_use_id="toolu_1", description="Research", session_id="s1", **tool_input):
    return HookEvent(
        hook_phase="pre",
        session_id=session_id,
        tool_name="Task",
        tool_use_id=tool_use_id,
        tool_input={"description": description, "prompt": "Find things", **tool_input},
    )


def _post(tool_use_id="toolu_1", description="Research", session_id="s1",
          output=USAGE_OUTPUT, is_error=None, **tool_input):
    return HookEvent(
        hook_phase="post",
        session_id=session_id,
        tool_name="Task",
        tool_use_id=tool_use_id,
        tool_input={"description": description, **tool_input},
        tool_output=output,
        is_error=is_error,
    )


def _task_output(task_id, output, session_id="s1"):
    return HookEvent(
        hook_phase="post",
        session_id=session_id,
        tool_name="TaskOutput",
        tool_input={"task_id": task_id},
        tool_output=output,
    )


class TestPreAndPost:
    """Tests for the pre/post lifecycle of a foreground agent."""

    def test_pre_creates_running_record(self, tracker, broadcaster):
        result = process_hook_event(tracker, _pre(subagent_type="Explore"))

        assert result.success
        assert result.agent_id == "toolu_1"
        record = tracker.registry.get("toolu_1")
        assert record.status == AgentStatus.RUNNING
        assert record.parent_id == CONTROLLER_ID
        assert record.subagent_type == "Explore"
        assert record.prompt == "Find things"

        messages = tracker.messages.messages()
        assert [(m.from_id, m.to_id, m.type) for m in messages] == [
            (CONTROLLER_ID, "toolu_1", "Prompt"),
        ]
        broadcaster.broadcast.assert_called()

    def test_pre_then_post_completes_once(self, tracker, clock):
        process_hook_event(tracker, _pre())
        clock.advance(5)
        result = process_hook_event(tracker, _post())

        assert result.status == "completed"
        assert result.matched is True
        record = tracker.registry.get("toolu_1")
        assert record.duration_ms == 5000
        assert record.usage.total_tokens == 500
        assert record.output_preview.startswith("Research complete.")
        assert record.error is None

        responses = [m for m in tracker.messages.messages() if m.type == "Response"]
        assert len(responses) == 1
        assert responses[0].to_id == CONTROLLER_ID
        assert tracker.registry.usage.agent_count == 1
        assert tracker.registry.usage.total_tokens == 500

    def test_duplicate_post_is_ignored(self, tracker, clock):
        process_hook_event(tracker, _pre())
        clock.advance(5)
        process_hook_event(tracker, _post())
        clock.advance(5)
        result = process_hook_event(tracker, _post(output="error: late"))

        assert result.status == "completed"
        assert tracker.registry.get("toolu_1").duration_ms == 5000
        assert tracker.registry.usage.agent_count == 1
        assert len(tracker.messages) == 2

    def test_short_wall_clock_uses_reported_duration(self, tracker, clock):
        process_hook_event(tracker, _pre())
        clock.advance(0.2)
        process_hook_event(tracker, _post())

        assert tracker.registry.get("toolu_1").duration_ms == 4000

    def test_error_output(self, tracker):
        process_hook_event(tracker, _pre())
        process_hook_event(tracker, _post(output="x" * 400, is_error=True))

        record = tracker.registry.get("toolu_1")
        assert record.status == AgentStatus.ERRORED
        assert record.error == "x" * 300

    def test_error_sniffed_from_output(self, tracker):
        process_hook_event(tracker, _pre())
        process_hook_event(tracker, _post(output="Traceback (most recent call last): ..."))
        assert tracker.registry.get("toolu_1").status == AgentStatus.ERRORED

    def test_rekey_from_derived_key(self, tracker):
        process_hook_event(tracker, _pre(tool_use_id=None))
        derived = make_key("s1", "Research")
        assert tracker.registry.get(derived) is not None

        result = process_hook_event(tracker, _post(tool_use_id="toolu_2"))

        assert result.agent_id == "toolu_2"
        assert tracker.registry.get(derived) is None
        assert tracker.registry.get("toolu_2").status == AgentStatus.COMPLETED
        assert len(tracker.registry) == 1

    def test_post_without_pre_creates_placeholder(self, tracker):
        result = process_hook_event(tracker, _post(tool_use_id="toolu_x", description="Orphan"))

        assert result.matched is False
        record = tracker.registry.get("toolu_x")
        assert record.status == AgentStatus.COMPLETED
        assert record.description == "Orphan"

    def test_restart_casualty_is_revived_with_real_outcome(self, tracker, clock):
        tracker.registry.load([AgentRecord(
            id="toolu_1",
            session_id="s1",
            description="Research",
            started_at=clock(),
            last_activity=clock(),
            status=AgentStatus.ERRORED,
            error=RESTARTED_ERROR,
            ended_at=clock(),
        )])
        clock.advance(10)
        process_hook_event(tracker, _post())

        record = tracker.registry.get("toolu_1")
        assert record.status == AgentStatus.COMPLETED
        assert record.error is None
        assert record.duration_ms == 10000

    def test_nested_agent_parent(self, tracker, clock):
        process_hook_event(tracker, _pre(tool_use_id="toolu_a", description="Outer"))
        clock.advance(1)
        process_hook_event(tracker, _pre(tool_use_id="toolu_b", description="Inner"))

        assert tracker.registry.get("toolu_b").parent_id == "toolu_a"
        clock.advance(1)
        process_hook_event(tracker, _post(tool_use_id="toolu_b", description="Inner"))

        edges = [(m.from_id, m.to_id, m.type) for m in tracker.messages.messages()]
        assert edges == [
            (CONTROLLER_ID, "toolu_a", "Prompt"),
            ("toolu_a", "toolu_b", "TaskCreate"),
            ("toolu_b", "toolu_a", "Response"),
        ]

    def test_untracked_tool_only_counts_as_activity(self, tracker, broadcaster):
        event = HookEvent(hook_phase="pre", session_id="s1", tool_name="Bash")
        result = process_hook_event(tracker, event)

        assert result.success
        assert len(tracker.registry) == 0
        assert tracker.last_event_time is not None
        broadcaster.broadcast.assert_called_once()


class TestBackgroundAgents:
    """Tests for background launch and TaskOutput completion."""

    def test_launch_then_task_output(self, tracker, clock):
        process_hook_event(tracker, _pre(tool_use_id="toolu_bg", run_in_background=True))
        result = process_hook_event(
            tracker, _post(tool_use_id="toolu_bg", output=LAUNCH_OUTPUT, run_in_background=True)
        )

        record = tracker.registry.get("toolu_bg")
        assert result.status == "running"
        assert record.correlation_id == "a1"
        assert record.output_file == "/tmp/tasks/a1.output"
        assert tracker.registry.usage.agent_count == 0

        clock.advance(30)
        result = process_hook_event(
            tracker, _task_output("a1", "Report\n<usage>duration_ms: 12000</usage>")
        )

        assert result.matched
        assert record.status == AgentStatus.COMPLETED
        assert record.duration_ms == 12000
        assert tracker.registry.usage.agent_count == 1

    def test_task_output_falls_back_to_oldest_in_session(self, tracker, clock):
        process_hook_event(tracker, _pre(tool_use_id="bg1", description="One", run_in_background=True))
        clock.advance(1)
        process_hook_event(tracker, _pre(tool_use_id="bg2", description="Two", run_in_background=True))

        process_hook_event(tracker, _task_output("unknown", "Done"))

        assert tracker.registry.get("bg1").status == AgentStatus.COMPLETED
        assert tracker.registry.get("bg2").status == AgentStatus.RUNNING

    def test_task_output_without_background_agent(self, tracker):
        result = process_hook_event(tracker, _task_output("a1", "Done"))
        assert result.success
        assert result.matched is False

    def test_task_output_for_finished_agent_is_unmatched(self, tracker, clock):
        process_hook_event(tracker, _pre(tool_use_id="toolu_bg", run_in_background=True))
        process_hook_event(
            tracker, _post(tool_use_id="toolu_bg", output=LAUNCH_OUTPUT, run_in_background=True)
        )
        process_hook_event(tracker, _task_output("a1", "Report"))
        clock.advance(5)

        result = process_hook_event(tracker, _task_output("a1", "Report again"))

        record = tracker.registry.get("toolu_bg")
        assert result.matched is False
        assert record.status == AgentStatus.COMPLETED
        assert tracker.registry.usage.agent_count == 1

    def test_task_output_pre_is_ignored(self, tracker):
        process_hook_event(tracker, _pre(tool_use_id="bg1", run_in_background=True))
        event = HookEvent(hook_phase="pre", session_id="s1", tool_name="TaskOutput",
                          tool_input={"task_id": "bg1"})
        process_hook_event(tracker, event)
        assert tracker.registry.get("bg1").is_running


class TestCompletion:
    """Tests for the out-of-band completion call."""

    def test_no_match_creates_nothing(self, tracker):
        result = process_completion(tracker, CompletionSignal(description="x", agent_id="zzz"))

        assert result.success
        assert result.matched is False
        assert len(tracker.registry) == 0

    def test_match_by_agent_id(self, tracker, clock):
        process_hook_event(tracker, _pre(tool_use_id="toolu_bg", run_in_background=True))
        process_hook_event(
            tracker, _post(tool_use_id="toolu_bg", output=LAUNCH_OUTPUT, run_in_background=True)
        )
        clock.advance(20)

        result = process_completion(tracker, CompletionSignal(
            agent_id="a1", result="All done", tokens=1200, tool_uses=7,
        ))

        record = tracker.registry.get("toolu_bg")
        assert result.matched
        assert record.status == AgentStatus.COMPLETED
        assert record.duration_ms == 20000
        assert record.usage.total_tokens == 1200
        assert record.usage.tool_uses == 7
        assert record.output_preview == "All done"

    def test_match_by_tool_use_id_with_error(self, tracker):
        process_hook_event(tracker, _pre())
        process_completion(tracker, CompletionSignal(
            tool_use_id="toolu_1", result="crashed", is_error=True, duration_ms=900,
        ))

        record = tracker.registry.get("toolu_1")
        assert record.status == AgentStatus.ERRORED
        assert record.error == "crashed"
        assert record.duration_ms == 900

    def test_finished_agent_not_matched(self, tracker):
        process_hook_event(tracker, _pre())
        process_hook_event(tracker, _post())
        result = process_completion(tracker, CompletionSignal(tool_use_id="toolu_1"))
        assert result.matched is False
        assert tracker.registry.usage.agent_count == 1


class TestAutoResetFlow:
    """Tests for batch-finished auto-reset driven by hook events."""

    def _finish_batch(self, tracker, clock):
        process_hook_event(tracker, _pre())
        clock.advance(5)
        process_hook_event(tracker, _post())

    def test_reset_after_quiet_period(self, tracker, clock, timers):
        self._finish_batch(tracker, clock)
        assert tracker.scheduler.phase == ResetPhase.ARMED

        clock.advance(61)
        timers.latest.fire()

        assert len(tracker.registry) == 0
        assert len(tracker.messages) == 0
        assert tracker.registry.usage.agent_count == 0

    def test_heartbeat_defers_reset(self, tracker, clock, timers):
        self._finish_batch(tracker, clock)
        clock.advance(50)
        process_heartbeat(tracker)
        clock.advance(11)
        timers.latest.fire()

        assert len(tracker.registry) == 1
        assert tracker.scheduler.phase == ResetPhase.ARMED

        clock.advance(61)
        timers.latest.fire()
        assert len(tracker.registry) == 0

    def test_new_agent_cancels_countdown(self, tracker, clock, timers):
        self._finish_batch(tracker, clock)
        armed = timers.latest
        clock.advance(10)
        process_hook_event(tracker, _pre(tool_use_id="toolu_2", description="Next"))

        assert armed.cancelled
        assert tracker.scheduler.phase == ResetPhase.IDLE
        armed.fire()
        assert len(tracker.registry) == 2

    def test_new_batch_after_grace_clears_previous(self, tracker, clock):
        self._finish_batch(tracker, clock)
        clock.advance(61)
        process_hook_event(tracker, _pre(tool_use_id="toolu_2", description="Next"))

        assert tracker.registry.keys() == ["toolu_2"]

    @pytest.mark.parametrize("gap", [0, 30, 59])
    def test_spawn_within_grace_keeps_previous(self, tracker, clock, gap):
        self._finish_batch(tracker, clock)
        clock.advance(gap)
        process_hook_event(tracker, _pre(tool_use_id="toolu_2", description="Next"))

        assert tracker.registry.keys() == ["toolu_1", "toolu_2"]
