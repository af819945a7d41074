"""Tests for usage counters."""

from agent_viz.services.usage import AgentUsage, SessionUsage


class TestAgentUsage:

    def test_from_dict(self):
        usage = AgentUsage.from_dict({"total_tokens": 10, "tool_uses": 2, "duration_ms": 300})
        assert usage == AgentUsage(10, 2, 300)

    def test_from_empty_dict_is_none(self):
        assert AgentUsage.from_dict(None) is None
        assert AgentUsage.from_dict({}) is None


class TestSessionUsage:
    """Tests for the session aggregate."""

    def test_record_completion_accumulates(self):
        session = SessionUsage()
        session.record_completion(AgentUsage(100, 1, 1000))
        session.record_completion(AgentUsage(50, 2, 500))

        assert session.total_tokens == 150
        assert session.tool_uses == 3
        assert session.duration_ms == 1500
        assert session.agent_count == 2

    def test_completion_without_usage_still_counts_agent(self):
        session = SessionUsage()
        session.record_completion(None)

        assert session.agent_count == 1
        assert session.total_tokens == 0
        assert session.usage_available is False

    def test_usage_available_needs_tokens(self):
        session = SessionUsage()
        session.record_completion(AgentUsage(0, 5, 100))
        assert session.usage_available is False
        session.record_completion(AgentUsage(1, 0, 0))
        assert session.usage_available is True

    def test_reset(self):
        session = SessionUsage(total_tokens=5, tool_uses=1, duration_ms=9, agent_count=1)
        session.reset()
        assert session.to_dict() == {
            "total_tokens": 0, "tool_uses": 0, "duration_ms": 0, "agent_count": 0,
        }

    def test_load_tolerates_missing_keys(self):
        session = SessionUsage()
        session.load({"total_tokens": 7})
        assert session.total_tokens == 7
        assert session.agent_count == 0
