"""Token, tool-use and duration counters for agents and the session."""

from dataclasses import asdict, dataclass


@dataclass
class AgentUsage:
    """Self-reported usage of a single agent, set once on completion."""

    total_tokens: int = 0
    tool_uses: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "AgentUsage | None":
        if not data:
            return None
        return cls(
            total_tokens=int(data.get("total_tokens") or 0),
            tool_uses=int(data.get("tool_uses") or 0),
            duration_ms=int(data.get("duration_ms") or 0),
        )


@dataclass
class SessionUsage:
    """Aggregate over every agent that finished since the last reset."""

    total_tokens: int = 0
    tool_uses: int = 0
    duration_ms: int = 0
    agent_count: int = 0

    def record_completion(self, usage: AgentUsage | None) -> None:
        """Count one finished agent and add its usage, if any."""
        self.agent_count += 1
        if usage is None:
            return
        self.total_tokens += usage.total_tokens
        self.tool_uses += usage.tool_uses
        self.duration_ms += usage.duration_ms

    def reset(self) -> None:
        self.total_tokens = 0
        self.tool_uses = 0
        self.duration_ms = 0
        self.agent_count = 0

    @property
    def usage_available(self) -> bool:
        return self.total_tokens > 0

    def to_dict(self) -> dict:
        return asdict(self)

    def load(self, data: dict) -> None:
        """Overwrite counters from a persisted dict, tolerating missing keys."""
        self.total_tokens = int(data.get("total_tokens") or 0)
        self.tool_uses = int(data.get("tool_uses") or 0)
        self.duration_ms = int(data.get("duration_ms") or 0)
        self.agent_count = int(data.get("agent_count") or 0)
