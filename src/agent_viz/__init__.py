"""Agent Viz - lifecycle tracker for Claude Code sub-agents."""

__version__ = "0.4.0"
