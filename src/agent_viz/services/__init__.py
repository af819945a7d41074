"""Services package for Agent Viz."""
