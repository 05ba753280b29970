"""nyocoder - agentic coding assistant with approval-gated tools."""

__version__ = "0.4.0"
