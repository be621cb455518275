"""Live viewer for AI-agent session event logs."""

__version__ = "0.1.0"
