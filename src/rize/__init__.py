"""rize: per-project Docker sandboxes for AI coding agents."""

__version__ = "0.1.0"
