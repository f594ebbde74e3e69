"""Model relay: task-aware routing across hosted LLM and image vendors."""

__version__ = "0.1.0"
