"""Utility modules."""

from model_relay.utils.logging import audit_logger, get_logger, setup_logging

__all__ = [
    "audit_logger",
    "get_logger",
    "setup_logging",
]
