"""
Structured logging for Backend ChainSage.

JSON logs with timestamp, wallet_id, event_type. Use get_logger() in all modules.
"""

from backend_chainsage.chainsage_logging.logger import bind_entity, configure_logging, get_logger

__all__ = ["bind_entity", "configure_logging", "get_logger"]
