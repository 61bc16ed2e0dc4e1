"""
Utilities package initialization.
"""
from .logger import get_logger, log_business_event, log_performance, setup_logging, sync_log_toggle

__all__ = ["get_logger", "log_business_event", "log_performance", "setup_logging", "sync_log_toggle"]
