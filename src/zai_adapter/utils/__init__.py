"""Utility functions package."""

from zai_adapter.utils.logger import configure_logging, get_logger, mask_token
from zai_adapter.utils.token_counter import get_counter

__all__ = ["configure_logging", "get_logger", "mask_token", "get_counter"]
