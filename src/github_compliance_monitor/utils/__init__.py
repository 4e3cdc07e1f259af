"""Utility modules for the GitHub Compliance Monitor."""

from .parallel import gather_bounded
from .secure_logging import get_secure_logger, setup_secure_logging

__all__ = ["gather_bounded", "get_secure_logger", "setup_secure_logging"]
