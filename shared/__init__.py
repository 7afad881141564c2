"""Shared plumbing for the EcoSync service: config, logging, retry, service base."""

from shared.config import Settings
from shared.log import get_logger

__all__ = ["Settings", "get_logger"]
