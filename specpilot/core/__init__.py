# specpilot/core/__init__.py
"""
Core utilities - configuration, logging, exceptions.
"""
from .config import settings
from .logging import log, log_section
from .exceptions import SpecPilotError

__all__ = ["settings", "log", "log_section", "SpecPilotError"]
