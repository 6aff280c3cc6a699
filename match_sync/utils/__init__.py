"""Shared utilities for match sync."""

from .config import load_stage_associations
from .logging import setup_logging

__all__ = ['load_stage_associations', 'setup_logging']
