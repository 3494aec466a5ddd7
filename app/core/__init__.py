"""
Core Application Components

Configuration and dependencies.
"""

from app.core.config import settings

__all__ = ["settings"]
