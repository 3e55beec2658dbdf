"""
Core module for Harmony Flasher.

This module provides the single source of truth for:
- Result objects (results.py)
- Session workflows (actions.py)

The CLI calls into core.actions rather than driving the protocol itself.
The protocol layer returns OperationResult, so actions is not imported here.
"""

from .results import OperationResult

__all__ = [
    "OperationResult",
]
