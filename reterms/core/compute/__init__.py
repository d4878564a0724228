"""
Shared compute infrastructure for reterms.

Submodules:
    timing: Execution timing utilities
"""

from reterms.core.compute.timing import Timer

__all__ = [
    "Timer",
]
