"""
Core infrastructure for reterms.

Key components:
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing utilities
"""

from reterms.core.result import Result
from reterms.core.exceptions import (
    ReTermsError,
    ValidationError,
    DimensionError,
    BlockIndexError,
    NumericalError,
    NotPositiveDefiniteError,
    ConvergenceError,
)

__all__ = [
    # Result
    "Result",
    # Exceptions
    "ReTermsError",
    "ValidationError",
    "DimensionError",
    "BlockIndexError",
    "NumericalError",
    "NotPositiveDefiniteError",
    "ConvergenceError",
]
