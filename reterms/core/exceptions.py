"""
Exception hierarchy for reterms.

All exceptions inherit from ReTermsError to allow catching any
library-specific error.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class ReTermsError(Exception):
    """Base exception for all reterms errors."""
    pass


class ValidationError(ReTermsError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when array shapes don't match expected dimensions, when a
    grouping factor and its model matrix disagree on the number of
    observations, or when a θ vector has the wrong length.
    """
    pass


class BlockIndexError(ValidationError, IndexError):
    """
    Invalid index into a term or block matrix.

    Raised for out-of-range block indices, for access to the unstored
    upper triangle of a block matrix, and for invalid size() axes.
    """
    pass


class NumericalError(ReTermsError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class NotPositiveDefiniteError(NumericalError):
    """
    Matrix is not positive definite.

    Raised when a diagonal block of the blocked Cholesky factorization
    fails to factor. For θ respecting the lower bounds this signals a
    numerically degenerate model (e.g. a response fitted exactly).

    Attributes:
        matrix_name: Name/description of the problematic matrix
        block: Block index (i, i) of the failing diagonal block, if known
        min_eigenvalue: Minimum eigenvalue, if computed
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        block: tuple[int, int] | None = None,
        min_eigenvalue: float | None = None
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.block = block
        self.min_eigenvalue = min_eigenvalue


class ConvergenceError(ReTermsError):
    """
    Iterative algorithm failed to converge.

    Raised when the θ optimizer fails to meet its convergence criteria
    and the caller asked for failures to be fatal.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations', 'diverging')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold
