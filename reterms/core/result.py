"""
Generic result container for fitted models.

The Result class is the envelope that every fit returns. The model-specific
estimates live in the params payload; convergence details, timing and
non-fatal warnings travel alongside.

Design decisions:
    - Generic over parameter payload P for type safety
    - info dict for flexible metadata (optimizer, converged, evaluations)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True) for reproducibility
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for a model fit.

    Attributes:
        params: Model-specific estimates (θ, β, variance components, ...)
        info: Structured metadata (method, optimizer, convergence)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the engine that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=LMMParams(...),
        ...     info={'method': 'ML', 'optimizer': 'Nelder-Mead',
        ...           'converged': True, 'n_eval': 41},
        ...     timing={'total_seconds': 0.02, 'optimization': 0.015},
        ...     backend_name='cpu_blocked_pls'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)
