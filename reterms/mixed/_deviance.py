"""
Profiled deviance for LMMs from a blocked Cholesky factor.

The profiled deviance is the objective function that the outer optimizer
minimizes over θ. β and σ² are profiled out analytically, leaving a
function of θ only.

    ML:   d(θ) = log|L_θ|² + n × [1 + log(2π × ρ²/n)]

    REML: d(θ) = log|L_θ|² + log|R_X|² + (n-p) × [1 + log(2π × ρ²/(n-p))]

where
    L_θ   random-effects diagonal blocks of the factor of Λ'Z'ZΛ + I
    R_X   the factored fixed-effects diagonal block
    ρ²    penalized residual sum of squares, the square of the single
          entry of the factored response block

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), Sections 3.4-3.5.
"""

from __future__ import annotations

import numpy as np

from reterms.core.exceptions import ValidationError
from reterms.mixed._blocks import BlockMatrix


def logdet_random(L: BlockMatrix, n_re: int) -> float:
    """log|L_θ|² summed over the random-effects diagonal blocks."""
    return float(sum(L[i, i].logdet() for i in range(n_re)))


def logdet_fixed(L: BlockMatrix, n_re: int) -> float:
    """log|R_X|² from the factored fixed-effects diagonal block."""
    return L[n_re, n_re].logdet()


def penalized_rss(L: BlockMatrix) -> float:
    """ρ², the penalized residual sum of squares."""
    last = L.nblocks - 1
    return float(L[last, last].data[0, 0] ** 2)


def profiled_deviance(
    logdet_re: float,
    pwrss: float,
    n: int,
    p: int,
    reml: bool = False,
    logdet_x: float = 0.0,
) -> float:
    """Profiled ML or REML deviance from its factor summaries.

    Args:
        logdet_re: log|L_θ|².
        pwrss: Penalized residual sum of squares ρ².
        n: Number of observations.
        p: Number of fixed-effects columns.
        reml: If True, REML deviance; otherwise ML.
        logdet_x: log|R_X|², used only for REML.

    Returns:
        Profiled deviance value (scalar to minimize).
    """
    df = n - p if reml else n
    if df <= 0:
        raise ValidationError(
            f"n - p must be positive for REML, got n={n}, p={p}"
        )
    dev = logdet_re + df * (1.0 + np.log(2.0 * np.pi * pwrss / df))
    if reml:
        dev += logdet_x
    return float(dev)


def deviance_from_factor(L: BlockMatrix, n_re: int, n: int, p: int, reml: bool) -> float:
    """Profiled deviance read off a factored BlockMatrix."""
    return profiled_deviance(
        logdet_random(L, n_re),
        penalized_rss(L),
        n,
        p,
        reml=reml,
        logdet_x=logdet_fixed(L, n_re) if reml else 0.0,
    )
