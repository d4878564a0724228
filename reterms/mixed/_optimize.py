"""
Bound-constrained minimization of the profiled deviance over θ.

The PLS engine only exposes an objective; this driver hands it to
scipy.optimize.minimize with the θ lower bounds (0 for diagonal entries
of λ, unbounded otherwise). Nelder-Mead and Powell are derivative-free;
L-BFGS-B is accepted and uses finite-difference gradients.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize

from reterms.core.exceptions import ValidationError

DEFAULT_METHOD = 'Nelder-Mead'
SUPPORTED_METHODS = ('Nelder-Mead', 'Powell', 'L-BFGS-B')

# Nelder-Mead evaluation cap when max_iter is not given
DEFAULT_MAX_FEV = 10000


@dataclass(frozen=True)
class ThetaOptimum:
    """Outcome of one θ optimization.

    Attributes:
        theta: Minimizing θ (clipped to the lower bounds).
        deviance: Objective at theta.
        initial_deviance: Objective at the starting θ.
        converged: Optimizer success flag.
        n_eval: Number of objective evaluations.
        n_iter: Optimizer iterations.
        method: scipy.optimize method name.
        message: Optimizer termination message.
    """
    theta: NDArray
    deviance: float
    initial_deviance: float
    converged: bool
    n_eval: int
    n_iter: int
    method: str
    message: str


def _options(method: str, tol: float, max_iter: int | None) -> dict:
    if method == 'Nelder-Mead':
        opts = {'xatol': tol, 'fatol': tol}
        if max_iter is not None:
            opts['maxiter'] = max_iter
            opts['maxfev'] = 2 * max_iter
        else:
            opts['maxfev'] = DEFAULT_MAX_FEV
    elif method == 'Powell':
        opts = {'xtol': tol, 'ftol': tol}
        if max_iter is not None:
            opts['maxiter'] = max_iter
    else:
        opts = {'ftol': tol, 'gtol': tol * 10}
        if max_iter is not None:
            opts['maxiter'] = max_iter
    return opts


def minimize_deviance(
    objective: Callable[[NDArray], float],
    theta0: NDArray,
    lower: NDArray,
    *,
    method: str = DEFAULT_METHOD,
    tol: float = 1e-8,
    max_iter: int | None = None,
) -> ThetaOptimum:
    """Minimize `objective` over θ subject to θ >= lower.

    The returned optimum is never worse than the starting point: if the
    optimizer ends above the initial deviance, θ0 is kept.

    Args:
        objective: θ -> deviance.
        theta0: Starting θ; must satisfy the bounds.
        lower: Per-parameter lower bounds (-inf for unbounded).
        method: One of SUPPORTED_METHODS.
        tol: Convergence tolerance passed to the optimizer.
        max_iter: Maximum optimizer iterations (None: optimizer default).

    Returns:
        ThetaOptimum.
    """
    if method not in SUPPORTED_METHODS:
        raise ValidationError(
            f"method: expected one of {SUPPORTED_METHODS}, got {method!r}"
        )
    theta0 = np.asarray(theta0, dtype=np.float64)
    lower = np.asarray(lower, dtype=np.float64)
    if np.any(theta0 < lower):
        raise ValidationError(
            f"theta0: {theta0.tolist()} violates lower bounds {lower.tolist()}"
        )

    n_eval = 0

    def counted(theta: NDArray) -> float:
        nonlocal n_eval
        n_eval += 1
        # Nelder-Mead and Powell clip to bounds; guard against round-off
        return objective(np.maximum(theta, lower))

    initial = counted(theta0)
    bounds = [(lo if np.isfinite(lo) else None, None) for lo in lower]

    res = minimize(
        counted,
        theta0,
        method=method,
        bounds=bounds,
        options=_options(method, tol, max_iter),
    )

    theta_hat = np.maximum(np.asarray(res.x, dtype=np.float64), lower)
    dev_hat = float(res.fun)
    if dev_hat > initial:
        theta_hat, dev_hat = theta0.copy(), initial

    return ThetaOptimum(
        theta=theta_hat,
        deviance=dev_hat,
        initial_deviance=float(initial),
        converged=bool(res.success),
        n_eval=n_eval,
        n_iter=int(getattr(res, 'nit', 0)),
        method=method,
        message=str(res.message),
    )
