"""
Blocked penalized least squares (PLS) engine for linear mixed models.

For fixed θ (and hence fixed Λ_θ), the PLS problem

    minimize ‖y - Xβ - ZΛu‖² + ‖u‖²

over the spherical random effects u = Λ⁻¹b and β is solved through the
Cholesky factor of the penalized cross-product matrix

    [ Λ'Z'ZΛ + I   Λ'Z'X   Λ'Z'y ]
    [ X'ZΛ         X'X     X'y   ]
    [ y'ZΛ         y'X     y'y   ]

held as a BlockMatrix with one block row per random-effects term, one
for X and one for y. The cross-products A are assembled once; for every
trial θ the workspace L is re-derived from A (scaled by Λ, identity added
on the random-effects diagonal) and factored in place with a
right-looking blocked Cholesky. The factored (y, y) block holds ρ, the
square root of the penalized residual sum of squares, so the profiled
deviance needs no separate solve.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48. Section 3.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
import scipy.linalg as sla
from numpy.typing import ArrayLike, NDArray

from reterms.core.compute.timing import Timer
from reterms.core.exceptions import ConvergenceError, DimensionError, ValidationError
from reterms.core.validation import (
    check_1d, check_2d, check_array, check_consistent_length, check_finite,
)
from reterms.mixed._blocks import BlockMatrix, SPARSE_DENSITY_THRESHOLD
from reterms.mixed._deviance import (
    deviance_from_factor, logdet_fixed, logdet_random, penalized_rss,
)
from reterms.mixed._optimize import DEFAULT_METHOD, ThetaOptimum, minimize_deviance
from reterms.mixed._reterm import ReTerm

UNFIT = 'unfit'
EVALUATED = 'evaluated'
FIT = 'fit'


@dataclass(frozen=True)
class PLSResult:
    """Estimates read off the factored system at the current θ.

    Attributes:
        beta: Fixed effects estimates (p,).
        u: Spherical random effects, one (n_levels, k) array per term.
        b: Conditional modes b = Λu, one (n_levels, k) array per term.
        sigma_sq: Profiled residual variance.
        pwrss: Penalized residual sum of squares ρ².
        fitted: Xβ + Zb (n,).
        residuals: y - fitted (n,).
    """
    beta: NDArray
    u: tuple[NDArray, ...]
    b: tuple[NDArray, ...]
    sigma_sq: float
    pwrss: float
    fitted: NDArray
    residuals: NDArray


class LMM:
    """A linear mixed model with a blocked PLS objective.

    Terms are processed in the order given: random-effects terms first,
    then the fixed effects block, then the response block.

    Attributes:
        terms: Random-effects terms (their λ is mutated by set_theta).
        X: Fixed effects design matrix (n, p).
        y: Response vector (n,).
        reml: Whether objective() is the REML criterion.
        A: Cross-product BlockMatrix, never mutated after construction.
        L: Factorization workspace, re-derived from A on every θ update.
        state: 'unfit', 'evaluated' or 'fit'.
        optimum: ThetaOptimum after fit(), else None.
    """

    def __init__(
        self,
        terms: list[ReTerm],
        X: ArrayLike,
        y: ArrayLike,
        *,
        reml: bool = False,
        sparse_threshold: float = SPARSE_DENSITY_THRESHOLD,
    ):
        terms = list(terms)
        if not terms:
            raise ValidationError("terms: at least one random-effects term required")

        y = check_array(y, 'y')
        check_1d(y, 'y')
        check_finite(y, 'y')
        X = check_array(X, 'X')
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        check_2d(X, 'X')
        check_finite(X, 'X')
        check_consistent_length(X, y, names=('X', 'y'))
        if X.shape[1] == 0:
            raise DimensionError("X: needs at least one column")
        for term in terms:
            if term.n != y.shape[0]:
                raise DimensionError(
                    f"term '{term.name}': has {term.n} observations, expected {y.shape[0]}"
                )

        self.terms = terms
        self.X = X
        self.y = y
        self.reml = bool(reml)

        self.A = BlockMatrix.from_terms(terms, X, y, sparse_threshold=sparse_threshold)
        self.L = self.A.copy()

        offsets = np.cumsum([0] + [t.n_theta for t in terms])
        self._theta_slices = [slice(offsets[i], offsets[i + 1]) for i in range(len(terms))]
        self._theta = np.concatenate([t.get_theta() for t in terms])
        self._factored = False

        self.state = UNFIT
        self.optimum: ThetaOptimum | None = None

    # --- sizes ---

    def __len__(self) -> int:
        return len(self.terms)

    def size(self) -> int:
        """Number of random-effects terms."""
        return len(self.terms)

    @property
    def n(self) -> int:
        return self.X.shape[0]

    @property
    def p(self) -> int:
        return self.X.shape[1]

    @property
    def n_theta(self) -> int:
        return self._theta.shape[0]

    # --- θ ---

    def lower_bound(self) -> NDArray:
        return np.concatenate([t.lower_bound() for t in self.terms])

    def get_theta(self) -> NDArray:
        return self._theta.copy()

    @property
    def theta(self) -> NDArray:
        return self.get_theta()

    @theta.setter
    def theta(self, value: ArrayLike) -> None:
        self.set_theta(value)

    def set_theta(self, theta: ArrayLike) -> None:
        """Install θ in every term's λ, re-derive L from A and factor it."""
        theta = np.asarray(theta, dtype=np.float64).ravel()
        if theta.shape[0] != self.n_theta:
            raise DimensionError(
                f"theta: expected length {self.n_theta}, got {theta.shape[0]}"
            )
        for term, sl in zip(self.terms, self._theta_slices):
            term.set_theta(theta[sl])
        self._theta = theta.copy()
        self.state = EVALUATED

        self._factored = False
        self._update_l()
        self._factorize()
        self._factored = True

    def _update_l(self) -> None:
        n_re = len(self.terms)
        lams = [t.lam.matrix for t in self.terms] + [None, None]
        A, L = self.A, self.L
        for i in range(A.nblocks):
            for j in range(i + 1):
                blk = L[i, j]
                blk.copy_from(A[i, j])
                blk.scale(lams[i], lams[j])
                if i == j and i < n_re:
                    blk.add_identity()

    def _factorize(self) -> None:
        L = self.L
        nb = L.nblocks
        for j in range(nb):
            diag = L[j, j]
            diag.cholesky(name=f"L[{L.names[j]}]", index=(j, j))
            for i in range(j + 1, nb):
                L[i, j].rdiv_lower_transpose(diag)
            for i in range(j + 1, nb):
                for k in range(j + 1, i + 1):
                    L[i, k].subtract_product(L[i, j], L[k, j])

    # --- objective ---

    def objective(self, theta: ArrayLike | None = None) -> float:
        """Profiled deviance at θ (or at the last-set θ when omitted).

        Raises:
            DimensionError: If θ has the wrong length.
            NotPositiveDefiniteError: If a diagonal block fails to factor.
                L is then rebuilt from A on the next call.
        """
        if theta is not None:
            self.set_theta(theta)
        elif not self._factored:
            self.set_theta(self._theta)
        return deviance_from_factor(self.L, len(self.terms), self.n, self.p, self.reml)

    def _ensure_factored(self) -> None:
        if not self._factored:
            self.set_theta(self._theta)

    @property
    def pwrss(self) -> float:
        self._ensure_factored()
        return penalized_rss(self.L)

    def logdet(self) -> float:
        """log|L_θ|², the random-effects log determinant."""
        self._ensure_factored()
        return logdet_random(self.L, len(self.terms))

    def logdet_fixed(self) -> float:
        self._ensure_factored()
        return logdet_fixed(self.L, len(self.terms))

    # --- optimization ---

    def fit(
        self,
        *,
        method: str = DEFAULT_METHOD,
        tol: float = 1e-8,
        max_iter: int | None = None,
        raise_on_failure: bool = False,
        timer: Timer | None = None,
    ) -> 'LMM':
        """Minimize the objective over θ from the current θ.

        Args:
            method: 'Nelder-Mead' (default), 'Powell' or 'L-BFGS-B'.
            tol: Optimizer convergence tolerance.
            max_iter: Maximum optimizer iterations (None: optimizer default).
            raise_on_failure: Raise ConvergenceError instead of warning.
            timer: If given, every objective evaluation is timed in its
                'objective' section.

        Returns:
            self, in the 'fit' state with L factored at the optimum.
        """
        objective = self.objective
        if timer is not None:
            def objective(theta):
                with timer.section('objective'):
                    return self.objective(theta)

        opt = minimize_deviance(
            objective,
            self.get_theta(),
            self.lower_bound(),
            method=method,
            tol=tol,
            max_iter=max_iter,
        )
        self.objective(opt.theta)
        self.optimum = opt

        if not opt.converged:
            if raise_on_failure:
                raise ConvergenceError(
                    f"LMM optimizer did not converge: {opt.message}",
                    iterations=opt.n_iter,
                    reason=opt.message,
                    threshold=tol,
                )
            warnings.warn(
                f"LMM optimizer did not converge after {opt.n_iter} iterations. "
                f"Message: {opt.message}",
                RuntimeWarning,
                stacklevel=2,
            )

        self.state = FIT
        return self

    # --- estimates at the current θ ---

    def fixef(self) -> NDArray:
        """β̂ = R_X⁻ᵀ (L_yX)'."""
        self._ensure_factored()
        n_re = len(self.terms)
        RX = self.L[n_re, n_re].data
        l_yx = self.L[n_re + 1, n_re].data.ravel()
        return sla.solve_triangular(RX, l_yx, lower=True, trans='T')

    def spherical_ranef(self, beta: NDArray | None = None) -> list[NDArray]:
        """u solving L_θ' u = L_yZ' - L_XZ' β, one (n_levels, k) array per term."""
        self._ensure_factored()
        if beta is None:
            beta = self.fixef()
        L = self.L
        n_re = len(self.terms)
        rhs = [
            L[n_re + 1, i].data.ravel() - L[n_re, i].data.T @ beta
            for i in range(n_re)
        ]
        u: list[NDArray | None] = [None] * n_re
        for i in reversed(range(n_re)):
            v = rhs[i]
            for k in range(i + 1, n_re):
                v = v - L[k, i].transpose_matvec(u[k])
            u[i] = L[i, i].solve_transpose(v)
        return [ui.reshape(t.n_levels, t.k) for ui, t in zip(u, self.terms)]

    def ranef(self, u: list[NDArray] | None = None) -> list[NDArray]:
        """Conditional modes b = Λu, one (n_levels, k) array per term."""
        if u is None:
            u = self.spherical_ranef()
        return [ui @ t.lam.matrix.T for ui, t in zip(u, self.terms)]

    @property
    def sigma_sq(self) -> float:
        df = self.n - self.p if self.reml else self.n
        return self.pwrss / df

    def vcov(self) -> NDArray:
        """Var(β̂) = σ² (R_X R_X')⁻¹."""
        self._ensure_factored()
        n_re = len(self.terms)
        RX = self.L[n_re, n_re].data
        RX_inv = sla.solve_triangular(RX, np.eye(self.p), lower=True)
        return self.sigma_sq * (RX_inv.T @ RX_inv)

    def solve(self) -> PLSResult:
        """All PLS estimates at the current θ."""
        beta = self.fixef()
        u = self.spherical_ranef(beta)
        b = self.ranef(u)
        fitted = self.X @ beta
        for term, bi in zip(self.terms, b):
            fitted = fitted + term.apply(bi)
        return PLSResult(
            beta=beta,
            u=tuple(u),
            b=tuple(b),
            sigma_sq=self.sigma_sq,
            pwrss=self.pwrss,
            fitted=fitted,
            residuals=self.y - fitted,
        )

    def __repr__(self) -> str:
        names = ', '.join(t.name for t in self.terms)
        return (f"LMM(n={self.n}, p={self.p}, terms=[{names}], "
                f"reml={self.reml}, state={self.state!r})")
