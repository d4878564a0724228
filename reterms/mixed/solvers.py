"""
Solver dispatch for linear mixed models.

Public API:
    lmm() : fit a linear mixed model (ML or REML)
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike
from scipy import stats

from reterms.core.exceptions import DimensionError
from reterms.core.result import Result
from reterms.core.compute.timing import Timer

from reterms.mixed._blocks import SPARSE_DENSITY_THRESHOLD
from reterms.mixed._common import LMMParams, VarCompSummary
from reterms.mixed._optimize import DEFAULT_METHOD
from reterms.mixed._pls import LMM, PLSResult
from reterms.mixed._random_effects import build_terms
from reterms.mixed.design import MixedDesign
from reterms.mixed.solution import LMMSolution


def lmm(
    y: ArrayLike,
    X: ArrayLike | None,
    groups: dict[str, ArrayLike],
    *,
    random_effects: dict[str, list[str]] | None = None,
    random_data: dict[str, ArrayLike] | None = None,
    uncorrelated: tuple[str, ...] = (),
    reml: bool = False,
    method: str = DEFAULT_METHOD,
    tol: float = 1e-8,
    max_iter: int | None = None,
    sparse_threshold: float = SPARSE_DENSITY_THRESHOLD,
    coef_names: tuple[str, ...] | None = None,
) -> LMMSolution:
    """Fit a linear mixed model.

    Estimates fixed effects β, random effects variance components,
    and conditional modes (BLUPs) of random effects by minimizing the
    profiled ML (or REML) deviance of the blocked PLS engine over θ.

    Args:
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p), or None for an
            intercept-only model. Include an intercept column if desired.
        groups: Dict mapping grouping factor names to group label arrays.
            Example: {'subject': subject_ids}. Terms are factored in
            this order.
        random_effects: Optional dict mapping group names to lists of
            random effect terms. Default: random intercept per group.
            Example: {'subject': ['1', 'days']} for (1 + days | subject).
        random_data: Optional dict mapping variable names to data arrays
            for random slope variables.
        uncorrelated: Group names whose random effects are independent
            (diagonal λ), e.g. (1 + days || subject).
        reml: If True, use REML estimation. If False (default), use ML.
        method: Bound-constrained optimizer ('Nelder-Mead', 'Powell'
            or 'L-BFGS-B').
        tol: Convergence tolerance for the optimizer. Default 1e-8.
        max_iter: Maximum optimizer iterations (None: optimizer default).
        sparse_threshold: Density at or below which cross products of two
            grouping factors are stored sparse.
        coef_names: Optional names of the columns of X.

    Returns:
        LMMSolution with fixed effects, random effects, variance components,
        model fit statistics, and summary().

    Examples:
        # Random intercept model
        >>> result = lmm(y, X, groups={'subject': subject_ids})

        # Random intercept + slope
        >>> result = lmm(y, X, groups={'subject': subject_ids},
        ...              random_effects={'subject': ['1', 'days']},
        ...              random_data={'days': days})

        # Crossed random effects
        >>> result = lmm(y, X, groups={'subject': subj, 'item': item})
    """
    timer = Timer()
    timer.start()

    design = MixedDesign.validate(y, X, groups, random_effects, random_data)

    if coef_names is None:
        coef_names = tuple(_make_coef_names(design.p))
    if len(coef_names) != design.p:
        raise DimensionError(
            f"coef_names: expected {design.p} names, got {len(coef_names)}"
        )

    with timer.section('setup'):
        terms = build_terms(
            design.groups, design.random_effects, design.random_data,
            design.n, uncorrelated=uncorrelated,
        )
        model = LMM(terms, design.X, design.y, reml=reml,
                    sparse_threshold=sparse_threshold)

    with timer.section('optimization'):
        model.fit(method=method, tol=tol, max_iter=max_iter, timer=timer)

    with timer.section('final_solve'):
        pls = model.solve()

    with timer.section('estimates'):
        params = _assemble_params(model, pls, tuple(coef_names))

    timer.stop()

    opt = model.optimum
    warn_list = []
    if not opt.converged:
        warn_list.append(f"Optimizer did not converge: {opt.message}")

    result = Result(
        params=params,
        info={
            'method': 'REML' if reml else 'ML',
            'optimizer': opt.method,
            'converged': opt.converged,
            'n_eval': opt.n_eval,
            'n_iter': opt.n_iter,
            'objective_calls': timer.counts().get('objective', 0),
            'deviance': opt.deviance,
            'initial_deviance': opt.initial_deviance,
            'block_kinds': model.A.kinds(),
        },
        timing=timer.result(),
        backend_name='cpu_blocked_pls',
        warnings=tuple(warn_list),
    )

    return LMMSolution(_result=result)


# =====================================================================
# Helpers
# =====================================================================

def _assemble_params(model: LMM, pls: PLSResult, coef_names: tuple[str, ...]) -> LMMParams:
    n, p = model.n, model.p
    deviance = model.objective()

    se = np.sqrt(np.maximum(np.diag(model.vcov()), 0.0))
    df_resid = n - p
    with np.errstate(divide='ignore', invalid='ignore'):
        t_vals = pls.beta / se
    p_vals = 2.0 * stats.t.sf(np.abs(t_vals), df_resid)

    n_params = p + model.n_theta + 1
    ll = -0.5 * deviance
    aic = deviance + 2.0 * n_params
    bic = deviance + np.log(n) * n_params

    return LMMParams(
        coefficients=pls.beta,
        coefficient_names=coef_names,
        se=se,
        df_residual=df_resid,
        t_values=t_vals,
        p_values=p_vals,
        var_components=tuple(_extract_var_components(model, pls.sigma_sq)),
        residual_variance=pls.sigma_sq,
        residual_std=float(np.sqrt(pls.sigma_sq)),
        deviance=deviance,
        pwrss=pls.pwrss,
        log_likelihood=float(ll),
        reml=model.reml,
        aic=float(aic),
        bic=float(bic),
        n_obs=n,
        n_groups={t.name: t.n_levels for t in model.terms},
        converged=model.optimum.converged,
        n_eval=model.optimum.n_eval,
        random_effects={t.name: b for t, b in zip(model.terms, pls.b)},
        fitted_values=pls.fitted,
        residuals=pls.residuals,
        theta=model.get_theta(),
    )


def _extract_var_components(model: LMM, sigma_sq: float) -> list[VarCompSummary]:
    """Variance component summaries from each term's λ and σ².

    The covariance of one level's random effects is σ² × λλ'.
    """
    var_comps = []
    for term in model.terms:
        lam = term.lam.matrix
        cov_matrix = sigma_sq * (lam @ lam.T)

        for i in range(term.k):
            var_i = cov_matrix[i, i]
            sd_i = np.sqrt(max(var_i, 0.0))

            if i > 0 and cov_matrix[0, 0] > 0 and var_i > 0:
                corr = cov_matrix[i, 0] / (np.sqrt(cov_matrix[0, 0]) * sd_i)
                corr = float(np.clip(corr, -1.0, 1.0))
            else:
                corr = None

            var_comps.append(VarCompSummary(
                group=term.name,
                name=term.effect_names[i],
                variance=float(var_i),
                std_dev=float(sd_i),
                corr=corr,
            ))

    return var_comps


def _make_coef_names(p: int) -> list[str]:
    """Generate default coefficient names."""
    names = ['(Intercept)']
    for i in range(1, p):
        names.append(f'X{i}')
    return names
