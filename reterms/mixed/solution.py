"""
Solution wrapper for linear mixed models.

LMMSolution wraps Result[LMMParams]: accessors for the estimates, the
intraclass correlation, a likelihood ratio test between two fits, and a
summary of the PLS fit at θ̂.
"""

from __future__ import annotations

import warnings

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from reterms.core.result import Result
from reterms.mixed._common import LMMParams, VarCompSummary


class LMMSolution:
    """A fitted linear mixed model."""

    def __init__(self, _result: Result[LMMParams]):
        self._result = _result

    @property
    def result(self) -> Result[LMMParams]:
        return self._result

    @property
    def params(self) -> LMMParams:
        return self._result.params

    @property
    def coefficients(self) -> NDArray:
        """Fixed effect estimates β̂."""
        return self.params.coefficients

    @property
    def fixef(self) -> dict[str, float]:
        """Fixed effects keyed by column name."""
        return dict(zip(self.params.coefficient_names, self.params.coefficients))

    @property
    def p_values(self) -> NDArray:
        """Two-sided p-values for β̂ (t distribution, n - p df)."""
        return self.params.p_values

    @property
    def ranef(self) -> dict[str, NDArray]:
        """Conditional modes b = Λu per grouping factor, shape (n_levels, k)."""
        return self.params.random_effects

    @property
    def var_components(self) -> tuple[VarCompSummary, ...]:
        return self.params.var_components

    @property
    def theta(self) -> NDArray:
        return self.params.theta

    @property
    def icc(self) -> dict[str, float]:
        """Intraclass correlation σ²_b / (σ²_b + σ²) per grouping factor.

        Only factors with a random intercept contribute; for a factor with
        random slopes the intercept variance is used.
        """
        sigma_sq = self.params.residual_variance
        intercepts = {
            vc.group: vc.variance
            for vc in self.params.var_components if vc.name == '(Intercept)'
        }
        return {g: v / (v + sigma_sq) for g, v in intercepts.items()}

    @property
    def deviance(self) -> float:
        return self.params.deviance

    @property
    def log_likelihood(self) -> float:
        return self.params.log_likelihood

    @property
    def aic(self) -> float:
        return self.params.aic

    @property
    def bic(self) -> float:
        return self.params.bic

    @property
    def fitted_values(self) -> NDArray:
        return self.params.fitted_values

    @property
    def residuals(self) -> NDArray:
        return self.params.residuals

    @property
    def converged(self) -> bool:
        return self.params.converged

    @property
    def n_params(self) -> int:
        """Estimated parameters: β, θ and σ."""
        return len(self.params.coefficients) + len(self.params.theta) + 1

    def compare(self, other: 'LMMSolution') -> str:
        """Likelihood ratio test between two nested fits.

        The model with more parameters is taken as the full model. The
        deviance difference is referred to χ² with the difference in
        parameter counts as degrees of freedom. REML criteria of models
        with different fixed effects are not comparable, so REML fits
        trigger a UserWarning.
        """
        if self.params.reml or other.params.reml:
            warnings.warn(
                "Likelihood ratio test requires ML (not REML) fits for "
                "valid comparison. Refit with reml=False.",
                UserWarning,
                stacklevel=2,
            )

        reduced, full = sorted((self, other), key=lambda s: s.n_params)
        chi_sq = max(reduced.deviance - full.deviance, 0.0)
        df = max(full.n_params - reduced.n_params, 1)
        p_value = float(stats.chi2.sf(chi_sq, df))

        return '\n'.join([
            "Likelihood Ratio Test",
            "=" * 50,
            f"  {'':<8s} {'npar':>5s} {'deviance':>12s}",
            f"  {'reduced':<8s} {reduced.n_params:5d} {reduced.deviance:12.4f}",
            f"  {'full':<8s} {full.n_params:5d} {full.deviance:12.4f}",
            f"  Chi-squared: {chi_sq:.4f}  on {df} df, p-value: {p_value:.4g}",
        ])

    def summary(self) -> str:
        """Summary of the fit: criterion, θ̂, variance components, β̂."""
        params = self.params
        info = self._result.info
        criterion = 'REML' if params.reml else 'maximum likelihood'

        lines = [
            f"Linear mixed model fit by {criterion} (blocked PLS)",
            "",
            f" {'AIC':>10s} {'BIC':>10s} {'logLik':>10s} {'deviance':>10s}",
            f" {params.aic:10.4f} {params.bic:10.4f} "
            f"{params.log_likelihood:10.4f} {params.deviance:10.4f}",
            "",
            " theta: " + np.array2string(params.theta, precision=5, separator=', '),
            f" pwrss: {params.pwrss:.6g}   optimizer: {info.get('optimizer')} "
            f"({params.n_eval} evaluations)",
            "",
            "Random effects:",
            f" {'Groups':<12s} {'Name':<15s} {'Variance':>10s} "
            f"{'Std.Dev.':>10s} {'Corr':>6s}",
        ]

        shown = set()
        for vc in params.var_components:
            label = '' if vc.group in shown else vc.group
            shown.add(vc.group)
            corr = '' if vc.corr is None else f'{vc.corr:6.2f}'
            lines.append(
                f" {label:<12s} {vc.name:<15s} {vc.variance:10.4f} "
                f"{vc.std_dev:10.4f} {corr}"
            )
        lines.append(
            f" {'Residual':<12s} {'':<15s} {params.residual_variance:10.4f} "
            f"{params.residual_std:10.4f}"
        )
        levels = ', '.join(f'{g}, {n}' for g, n in params.n_groups.items())
        lines.append(f" Number of obs: {params.n_obs}; levels of grouping factors: {levels}")
        lines.append("")

        lines.append("Fixed effects:")
        lines.append(f" {'':>15s} {'Estimate':>10s} {'Std. Error':>10s} {'t value':>10s}")
        for name, est, se, t in zip(params.coefficient_names, params.coefficients,
                                    params.se, params.t_values):
            lines.append(f" {name:>15s} {est:10.4f} {se:10.4f} {t:10.3f}")

        if not params.converged:
            lines.append("")
            lines.append("WARNING: Model did not converge")

        return '\n'.join(lines)

    def __repr__(self) -> str:
        criterion = 'REML' if self.params.reml else 'ML'
        return (
            f"LMMSolution({criterion}, n={self.params.n_obs}, "
            f"theta={len(self.params.theta)}, deviance={self.deviance:.4f})"
        )
