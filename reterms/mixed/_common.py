"""
Common data types for linear mixed models.

Contains the frozen parameter payloads that go inside Result[P] envelopes.
Each payload is a pure data container without methods.

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48.
"""

from dataclasses import dataclass

from numpy.typing import NDArray


@dataclass(frozen=True)
class VarCompSummary:
    """Variance component summary for one random effect.

    Attributes:
        group: Grouping factor name (e.g. 'subject').
        name: Effect name within the group (e.g. '(Intercept)', 'days').
        variance: Estimated variance σ²_b for this component.
        std_dev: Standard deviation (sqrt of variance).
        corr: Correlation with the first effect of the same group,
              or None for the first (or only) effect.
    """
    group: str
    name: str
    variance: float
    std_dev: float
    corr: float | None = None


@dataclass(frozen=True)
class LMMParams:
    """
    Parameter payload for a fitted linear mixed model.

    Contains all estimates needed to reconstruct the model summary,
    perform inference, and extract random effects.
    """
    # Fixed effects
    coefficients: NDArray              # β̂ (p,)
    coefficient_names: tuple[str, ...]
    se: NDArray                        # standard errors of β̂ (p,)
    df_residual: int                   # n - p, for t-based inference
    t_values: NDArray                  # β̂ / se (p,)
    p_values: NDArray                  # from t-distribution with n - p df (p,)

    # Random effects
    var_components: tuple[VarCompSummary, ...]
    residual_variance: float           # σ²
    residual_std: float                # σ

    # Model fit
    deviance: float                    # profiled ML or REML criterion at θ̂
    pwrss: float                       # penalized residual sum of squares at θ̂
    log_likelihood: float
    reml: bool
    aic: float
    bic: float
    n_obs: int
    n_groups: dict[str, int]           # grouping factor → number of levels

    # Convergence
    converged: bool
    n_eval: int                        # objective evaluations

    # Random effects conditional modes (BLUPs)
    random_effects: dict[str, NDArray]  # group name → (n_levels, k)

    # Predictions
    fitted_values: NDArray             # Xβ̂ + Zb̂ (n,)
    residuals: NDArray                 # y - fitted (n,)

    # Internal
    theta: NDArray                     # converged θ parameters
