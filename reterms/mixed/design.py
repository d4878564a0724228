"""
Design validation for mixed models.

MixedDesign validates and organizes the inputs for lmm(): the response
y, the fixed effects matrix X, the grouping variables, and the random
effect specifications.
"""

from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from numpy.typing import ArrayLike, NDArray

from reterms.core.exceptions import DimensionError, ValidationError
from reterms.core.validation import (
    check_1d, check_2d, check_array, check_column_rank, check_consistent_length,
    check_finite, check_min_samples,
)


@dataclass(frozen=True)
class MixedDesign:
    """Validated design for a linear mixed model.

    Attributes:
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p).
        groups: Dict of grouping factor name → group labels (n,).
        random_effects: Dict of group name → list of term names.
        random_data: Dict of variable name → data array (n,).
        n: Number of observations.
        p: Number of fixed effect columns.
        has_intercept_only: True when X was not supplied and defaults
            to a column of ones.
    """
    y: NDArray
    X: NDArray
    groups: dict[str, NDArray]
    random_effects: dict[str, list[str]] | None
    random_data: dict[str, NDArray] | None
    n: int
    p: int
    has_intercept_only: bool = False

    @staticmethod
    def validate(
        y: ArrayLike,
        X: ArrayLike | None,
        groups: dict[str, ArrayLike],
        random_effects: dict[str, list[str]] | None = None,
        random_data: dict[str, ArrayLike] | None = None,
    ) -> 'MixedDesign':
        """Validate inputs and create a MixedDesign.

        Args:
            y: Response vector.
            X: Fixed effects design matrix, or None for an intercept-only
               model. If 1-D, treated as a single column.
            groups: Dict mapping grouping factor names to group label arrays.
            random_effects: Optional dict mapping group names to term lists.
            random_data: Optional dict mapping variable names to data arrays.

        Returns:
            Validated MixedDesign.

        Raises:
            ValidationError: On invalid inputs.
            DimensionError: On inconsistent lengths.
        """
        y = check_array(y, 'y')
        check_1d(y, 'y')
        check_finite(y, 'y')
        check_min_samples(y, 3, 'y')
        n = y.shape[0]

        intercept_only = X is None
        if intercept_only:
            X = np.ones((n, 1), dtype=np.float64)
        else:
            X = check_array(X, 'X')
            if X.ndim == 1:
                X = X.reshape(-1, 1)
            check_2d(X, 'X')
            check_finite(X, 'X')
            check_consistent_length(X, y, names=('X', 'y'))
            if X.shape[1] == 0:
                raise DimensionError("X: needs at least one column")
            check_column_rank(X, 'X')
        p = X.shape[1]

        if not groups:
            raise ValidationError("At least one grouping factor required")

        groups_validated = {}
        for name, g in groups.items():
            g = np.asarray(g)
            if g.ndim != 1 or g.shape[0] != n:
                raise DimensionError(
                    f"Group '{name}' has shape {g.shape}, expected ({n},)"
                )
            groups_validated[name] = g

        if random_effects is not None:
            for name in random_effects:
                if name not in groups:
                    raise ValidationError(
                        f"Random effect group '{name}' not found in groups dict. "
                        f"Available: {list(groups.keys())}"
                    )

        data_validated = None
        if random_data is not None:
            data_validated = {}
            for name, data in random_data.items():
                data = check_array(data, f"random_data['{name}']")
                check_1d(data, f"random_data['{name}']")
                check_finite(data, f"random_data['{name}']")
                if data.shape[0] != n:
                    raise DimensionError(
                        f"Random data '{name}' has {data.shape[0]} elements, "
                        f"expected {n}"
                    )
                data_validated[name] = data

        return MixedDesign(
            y=y,
            X=X,
            groups=groups_validated,
            random_effects=random_effects,
            random_data=data_validated,
            n=n,
            p=p,
            has_intercept_only=intercept_only,
        )
