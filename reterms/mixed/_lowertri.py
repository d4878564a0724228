"""
Parameterized lower-triangular relative covariance factor λ.

Each random-effects term carries a k × k lower-triangular λ with
Σ/σ² = λλ' for the k random effects of one level. The free entries of λ
are driven by a compact parameter vector θ through an explicit index
table built once at construction.

Canonical θ order is column-major over the lower triangle: within each
column the diagonal entry comes first, then the sub-diagonal entries top
to bottom. For k = 3 the full parameterization is

    θ = [λ00, λ10, λ20, λ11, λ21, λ22]

with lower bounds [0, -inf, -inf, 0, -inf, 0].

References:
    Bates, D., Maechler, M., Bolker, B., & Walker, S. (2015).
    Fitting Linear Mixed-Effects Models Using lme4.
    Journal of Statistical Software, 67(1), 1-48. Section 3.1.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

from reterms.core.exceptions import DimensionError, ValidationError


def column_major_positions(k: int) -> list[tuple[int, int]]:
    """All lower-triangular positions of a k × k matrix in canonical order."""
    return [(row, col) for col in range(k) for row in range(col, k)]


class ParamLowerTriangular:
    """Lower-triangular matrix whose free entries are set from θ.

    Attributes:
        k: Row/column count.
        positions: Free (row, col) positions in θ order.
    """

    def __init__(
        self,
        k: int,
        matrix: ArrayLike | None = None,
        positions: list[tuple[int, int]] | None = None,
    ):
        if k < 1:
            raise ValidationError(f"k: must be at least 1, got {k}")
        self.k = int(k)

        if positions is None:
            positions = column_major_positions(self.k)
        positions = [(int(r), int(c)) for r, c in positions]
        for r, c in positions:
            if not (0 <= c <= r < self.k):
                raise ValidationError(
                    f"positions: ({r}, {c}) is not in the lower triangle "
                    f"of a {self.k} x {self.k} matrix"
                )
        if len(set(positions)) != len(positions):
            raise ValidationError("positions: duplicate entries")
        self.positions = positions

        # Index table: flat offsets into the matrix, reused by set_theta
        self._rows = np.array([r for r, _ in positions], dtype=np.intp)
        self._cols = np.array([c for _, c in positions], dtype=np.intp)
        self._is_diag = self._rows == self._cols

        if matrix is None:
            self._matrix = np.eye(self.k, dtype=np.float64)
        else:
            mat = np.array(matrix, dtype=np.float64)
            if mat.shape != (self.k, self.k):
                raise DimensionError(
                    f"matrix: expected shape ({self.k}, {self.k}), got {mat.shape}"
                )
            if np.any(np.triu(mat, 1) != 0.0):
                raise ValidationError("matrix: entries above the diagonal must be zero")
            self._matrix = mat

        # Entries outside the free positions stay at their initial values
        # except the strict upper triangle, which is always zero.
        self._matrix = np.tril(self._matrix)

    @classmethod
    def diagonal(cls, k: int) -> 'ParamLowerTriangular':
        """Uncorrelated random effects: only the diagonal is free."""
        return cls(k, positions=[(i, i) for i in range(k)])

    @property
    def n_theta(self) -> int:
        return len(self.positions)

    @property
    def matrix(self) -> NDArray:
        """Read-only view of the current λ."""
        view = self._matrix.view()
        view.flags.writeable = False
        return view

    def lower_bound(self) -> NDArray:
        """Per-parameter lower bounds: 0 on the diagonal, -inf elsewhere."""
        return np.where(self._is_diag, 0.0, -np.inf)

    def get_theta(self) -> NDArray:
        return self._matrix[self._rows, self._cols].copy()

    def set_theta(self, theta: ArrayLike) -> None:
        """Overwrite the free entries of λ from θ (in canonical order)."""
        theta = np.asarray(theta, dtype=np.float64).ravel()
        if theta.shape[0] != self.n_theta:
            raise DimensionError(
                f"theta: expected length {self.n_theta}, got {theta.shape[0]}"
            )
        self._matrix[self._rows, self._cols] = theta

    def copy(self) -> 'ParamLowerTriangular':
        return ParamLowerTriangular(self.k, self._matrix, self.positions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParamLowerTriangular):
            return NotImplemented
        return (self.positions == other.positions
                and np.array_equal(self._matrix, other._matrix))

    def __repr__(self) -> str:
        return f"ParamLowerTriangular(k={self.k}, theta={self.get_theta().tolist()})"
