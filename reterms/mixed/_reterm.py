"""
Random-effects terms: one grouping factor, its per-observation design
vectors, and its relative covariance factor λ.

A term with k random effects per level and J levels contributes q = k·J
columns to the random-effects model matrix Z. Columns are laid out
level-major: the k columns of level l are l*k, ..., l*k + k - 1. Z is
never materialized for the cross-products; every product is an
accumulation pass over observations keyed by the level code, O(n·k·m)
instead of O(n·q·m).

Level codes are assigned in sorted label order (numpy.unique), or in the
order of an explicitly supplied `levels` sequence.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import sparse

from reterms.core.exceptions import BlockIndexError, DimensionError, ValidationError
from reterms.mixed._lowertri import ParamLowerTriangular


def encode_factor(
    factor: ArrayLike,
    levels: ArrayLike | None = None,
) -> tuple[NDArray, NDArray]:
    """Map arbitrary hashable labels to compact 0-based level codes.

    Args:
        factor: 1-D sequence of labels, one per observation.
        levels: Optional explicit level order. Every label in `factor`
            must appear in it; unused levels are kept.

    Returns:
        (levels, refs): the level labels and the (n,) integer codes.
    """
    labels = np.asarray(factor)
    if labels.ndim != 1:
        raise DimensionError(
            f"factor: expected 1D labels, got {labels.ndim}D with shape {labels.shape}"
        )

    if levels is None:
        try:
            uniq, refs = np.unique(labels, return_inverse=True)
        except TypeError as e:
            raise ValidationError(
                f"factor: labels are not sortable ({e}); pass an explicit "
                f"levels order"
            ) from e
        return uniq, refs.astype(np.intp).ravel()

    level_list = list(np.asarray(levels).tolist())
    lookup = {lev: i for i, lev in enumerate(level_list)}
    if len(lookup) != len(level_list):
        raise ValidationError("levels: duplicate labels")
    try:
        refs = np.array([lookup[lab] for lab in labels.tolist()], dtype=np.intp)
    except KeyError as e:
        raise ValidationError(f"factor: label {e.args[0]!r} not found in levels") from e
    return np.asarray(levels), refs


class ReTerm:
    """A random-effects term for one grouping factor.

    Attributes:
        levels: Level labels in code order.
        refs: (n,) level code of each observation.
        z: (k, n) transposed model matrix; column i is observation i's
            design vector for the k random effects.
        lam: k × k ParamLowerTriangular relative covariance factor.
        name: Grouping factor name (used in summaries).
        effect_names: Names of the k random effects.
    """

    def __init__(
        self,
        factor: ArrayLike,
        z: ArrayLike | None = None,
        lam: ParamLowerTriangular | None = None,
        *,
        levels: ArrayLike | None = None,
        name: str = 'group',
        effect_names: tuple[str, ...] | None = None,
    ):
        self.levels, self.refs = encode_factor(factor, levels)
        n = self.refs.shape[0]

        if z is None:
            z = np.ones((1, n), dtype=np.float64)
        z = np.array(z, dtype=np.float64)
        if z.ndim == 1:
            z = z.reshape(1, -1)
        if z.ndim != 2:
            raise DimensionError(f"z: expected 1D or 2D array, got {z.ndim}D")
        if z.shape[1] != n:
            raise DimensionError(
                f"z: has {z.shape[1]} columns, expected {n} (one per observation)"
            )
        if not np.all(np.isfinite(z)):
            raise ValidationError("z: contains non-finite values")
        z.flags.writeable = False
        self.z = z

        k = z.shape[0]
        if lam is None:
            lam = ParamLowerTriangular(k)
        if lam.k != k:
            raise DimensionError(f"lam: expected {k} x {k}, got {lam.k} x {lam.k}")
        self.lam = lam

        self.name = name
        if effect_names is None:
            effect_names = ('(Intercept)',) if k == 1 else tuple(f'z{i}' for i in range(k))
        if len(effect_names) != k:
            raise DimensionError(
                f"effect_names: expected {k} names, got {len(effect_names)}"
            )
        self.effect_names = tuple(effect_names)

    # --- sizes ---

    @property
    def n(self) -> int:
        return self.z.shape[1]

    @property
    def k(self) -> int:
        return self.z.shape[0]

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def q(self) -> int:
        return self.k * self.n_levels

    @property
    def shape(self) -> tuple[int, int]:
        """(n, q): the shape of this term's block of Z."""
        return (self.n, self.q)

    def size(self, axis: int | None = None):
        if axis is None:
            return self.shape
        if axis not in (0, 1):
            raise BlockIndexError(f"axis: expected 0 or 1, got {axis}")
        return self.shape[axis]

    # --- θ ---

    @property
    def n_theta(self) -> int:
        return self.lam.n_theta

    def get_theta(self) -> NDArray:
        return self.lam.get_theta()

    def set_theta(self, theta: ArrayLike) -> None:
        self.lam.set_theta(theta)

    def lower_bound(self) -> NDArray:
        return self.lam.lower_bound()

    # --- products ---

    def crossprod(self, B: ArrayLike) -> NDArray:
        """Z' B for B of shape (n,) or (n, m), without forming Z."""
        B = np.asarray(B, dtype=np.float64)
        is_vector = B.ndim == 1
        B2 = B.reshape(-1, 1) if is_vector else B
        if B2.ndim != 2 or B2.shape[0] != self.n:
            raise DimensionError(
                f"B: has {B2.shape[0]} rows, expected {self.n} (observations)"
            )
        m = B2.shape[1]
        R = np.zeros((self.n_levels, self.k, m), dtype=np.float64)
        np.add.at(R, self.refs, self.z.T[:, :, None] * B2[:, None, :])
        R = R.reshape(self.q, m)
        return R[:, 0] if is_vector else R

    def self_crossprod(self) -> NDArray:
        """Z'Z as (n_levels, k, k) per-level symmetric blocks."""
        zt = self.z.T
        C = np.zeros((self.n_levels, self.k, self.k), dtype=np.float64)
        np.add.at(C, self.refs, zt[:, :, None] * zt[:, None, :])
        return C

    def cross_with(self, other: 'ReTerm') -> sparse.csr_matrix:
        """Z_self' Z_other for two distinct terms, keyed by level pairs."""
        if other.n != self.n:
            raise DimensionError(
                f"terms '{self.name}' and '{other.name}' have {self.n} and "
                f"{other.n} observations"
            )
        ka, kb = self.k, other.k
        rows = self.refs[:, None, None] * ka + np.arange(ka)[None, :, None]
        cols = other.refs[:, None, None] * kb + np.arange(kb)[None, None, :]
        vals = self.z.T[:, :, None] * other.z.T[:, None, :]
        shape3 = vals.shape
        M = sparse.coo_matrix(
            (vals.ravel(),
             (np.broadcast_to(rows, shape3).ravel(),
              np.broadcast_to(cols, shape3).ravel())),
            shape=(self.q, other.q),
        ).tocsr()
        M.sum_duplicates()
        M.eliminate_zeros()
        return M

    def expand_lambda(self) -> sparse.csr_matrix:
        """Λ for this term: I_{n_levels} ⊗ λ."""
        return sparse.kron(
            sparse.identity(self.n_levels, format='csr'), self.lam.matrix, format='csr'
        )

    def dense_z(self) -> NDArray:
        """This term's (n, q) block of Z."""
        Z = np.zeros((self.n, self.q), dtype=np.float64)
        cols = self.refs[:, None] * self.k + np.arange(self.k)[None, :]
        Z[np.arange(self.n)[:, None], cols] = self.z.T
        return Z

    def apply(self, b: ArrayLike) -> NDArray:
        """Z b for per-level effects b of shape (n_levels, k) or (q,)."""
        b = np.asarray(b, dtype=np.float64).reshape(self.n_levels, self.k)
        return np.einsum('kn,nk->n', self.z, b[self.refs])

    def __repr__(self) -> str:
        return (f"ReTerm(name={self.name!r}, n={self.n}, k={self.k}, "
                f"n_levels={self.n_levels})")
