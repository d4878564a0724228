"""
Symmetric block matrices for the blocked penalized least squares system.

The penalized cross-product matrix of an LMM with random-effects terms
Z_1, ..., Z_m, fixed-effects matrix X and response y is partitioned into
blocks indexed by term pairs:

    [ Z_1'Z_1                          ]
    [ Z_2'Z_1  Z_2'Z_2                 ]
    [   ...      ...    ...            ]
    [ X'Z_1    X'Z_2    ...  X'X       ]
    [ y'Z_1    y'Z_2    ...  y'X   y'y ]

Only the lower triangle (i >= j) is stored. Each block is a tagged
union: its `kind` says how `data` is represented, and every operation
dispatches on it.

    diagonal        1-D vector of the diagonal (k = 1 self products)
    block_diagonal  (n_levels, k, k) stack (k > 1 self products)
    sparse          scipy.sparse csr matrix (cross products of two factors)
    dense           2-D ndarray
    triangular      2-D lower-triangular ndarray (a factored dense block)

Fill-in during the factorization can push a block out of its structure
(e.g. crossed factors turn a diagonal block dense); such blocks are
promoted to `dense` in the workspace L, never in A.
"""

from __future__ import annotations

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray
from scipy import sparse

from reterms.core.exceptions import (
    BlockIndexError, DimensionError, NotPositiveDefiniteError, ValidationError,
)


DIAGONAL = 'diagonal'
BLOCK_DIAGONAL = 'block_diagonal'
SPARSE = 'sparse'
DENSE = 'dense'
TRIANGULAR = 'triangular'

ALL_KINDS = frozenset({DIAGONAL, BLOCK_DIAGONAL, SPARSE, DENSE, TRIANGULAR})

# Cross products of two grouping factors are stored sparse at or below
# this fraction of nonzeros, dense above it.
SPARSE_DENSITY_THRESHOLD = 0.25


def _infer_shape(kind: str, data) -> tuple[int, int]:
    if kind == DIAGONAL:
        return (data.shape[0], data.shape[0])
    if kind == BLOCK_DIAGONAL:
        q = data.shape[0] * data.shape[1]
        return (q, q)
    return tuple(data.shape)


class Block:
    """One block of a BlockMatrix.

    Attributes:
        kind: One of the kind constants above.
        data: Storage in the representation named by `kind`.
        shape: (rows, cols) of the block as a matrix.
    """

    __slots__ = ('kind', 'data', 'shape')

    def __init__(self, kind: str, data, shape: tuple[int, int] | None = None):
        if kind not in ALL_KINDS:
            raise ValidationError(f"kind: unknown block kind {kind!r}")
        self.kind = kind
        self.data = data
        self.shape = _infer_shape(kind, data) if shape is None else tuple(shape)

    def __repr__(self) -> str:
        return f"Block(kind={self.kind!r}, shape={self.shape})"

    @property
    def nnz(self) -> int:
        if self.kind == SPARSE:
            return int(self.data.nnz)
        return int(np.count_nonzero(self.data))

    def copy(self) -> 'Block':
        return Block(self.kind, self.data.copy(), self.shape)

    def copy_from(self, other: 'Block') -> None:
        """Overwrite this block with `other`, reusing storage when possible."""
        if (self.kind == other.kind and self.kind != SPARSE
                and self.data.shape == other.data.shape):
            np.copyto(self.data, other.data)
        else:
            self.kind = other.kind
            self.data = other.data.copy()
        self.shape = other.shape

    def to_dense(self) -> NDArray:
        """A fresh dense ndarray with this block's values."""
        if self.kind == DIAGONAL:
            return np.diag(self.data)
        if self.kind == BLOCK_DIAGONAL:
            return sla.block_diag(*self.data)
        if self.kind == SPARSE:
            return self.data.toarray()
        return np.array(self.data)

    def _promote_to_dense(self) -> None:
        self.data = self.to_dense()
        self.kind = DENSE

    # --- Λ scaling ---

    def scale(self, left: NDArray | None, right: NDArray | None) -> None:
        """In place: B ← (I ⊗ left)' B (I ⊗ right).

        `left` and `right` are the k × k per-level factors of the row and
        column terms, or None for the identity (fixed effects, response).
        """
        if left is None and right is None:
            return
        kind = self.kind
        if kind == DIAGONAL:
            factor = 1.0
            if left is not None:
                factor *= left[0, 0]
            if right is not None:
                factor *= right[0, 0]
            self.data *= factor
        elif kind == BLOCK_DIAGONAL:
            blocks = self.data
            if left is not None:
                blocks = np.matmul(left.T, blocks)
            if right is not None:
                blocks = np.matmul(blocks, right)
            self.data[...] = blocks
        elif kind == SPARSE:
            M = self.data
            if left is not None:
                M = _expand(left, self.shape[0]).T @ M
            if right is not None:
                M = M @ _expand(right, self.shape[1])
            self.data = sparse.csr_matrix(M)
        elif kind == DENSE:
            r, c = self.shape
            M = self.data
            if left is not None:
                k = left.shape[0]
                M = np.matmul(left.T, M.reshape(r // k, k, c)).reshape(r, c)
            if right is not None:
                k = right.shape[0]
                M = np.matmul(M.reshape(r, c // k, k), right).reshape(r, c)
            self.data[...] = M
        else:
            raise ValidationError(f"scale: not defined for {kind} blocks")

    def add_identity(self) -> None:
        kind = self.kind
        if kind == DIAGONAL:
            self.data += 1.0
        elif kind == BLOCK_DIAGONAL:
            self.data += np.eye(self.data.shape[1])
        elif kind == DENSE:
            self.data[np.diag_indices(self.shape[0])] += 1.0
        elif kind == SPARSE:
            self.data = sparse.csr_matrix(
                self.data + sparse.identity(self.shape[0], format='csr')
            )
        else:
            raise ValidationError(f"add_identity: not defined for {kind} blocks")

    # --- factorization ---

    def cholesky(self, name: str = 'block', index: tuple[int, int] | None = None) -> None:
        """In place lower Cholesky factor of a diagonal block."""
        kind = self.kind
        if kind == DIAGONAL:
            if not np.all(self.data > 0.0):
                bad = int(np.argmin(np.where(np.isnan(self.data), -np.inf, self.data)))
                raise NotPositiveDefiniteError(
                    f"{name}: diagonal entry {bad} is {self.data[bad]!r}, "
                    f"expected a positive value",
                    matrix_name=name, block=index,
                    min_eigenvalue=float(np.nanmin(self.data)),
                )
            np.sqrt(self.data, out=self.data)
            return

        if kind == SPARSE:
            self._promote_to_dense()
            kind = DENSE
        if kind == TRIANGULAR:
            raise ValidationError(f"cholesky: {name} is already factored")

        try:
            factor = np.linalg.cholesky(self.data)
        except np.linalg.LinAlgError as e:
            raise NotPositiveDefiniteError(
                f"{name}: not positive definite ({e})",
                matrix_name=name, block=index,
            ) from e
        if not np.all(np.isfinite(factor)):
            raise NotPositiveDefiniteError(
                f"{name}: Cholesky factor has non-finite entries",
                matrix_name=name, block=index,
            )

        if kind == BLOCK_DIAGONAL:
            self.data[...] = factor
        else:
            self.data = factor
            self.kind = TRIANGULAR

    def rdiv_lower_transpose(self, D: 'Block') -> None:
        """In place: B ← B · D⁻ᵀ for a factored diagonal block D."""
        if self.kind not in (SPARSE, DENSE):
            raise ValidationError(
                f"rdiv_lower_transpose: not defined for {self.kind} blocks"
            )
        if self.shape[1] != D.shape[0]:
            raise DimensionError(
                f"rdiv_lower_transpose: block has {self.shape[1]} columns, "
                f"factor has {D.shape[0]} rows"
            )

        if D.kind == DIAGONAL:
            if self.kind == SPARSE:
                self.data = sparse.csr_matrix(self.data @ sparse.diags(1.0 / D.data))
            else:
                self.data /= D.data[None, :]
        elif D.kind == BLOCK_DIAGONAL:
            n_levels, k, _ = D.data.shape
            if self.kind == SPARSE:
                inv_t = np.linalg.inv(D.data).transpose(0, 2, 1)
                self.data = sparse.csr_matrix(
                    self.data @ sparse.block_diag(list(inv_t), format='csr')
                )
            else:
                r = self.shape[0]
                rhs = self.data.reshape(r, n_levels, k).transpose(1, 2, 0)
                sol = np.linalg.solve(D.data, rhs)
                self.data[...] = sol.transpose(2, 0, 1).reshape(r, n_levels * k)
        elif D.kind == TRIANGULAR:
            if self.kind == SPARSE:
                self._promote_to_dense()
            sol = sla.solve_triangular(D.data, self.data.T, lower=True)
            self.data[...] = sol.T
        else:
            raise ValidationError(
                f"rdiv_lower_transpose: divisor must be factored, got {D.kind}"
            )

    def subtract_product(self, P: 'Block', Q: 'Block') -> None:
        """In place: B ← B − P Q' (symmetric rank update of trailing blocks)."""
        if P.shape[1] != Q.shape[1] or (P.shape[0], Q.shape[0]) != self.shape:
            raise DimensionError(
                f"subtract_product: {P.shape} x {Q.shape}' does not match {self.shape}"
            )

        if P.kind == SPARSE and Q.kind == SPARSE:
            prod = sparse.csr_matrix(P.data @ Q.data.T)
            prod.eliminate_zeros()
        else:
            prod = _as_dense(P) @ _as_dense(Q).T
        is_sparse = sparse.issparse(prod)

        kind = self.kind
        if kind == DENSE:
            self.data -= prod.toarray() if is_sparse else prod
        elif kind == SPARSE:
            if is_sparse:
                self.data = sparse.csr_matrix(self.data - prod)
            else:
                self._promote_to_dense()
                self.data -= prod
        elif kind == DIAGONAL:
            if _fits_blocks(prod, 1):
                self.data -= prod.diagonal()
            else:
                self._promote_to_dense()
                self.data -= prod.toarray() if is_sparse else prod
        elif kind == BLOCK_DIAGONAL:
            k = self.data.shape[1]
            if _fits_blocks(prod, k):
                if is_sparse:
                    coo = prod.tocoo()
                    np.subtract.at(
                        self.data,
                        (coo.row // k, coo.row % k, coo.col % k),
                        coo.data,
                    )
                else:
                    n_levels = self.data.shape[0]
                    idx = np.arange(n_levels)
                    self.data -= prod.reshape(n_levels, k, n_levels, k)[idx, :, idx, :]
            else:
                self._promote_to_dense()
                self.data -= prod.toarray() if is_sparse else prod
        else:
            raise ValidationError(f"subtract_product: not defined for {kind} blocks")

    # --- solves with factored diagonal blocks ---

    def solve_transpose(self, v: NDArray) -> NDArray:
        """Solve D' x = v for a factored diagonal block D."""
        kind = self.kind
        if kind == DIAGONAL:
            return v / (self.data if v.ndim == 1 else self.data[:, None])
        if kind == BLOCK_DIAGONAL:
            n_levels, k, _ = self.data.shape
            rhs = v.reshape(n_levels, k, -1)
            return np.linalg.solve(self.data.transpose(0, 2, 1), rhs).reshape(v.shape)
        if kind == TRIANGULAR:
            return sla.solve_triangular(self.data, v, lower=True, trans='T')
        raise ValidationError(f"solve_transpose: block must be factored, got {kind}")

    def transpose_matvec(self, v: NDArray) -> NDArray:
        """B' v."""
        if self.kind in (SPARSE, DENSE, TRIANGULAR):
            return np.asarray(self.data.T @ v)
        return self.to_dense().T @ v

    def logdet(self) -> float:
        """log|D D'| = 2 Σ log diag(D) for a factored diagonal block D."""
        kind = self.kind
        if kind == DIAGONAL:
            diag = self.data
        elif kind == BLOCK_DIAGONAL:
            diag = np.diagonal(self.data, axis1=1, axis2=2)
        elif kind == TRIANGULAR:
            diag = np.diag(self.data)
        else:
            raise ValidationError(f"logdet: block must be factored, got {kind}")
        return float(2.0 * np.sum(np.log(diag)))


def _expand(lam: NDArray, q: int) -> sparse.csr_matrix:
    k = lam.shape[0]
    return sparse.kron(sparse.identity(q // k, format='csr'), lam, format='csr')


def _as_dense(block: Block) -> NDArray:
    if block.kind in (DENSE, TRIANGULAR):
        return block.data
    return block.to_dense()


def _fits_blocks(prod, k: int) -> bool:
    """True when every nonzero of `prod` lies in a k × k diagonal block."""
    if sparse.issparse(prod):
        coo = prod.tocoo()
        return bool(np.all(coo.row // k == coo.col // k))
    n_levels = prod.shape[0] // k
    idx = np.arange(n_levels)
    inside = prod.reshape(n_levels, k, n_levels, k)[idx, :, idx, :]
    return np.count_nonzero(inside) == np.count_nonzero(prod)


class BlockMatrix:
    """Lower-triangular storage of a symmetric block matrix.

    Attributes:
        sizes: Row/column count q_i of each block row.
        names: Label of each block row (term names, then 'X', 'y').
    """

    def __init__(self, blocks: list[list[Block]], names: list[str] | None = None):
        nblocks = len(blocks)
        for i, row in enumerate(blocks):
            if len(row) != i + 1:
                raise DimensionError(
                    f"blocks: row {i} has {len(row)} blocks, expected {i + 1}"
                )
        self._blocks = blocks
        self.sizes = tuple(blocks[i][i].shape[0] for i in range(nblocks))
        for i, row in enumerate(blocks):
            for j, blk in enumerate(row):
                if blk.shape != (self.sizes[i], self.sizes[j]):
                    raise DimensionError(
                        f"block ({i}, {j}): shape {blk.shape}, expected "
                        f"{(self.sizes[i], self.sizes[j])}"
                    )
        self.names = list(names) if names is not None else [str(i) for i in range(nblocks)]

    @classmethod
    def from_terms(
        cls,
        terms: list,
        X: NDArray,
        y: NDArray,
        sparse_threshold: float = SPARSE_DENSITY_THRESHOLD,
    ) -> 'BlockMatrix':
        """Assemble the cross-product matrix A of [Z_1, ..., Z_m, X, y]."""
        blocks: list[list[Block]] = []

        for i, ti in enumerate(terms):
            row = []
            for j in range(i):
                cross = ti.cross_with(terms[j])
                density = cross.nnz / max(cross.shape[0] * cross.shape[1], 1)
                if density <= sparse_threshold:
                    row.append(Block(SPARSE, cross))
                else:
                    row.append(Block(DENSE, cross.toarray()))
            self_prod = ti.self_crossprod()
            if ti.k == 1:
                row.append(Block(DIAGONAL, self_prod[:, 0, 0].copy()))
            else:
                row.append(Block(BLOCK_DIAGONAL, self_prod))
            blocks.append(row)

        x_row = [Block(DENSE, np.ascontiguousarray(t.crossprod(X).T)) for t in terms]
        x_row.append(Block(DENSE, X.T @ X))
        blocks.append(x_row)

        y_row = [Block(DENSE, t.crossprod(y).reshape(1, -1)) for t in terms]
        y_row.append(Block(DENSE, (y @ X).reshape(1, -1)))
        y_row.append(Block(DENSE, np.array([[y @ y]])))
        blocks.append(y_row)

        names = [t.name for t in terms] + ['X', 'y']
        return cls(blocks, names)

    @property
    def nblocks(self) -> int:
        return len(self._blocks)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.nblocks, self.nblocks)

    def size(self, axis: int | None = None):
        if axis is None:
            return self.shape
        if axis not in (0, 1):
            raise BlockIndexError(f"axis: expected 0 or 1, got {axis}")
        return self.nblocks

    def _check_index(self, key) -> tuple[int, int]:
        try:
            i, j = key
        except (TypeError, ValueError) as e:
            raise BlockIndexError(f"expected an (i, j) block index, got {key!r}") from e
        nb = self.nblocks
        if not (0 <= i < nb and 0 <= j < nb):
            raise BlockIndexError(f"block ({i}, {j}) out of range for {nb} x {nb} blocks")
        if j > i:
            raise BlockIndexError(
                f"block ({i}, {j}) is in the upper triangle; use ({j}, {i})"
            )
        return i, j

    def __getitem__(self, key) -> Block:
        i, j = self._check_index(key)
        return self._blocks[i][j]

    def __setitem__(self, key, block: Block) -> None:
        i, j = self._check_index(key)
        if block.shape != (self.sizes[i], self.sizes[j]):
            raise DimensionError(
                f"block ({i}, {j}): shape {block.shape}, expected "
                f"{(self.sizes[i], self.sizes[j])}"
            )
        self._blocks[i][j] = block

    def block_shape(self, i: int, j: int) -> tuple[int, int]:
        return self[i, j].shape

    def kinds(self) -> list[list[str]]:
        return [[blk.kind for blk in row] for row in self._blocks]

    def copy(self) -> 'BlockMatrix':
        return BlockMatrix([[blk.copy() for blk in row] for row in self._blocks],
                           self.names)

    def to_dense(self) -> NDArray:
        """The full symmetric matrix (lower triangle mirrored)."""
        offsets = np.concatenate([[0], np.cumsum(self.sizes)])
        out = np.zeros((offsets[-1], offsets[-1]), dtype=np.float64)
        for i, row in enumerate(self._blocks):
            for j, blk in enumerate(row):
                dense = blk.to_dense()
                out[offsets[i]:offsets[i + 1], offsets[j]:offsets[j + 1]] = dense
                if i != j:
                    out[offsets[j]:offsets[j + 1], offsets[i]:offsets[i + 1]] = dense.T
        return out
