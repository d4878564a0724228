"""Tests for blocks and the lower-triangular BlockMatrix."""

import numpy as np
import pytest
from scipy import sparse

from reterms.core.exceptions import (
    BlockIndexError, DimensionError, NotPositiveDefiniteError, ValidationError,
)
from reterms.mixed._blocks import (
    BLOCK_DIAGONAL, DENSE, DIAGONAL, SPARSE, TRIANGULAR, Block, BlockMatrix,
)
from reterms.mixed._reterm import ReTerm


def _spd(rng, m):
    A = rng.normal(size=(m, m))
    return A @ A.T + m * np.eye(m)


class TestBlock:

    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="unknown block kind"):
            Block('banded', np.zeros(3))

    def test_inferred_shapes(self):
        assert Block(DIAGONAL, np.ones(4)).shape == (4, 4)
        assert Block(BLOCK_DIAGONAL, np.zeros((3, 2, 2))).shape == (6, 6)
        assert Block(DENSE, np.zeros((2, 5))).shape == (2, 5)

    def test_to_dense(self):
        blocks = np.array([[[1.0, 2.0], [2.0, 5.0]], [[3.0, 0.0], [0.0, 1.0]]])
        dense = Block(BLOCK_DIAGONAL, blocks).to_dense()
        np.testing.assert_array_equal(dense[:2, :2], blocks[0])
        np.testing.assert_array_equal(dense[2:, 2:], blocks[1])
        np.testing.assert_array_equal(dense[:2, 2:], 0.0)

    def test_copy_from_reuses_storage(self):
        target = Block(DIAGONAL, np.zeros(3))
        storage = target.data
        target.copy_from(Block(DIAGONAL, np.array([1.0, 2.0, 3.0])))
        assert target.data is storage
        np.testing.assert_array_equal(storage, [1.0, 2.0, 3.0])

    def test_copy_from_restores_kind(self):
        """A workspace block promoted to dense returns to the source kind."""
        target = Block(DENSE, np.eye(3))
        target.copy_from(Block(DIAGONAL, np.array([1.0, 2.0, 3.0])))
        assert target.kind == DIAGONAL

    def test_scale_dense_matches_kron(self, rng):
        lam_r = np.array([[1.0, 0.0], [0.5, 2.0]])
        lam_c = np.array([[1.5]])
        data = rng.normal(size=(4, 3))
        blk = Block(DENSE, data.copy())
        blk.scale(lam_r, lam_c)
        expected = np.kron(np.eye(2), lam_r).T @ data @ np.kron(np.eye(3), lam_c)
        np.testing.assert_allclose(blk.data, expected)

    def test_scale_sparse_matches_dense(self, rng):
        lam = np.array([[2.0, 0.0], [-1.0, 0.5]])
        data = rng.normal(size=(4, 4)) * (rng.random((4, 4)) < 0.3)
        blk = Block(SPARSE, sparse.csr_matrix(data))
        blk.scale(lam, lam)
        Lam = np.kron(np.eye(2), lam)
        np.testing.assert_allclose(blk.to_dense(), Lam.T @ data @ Lam)

    def test_cholesky_block_diagonal(self, rng):
        stack = np.stack([_spd(rng, 2) for _ in range(3)])
        blk = Block(BLOCK_DIAGONAL, stack.copy())
        blk.cholesky()
        assert blk.kind == BLOCK_DIAGONAL
        for lev in range(3):
            np.testing.assert_allclose(blk.data[lev] @ blk.data[lev].T, stack[lev])

    def test_cholesky_dense_becomes_triangular(self, rng):
        M = _spd(rng, 4)
        blk = Block(DENSE, M.copy())
        blk.cholesky()
        assert blk.kind == TRIANGULAR
        np.testing.assert_allclose(blk.data @ blk.data.T, M)

    def test_cholesky_diagonal_not_pd(self):
        blk = Block(DIAGONAL, np.array([1.0, -2.0, 3.0]))
        with pytest.raises(NotPositiveDefiniteError) as exc_info:
            blk.cholesky(name='L[g]', index=(0, 0))
        assert exc_info.value.block == (0, 0)
        assert exc_info.value.matrix_name == 'L[g]'

    def test_cholesky_dense_not_pd(self):
        blk = Block(DENSE, np.array([[1.0, 2.0], [2.0, 1.0]]))
        with pytest.raises(NotPositiveDefiniteError):
            blk.cholesky()

    def test_rdiv_lower_transpose_dense(self, rng):
        M = _spd(rng, 3)
        D = Block(DENSE, M.copy())
        D.cholesky()
        B = rng.normal(size=(2, 3))
        blk = Block(DENSE, B.copy())
        blk.rdiv_lower_transpose(D)
        np.testing.assert_allclose(blk.data @ D.data.T, B)

    def test_rdiv_lower_transpose_block_diagonal(self, rng):
        stack = np.stack([_spd(rng, 2) for _ in range(2)])
        D = Block(BLOCK_DIAGONAL, stack)
        D.cholesky()
        B = rng.normal(size=(3, 4))
        blk = Block(DENSE, B.copy())
        blk.rdiv_lower_transpose(D)
        np.testing.assert_allclose(blk.data @ D.to_dense().T, B)

    def test_subtract_product_keeps_diagonal(self):
        """A product that stays diagonal does not promote the block."""
        blk = Block(DIAGONAL, np.array([5.0, 5.0]))
        P = Block(SPARSE, sparse.csr_matrix(np.array([[1.0, 0.0], [0.0, 2.0]])))
        blk.subtract_product(P, P)
        assert blk.kind == DIAGONAL
        np.testing.assert_allclose(blk.data, [4.0, 1.0])

    def test_subtract_product_fill_in_promotes(self):
        blk = Block(DIAGONAL, np.array([5.0, 5.0]))
        P = Block(DENSE, np.array([[1.0], [1.0]]))
        blk.subtract_product(P, P)
        assert blk.kind == DENSE
        np.testing.assert_allclose(blk.data, [[4.0, -1.0], [-1.0, 4.0]])

    def test_dense_product_inside_pattern_keeps_kind(self):
        """A dense P Q' with no nonzeros off the level blocks is not promoted."""
        diag = Block(DIAGONAL, np.array([5.0, 5.0, 5.0]))
        P = Block(DENSE, np.array([[1.0, 0.0], [0.0, 2.0], [0.0, 0.0]]))
        diag.subtract_product(P, P)
        assert diag.kind == DIAGONAL
        np.testing.assert_allclose(diag.data, [4.0, 1.0, 5.0])

        bd = Block(BLOCK_DIAGONAL, np.stack([4.0 * np.eye(2), 4.0 * np.eye(2)]))
        Q = Block(DENSE, np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0], [0.0, 2.0]]))
        bd.subtract_product(Q, Q)
        assert bd.kind == BLOCK_DIAGONAL
        np.testing.assert_allclose(bd.data[0], [[3.0, -1.0], [-1.0, 3.0]])
        np.testing.assert_allclose(bd.data[1], [[3.0, -2.0], [-2.0, 0.0]])

    def test_dense_product_outside_pattern_promotes_block_diagonal(self):
        bd = Block(BLOCK_DIAGONAL, np.stack([4.0 * np.eye(2), 4.0 * np.eye(2)]))
        Q = Block(DENSE, np.array([[1.0], [0.0], [1.0], [0.0]]))
        bd.subtract_product(Q, Q)
        assert bd.kind == DENSE
        assert bd.data[0, 2] == -1.0

    def test_subtract_product_shape_mismatch(self):
        blk = Block(DENSE, np.zeros((2, 2)))
        P = Block(DENSE, np.ones((3, 1)))
        with pytest.raises(DimensionError):
            blk.subtract_product(P, P)

    def test_logdet(self, rng):
        M = _spd(rng, 3)
        blk = Block(DENSE, M.copy())
        blk.cholesky()
        np.testing.assert_allclose(blk.logdet(), np.linalg.slogdet(M)[1])

    def test_logdet_requires_factor(self):
        with pytest.raises(ValidationError):
            Block(DENSE, np.eye(2)).logdet()


class TestBlockMatrix:

    @pytest.fixture
    def two_term_matrix(self, crossed_effects):
        d = crossed_effects
        terms = [
            ReTerm(d['subject'], name='subject'),
            ReTerm(d['item'], name='item'),
        ]
        return BlockMatrix.from_terms(terms, d['X'], d['y']), terms, d

    def test_block_layout(self, two_term_matrix):
        A, terms, d = two_term_matrix
        assert A.nblocks == 4
        assert A.shape == (4, 4)
        assert A.size(0) == 4
        assert A.sizes == (d['n_subjects'], d['n_items'], 2, 1)
        assert A.names == ['subject', 'item', 'X', 'y']
        assert A.block_shape(1, 0) == (d['n_items'], d['n_subjects'])
        assert A.block_shape(3, 2) == (1, 2)

    def test_block_kinds(self, two_term_matrix):
        A, _, _ = two_term_matrix
        kinds = A.kinds()
        assert kinds[0] == [DIAGONAL]
        # Fully crossed: every subject meets every item, so the cross block is dense
        assert kinds[1] == [DENSE, DIAGONAL]
        assert kinds[2] == [DENSE, DENSE, DENSE]
        assert kinds[3] == [DENSE, DENSE, DENSE, DENSE]

    def test_sparse_cross_block(self, nested_effects):
        d = nested_effects
        terms = [
            ReTerm(d['student'], name='student'),
            ReTerm(d['classroom'], name='classroom'),
        ]
        A = BlockMatrix.from_terms(terms, d['X'], d['y'])
        assert A[1, 0].kind == SPARSE
        assert A[1, 0].nnz == d['n_students']

    def test_slope_term_is_block_diagonal(self, sleepstudy_like):
        d = sleepstudy_like
        z = np.vstack([np.ones_like(d['days']), d['days']])
        A = BlockMatrix.from_terms([ReTerm(d['subject'], z)], d['X'], d['y'])
        assert A[0, 0].kind == BLOCK_DIAGONAL
        assert A[0, 0].data.shape == (d['n_subjects'], 2, 2)

    def test_to_dense_matches_crossproduct(self, two_term_matrix):
        A, terms, d = two_term_matrix
        W = np.hstack([t.dense_z() for t in terms] + [d['X'], d['y'][:, None]])
        np.testing.assert_allclose(A.to_dense(), W.T @ W, rtol=1e-12, atol=1e-9)

    def test_upper_triangle_rejected(self, two_term_matrix):
        A, _, _ = two_term_matrix
        with pytest.raises(BlockIndexError, match="upper triangle"):
            A[0, 1]

    def test_out_of_range(self, two_term_matrix):
        A, _, _ = two_term_matrix
        with pytest.raises(BlockIndexError):
            A[4, 0]
        with pytest.raises(IndexError):
            A[0, -1]

    def test_bad_axis(self, two_term_matrix):
        A, _, _ = two_term_matrix
        with pytest.raises(BlockIndexError):
            A.size(2)

    def test_setitem_shape_checked(self, two_term_matrix):
        A, _, _ = two_term_matrix
        with pytest.raises(DimensionError):
            A[2, 2] = Block(DENSE, np.zeros((3, 3)))

    def test_copy_is_independent(self, two_term_matrix):
        A, _, _ = two_term_matrix
        B = A.copy()
        B[3, 3].data[0, 0] = -1.0
        assert A[3, 3].data[0, 0] > 0.0
