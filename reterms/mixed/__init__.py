"""
Linear mixed models fit by blocked penalized least squares.

Public API:
    lmm()                : fit a linear mixed model (ML or REML)
    LMM                  : the PLS engine: objective(θ), set_theta, fit
    ReTerm               : one grouping factor's random-effects term
    ParamLowerTriangular : θ-parameterized relative covariance factor
    BlockMatrix, Block   : blocked cross-product storage
    LMMSolution          : result wrapper for lmm()
"""

from reterms.mixed._blocks import Block, BlockMatrix
from reterms.mixed._lowertri import ParamLowerTriangular
from reterms.mixed._pls import LMM, PLSResult
from reterms.mixed._reterm import ReTerm, encode_factor
from reterms.mixed.solvers import lmm
from reterms.mixed.solution import LMMSolution

__all__ = [
    "lmm",
    "LMM",
    "PLSResult",
    "ReTerm",
    "encode_factor",
    "ParamLowerTriangular",
    "Block",
    "BlockMatrix",
    "LMMSolution",
]
