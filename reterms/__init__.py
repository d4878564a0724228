"""
reterms: linear mixed-effects models via blocked penalized least squares.

Submodules:
    core: Result envelope, exceptions, validation, timing
    mixed: Random-effects terms, block matrices, the PLS engine and lmm()
"""

__version__ = "0.1.0"

from reterms import mixed
from reterms.mixed import LMM, ReTerm, ParamLowerTriangular, lmm

__all__ = [
    "__version__",
    "mixed",
    "LMM",
    "ReTerm",
    "ParamLowerTriangular",
    "lmm",
]
