"""
Random effects specification → ReTerm construction.

Turns the dict-based user specification

    groups={'subject': subject_ids}
    random_effects={'subject': ['1', 'days']}
    random_data={'days': days}

into one ReTerm per grouping factor, in the order of `groups`. The term
'1' is an intercept (a row of ones in z); any other name is a slope whose
values come from `random_data`.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from reterms.core.exceptions import DimensionError, ValidationError
from reterms.mixed._lowertri import ParamLowerTriangular
from reterms.mixed._reterm import ReTerm


def build_terms(
    groups: dict[str, NDArray],
    random_effects: dict[str, list[str]] | None,
    random_data: dict[str, NDArray] | None,
    n: int,
    uncorrelated: tuple[str, ...] = (),
) -> list[ReTerm]:
    """Build one ReTerm per grouping factor.

    Args:
        groups: Mapping of grouping factor name → group labels (n,).
        random_effects: Mapping of group name → list of term names.
            If None, or a group is missing, that group gets a random
            intercept ('1').
        random_data: Mapping of variable name → data (n,) for slope terms.
        n: Number of observations.
        uncorrelated: Group names whose random effects get a diagonal λ
            (independent effects) instead of a full lower triangle.

    Returns:
        List of ReTerm, one per grouping factor.
    """
    if random_effects is None:
        random_effects = {}
    if random_data is None:
        random_data = {}

    terms = []
    for group_name, labels in groups.items():
        labels = np.asarray(labels)
        if labels.shape[0] != n:
            raise DimensionError(
                f"Group '{group_name}' has {labels.shape[0]} elements, "
                f"expected {n}"
            )
        names = tuple(random_effects.get(group_name, ['1']))
        if not names:
            raise ValidationError(f"Group '{group_name}' has an empty term list")

        z = _build_z(names, random_data, n)
        k = z.shape[0]
        lam = ParamLowerTriangular.diagonal(k) if group_name in uncorrelated else None
        effect_names = tuple('(Intercept)' if t == '1' else t for t in names)
        terms.append(ReTerm(labels, z, lam, name=group_name, effect_names=effect_names))

    return terms


def _build_z(
    names: tuple[str, ...],
    random_data: dict[str, NDArray],
    n: int,
) -> NDArray:
    """Stack the per-observation design rows for one grouping factor (k, n)."""
    rows = []
    for term in names:
        if term == '1':
            rows.append(np.ones(n, dtype=np.float64))
            continue
        if term not in random_data:
            raise ValidationError(
                f"Random slope term '{term}' requires data in "
                f"random_data dict, but '{term}' was not found. "
                f"Available: {list(random_data.keys())}"
            )
        values = np.asarray(random_data[term], dtype=np.float64)
        if values.shape != (n,):
            raise DimensionError(
                f"Random data '{term}' has shape {values.shape}, expected ({n},)"
            )
        rows.append(values)
    return np.vstack(rows)
