"""
Shared fixtures for mixed model tests.

Provides realistic test datasets with known structure, the Dyestuff
reference data, and a dense (unblocked) PLS solver used to check the
blocked engine.
"""

import numpy as np
import pytest
import scipy.linalg as sla

from reterms.mixed import datasets


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(2024)


@pytest.fixture
def dyestuff():
    """lme4's Dyestuff: Yield ~ 1 + (1 | Batch), 6 batches × 5 samples."""
    n = datasets.dyestuff_yield.shape[0]
    return {
        'y': datasets.dyestuff_yield.copy(),
        'X': np.ones((n, 1)),
        'batch': datasets.dyestuff_batch.copy(),
        'deviance_at_0713': datasets.DYESTUFF_ML_DEVIANCE_AT_0713,
        'ml_deviance': datasets.DYESTUFF_ML_DEVIANCE,
    }


@pytest.fixture
def dyestuff2():
    """lme4's Dyestuff2: same layout as Dyestuff, no between-batch variance."""
    n = datasets.dyestuff2_yield.shape[0]
    return {
        'y': datasets.dyestuff2_yield.copy(),
        'X': np.ones((n, 1)),
        'batch': datasets.dyestuff2_batch.copy(),
        'ml_deviance': datasets.DYESTUFF2_ML_DEVIANCE,
    }


@pytest.fixture
def sleepstudy():
    """lme4's sleepstudy: Reaction ~ 1 + Days + (1 + Days | Subject)."""
    days = datasets.sleepstudy_days.copy()
    X = np.column_stack([np.ones_like(days), days])
    return {
        'y': datasets.sleepstudy_reaction.copy(),
        'X': X,
        'Z': X.T.copy(),
        'days': days,
        'subject': datasets.sleepstudy_subject.copy(),
        'ml_deviance': datasets.SLEEPSTUDY_ML_DEVIANCE,
        'ml_theta': datasets.SLEEPSTUDY_ML_THETA.copy(),
    }


@pytest.fixture
def sleepstudy_like(rng):
    """Sleepstudy-like dataset: reaction time ~ days + (1 + days | subject).

    18 subjects, 10 days each = 180 observations.
    Random intercept SD ≈ 25, random slope SD ≈ 6, correlation ≈ 0.07.
    Residual SD ≈ 25.
    """
    n_subjects = 18
    n_days = 10
    n = n_subjects * n_days

    beta_intercept = 250.0
    beta_days = 10.0
    sigma_intercept = 25.0
    sigma_slope = 6.0
    rho = 0.07
    sigma_resid = 25.0

    cov_matrix = np.array([
        [sigma_intercept**2, rho * sigma_intercept * sigma_slope],
        [rho * sigma_intercept * sigma_slope, sigma_slope**2],
    ])
    re = rng.multivariate_normal([0, 0], cov_matrix, size=n_subjects)

    subject = np.repeat(np.arange(n_subjects), n_days)
    days = np.tile(np.arange(n_days, dtype=float), n_subjects)

    y = (beta_intercept + re[subject, 0]
         + (beta_days + re[subject, 1]) * days
         + rng.normal(0, sigma_resid, size=n))

    X = np.column_stack([np.ones(n), days])

    return {
        'y': y, 'X': X, 'subject': subject, 'days': days,
        'n_subjects': n_subjects, 'n_days': n_days,
        'beta_intercept': beta_intercept, 'beta_days': beta_days,
        'sigma_intercept': sigma_intercept, 'sigma_slope': sigma_slope,
        'sigma_resid': sigma_resid,
    }


@pytest.fixture
def random_intercept_simple(rng):
    """Simple random intercept dataset: y ~ x + (1 | group).

    20 groups, 10 observations each = 200 observations.
    """
    n_groups = 20
    n_per_group = 10
    n = n_groups * n_per_group

    beta0 = 5.0
    beta1 = 2.0
    sigma_group = 3.0
    sigma_resid = 1.0

    group_effects = rng.normal(0, sigma_group, size=n_groups)
    group = np.repeat(np.arange(n_groups), n_per_group)
    x = rng.normal(0, 1, size=n)

    y = beta0 + beta1 * x + group_effects[group] + rng.normal(0, sigma_resid, size=n)

    X = np.column_stack([np.ones(n), x])

    return {
        'y': y, 'X': X, 'group': group, 'x': x,
        'n_groups': n_groups, 'n_per_group': n_per_group,
        'beta0': beta0, 'beta1': beta1,
        'sigma_group': sigma_group, 'sigma_resid': sigma_resid,
    }


@pytest.fixture
def crossed_effects(rng):
    """Crossed random effects: y ~ x + (1 | subject) + (1 | item).

    30 subjects × 10 items = 300 observations.
    """
    n_subjects = 30
    n_items = 10
    n = n_subjects * n_items

    beta0 = 3.0
    beta1 = 1.5
    sigma_subject = 2.0
    sigma_item = 1.5
    sigma_resid = 1.0

    subject_effects = rng.normal(0, sigma_subject, size=n_subjects)
    item_effects = rng.normal(0, sigma_item, size=n_items)

    subject = np.repeat(np.arange(n_subjects), n_items)
    item = np.tile(np.arange(n_items), n_subjects)
    x = rng.normal(0, 1, size=n)

    y = (beta0 + beta1 * x
         + subject_effects[subject]
         + item_effects[item]
         + rng.normal(0, sigma_resid, size=n))

    X = np.column_stack([np.ones(n), x])

    return {
        'y': y, 'X': X, 'subject': subject, 'item': item, 'x': x,
        'n_subjects': n_subjects, 'n_items': n_items,
        'beta0': beta0, 'beta1': beta1,
        'sigma_subject': sigma_subject, 'sigma_item': sigma_item,
        'sigma_resid': sigma_resid,
    }


@pytest.fixture
def nested_effects(rng):
    """Nested random effects: y ~ x + (1 | student) + (1 | classroom).

    5 classrooms × 6 students × 4 observations = 120 observations.
    Student codes are unique across classrooms.
    """
    n_classrooms = 5
    n_students_per = 6
    n_obs_per = 4
    n_students = n_classrooms * n_students_per
    n = n_students * n_obs_per

    beta0 = 10.0
    beta1 = 0.5
    sigma_classroom = 3.0
    sigma_student = 1.5
    sigma_resid = 1.0

    classroom_effects = rng.normal(0, sigma_classroom, size=n_classrooms)
    student_effects = rng.normal(0, sigma_student, size=n_students)

    classroom = np.repeat(
        np.repeat(np.arange(n_classrooms), n_students_per),
        n_obs_per
    )
    student = np.repeat(np.arange(n_students), n_obs_per)
    x = rng.normal(0, 1, size=n)

    y = (beta0 + beta1 * x
         + classroom_effects[classroom]
         + student_effects[student]
         + rng.normal(0, sigma_resid, size=n))

    X = np.column_stack([np.ones(n), x])

    return {
        'y': y, 'X': X, 'classroom': classroom, 'student': student, 'x': x,
        'n_classrooms': n_classrooms, 'n_students': n_students,
        'beta0': beta0, 'beta1': beta1,
        'sigma_classroom': sigma_classroom, 'sigma_student': sigma_student,
        'sigma_resid': sigma_resid,
    }


def _dense_pls(terms, X, y, reml=False):
    """Unblocked PLS at the terms' current λ.

    Forms Z and Λ explicitly and solves the penalized normal equations
    in one dense system.
    """
    n, p = X.shape
    Z = np.hstack([t.dense_z() for t in terms])
    Lam = sla.block_diag(*[np.kron(np.eye(t.n_levels), t.lam.matrix) for t in terms])
    ZL = Z @ Lam
    q = ZL.shape[1]

    M = ZL.T @ ZL + np.eye(q)
    logdet_re = 2.0 * np.sum(np.log(np.diag(np.linalg.cholesky(M))))

    C = np.block([[M, ZL.T @ X], [X.T @ ZL, X.T @ X]])
    rhs = np.concatenate([ZL.T @ y, X.T @ y])
    sol = np.linalg.solve(C, rhs)
    u, beta = sol[:q], sol[q:]

    resid = y - X @ beta - ZL @ u
    pwrss = resid @ resid + u @ u

    schur = X.T @ X - X.T @ ZL @ np.linalg.solve(M, ZL.T @ X)
    logdet_x = np.linalg.slogdet(schur)[1]

    df = n - p if reml else n
    deviance = logdet_re + df * (1.0 + np.log(2.0 * np.pi * pwrss / df))
    if reml:
        deviance += logdet_x

    return {
        'deviance': deviance,
        'beta': beta,
        'u': u,
        'b': Lam @ u,
        'pwrss': pwrss,
        'logdet': logdet_re,
        'logdet_x': logdet_x,
        'vcov': pwrss / df * np.linalg.inv(schur),
    }


@pytest.fixture
def dense_pls():
    """Callable (terms, X, y, reml=False) -> dict of dense PLS quantities."""
    return _dense_pls
