"""Shared problems for the ADNLS-JAX tests."""

import jax
import jax.numpy as jnp
import pytest

from adnls_jax import ADNLSModel

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def simple_residual(x):
    """F(x) = [x1^2 - 1, x1 x2]."""
    return jnp.array([x[0] ** 2 - 1.0, x[0] * x[1]])


def simple_constraints(x):
    """c(x) = [x1^2 x2, x1 + x2]."""
    return jnp.array([x[0] ** 2 * x[1], x[0] + x[1]])


def nonlinear_residual(x):
    """Residual with nonzero curvature in every component (nvar=3, nequ=4)."""
    return jnp.array(
        [
            x[0] * x[1] - 1.0,
            jnp.sin(x[0]) + x[2] ** 2,
            jnp.exp(0.1 * x[1] * x[2]),
            x[0] ** 3 - x[1] * x[2] ** 2,
        ]
    )


def nonlinear_constraints(x):
    """Three nonlinear constraints on R^3."""
    return jnp.array(
        [
            x[0] ** 2 + x[1] ** 2 + x[2] ** 2,
            x[0] * x[1] * x[2],
            jnp.cos(x[0] + x[2]) + x[1],
        ]
    )


@pytest.fixture
def simple_model():
    return ADNLSModel(simple_residual, jnp.array([2.0, 3.0]), 2)


@pytest.fixture
def constrained_model():
    return ADNLSModel(
        simple_residual,
        jnp.array([2.0, 3.0]),
        2,
        c=simple_constraints,
        lcon=[0.0, 0.0],
        ucon=[1.0, 1.0],
    )


@pytest.fixture
def nonlinear_model():
    return ADNLSModel(
        nonlinear_residual,
        jnp.array([0.5, -0.3, 0.8]),
        4,
        c=nonlinear_constraints,
        lcon=[-jnp.inf, 0.0, 0.0],
        ucon=[4.0, 0.0, jnp.inf],
        name="nonlinear",
    )
