"""Hessian composition rules for nonlinear least squares.

This module combines raw derivatives into the Hessian of the Lagrangian of a
least-squares problem:

    L(x, y) = w * 1/2 ||F(x)||^2 + sum_i y_i c_i(x)

Its Hessian with respect to x is:

    H = w * (J^T J + sum_j F_j(x) * H_{F_j}(x)) + sum_i y_i * H_{c_i}(x)

where J is the residual Jacobian. The first term J^T J is the Gauss-Newton
approximation; the sum over residual components is the exact curvature
correction that a pure Gauss-Newton method drops.

Only the lower triangle of H is returned by the dense path. The product path
never forms J, J^T J or any component Hessian: it composes a forward-mode
product J v, a reverse-mode product J^T (J v) and one forward-over-reverse
product per residual component or constraint.
"""

import logging
from collections.abc import Callable

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

logger = logging.getLogger(__name__)


@jaxtyped(typechecker=beartype)
def gauss_newton_hessian(jac: Float[Array, "m n"]) -> Float[Array, "n n"]:
    """Gauss-Newton term J^T J of the Hessian of 1/2 ||F(x)||^2."""
    return jac.T @ jac


@jaxtyped(typechecker=beartype)
def least_squares_hessian(
    jac: Float[Array, "m n"],
    curvature: Float[Array, "n n"],
    obj_weight: float,
) -> Float[Array, "n n"]:
    """Full Hessian of w * 1/2 ||F(x)||^2.

    Args:
        jac: Residual Jacobian J(x).
        curvature: Hessian of x -> F(x)^T F(x0) evaluated at x0, i.e.
            sum_j F_j H_{F_j}. Either the full matrix or its lower triangle.
        obj_weight: Objective weight w.

    Returns:
        w * (J^T J + curvature).
    """
    return obj_weight * (gauss_newton_hessian(jac) + curvature)


def least_squares_hvp(
    residual: Float[Array, " m"],
    jvp_fn: Callable[[Float[Array, " n"]], Float[Array, " m"]],
    vjp_fn: Callable[[Float[Array, " m"]], Float[Array, " n"]],
    component_hvp_fn: Callable[[int, Float[Array, " n"]], Float[Array, " n"]],
    v: Float[Array, " n"],
    obj_weight: float,
) -> Float[Array, " n"]:
    """Product of the Hessian of w * 1/2 ||F(x)||^2 with v.

    Computes w * (J^T (J v) + sum_j F_j (H_{F_j} v)) using only products.

    Args:
        residual: Residual values F(x).
        jvp_fn: v -> J(x) v.
        vjp_fn: w -> J(x)^T w.
        component_hvp_fn: (j, v) -> H_{F_j}(x) v.
        v: Vector to multiply.
        obj_weight: Objective weight w.

    Returns:
        The Hessian-vector product.
    """
    hv = vjp_fn(jvp_fn(v))
    for j in range(residual.shape[0]):
        hv = hv + residual[j] * component_hvp_fn(j, v)
    return obj_weight * hv


def add_constraint_terms(
    acc: Float[Array, "..."],
    y: Float[Array, " ncon"],
    term_fn: Callable[[int], Float[Array, "..."]],
) -> Float[Array, "..."]:
    """Accumulate y_i * term_fn(i) for every nonzero multiplier y_i.

    ``term_fn(i)`` is either the Hessian of c_i or its product with a vector;
    it is never called for a zero multiplier.
    """
    y_values = [float(y_i) for y_i in y]
    skipped = 0
    for i, y_i in enumerate(y_values):
        if y_i == 0.0:
            skipped += 1
            continue
        acc = acc + y_i * term_fn(i)
    if skipped:
        logger.debug("Skipped %d of %d zero multipliers", skipped, len(y_values))
    return acc


def lower_triangle(hess: Float[Array, "n n"]) -> Float[Array, "n n"]:
    """Zero the strict upper triangle; only row >= col entries are stored."""
    return jnp.tril(hess)


def symmetrize(lower: Float[Array, "n n"]) -> Float[Array, "n n"]:
    """Rebuild the full symmetric matrix from its stored lower triangle."""
    return lower + jnp.tril(lower, k=-1).T
