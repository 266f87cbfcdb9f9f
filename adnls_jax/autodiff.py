"""Automatic differentiation primitives.

Thin layer over JAX's transformations. Every function takes a callable and an
evaluation point and returns an exact (to floating point) derivative:

- ``jacobian_of``: f: R^n -> R^m, returns the (m, n) Jacobian.
- ``hessian_of``: g: R^n -> R, returns the (n, n) Hessian.
- ``jvp_of``: J(x) @ v by forward mode, without forming J.
- ``vjp_of``: J(x)^T @ w by reverse mode, without forming J.
- ``hvp_of``: H(x) @ v by forward-over-reverse, without forming H.

Nothing here catches exceptions: errors raised while tracing or evaluating
the user function reach the caller unchanged.
"""

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from adnls_jax.errors import DimensionError
from adnls_jax.types import JacobianMode, ScalarFn


def resolve_jacobian_mode(mode: str, n_out: int, n_in: int) -> str:
    """Pick forward or reverse mode for a Jacobian of shape (n_out, n_in).

    ``"auto"`` uses reverse mode when there are no more outputs than inputs,
    since reverse mode costs one pass per output and forward mode one pass
    per input.
    """
    if mode not in JacobianMode.ALL:
        raise ValueError(
            f"jacobian_mode must be one of {JacobianMode.ALL}, got {mode!r}"
        )
    if mode == JacobianMode.AUTO:
        return JacobianMode.REVERSE if n_out <= n_in else JacobianMode.FORWARD
    return mode


def jacobian_of(
    fn, x: Float[Array, " n"], mode: str = JacobianMode.FORWARD
) -> Float[Array, "m n"]:
    """Jacobian of a vector-valued ``fn`` at ``x``."""
    jac_fun = jax.jacrev if mode == JacobianMode.REVERSE else jax.jacfwd
    return jac_fun(fn)(x)


@jaxtyped(typechecker=beartype)
def hessian_of(fn: ScalarFn, x: Float[Array, " n"]) -> Float[Array, "n n"]:
    """Hessian of a scalar-valued ``fn`` at ``x`` (forward-over-reverse)."""
    return jax.hessian(fn)(x)


def jvp_of(fn, x: Float[Array, " n"], v: Float[Array, " n"]) -> Float[Array, " m"]:
    """Directional derivative J(x) @ v."""
    _, tangent = jax.jvp(fn, (x,), (v,))
    return tangent


def vjp_of(fn, x: Float[Array, " n"], w: Float[Array, " m"]) -> Float[Array, " n"]:
    """Transposed product J(x)^T @ w.

    Raises:
        DimensionError: If ``fn(x)`` and ``w`` differ in shape.
    """
    fx, pullback = jax.vjp(fn, x)
    if jnp.shape(fx) != w.shape:
        raise DimensionError(
            f"function output of shape {jnp.shape(fx)} cannot pair with a cotangent "
            f"of shape {w.shape}",
            {"output_shape": jnp.shape(fx), "cotangent_shape": tuple(w.shape)},
        )
    (cotangent,) = pullback(w)
    return cotangent


@jaxtyped(typechecker=beartype)
def hvp_of(
    fn: ScalarFn, x: Float[Array, " n"], v: Float[Array, " n"]
) -> Float[Array, " n"]:
    """Hessian-vector product H(x) @ v of a scalar-valued ``fn``."""
    _, hv = jax.jvp(jax.grad(fn), (x,), (v,))
    return hv
