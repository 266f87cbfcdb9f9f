from typing import Callable

import jax
import jax.numpy as jnp


def component_closure(
    fn: Callable[[jax.Array], jax.Array], i: int
) -> Callable[[jax.Array], jax.Array]:
    """Scalar function x -> fn(x)[i]."""

    def wrapped(x: jax.Array) -> jax.Array:
        return fn(x)[i]

    return wrapped


def weighted_closure(
    fn: Callable[[jax.Array], jax.Array], weights: jax.Array
) -> Callable[[jax.Array], jax.Array]:
    """Scalar function x -> fn(x)^T weights."""

    def wrapped(x: jax.Array) -> jax.Array:
        return jnp.dot(fn(x), weights)

    return wrapped
