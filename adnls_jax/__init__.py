"""ADNLS-JAX: nonlinear least-squares models with JAX automatic differentiation.

This package turns a residual function F (and an optional constraint function
c) into the derivative information nonlinear optimization solvers need:
Jacobians, Jacobian-vector products, exact Hessians of the least-squares
Lagrangian and matrix-free Hessian-vector products, with per-operation
evaluation counters and coordinate (triple) export of derivative matrices.
"""

from adnls_jax.coord import (
    dense_structure,
    from_triples,
    lower_triangle_structure,
    to_coo,
    to_triples,
)
from adnls_jax.counters import NLSCounters
from adnls_jax.errors import (
    ADNLSError,
    ComponentIndexError,
    ConstraintsNotImplementedError,
    DimensionError,
    InconsistentDimensionsError,
    NonFiniteEvaluationError,
)
from adnls_jax.hessian import (
    gauss_newton_hessian,
    least_squares_hessian,
    least_squares_hvp,
    symmetrize,
)
from adnls_jax.meta import NLSMeta
from adnls_jax.model import ADNLSModel
from adnls_jax.types import ConstraintFn, JacobianMode, ResidualFn

__all__ = [
    # Model
    "ADNLSModel",
    "NLSMeta",
    "NLSCounters",
    # Types
    "ResidualFn",
    "ConstraintFn",
    "JacobianMode",
    # Hessian utilities
    "gauss_newton_hessian",
    "least_squares_hessian",
    "least_squares_hvp",
    "symmetrize",
    # Coordinate export
    "to_triples",
    "from_triples",
    "to_coo",
    "dense_structure",
    "lower_triangle_structure",
    # Errors
    "ADNLSError",
    "DimensionError",
    "InconsistentDimensionsError",
    "ComponentIndexError",
    "ConstraintsNotImplementedError",
    "NonFiniteEvaluationError",
]
