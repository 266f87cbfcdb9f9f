"""Type definitions for ADNLS-JAX.

This module contains type aliases and custom types used throughout the package.
Shapes are written with jaxtyping so that the pure helpers can be checked at
runtime with beartype.
"""

from collections.abc import Callable

import numpy as np
from jaxtyping import Array, Float, Int

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# Residual function type: F(x) -> residual vector of length nequ
# The least-squares objective is 1/2 ||F(x)||^2
ResidualFn = Callable[[Vector], Float[Array, " nequ"]]

# Constraint function type: c(x) -> constraint values of length ncon
# Compared against lcon <= c(x) <= ucon by the consuming solver
ConstraintFn = Callable[[Vector], Float[Array, " ncon"]]

# Scalar-valued function of the decision variables, e.g. x -> F(x)[i]
ScalarFn = Callable[[Vector], Scalar]

# Coordinate (triple) format: parallel row indices, column indices and values
IndexArray = Int[np.ndarray, " nnz"]
Triples = tuple[IndexArray, IndexArray, Float[Array, " nnz"]]
Structure = tuple[IndexArray, IndexArray]


class JacobianMode:
    """Accepted values for the Jacobian differentiation mode."""

    AUTO = "auto"
    FORWARD = "fwd"
    REVERSE = "rev"

    ALL = (AUTO, FORWARD, REVERSE)
