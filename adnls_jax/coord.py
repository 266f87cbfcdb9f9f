"""Coordinate (triple) export of dense derivative matrices.

A matrix is exported as three equal-length sequences ``(rows, cols, vals)``.
Entries are enumerated in row-major order with ties broken by column, so the
same matrix always produces the same triples; sparse solvers that assemble
matrices incrementally rely on that.

For a Hessian only the lower triangle (row >= col) is exported. The upper
triangle is absent by convention and is recovered by symmetry.
"""

from collections.abc import Sequence

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float
from scipy.sparse import coo_matrix

from adnls_jax.errors import DimensionError
from adnls_jax.types import Structure, Triples


def dense_structure(m: int, n: int) -> Structure:
    """Row and column indices of every entry of an (m, n) matrix, row-major."""
    if n == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty.copy()
    return np.divmod(np.arange(m * n, dtype=np.int64), n)


def lower_triangle_structure(n: int) -> Structure:
    """Row and column indices of the lower triangle of an (n, n) matrix.

    Returns n (n + 1) / 2 index pairs with row >= col, row-major.
    """
    rows, cols = np.tril_indices(n)
    return rows.astype(np.int64), cols.astype(np.int64)


def to_triples(
    matrix: ArrayLike, lower_triangular_only: bool = False
) -> Triples:
    """Export a dense matrix as coordinate triples.

    Args:
        matrix: Dense (m, n) matrix.
        lower_triangular_only: Export only the entries with row >= col. The
            matrix must then be square.

    Returns:
        Tuple ``(rows, cols, vals)``; ``rows`` and ``cols`` are NumPy integer
        arrays, ``vals`` a JAX array of the matrix dtype.

    Example:
        >>> rows, cols, vals = to_triples(jnp.array([[1.0, 0.0], [2.0, 3.0]]), True)
        >>> rows.tolist(), cols.tolist(), vals.tolist()
        ([0, 1, 1], [0, 0, 1], [1.0, 2.0, 3.0])
    """
    matrix = jnp.asarray(matrix)
    if matrix.ndim != 2:
        raise DimensionError(
            "to_triples expects a two-dimensional matrix", {"ndim": matrix.ndim}
        )
    m, n = matrix.shape
    if lower_triangular_only:
        if m != n:
            raise DimensionError(
                "Lower-triangular export requires a square matrix", {"shape": (m, n)}
            )
        rows, cols = lower_triangle_structure(n)
    else:
        rows, cols = dense_structure(m, n)
    if rows.size == 0:
        return rows, cols, jnp.zeros((0,), dtype=matrix.dtype)
    return rows, cols, matrix[rows, cols]


def _check_triples(rows, cols, vals) -> None:
    if not len(rows) == len(cols) == len(vals):
        raise DimensionError(
            "rows, cols and vals need to be the same length",
            {"rows": len(rows), "cols": len(cols), "vals": len(vals)},
        )


def from_triples(
    rows: Sequence[int],
    cols: Sequence[int],
    vals: ArrayLike,
    shape: tuple[int, int],
) -> Float[Array, "m n"]:
    """Rebuild a dense matrix from coordinate triples.

    Duplicate coordinates are summed, as in the usual COO convention.
    Positions absent from the triples are zero.
    """
    _check_triples(rows, cols, vals)
    vals = jnp.asarray(vals)
    dense = jnp.zeros(shape, dtype=vals.dtype)
    return dense.at[np.asarray(rows), np.asarray(cols)].add(vals)


def to_coo(
    rows: Sequence[int],
    cols: Sequence[int],
    vals: ArrayLike,
    shape: tuple[int, int],
) -> coo_matrix:
    """Wrap coordinate triples in a ``scipy.sparse.coo_matrix``."""
    _check_triples(rows, cols, vals)
    return coo_matrix(
        (np.asarray(vals), (np.asarray(rows), np.asarray(cols))), shape=shape
    )
