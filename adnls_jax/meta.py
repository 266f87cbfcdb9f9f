"""Problem metadata for NLS models.

Holds the dimensions, bounds and structural nonzero counts of a nonlinear
least-squares model. The metadata is fixed at construction and exposes read
access so a solver can preallocate its buffers.

Dense derivatives are assumed, so the nonzero counts are:

    nnzj          = nvar * ncon            (constraint Jacobian)
    nnzj_residual = nvar * nequ            (residual Jacobian)
    nnzh          = nvar * (nvar + 1) / 2  (lower triangle of the Hessian)
"""

from collections.abc import Sequence
from typing import Optional, Union

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float

from adnls_jax.errors import DimensionError, InconsistentDimensionsError

VectorLike = Union[ArrayLike, Sequence[float]]


def _as_float_array(values: VectorLike) -> Float[Array, " n"]:
    return jnp.asarray(values, dtype=jnp.result_type(float)).reshape(-1)


def _filled(
    values: Optional[VectorLike], size: int, fill: float
) -> Float[Array, " n"]:
    if values is None:
        return jnp.full((size,), fill, dtype=jnp.result_type(float))
    return _as_float_array(values)


class NLSMeta(eqx.Module):
    """Dimensions, bounds and nonzero counts of an NLS model.

    Attributes:
        nvar: Number of decision variables.
        nequ: Number of residual components.
        ncon: Number of constraints (may be zero).
        x0: Initial point.
        lvar: Lower bounds on the variables (-inf when unbounded).
        uvar: Upper bounds on the variables (+inf when unbounded).
        lcon: Lower bounds on the constraints.
        ucon: Upper bounds on the constraints.
        y0: Initial Lagrange multipliers.
        nnzj: Nonzeros of the constraint Jacobian.
        nnzj_residual: Nonzeros of the residual Jacobian.
        nnzh: Nonzeros of the lower triangle of the Hessian.
        name: Problem name.
    """

    nvar: int = eqx.field(static=True)
    nequ: int = eqx.field(static=True)
    ncon: int = eqx.field(static=True)

    x0: Float[Array, " nvar"]
    lvar: Float[Array, " nvar"]
    uvar: Float[Array, " nvar"]

    lcon: Float[Array, " ncon"]
    ucon: Float[Array, " ncon"]
    y0: Float[Array, " ncon"]

    nnzj: int = eqx.field(static=True)
    nnzj_residual: int = eqx.field(static=True)
    nnzh: int = eqx.field(static=True)

    name: str = eqx.field(static=True)

    def __init__(
        self,
        x0: VectorLike,
        nequ: int,
        lvar: Optional[VectorLike] = None,
        uvar: Optional[VectorLike] = None,
        lcon: Optional[VectorLike] = None,
        ucon: Optional[VectorLike] = None,
        y0: Optional[VectorLike] = None,
        name: str = "Generic",
    ):
        x0 = _as_float_array(x0)
        nvar = x0.shape[0]
        if nvar < 1:
            raise DimensionError("x0 must have at least one entry", {"nvar": nvar})
        if nequ < 1:
            raise DimensionError(
                "The residual must have at least one component", {"nequ": nequ}
            )

        lvar = _filled(lvar, nvar, -jnp.inf)
        uvar = _filled(uvar, nvar, jnp.inf)
        for label, bound in (("lvar", lvar), ("uvar", uvar)):
            if bound.shape[0] != nvar:
                raise InconsistentDimensionsError(
                    f"{label} must have the same length as x0",
                    {label: bound.shape[0], "nvar": nvar},
                )

        # ncon is given by whichever of lcon, ucon and y0 were supplied,
        # and all supplied ones must agree
        supplied = {
            label: _as_float_array(values)
            for label, values in (("lcon", lcon), ("ucon", ucon), ("y0", y0))
            if values is not None
        }
        lengths = {label: values.shape[0] for label, values in supplied.items()}
        if len(set(lengths.values())) > 1:
            raise InconsistentDimensionsError(
                "lcon, ucon and y0 need to be the same length", lengths
            )
        ncon = max(lengths.values(), default=0)

        self.nvar = nvar
        self.nequ = int(nequ)
        self.ncon = ncon
        self.x0 = x0
        self.lvar = lvar
        self.uvar = uvar
        self.lcon = supplied.get("lcon", _filled(None, ncon, -jnp.inf))
        self.ucon = supplied.get("ucon", _filled(None, ncon, jnp.inf))
        self.y0 = supplied.get("y0", _filled(None, ncon, 0.0))
        self.nnzj = nvar * ncon
        self.nnzj_residual = nvar * self.nequ
        self.nnzh = nvar * (nvar + 1) // 2
        self.name = name

    # Index sets, computed with numpy since they are static structural data

    def ifix(self) -> np.ndarray:
        """Indices of fixed variables (lvar == uvar)."""
        return _fixed(self.lvar, self.uvar)

    def ilow(self) -> np.ndarray:
        """Indices of variables with only a finite lower bound."""
        return _lower_only(self.lvar, self.uvar)

    def iupp(self) -> np.ndarray:
        """Indices of variables with only a finite upper bound."""
        return _upper_only(self.lvar, self.uvar)

    def irng(self) -> np.ndarray:
        """Indices of variables with distinct finite lower and upper bounds."""
        return _ranged(self.lvar, self.uvar)

    def ifree(self) -> np.ndarray:
        """Indices of unbounded variables."""
        return _free(self.lvar, self.uvar)

    def jfix(self) -> np.ndarray:
        """Indices of equality constraints (lcon == ucon)."""
        return _fixed(self.lcon, self.ucon)

    def jlow(self) -> np.ndarray:
        return _lower_only(self.lcon, self.ucon)

    def jupp(self) -> np.ndarray:
        return _upper_only(self.lcon, self.ucon)

    def jrng(self) -> np.ndarray:
        return _ranged(self.lcon, self.ucon)

    def jfree(self) -> np.ndarray:
        return _free(self.lcon, self.ucon)

    @property
    def has_bounds(self) -> bool:
        """Whether any variable has a finite bound."""
        return bool(
            np.any(np.isfinite(np.asarray(self.lvar)))
            or np.any(np.isfinite(np.asarray(self.uvar)))
        )

    @property
    def unconstrained(self) -> bool:
        return self.ncon == 0 and not self.has_bounds

    @property
    def bound_constrained(self) -> bool:
        return self.ncon == 0 and self.has_bounds

    @property
    def equality_constrained(self) -> bool:
        return self.ncon > 0 and len(self.jfix()) == self.ncon


def _finite_masks(lower, upper) -> tuple[np.ndarray, np.ndarray]:
    return np.isfinite(np.asarray(lower)), np.isfinite(np.asarray(upper))


def _fixed(lower, upper) -> np.ndarray:
    return np.flatnonzero(np.asarray(lower) == np.asarray(upper))


def _lower_only(lower, upper) -> np.ndarray:
    has_lower, has_upper = _finite_masks(lower, upper)
    return np.flatnonzero(has_lower & ~has_upper)


def _upper_only(lower, upper) -> np.ndarray:
    has_lower, has_upper = _finite_masks(lower, upper)
    return np.flatnonzero(~has_lower & has_upper)


def _ranged(lower, upper) -> np.ndarray:
    has_lower, has_upper = _finite_masks(lower, upper)
    distinct = np.asarray(lower) != np.asarray(upper)
    return np.flatnonzero(has_lower & has_upper & distinct)


def _free(lower, upper) -> np.ndarray:
    has_lower, has_upper = _finite_masks(lower, upper)
    return np.flatnonzero(~has_lower & ~has_upper)
