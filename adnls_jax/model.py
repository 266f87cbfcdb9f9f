"""Nonlinear least-squares model with JAX automatic differentiation.

This module contains :class:`ADNLSModel`, the adapter between a user residual
function F (and optional constraint function c) and the derivative
information a nonlinear optimization solver consumes:

1. Residual evaluator: F(x), its Jacobian, Jacobian products and the
   Hessians of its components.
2. Constraint evaluator: the same quantities for c.
3. Hessian assembler: the Hessian of the Lagrangian
   w * 1/2 ||F(x)||^2 + y^T c(x), as a lower-triangular matrix or as a
   matrix-free product.

Every public method increments exactly one evaluation counter. The private
``_*`` helpers do the work without counting, so composite operations such as
:meth:`ADNLSModel.hessian` never inflate the counters of the evaluations they
are built from.
"""

import logging
import operator
from typing import Optional

import equinox as eqx
import jax.numpy as jnp
import numpy as np
import scipy.sparse.linalg as spla
from jaxtyping import Array, ArrayLike, Float

from adnls_jax import coord
from adnls_jax.autodiff import (
    hessian_of,
    hvp_of,
    jacobian_of,
    jvp_of,
    resolve_jacobian_mode,
    vjp_of,
)
from adnls_jax.counters import NLSCounters
from adnls_jax.errors import (
    ComponentIndexError,
    ConstraintsNotImplementedError,
    DimensionError,
    NonFiniteEvaluationError,
)
from adnls_jax.hessian import (
    add_constraint_terms,
    least_squares_hessian,
    least_squares_hvp,
    lower_triangle,
)
from adnls_jax.meta import NLSMeta, VectorLike
from adnls_jax.types import (
    ConstraintFn,
    JacobianMode,
    ResidualFn,
    Structure,
    Triples,
)
from adnls_jax.utils import component_closure, weighted_closure

logger = logging.getLogger(__name__)


class ADNLSModel(eqx.Module):
    """Nonlinear least-squares model using JAX to compute derivatives.

    The objective is 1/2 ||F(x)||^2 where F maps R^nvar to R^nequ. An optional
    constraint function c maps R^nvar to R^ncon, with ncon given by the
    lengths of ``lcon``, ``ucon`` and ``y0``.

    The model is immutable apart from :attr:`counters`. A model built without
    ``c`` is the "no constraints" variant: every constraint operation raises
    :class:`~adnls_jax.errors.ConstraintsNotImplementedError`. A model with
    ``c`` and ``ncon == 0`` is valid and returns empty constraint quantities.

    Attributes:
        meta: Dimensions, bounds and nonzero counts.
        counters: Evaluation counters, one per operation kind.
        residual_fn: The residual function F.
        constraint_fn: The constraint function c, or None.
        jacobian_mode: ``"auto"``, ``"fwd"`` or ``"rev"``.
        check_finite: Raise on NaN/Inf values and derivatives.

    Example:
        >>> import jax.numpy as jnp
        >>> from adnls_jax import ADNLSModel
        >>>
        >>> def F(x):
        ...     return jnp.array([x[0] ** 2 - 1.0, x[0] * x[1]])
        >>>
        >>> model = ADNLSModel(F, jnp.array([2.0, 3.0]), 2)
        >>> fx = model.residual(jnp.array([2.0, 3.0]))  # [3.0, 6.0]
    """

    meta: NLSMeta
    counters: NLSCounters = eqx.field(static=True)

    residual_fn: ResidualFn = eqx.field(static=True)
    constraint_fn: Optional[ConstraintFn] = eqx.field(static=True)

    jacobian_mode: str = eqx.field(static=True)
    check_finite: bool = eqx.field(static=True)

    def __init__(
        self,
        F: ResidualFn,
        x0: VectorLike,
        nequ: int,
        *,
        c: Optional[ConstraintFn] = None,
        lvar: Optional[VectorLike] = None,
        uvar: Optional[VectorLike] = None,
        lcon: Optional[VectorLike] = None,
        ucon: Optional[VectorLike] = None,
        y0: Optional[VectorLike] = None,
        name: str = "Generic",
        jacobian_mode: str = JacobianMode.AUTO,
        check_finite: bool = False,
    ):
        if jacobian_mode not in JacobianMode.ALL:
            raise ValueError(
                f"jacobian_mode must be one of {JacobianMode.ALL}, "
                f"got {jacobian_mode!r}"
            )
        self.meta = NLSMeta(
            x0, nequ, lvar=lvar, uvar=uvar, lcon=lcon, ucon=ucon, y0=y0, name=name
        )
        self.counters = NLSCounters()
        self.residual_fn = F
        self.constraint_fn = c
        self.jacobian_mode = jacobian_mode
        self.check_finite = check_finite
        logger.debug(
            "Created ADNLSModel %r: nvar=%d, nequ=%d, ncon=%d, constraints=%s",
            name,
            self.meta.nvar,
            self.meta.nequ,
            self.meta.ncon,
            c is not None,
        )

    @property
    def nvar(self) -> int:
        return self.meta.nvar

    @property
    def nequ(self) -> int:
        return self.meta.nequ

    @property
    def ncon(self) -> int:
        return self.meta.ncon

    @property
    def has_constraints(self) -> bool:
        """Whether the model was built with a constraint function."""
        return self.constraint_fn is not None

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _vector(self, values: ArrayLike, size: int, label: str) -> Float[Array, " n"]:
        """Convert ``values`` to a float vector and check its length."""
        vec = jnp.asarray(values, dtype=jnp.result_type(float))
        if vec.ndim != 1 or vec.shape[0] != size:
            raise DimensionError(
                f"{label} must be a vector of length {size}",
                {"expected": size, "shape": tuple(vec.shape)},
            )
        return vec

    def _x(self, x: ArrayLike) -> Float[Array, " nvar"]:
        return self._vector(x, self.nvar, "x")

    def _index(self, i: int, size: int, label: str) -> int:
        # bool is an int subclass but never a valid component index
        if isinstance(i, (bool, np.bool_)):
            raise ComponentIndexError(f"{label} index must be an integer", {"index": i})
        try:
            i = operator.index(i)
        except TypeError:
            raise ComponentIndexError(
                f"{label} index must be an integer", {"index": i}
            ) from None
        if not 0 <= i < size:
            raise ComponentIndexError(
                f"{label} index out of range", {"index": i, "size": size}
            )
        return i

    def _multipliers(self, y: Optional[ArrayLike]) -> Float[Array, " ncon"]:
        """Lagrange multipliers; None or empty means no constraint term."""
        if y is None or jnp.size(jnp.asarray(y)) == 0:
            return jnp.zeros((0,))
        return self._vector(y, self.ncon, "y")

    def _require_constraints(self, operation: str) -> ConstraintFn:
        if self.constraint_fn is None:
            raise ConstraintsNotImplementedError(operation)
        return self.constraint_fn

    def _finite(self, value: Array, label: str) -> Array:
        if self.check_finite and not bool(jnp.all(jnp.isfinite(value))):
            raise NonFiniteEvaluationError(
                f"{label} contains NaN or Inf", {"name": self.meta.name}
            )
        return value

    def _checked_output(self, value: Array, size: int, label: str) -> Array:
        value = jnp.asarray(value)
        if value.shape != (size,):
            raise DimensionError(
                f"{label} must return a vector of length {size}",
                {"expected": size, "shape": tuple(value.shape)},
            )
        return self._finite(value, label)

    # ------------------------------------------------------------------
    # Uncounted evaluations shared by the public operations
    # ------------------------------------------------------------------

    def _residual(self, x: Float[Array, " nvar"]) -> Float[Array, " nequ"]:
        return self._checked_output(self.residual_fn(x), self.nequ, "residual")

    def _checked_jacobian(self, jac: Array, nrows: int, label: str) -> Array:
        if jac.shape != (nrows, self.nvar):
            raise DimensionError(
                f"{label} must have shape ({nrows}, {self.nvar})",
                {"shape": tuple(jac.shape)},
            )
        return jac

    def _residual_jacobian(self, x: Float[Array, " nvar"]) -> Float[Array, "nequ nvar"]:
        mode = resolve_jacobian_mode(self.jacobian_mode, self.nequ, self.nvar)
        jac = jacobian_of(self.residual_fn, x, mode)
        return self._checked_jacobian(jac, self.nequ, "residual Jacobian")

    def _residual_hessian(
        self, x: Float[Array, " nvar"], w: Float[Array, " nequ"]
    ) -> Float[Array, "nvar nvar"]:
        return lower_triangle(hessian_of(weighted_closure(self.residual_fn, w), x))

    def _residual_component_hvp(
        self, x: Float[Array, " nvar"], i: int, v: Float[Array, " nvar"]
    ) -> Float[Array, " nvar"]:
        return hvp_of(component_closure(self.residual_fn, i), x, v)

    def _constraint_component_hessian(
        self, c: ConstraintFn, x: Float[Array, " nvar"], i: int
    ) -> Float[Array, "nvar nvar"]:
        return hessian_of(component_closure(c, i), x)

    def _constraint_component_hvp(
        self, c: ConstraintFn, x: Float[Array, " nvar"], i: int, v: Float[Array, " nvar"]
    ) -> Float[Array, " nvar"]:
        return hvp_of(component_closure(c, i), x, v)

    # ------------------------------------------------------------------
    # Residual evaluator
    # ------------------------------------------------------------------

    def residual(self, x: ArrayLike) -> Float[Array, " nequ"]:
        """Evaluate the residual F(x)."""
        x = self._x(x)
        self.counters.increment("neval_residual")
        return self._residual(x)

    def residual_jacobian(self, x: ArrayLike) -> Float[Array, "nequ nvar"]:
        """Dense Jacobian of the residual, shape (nequ, nvar)."""
        x = self._x(x)
        self.counters.increment("neval_jac_residual")
        return self._finite(self._residual_jacobian(x), "residual Jacobian")

    def residual_jvp(self, x: ArrayLike, v: ArrayLike) -> Float[Array, " nequ"]:
        """Jacobian-vector product J(x) v of the residual (forward mode)."""
        x = self._x(x)
        v = self._vector(v, self.nvar, "v")
        self.counters.increment("neval_jprod_residual")
        return self._finite(jvp_of(self.residual_fn, x, v), "residual J v")

    def residual_vjp(self, x: ArrayLike, w: ArrayLike) -> Float[Array, " nvar"]:
        """Transposed Jacobian-vector product J(x)^T w of the residual."""
        x = self._x(x)
        w = self._vector(w, self.nequ, "w")
        self.counters.increment("neval_jtprod_residual")
        return self._finite(vjp_of(self.residual_fn, x, w), "residual J^T w")

    def residual_jacobian_operator(self, x: ArrayLike) -> spla.LinearOperator:
        """Matrix-free residual Jacobian at ``x`` as a scipy LinearOperator.

        ``op @ v`` calls :meth:`residual_jvp` and ``op.T @ w`` (or ``op.H``)
        calls :meth:`residual_vjp`, so each product counts once. Building the
        operator evaluates nothing.
        """
        x = self._x(x)

        def matvec(v):
            return np.asarray(self.residual_jvp(x, np.ravel(v)))

        def rmatvec(w):
            return np.asarray(self.residual_vjp(x, np.ravel(w)))

        # an explicit dtype stops scipy from probing matvec with a zero vector
        return spla.LinearOperator(
            (self.nequ, self.nvar),
            matvec=matvec,
            rmatvec=rmatvec,
            dtype=np.dtype(x.dtype),
        )

    def residual_component_hessian(
        self, x: ArrayLike, i: int
    ) -> Float[Array, "nvar nvar"]:
        """Lower triangle of the Hessian of the ``i``-th residual component."""
        x = self._x(x)
        i = self._index(i, self.nequ, "Residual component")
        self.counters.increment("neval_jhess_residual")
        hess = hessian_of(component_closure(self.residual_fn, i), x)
        return self._finite(lower_triangle(hess), "residual component Hessian")

    def residual_component_hvp(
        self, x: ArrayLike, i: int, v: ArrayLike
    ) -> Float[Array, " nvar"]:
        """Product of the ``i``-th residual component Hessian with ``v``."""
        x = self._x(x)
        i = self._index(i, self.nequ, "Residual component")
        v = self._vector(v, self.nvar, "v")
        self.counters.increment("neval_hprod_residual")
        return self._finite(
            self._residual_component_hvp(x, i, v), "residual component H v"
        )

    def residual_hessian(self, x: ArrayLike, w: ArrayLike) -> Float[Array, "nvar nvar"]:
        """Lower triangle of the Hessian of x -> F(x)^T w.

        Equal to sum_i w_i H_{F_i}(x). With ``w = F(x)`` this is the curvature
        term that separates the exact least-squares Hessian from its
        Gauss-Newton approximation.
        """
        x = self._x(x)
        w = self._vector(w, self.nequ, "w")
        self.counters.increment("neval_hess_residual")
        return self._finite(self._residual_hessian(x, w), "residual Hessian")

    def objective(self, x: ArrayLike) -> Float[Array, ""]:
        """Least-squares objective 1/2 ||F(x)||^2."""
        x = self._x(x)
        self.counters.increment("neval_obj")
        fx = self._residual(x)
        return 0.5 * jnp.dot(fx, fx)

    def gradient(self, x: ArrayLike) -> Float[Array, " nvar"]:
        """Gradient J(x)^T F(x) of the least-squares objective."""
        x = self._x(x)
        self.counters.increment("neval_grad")
        fx = self._residual(x)
        return self._finite(vjp_of(self.residual_fn, x, fx), "gradient")

    def residual_jacobian_structure(self) -> Structure:
        """Row and column indices of the residual Jacobian triples."""
        return coord.dense_structure(self.nequ, self.nvar)

    def residual_jacobian_coord(self, x: ArrayLike) -> Triples:
        """Residual Jacobian as (rows, cols, vals) triples."""
        return coord.to_triples(self.residual_jacobian(x))

    def residual_hessian_structure(self) -> Structure:
        """Row and column indices of the residual Hessian triples."""
        return coord.lower_triangle_structure(self.nvar)

    def residual_hessian_coord(self, x: ArrayLike, w: ArrayLike) -> Triples:
        """Lower triangle of the weighted residual Hessian as triples."""
        return coord.to_triples(self.residual_hessian(x, w), lower_triangular_only=True)

    # ------------------------------------------------------------------
    # Constraint evaluator
    # ------------------------------------------------------------------

    def constraints(self, x: ArrayLike) -> Float[Array, " ncon"]:
        """Evaluate the constraint function c(x)."""
        c = self._require_constraints("constraints")
        x = self._x(x)
        self.counters.increment("neval_cons")
        if self.ncon == 0:
            return jnp.zeros((0,), dtype=x.dtype)
        return self._checked_output(c(x), self.ncon, "constraints")

    def constraint_jacobian(self, x: ArrayLike) -> Float[Array, "ncon nvar"]:
        """Dense Jacobian of the constraints, shape (ncon, nvar)."""
        c = self._require_constraints("constraint_jacobian")
        x = self._x(x)
        self.counters.increment("neval_jac")
        if self.ncon == 0:
            return jnp.zeros((0, self.nvar), dtype=x.dtype)
        mode = resolve_jacobian_mode(self.jacobian_mode, self.ncon, self.nvar)
        jac = self._checked_jacobian(
            jacobian_of(c, x, mode), self.ncon, "constraint Jacobian"
        )
        return self._finite(jac, "constraint Jacobian")

    def constraint_jvp(self, x: ArrayLike, v: ArrayLike) -> Float[Array, " ncon"]:
        """Jacobian-vector product of the constraints."""
        c = self._require_constraints("constraint_jvp")
        x = self._x(x)
        v = self._vector(v, self.nvar, "v")
        self.counters.increment("neval_jprod")
        if self.ncon == 0:
            return jnp.zeros((0,), dtype=x.dtype)
        return self._checked_output(jvp_of(c, x, v), self.ncon, "constraint J v")

    def constraint_vjp(self, x: ArrayLike, w: ArrayLike) -> Float[Array, " nvar"]:
        """Transposed Jacobian-vector product of the constraints."""
        c = self._require_constraints("constraint_vjp")
        x = self._x(x)
        w = self._vector(w, self.ncon, "w")
        self.counters.increment("neval_jtprod")
        if self.ncon == 0:
            return jnp.zeros((self.nvar,), dtype=x.dtype)
        return self._finite(vjp_of(c, x, w), "constraint J^T w")

    def constraint_component_hessian(
        self, x: ArrayLike, i: int
    ) -> Float[Array, "nvar nvar"]:
        """Lower triangle of the Hessian of the ``i``-th constraint."""
        c = self._require_constraints("constraint_component_hessian")
        x = self._x(x)
        i = self._index(i, self.ncon, "Constraint")
        self.counters.increment("neval_jhess")
        hess = self._constraint_component_hessian(c, x, i)
        return self._finite(lower_triangle(hess), "constraint Hessian")

    def constraint_component_hvp(
        self, x: ArrayLike, i: int, v: ArrayLike
    ) -> Float[Array, " nvar"]:
        """Product of the ``i``-th constraint Hessian with ``v``."""
        c = self._require_constraints("constraint_component_hvp")
        x = self._x(x)
        i = self._index(i, self.ncon, "Constraint")
        v = self._vector(v, self.nvar, "v")
        self.counters.increment("neval_jhprod")
        return self._finite(
            self._constraint_component_hvp(c, x, i, v), "constraint H v"
        )

    def constraint_jacobian_structure(self) -> Structure:
        """Row and column indices of the constraint Jacobian triples."""
        return coord.dense_structure(self.ncon, self.nvar)

    def constraint_jacobian_coord(self, x: ArrayLike) -> Triples:
        """Constraint Jacobian as (rows, cols, vals) triples."""
        return coord.to_triples(self.constraint_jacobian(x))

    # ------------------------------------------------------------------
    # Hessian assembler
    # ------------------------------------------------------------------

    def _constraint_term_source(self, y: Float[Array, " ncon"]) -> Optional[ConstraintFn]:
        """Constraint function needed for the multiplier term, if any.

        Only nonzero multipliers require c, so a model without constraints
        accepts an all-zero ``y``.
        """
        if y.shape[0] == 0 or not bool(jnp.any(y != 0)):
            return None
        return self._require_constraints("hessian")

    def hessian(
        self,
        x: ArrayLike,
        obj_weight: float = 1.0,
        y: Optional[ArrayLike] = None,
    ) -> Float[Array, "nvar nvar"]:
        """Lower triangle of the Hessian of the Lagrangian.

        Computes

            H = w * (J^T J + sum_j F_j H_{F_j}) + sum_i y_i H_{c_i}

        and returns ``tril(H)``. When ``obj_weight`` is zero the residual is
        not evaluated at all, and constraints with a zero multiplier are not
        differentiated.

        Args:
            x: Evaluation point.
            obj_weight: Weight w of the least-squares objective.
            y: Lagrange multipliers, length ncon. None or empty for none.

        Returns:
            Lower-triangular (nvar, nvar) matrix.
        """
        x = self._x(x)
        y = self._multipliers(y)
        obj_weight = float(obj_weight)
        c = self._constraint_term_source(y)
        self.counters.increment("neval_hess")

        hess = jnp.zeros((self.nvar, self.nvar), dtype=x.dtype)
        if obj_weight != 0.0:
            jac = self._residual_jacobian(x)
            curvature = self._residual_hessian(x, self._residual(x))
            hess = least_squares_hessian(jac, curvature, obj_weight)
        else:
            logger.debug("obj_weight is zero; skipping the least-squares term")

        if c is not None:
            hess = add_constraint_terms(
                hess, y, lambda i: self._constraint_component_hessian(c, x, i)
            )
        return self._finite(lower_triangle(hess), "Lagrangian Hessian")

    def hvp(
        self,
        x: ArrayLike,
        v: ArrayLike,
        obj_weight: float = 1.0,
        y: Optional[ArrayLike] = None,
    ) -> Float[Array, " nvar"]:
        """Product of the Lagrangian Hessian with ``v``, matrix-free.

        Equal to ``symmetrize(hessian(x, obj_weight, y)) @ v`` but never forms
        J, J^T J or any component Hessian:

            Hv = w * (J^T (J v) + sum_j F_j (H_{F_j} v)) + sum_i y_i (H_{c_i} v)

        Args:
            x: Evaluation point.
            v: Vector to multiply, length nvar.
            obj_weight: Weight w of the least-squares objective.
            y: Lagrange multipliers, length ncon. None or empty for none.

        Returns:
            Vector of length nvar.
        """
        x = self._x(x)
        v = self._vector(v, self.nvar, "v")
        y = self._multipliers(y)
        obj_weight = float(obj_weight)
        c = self._constraint_term_source(y)
        self.counters.increment("neval_hprod")

        hv = jnp.zeros((self.nvar,), dtype=x.dtype)
        if obj_weight != 0.0:
            hv = least_squares_hvp(
                residual=self._residual(x),
                jvp_fn=lambda u: jvp_of(self.residual_fn, x, u),
                vjp_fn=lambda w: vjp_of(self.residual_fn, x, w),
                component_hvp_fn=lambda j, u: self._residual_component_hvp(x, j, u),
                v=v,
                obj_weight=obj_weight,
            )
        else:
            logger.debug("obj_weight is zero; skipping the least-squares term")

        if c is not None:
            hv = add_constraint_terms(
                hv, y, lambda i: self._constraint_component_hvp(c, x, i, v)
            )
        return self._finite(hv, "Lagrangian H v")

    def hessian_structure(self) -> Structure:
        """Row and column indices of the Lagrangian Hessian triples."""
        return coord.lower_triangle_structure(self.nvar)

    def hessian_coord(
        self,
        x: ArrayLike,
        obj_weight: float = 1.0,
        y: Optional[ArrayLike] = None,
    ) -> Triples:
        """Lower triangle of the Lagrangian Hessian as (rows, cols, vals)."""
        return coord.to_triples(
            self.hessian(x, obj_weight=obj_weight, y=y), lower_triangular_only=True
        )
