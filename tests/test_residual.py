"""Tests for the residual evaluator of ADNLSModel.

These tests check the values on a hand-computed problem and the algebraic
consistency between the dense derivatives and their matrix-free products.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from conftest import nonlinear_residual, simple_residual

from adnls_jax import (
    ADNLSModel,
    ComponentIndexError,
    DimensionError,
    NonFiniteEvaluationError,
    symmetrize,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestResidualValues:
    """F(x) = [x1^2 - 1, x1 x2] at x = (2, 3)."""

    def test_residual(self, simple_model):
        fx = simple_model.residual(jnp.array([2.0, 3.0]))
        np.testing.assert_allclose(fx, [3.0, 6.0])

    def test_jacobian(self, simple_model):
        J = simple_model.residual_jacobian(jnp.array([2.0, 3.0]))
        np.testing.assert_allclose(J, [[4.0, 0.0], [3.0, 2.0]])

    def test_jvp(self, simple_model):
        Jv = simple_model.residual_jvp(jnp.array([2.0, 3.0]), jnp.array([1.0, 1.0]))
        np.testing.assert_allclose(Jv, [4.0, 5.0])

    def test_vjp(self, simple_model):
        Jtw = simple_model.residual_vjp(jnp.array([2.0, 3.0]), jnp.array([1.0, 2.0]))
        np.testing.assert_allclose(Jtw, [10.0, 4.0])

    def test_component_hessians(self, simple_model):
        x = jnp.array([2.0, 3.0])
        H0 = simple_model.residual_component_hessian(x, 0)
        H1 = simple_model.residual_component_hessian(x, 1)
        np.testing.assert_allclose(H0, [[2.0, 0.0], [0.0, 0.0]])
        # Only the lower triangle is populated
        np.testing.assert_allclose(H1, [[0.0, 0.0], [1.0, 0.0]])

    def test_weighted_hessian(self, simple_model):
        """3 * H0 + 6 * H1 = [[6, 6], [6, 0]], stored as its lower triangle."""
        x = jnp.array([2.0, 3.0])
        H = simple_model.residual_hessian(x, jnp.array([3.0, 6.0]))
        np.testing.assert_allclose(H, [[6.0, 0.0], [6.0, 0.0]])

    def test_objective_and_gradient(self, simple_model):
        x = jnp.array([2.0, 3.0])
        np.testing.assert_allclose(simple_model.objective(x), 22.5)
        np.testing.assert_allclose(simple_model.gradient(x), [30.0, 12.0])

    def test_accepts_lists_and_integers(self, simple_model):
        fx = simple_model.residual([2, 3])
        assert jnp.issubdtype(fx.dtype, jnp.floating)
        np.testing.assert_allclose(fx, [3.0, 6.0])


class TestResidualConsistency:
    """Dense and product forms agree on a problem with curvature everywhere."""

    @pytest.fixture
    def points(self):
        rng = np.random.default_rng(0)
        return [jnp.asarray(rng.normal(size=3)) for _ in range(3)]

    @pytest.mark.parametrize("mode", ["auto", "fwd", "rev"])
    def test_jacobian_matches_jax(self, points, mode):
        model = ADNLSModel(nonlinear_residual, jnp.zeros(3), 4, jacobian_mode=mode)
        for x in points:
            np.testing.assert_allclose(
                model.residual_jacobian(x),
                jax.jacfwd(nonlinear_residual)(x),
                rtol=1e-12,
            )

    def test_jvp_equals_jacobian_product(self, nonlinear_model, points):
        rng = np.random.default_rng(1)
        for x in points:
            v = jnp.asarray(rng.normal(size=3))
            J = nonlinear_model.residual_jacobian(x)
            np.testing.assert_allclose(
                nonlinear_model.residual_jvp(x, v), J @ v, rtol=1e-10, atol=1e-12
            )

    def test_vjp_equals_transposed_product(self, nonlinear_model, points):
        rng = np.random.default_rng(2)
        for x in points:
            w = jnp.asarray(rng.normal(size=4))
            J = nonlinear_model.residual_jacobian(x)
            np.testing.assert_allclose(
                nonlinear_model.residual_vjp(x, w), J.T @ w, rtol=1e-10, atol=1e-12
            )

    def test_component_hvp_equals_symmetrized_hessian(self, nonlinear_model, points):
        rng = np.random.default_rng(3)
        for x in points:
            v = jnp.asarray(rng.normal(size=3))
            for i in range(4):
                H = symmetrize(nonlinear_model.residual_component_hessian(x, i))
                np.testing.assert_allclose(
                    nonlinear_model.residual_component_hvp(x, i, v),
                    H @ v,
                    rtol=1e-10,
                    atol=1e-12,
                )

    def test_weighted_hessian_is_linear_combination(self, nonlinear_model, points):
        rng = np.random.default_rng(4)
        for x in points:
            w = jnp.asarray(rng.normal(size=4))
            expected = sum(
                w[i] * nonlinear_model.residual_component_hessian(x, i)
                for i in range(4)
            )
            np.testing.assert_allclose(
                nonlinear_model.residual_hessian(x, w),
                expected,
                rtol=1e-10,
                atol=1e-12,
            )

    def test_hessians_are_lower_triangular(self, nonlinear_model, points):
        x = points[0]
        H = nonlinear_model.residual_hessian(x, jnp.ones(4))
        np.testing.assert_array_equal(np.triu(np.asarray(H), k=1), 0.0)

    def test_gradient_is_jt_f(self, nonlinear_model, points):
        for x in points:
            J = nonlinear_model.residual_jacobian(x)
            fx = nonlinear_model.residual(x)
            np.testing.assert_allclose(
                nonlinear_model.gradient(x), J.T @ fx, rtol=1e-10, atol=1e-12
            )


class TestResidualErrors:
    """Shape checks and error propagation."""

    def test_wrong_x_length(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual(jnp.ones(3))

    def test_matrix_is_not_a_vector(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual_jacobian(jnp.ones((2, 1)))

    def test_wrong_v_length(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual_jvp(jnp.ones(2), jnp.ones(3))

    def test_wrong_w_length(self, simple_model):
        """J^T w takes a vector of length nequ, not nvar."""
        model = ADNLSModel(nonlinear_residual, jnp.zeros(3), 4)
        with pytest.raises(DimensionError):
            model.residual_vjp(jnp.ones(3), jnp.ones(3))

    def test_wrong_weight_length(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual_hessian(jnp.ones(2), jnp.ones(3))

    def test_shape_errors_are_value_errors(self, simple_model):
        with pytest.raises(ValueError):
            simple_model.residual(jnp.ones(5))

    @pytest.mark.parametrize("i", [-1, 2, 10])
    def test_component_index_out_of_range(self, simple_model, i):
        with pytest.raises(ComponentIndexError):
            simple_model.residual_component_hessian(jnp.ones(2), i)
        with pytest.raises(IndexError):
            simple_model.residual_component_hvp(jnp.ones(2), i, jnp.ones(2))

    def test_shape_error_does_not_count(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual(jnp.ones(3))
        assert simple_model.counters.neval_residual == 0

    def test_residual_of_wrong_length(self):
        model = ADNLSModel(simple_residual, jnp.ones(2), 3)
        with pytest.raises(DimensionError):
            model.residual(jnp.ones(2))

    def test_user_error_propagates(self):
        def failing(x):
            raise FloatingPointError("outside the domain of F")

        model = ADNLSModel(failing, jnp.ones(2), 1)
        with pytest.raises(FloatingPointError, match="outside the domain"):
            model.residual(jnp.ones(2))
        with pytest.raises(FloatingPointError, match="outside the domain"):
            model.residual_jacobian(jnp.ones(2))
        with pytest.raises(FloatingPointError, match="outside the domain"):
            model.hvp(jnp.ones(2), jnp.ones(2))

    def test_nan_propagates_by_default(self):
        model = ADNLSModel(lambda x: jnp.log(x), jnp.ones(1), 1)
        fx = model.residual(jnp.array([-1.0]))
        assert jnp.isnan(fx[0])

    def test_check_finite_raises(self):
        model = ADNLSModel(lambda x: jnp.log(x), jnp.ones(1), 1, check_finite=True)
        with pytest.raises(NonFiniteEvaluationError):
            model.residual(jnp.array([-1.0]))
        with pytest.raises(NonFiniteEvaluationError):
            model.residual_jacobian(jnp.array([0.0]))
        np.testing.assert_allclose(model.residual(jnp.array([1.0])), [0.0])

    def test_invalid_jacobian_mode(self):
        with pytest.raises(ValueError, match="jacobian_mode"):
            ADNLSModel(simple_residual, jnp.ones(2), 2, jacobian_mode="central")


class TestResidualJacobianOperator:
    """Matrix-free Jacobian built on the counted products."""

    def test_shape_and_dtype(self, nonlinear_model):
        op = nonlinear_model.residual_jacobian_operator(jnp.array([0.5, -1.0, 2.0]))
        assert op.shape == (4, 3)
        assert op.dtype == np.float64

    def test_matvec_is_jacobian_product(self, nonlinear_model):
        x = jnp.array([0.5, -1.0, 2.0])
        v = np.array([1.0, 2.0, -0.5])
        J = np.asarray(nonlinear_model.residual_jacobian(x))
        op = nonlinear_model.residual_jacobian_operator(x)
        np.testing.assert_allclose(op @ v, J @ v, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(op.matvec(v.reshape(-1, 1)).ravel(), J @ v)

    def test_transpose_is_transposed_product(self, nonlinear_model):
        x = jnp.array([0.5, -1.0, 2.0])
        w = np.array([1.0, -1.0, 0.5, 2.0])
        J = np.asarray(nonlinear_model.residual_jacobian(x))
        op = nonlinear_model.residual_jacobian_operator(x)
        np.testing.assert_allclose(op.T @ w, J.T @ w, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(op.rmatvec(w), J.T @ w, rtol=1e-10, atol=1e-12)

    def test_products_are_counted(self, simple_model):
        op = simple_model.residual_jacobian_operator(jnp.array([2.0, 3.0]))
        assert simple_model.counters.total() == 0

        np.testing.assert_allclose(op @ np.array([1.0, 0.0]), [4.0, 3.0])
        op @ np.array([0.0, 1.0])
        np.testing.assert_allclose(op.T @ np.array([1.0, 1.0]), [7.0, 2.0])

        assert simple_model.counters.neval_jprod_residual == 2
        assert simple_model.counters.neval_jtprod_residual == 1
        assert simple_model.counters.neval_jac_residual == 0

    def test_wrong_x_length(self, simple_model):
        with pytest.raises(DimensionError):
            simple_model.residual_jacobian_operator(jnp.ones(3))


class TestComponentIndexType:
    @pytest.mark.parametrize("i", [1.5, 1.0, True, "1"])
    def test_non_integer_index_rejected(self, simple_model, i):
        with pytest.raises(ComponentIndexError):
            simple_model.residual_component_hessian(jnp.ones(2), i)
        with pytest.raises(ComponentIndexError):
            simple_model.residual_component_hvp(jnp.ones(2), i, jnp.ones(2))
        assert simple_model.counters.total() == 0

    @pytest.mark.parametrize("i", [np.int32(1), np.int64(1), jnp.array(1)])
    def test_integer_scalars_accepted(self, simple_model, i):
        x = jnp.array([2.0, 3.0])
        np.testing.assert_array_equal(
            simple_model.residual_component_hessian(x, i),
            simple_model.residual_component_hessian(x, 1),
        )
