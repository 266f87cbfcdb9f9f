"""Exceptions raised by ADNLS-JAX.

Exception Hierarchy:
    ADNLSError (base)
    ├── DimensionError (length mismatch of an input or output vector)
    │   └── InconsistentDimensionsError (bounds/multipliers at construction)
    ├── ComponentIndexError (residual or constraint index out of range)
    ├── ConstraintsNotImplementedError (model built without a constraint function)
    └── NonFiniteEvaluationError (NaN/Inf with ``check_finite=True``)

Each error also derives from the closest built-in exception so callers that
already catch ``ValueError``, ``IndexError`` or ``NotImplementedError`` keep
working. Errors raised by the user's residual or constraint function, or by
JAX while differentiating it, are never wrapped.
"""

from __future__ import annotations


class ADNLSError(Exception):
    """Base exception for all ADNLS-JAX errors.

    Attributes:
        error_context: Additional context about the error (expected and
            actual sizes, operation name, ...).
    """

    def __init__(self, message: str, error_context: dict | None = None):
        super().__init__(message)
        self.error_context = error_context or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.error_context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.error_context.items())
            return f"{base_msg} (context: {context_str})"
        return base_msg


class DimensionError(ADNLSError, ValueError):
    """Raised when a vector length disagrees with nvar, nequ or ncon."""


class InconsistentDimensionsError(DimensionError):
    """Raised at construction when bounds or multipliers have unequal lengths."""


class ComponentIndexError(ADNLSError, IndexError):
    """Raised when a residual or constraint component index is out of range."""


class ConstraintsNotImplementedError(ADNLSError, NotImplementedError):
    """Raised when constraints are requested from a model built without them.

    A model with ``ncon == 0`` and a constraint function is valid and never
    raises this error; it only signals that no constraint function exists.
    """

    def __init__(self, operation: str):
        super().__init__(
            f"{operation}: the model was constructed without a constraint function",
            {"operation": operation},
        )
        self.operation = operation


class NonFiniteEvaluationError(ADNLSError, FloatingPointError):
    """Raised when a value or derivative contains NaN or Inf.

    Only raised by models constructed with ``check_finite=True``. JAX reports
    domain errors (``log`` of a negative number, division by zero) as NaN or
    Inf instead of raising, so this is how they surface as exceptions.
    """
