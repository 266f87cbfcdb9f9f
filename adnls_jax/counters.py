"""Evaluation counters for NLS models.

Every public evaluation on a model bumps exactly one counter. Internal
sub-evaluations (the residual computed while assembling a Hessian, for
instance) never do, so a counter always reflects how many times the solver
asked for that quantity.
"""

# Objective, constraint and Lagrangian evaluations
NLP_COUNTERS = (
    "neval_obj",
    "neval_grad",
    "neval_cons",
    "neval_jac",
    "neval_jprod",
    "neval_jtprod",
    "neval_hess",
    "neval_hprod",
    "neval_jhess",
    "neval_jhprod",
)

# Residual evaluations
NLS_COUNTERS = (
    "neval_residual",
    "neval_jac_residual",
    "neval_jprod_residual",
    "neval_jtprod_residual",
    "neval_hess_residual",
    "neval_jhess_residual",
    "neval_hprod_residual",
)


class NLSCounters:
    """Per-model evaluation counters.

    Counters are plain integer attributes (``counters.neval_residual``) that
    start at zero and only grow, except through :meth:`reset`. The record is
    mutable on purpose: it is the only state of a model that changes after
    construction.

    Example:
        >>> counters = NLSCounters()
        >>> counters.increment("neval_residual")
        >>> counters.neval_residual
        1
    """

    names = NLP_COUNTERS + NLS_COUNTERS

    __slots__ = names

    def __init__(self):
        self.reset()

    def increment(self, name: str, by: int = 1) -> None:
        """Increase the counter ``name`` by ``by`` (a non-negative integer)."""
        if name not in self.names:
            raise KeyError(f"Unknown counter {name!r}")
        if by < 0:
            raise ValueError("Counters can only be incremented by a non-negative amount")
        setattr(self, name, getattr(self, name) + by)

    def reset(self) -> None:
        """Set every counter back to zero."""
        for name in self.names:
            setattr(self, name, 0)

    def total(self) -> int:
        """Sum of all counters."""
        return sum(getattr(self, name) for name in self.names)

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.names}

    def __getitem__(self, name: str) -> int:
        if name not in self.names:
            raise KeyError(f"Unknown counter {name!r}")
        return getattr(self, name)

    def __repr__(self) -> str:
        nonzero = ", ".join(
            f"{name}={value}" for name, value in self.as_dict().items() if value
        )
        return f"NLSCounters({nonzero})"
