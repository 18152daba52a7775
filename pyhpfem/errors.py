"""pyhpfem.errors
Exception hierarchy shared by the space, assembly, linear-algebra and Newton layers.
"""
from __future__ import annotations


class PyHpFemError(Exception):
    """Base class of every error raised by pyhpfem."""


class FatalError(PyHpFemError):
    """Raised by :meth:`Diagnostics.error` after the message has been logged."""


# ---------------------------------------------------------------------------
# configuration errors (raised eagerly, at space-construction time)
# ---------------------------------------------------------------------------
class InvalidOrder(PyHpFemError, ValueError):
    """Polynomial order outside the range supported by the shapeset."""

    def __init__(self, order, min_order: int, max_order: int):
        self.order = order
        self.min_order = min_order
        self.max_order = max_order
        super().__init__(
            f"Polynomial order {order!r} is not supported "
            f"(valid range is {min_order}..{max_order})."
        )


class DOFError(PyHpFemError):
    """Space / boundary-condition configuration that prevents DOF numbering."""


# ---------------------------------------------------------------------------
# assembly
# ---------------------------------------------------------------------------
class AssemblyFailure(PyHpFemError):
    """A local contribution was non-finite or the element map was degenerate."""

    def __init__(self, message: str, *, element_id: int | None = None, form: str | None = None):
        self.element_id = element_id
        self.form = form
        where = []
        if element_id is not None:
            where.append(f"element {element_id}")
        if form is not None:
            where.append(f"form {form}")
        suffix = f" ({', '.join(where)})" if where else ""
        super().__init__(message + suffix)


# ---------------------------------------------------------------------------
# linear algebra
# ---------------------------------------------------------------------------
class LinearSolverError(PyHpFemError):
    """Base class of linear-solve failures."""


class Singular(LinearSolverError):
    """The system matrix is (numerically) singular."""


class Breakdown(LinearSolverError):
    """An iterative method stalled or produced a non-finite iterate."""


class BackendError(LinearSolverError):
    """Misconfigured or failing linear-algebra backend."""


# ---------------------------------------------------------------------------
# Newton outcomes (only raised on request, see NewtonResult.raise_for_status)
# ---------------------------------------------------------------------------
class NewtonError(PyHpFemError):
    """Base class of non-converged Newton outcomes."""


class Diverged(NewtonError):
    pass


class MaxIterExceeded(NewtonError):
    pass


__all__ = [
    "PyHpFemError",
    "FatalError",
    "InvalidOrder",
    "DOFError",
    "AssemblyFailure",
    "LinearSolverError",
    "Singular",
    "Breakdown",
    "BackendError",
    "NewtonError",
    "Diverged",
    "MaxIterExceeded",
]
