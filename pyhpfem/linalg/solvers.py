"""
Linear solvers over :class:`SparseMatrix` / :class:`Vector`.

Backends are registered by name; ``create_linear_solver`` picks one.  Direct
backends keep their factorization while the matrix ``seq`` is unchanged, so a
frozen Jacobian is factorized once.
"""
import logging
import os
import warnings
from dataclasses import dataclass
from typing import Dict, Optional, Type

import numpy as np
from scipy.sparse.linalg import (LinearOperator, MatrixRankWarning, bicgstab, cg, gmres,
                                 spilu, splu, spsolve)

from pyhpfem.errors import BackendError, Breakdown, Singular
from pyhpfem.linalg.matrix import SparseMatrix, Vector

logger = logging.getLogger(__name__)

ENV_BACKEND = "PYHPFEM_LINEAR_SOLVER"


@dataclass
class LinearSolverParameters:
    """Sparse linear solver settings."""

    backend: str = "superlu"
    tol: float = 1e-10                  # relative tolerance of Krylov backends
    maxiter: int = 10_000
    restart: int = 50                   # gmres only
    preconditioner: Optional[str] = None   # None | "ilu"
    ilu_drop_tol: float = 1e-5
    ilu_fill_factor: float = 20.0

    @classmethod
    def from_env(cls, **overrides) -> "LinearSolverParameters":
        backend = os.getenv(ENV_BACKEND, "").strip().lower()
        if backend and "backend" not in overrides:
            overrides["backend"] = backend
        return cls(**overrides)


class LinearSolver:
    """Base class: solves ``matrix · x = rhs`` and stores ``x`` in ``sln``.

    Usable as a context manager; leaving the ``with`` block releases the
    factorization / preconditioner.
    """

    name = "base"

    def __init__(self, matrix: SparseMatrix, rhs: Vector,
                 params: Optional[LinearSolverParameters] = None):
        self.matrix = matrix
        self.rhs = rhs
        self.params = params if params is not None else LinearSolverParameters(backend=self.name)
        self.sln: Optional[np.ndarray] = None
        self._factor_seq = None

    @property
    def factorized(self) -> bool:
        return self._factor_seq is not None and self._factor_seq == self.matrix.seq

    def factorize(self) -> None:
        self._factor_seq = self.matrix.seq

    def _solve(self, b: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def solve(self) -> np.ndarray:
        n = self.matrix.get_size()
        if self.rhs.length != n:
            raise BackendError(f"rhs length {self.rhs.length} does not match matrix size {n}.")
        if n == 0:
            self.sln = np.zeros(0)
            return self.sln
        if not self.factorized:
            self.factorize()
        x = self._solve(self.rhs.data)
        if not np.all(np.isfinite(x)):
            raise Breakdown(f"{self.name}: non-finite solution.")
        self.sln = np.asarray(x, dtype=float)
        return self.sln

    def release(self) -> None:
        self._factor_seq = None
        self.sln = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self):
        return f"<{type(self).__name__} backend={self.name!r}>"


class SuperLUSolver(LinearSolver):
    """Sparse LU (``scipy.sparse.linalg.splu``), factorization reused."""

    name = "superlu"

    def __init__(self, matrix, rhs, params=None):
        super().__init__(matrix, rhs, params)
        self._lu = None

    def factorize(self) -> None:
        A = self.matrix.to_scipy().tocsc()
        try:
            self._lu = splu(A)
        except RuntimeError as exc:        # "Factor is exactly singular"
            self._lu = None
            raise Singular(f"superlu: {exc}") from exc
        logger.debug("superlu: factorized n=%d nnz=%d", A.shape[0], A.nnz)
        super().factorize()

    def _solve(self, b):
        x = self._lu.solve(b)
        if not np.all(np.isfinite(x)):
            raise Singular("superlu: non-finite solution, matrix is numerically singular.")
        return x

    def release(self) -> None:
        self._lu = None
        super().release()


class SpsolveSolver(LinearSolver):
    """One-shot direct solve (``scipy.sparse.linalg.spsolve``)."""

    name = "spsolve"

    def _solve(self, b):
        A = self.matrix.to_scipy()
        with warnings.catch_warnings():
            warnings.simplefilter("error", MatrixRankWarning)
            try:
                return spsolve(A, b)
            except MatrixRankWarning as exc:
                raise Singular(f"spsolve: {exc}") from exc


class KrylovSolver(LinearSolver):
    """scipy Krylov methods with optional incomplete-LU preconditioning."""

    _methods = {"cg": cg, "gmres": gmres, "bicgstab": bicgstab}

    def __init__(self, matrix, rhs, params=None):
        super().__init__(matrix, rhs, params)
        self._M = None

    def factorize(self) -> None:
        self._M = None
        if self.params.preconditioner == "ilu":
            A = self.matrix.to_scipy().tocsc()
            try:
                ilu = spilu(A, drop_tol=self.params.ilu_drop_tol, fill_factor=self.params.ilu_fill_factor)
            except RuntimeError as exc:
                raise Singular(f"{self.name}: ILU failed ({exc})") from exc
            self._M = LinearOperator(A.shape, ilu.solve)
        elif self.params.preconditioner is not None:
            raise BackendError(f"Unknown preconditioner '{self.params.preconditioner}'.")
        super().factorize()

    def _solve(self, b):
        A = self.matrix.to_scipy()
        if not np.any(b):
            return np.zeros_like(b)
        kw = dict(rtol=self.params.tol, atol=0.0, maxiter=self.params.maxiter, M=self._M)
        if self.name == "gmres":
            kw["restart"] = self.params.restart
        x, info = self._methods[self.name](A, b, **kw)
        if info > 0:
            raise Breakdown(f"{self.name}: no convergence after {info} iterations.")
        if info < 0:
            raise Breakdown(f"{self.name}: breakdown (info={info}).")
        return x

    def release(self) -> None:
        self._M = None
        super().release()


class CGSolver(KrylovSolver):
    name = "cg"


class GMRESSolver(KrylovSolver):
    name = "gmres"


class BiCGStabSolver(KrylovSolver):
    name = "bicgstab"


_BACKENDS: Dict[str, Type[LinearSolver]] = {
    cls.name: cls for cls in (SuperLUSolver, SpsolveSolver, CGSolver, GMRESSolver, BiCGStabSolver)
}


def register_backend(name: str, cls: Type[LinearSolver]) -> None:
    _BACKENDS[name.lower()] = cls


def available_backends():
    return sorted(_BACKENDS)


def _resolve(backend: Optional[str], params: Optional[LinearSolverParameters] = None) -> str:
    if backend is None:
        backend = params.backend if params is not None else LinearSolverParameters.from_env().backend
    key = str(backend).lower()
    if key not in _BACKENDS:
        raise BackendError(f"Unknown linear-solver backend '{backend}' "
                           f"(available: {', '.join(available_backends())}).")
    return key


def create_matrix(backend: Optional[str] = None) -> SparseMatrix:
    _resolve(backend)
    return SparseMatrix()


def create_vector(backend: Optional[str] = None) -> Vector:
    _resolve(backend)
    return Vector()


def create_linear_solver(backend: Optional[str], matrix: SparseMatrix, rhs: Vector,
                         params: Optional[LinearSolverParameters] = None) -> LinearSolver:
    key = _resolve(backend, params)
    if params is None:
        params = LinearSolverParameters(backend=key)
    return _BACKENDS[key](matrix, rhs, params)
