"""pyhpfem.solvers.newton
Damped Newton iteration over a :class:`DiscreteProblem`.

One iteration assembles ``J(u)``, solves ``J du = -F(u)``, updates
``u <- u + alpha du`` and re-assembles ``F``.  Convergence is checked before
the first solve and after every accepted update, so ``iterations`` counts
accepted updates and an affine problem converges after exactly one.

Failures inside the loop do not raise: they end the iteration with a status
and the causing exception attached to the :class:`NewtonResult`.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from pyhpfem.diagnostics import Diagnostics
from pyhpfem.errors import (AssemblyFailure, Breakdown, Diverged, LinearSolverError,
                            MaxIterExceeded)
from pyhpfem.linalg import create_linear_solver, create_matrix, create_vector


class NewtonStatus(enum.Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    MAX_ITER_EXCEEDED = "max_iter_exceeded"
    SOLVER_FAILED = "solver_failed"


class Convergence(enum.Flag):
    """Convergence criteria; every selected one must hold."""
    RESIDUAL_ABS = enum.auto()
    RESIDUAL_REL = enum.auto()
    INCREMENT_ABS = enum.auto()


@dataclass
class NewtonParameters:
    """Settings that govern a single Newton solve."""

    tol: float = 1e-8                   # ‖F‖ threshold (RESIDUAL_ABS)
    convergence: Convergence = Convergence.RESIDUAL_ABS
    rel_tol: float = 1e-8               # ‖F‖ / ‖F₀‖ threshold (RESIDUAL_REL)
    increment_tol: float = 1e-8         # ‖α du‖ threshold (INCREMENT_ABS)
    max_iter: int = 15

    damping: float = 1.0                # α, also the ceiling of adaptive damping
    auto_damping: bool = False
    min_damping: float = 1e-4
    damping_decrease: float = 0.5       # α ← β·α after a rejected step
    damping_increase: float = 2.0
    steps_to_increase: int = 1          # accepted steps before α grows again

    divergence_growth: Optional[float] = 1e3   # ‖F_k‖ > g·‖F_{k-1}‖ ⇒ Diverged (fixed damping)
    max_allowed_residual_norm: float = 1e9
    norm_ord: Optional[float] = None    # numpy norm order, None = Euclidean
    reuse_jacobian: bool = False

    def __post_init__(self):
        if not 0.0 < self.damping <= 1.0:
            raise ValueError(f"damping must lie in (0, 1], got {self.damping}.")
        if not 0.0 < self.damping_decrease < 1.0:
            raise ValueError(f"damping_decrease must lie in (0, 1), got {self.damping_decrease}.")
        if self.damping_increase < 1.0:
            raise ValueError(f"damping_increase must be >= 1, got {self.damping_increase}.")
        if self.max_iter < 0:
            raise ValueError("max_iter must be non-negative.")
        if self.divergence_growth is not None and self.divergence_growth <= 1.0:
            raise ValueError("divergence_growth must be > 1 (or None).")


@dataclass
class NewtonResult:
    status: NewtonStatus = NewtonStatus.INIT
    iterations: int = 0
    residual_norms: List[float] = field(default_factory=list)
    increment_norms: List[float] = field(default_factory=list)
    damping_factors: List[float] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def converged(self) -> bool:
        return self.status is NewtonStatus.CONVERGED

    def raise_for_status(self) -> None:
        if self.status is NewtonStatus.CONVERGED:
            return
        if self.error is not None:
            raise self.error
        if self.status is NewtonStatus.MAX_ITER_EXCEEDED:
            raise MaxIterExceeded(f"Newton did not converge in {self.iterations} iterations.")
        raise Diverged(f"Newton ended with status {self.status.value}.")


class NewtonSolver:
    """Newton driver; matrix, rhs and linear solver are created when not given."""

    def __init__(self, dp, linear_solver=None, matrix=None, rhs=None,
                 params: Optional[NewtonParameters] = None,
                 diagnostics: Optional[Diagnostics] = None, backend: Optional[str] = None):
        self.dp = dp
        self.matrix = matrix if matrix is not None else (
            linear_solver.matrix if linear_solver is not None else create_matrix(backend))
        self.rhs = rhs if rhs is not None else (
            linear_solver.rhs if linear_solver is not None else create_vector(backend))
        self.linear_solver = linear_solver if linear_solver is not None else \
            create_linear_solver(backend, self.matrix, self.rhs)
        self.params = params if params is not None else NewtonParameters()
        self.diagnostics = diagnostics if diagnostics is not None else dp.diagnostics
        self.status = NewtonStatus.INIT
        self.result: Optional[NewtonResult] = None
        self._u = np.zeros(0)
        self._u_prev = np.zeros(0)

    # ------------------------------------------------------------------
    def _ensure_buffers(self, n: int) -> None:
        if self._u.shape != (n,):
            self._u = np.zeros(n)
            self._u_prev = np.zeros(n)

    def _norm(self, v) -> float:
        return float(np.linalg.norm(v, ord=self.params.norm_ord)) if len(v) else 0.0

    def _is_converged(self, res: float, res0: float, inc: Optional[float]) -> bool:
        crit = self.params.convergence
        ok = True
        if Convergence.RESIDUAL_ABS in crit:
            ok &= res <= self.params.tol
        if Convergence.RESIDUAL_REL in crit:
            ok &= res0 == 0.0 or res <= self.params.rel_tol * res0
        if Convergence.INCREMENT_ABS in crit:
            ok &= inc is not None and inc <= self.params.increment_tol
        return bool(ok)

    def _finish(self, result: NewtonResult, status: NewtonStatus, error=None) -> NewtonResult:
        result.status = status
        result.error = error
        self.status = status
        self.result = result
        if status is NewtonStatus.CONVERGED:
            self.diagnostics.info("Newton: converged after %d iteration(s), |F| = %.3e",
                                  result.iterations, result.residual_norms[-1])
        else:
            self.diagnostics.warn("Newton: %s after %d iteration(s)%s", status.value,
                                  result.iterations, f" ({error})" if error is not None else "")
        return result

    # ------------------------------------------------------------------
    def solve(self, coeff_vec: Optional[np.ndarray] = None) -> NewtonResult:
        """Run Newton from ``coeff_vec`` (zeros if None) and write the last
        accepted iterate back into it."""
        p = self.params
        ndof = self.dp.get_num_dofs()
        if coeff_vec is None:
            coeff_vec = np.zeros(ndof)
        if np.shape(coeff_vec) != (ndof,):
            raise ValueError(f"coeff_vec has shape {np.shape(coeff_vec)}, expected ({ndof},).")
        self._ensure_buffers(ndof)
        u, u_prev = self._u, self._u_prev
        u[:] = coeff_vec

        result = NewtonResult()
        self.status = NewtonStatus.ITERATING
        try:
            self.dp.assemble(u, self.matrix, self.rhs)
        except AssemblyFailure as exc:
            return self._finish(result, NewtonStatus.DIVERGED, exc)

        res0 = self._norm(self.rhs.data)
        result.residual_norms.append(res0)
        self.diagnostics.info("Newton: iter 0, |F| = %.3e", res0)
        if self._is_converged(res0, res0, None):
            coeff_vec[:] = u
            return self._finish(result, NewtonStatus.CONVERGED)

        alpha = p.damping
        n_successful = 0
        while result.iterations < p.max_iter:
            res_prev = result.residual_norms[-1]

            self.rhs.change_sign()
            try:
                du = self.linear_solver.solve()
                if not np.all(np.isfinite(du)):
                    raise Breakdown("Non-finite Newton increment.")
            except LinearSolverError as exc:
                coeff_vec[:] = u
                return self._finish(result, NewtonStatus.SOLVER_FAILED, exc)
            du_norm = self._norm(du)

            u_prev[:] = u
            while True:
                np.add(u_prev, alpha * du, out=u)
                try:
                    self.dp.assemble(u, None, self.rhs)
                except AssemblyFailure as exc:
                    u[:] = u_prev
                    coeff_vec[:] = u
                    return self._finish(result, NewtonStatus.DIVERGED, exc)
                res = self._norm(self.rhs.data)
                if p.auto_damping and not res <= res_prev:
                    alpha *= p.damping_decrease
                    n_successful = 0
                    self.diagnostics.verbose("Newton: |F| = %.3e rejected, damping decreased to %.3e",
                                             res, alpha)
                    if alpha < p.min_damping:
                        u[:] = u_prev
                        coeff_vec[:] = u
                        return self._finish(result, NewtonStatus.DIVERGED,
                                            Diverged(f"Damping factor fell below {p.min_damping}."))
                    continue
                break

            result.iterations += 1
            result.residual_norms.append(res)
            result.increment_norms.append(alpha * du_norm)
            result.damping_factors.append(alpha)
            self.diagnostics.info("Newton: iter %d, |F| = %.3e, |du| = %.3e, alpha = %.3g",
                                  result.iterations, res, alpha * du_norm, alpha)

            if self._is_converged(res, res0, alpha * du_norm):
                coeff_vec[:] = u
                return self._finish(result, NewtonStatus.CONVERGED)
            if not np.isfinite(res) or res > p.max_allowed_residual_norm:
                u[:] = u_prev
                coeff_vec[:] = u
                return self._finish(result, NewtonStatus.DIVERGED,
                                    Diverged(f"Residual norm {res:.3e} exceeds the allowed maximum."))
            if (not p.auto_damping and p.divergence_growth is not None
                    and res > p.divergence_growth * res_prev):
                u[:] = u_prev
                coeff_vec[:] = u
                return self._finish(result, NewtonStatus.DIVERGED,
                                    Diverged(f"Residual norm grew from {res_prev:.3e} to {res:.3e}."))

            if p.auto_damping:
                n_successful += 1
                if n_successful >= p.steps_to_increase and alpha < p.damping:
                    alpha = min(p.damping, alpha * p.damping_increase)
                    n_successful = 0
                    self.diagnostics.verbose("Newton: damping increased to %.3e", alpha)

            if not p.reuse_jacobian:
                try:
                    self.dp.assemble(u, self.matrix, None)
                except AssemblyFailure as exc:
                    coeff_vec[:] = u
                    return self._finish(result, NewtonStatus.DIVERGED, exc)

        coeff_vec[:] = u
        return self._finish(result, NewtonStatus.MAX_ITER_EXCEEDED)


def solve_newton(coeff_vec, dp, solver, matrix, rhs, params: Optional[NewtonParameters] = None,
                 diagnostics: Optional[Diagnostics] = None) -> bool:
    """Run Newton on ``dp`` in place on ``coeff_vec``; True when converged."""
    newton = NewtonSolver(dp, solver, matrix, rhs, params=params, diagnostics=diagnostics)
    return newton.solve(coeff_vec).converged
