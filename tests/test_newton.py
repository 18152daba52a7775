import logging

import numpy as np
import pytest
import sympy as sp

from pyhpfem.assembly import DiscreteProblem
from pyhpfem.core.bcs import EssentialBC
from pyhpfem.core.solution import Solution
from pyhpfem.core.space import H1Space
from pyhpfem.errors import AssemblyFailure, Diverged, MaxIterExceeded, Singular
from pyhpfem.linalg import (LinearSolver, SparseMatrix, SuperLUSolver, Vector,
                            create_linear_solver)
from pyhpfem.solvers import (Convergence, NewtonParameters, NewtonSolver, NewtonStatus,
                             solve_newton)
from pyhpfem.utils.meshgen import structured_quad_mesh
from pyhpfem.weakform import DefaultWeakFormPoisson, Function1D

ALL_SIDES = ["Bottom", "Right", "Top", "Left"]
u_sym = sp.symbols('u')


def nonlinear_problem(mesh, source=10.0, p=2, coeff=None):
    """-div((1 + u^2) grad u) = source, u = 0 on the boundary."""
    coeff = coeff if coeff is not None else Function1D.from_sympy(1 + u_sym ** 2, u_sym)
    space = H1Space(mesh, EssentialBC(ALL_SIDES, 0.0), p_init=p)
    return DiscreteProblem(DefaultWeakFormPoisson(coeff=coeff, f=-source), space)


def linear_problem(mesh, p=2):
    space = H1Space(mesh, EssentialBC(ALL_SIDES, lambda x, y: x ** 2 + y ** 2), p_init=p)
    # -Δ(x² + y²) = -4
    return DiscreteProblem(DefaultWeakFormPoisson(coeff=1.0, f=4.0), space)


class CountingSuperLU(SuperLUSolver):
    def __init__(self, *args, **kw):
        super().__init__(*args, **kw)
        self.n_factorizations = 0

    def factorize(self):
        self.n_factorizations += 1
        super().factorize()


class FailingSolver(LinearSolver):
    name = "failing"

    def _solve(self, b):
        raise Singular("pivot breakdown")


class CutoffCoefficient(Function1D):
    """Finite only for |u| <= 0.1."""

    def value(self, u):
        u = np.asarray(u, dtype=float)
        return np.where(np.abs(u) > 0.1, np.nan, 1.0)

    def derivative(self, u):
        return np.zeros_like(np.asarray(u, dtype=float))


# --------------------------------------------------------------------------
# convergence
# --------------------------------------------------------------------------
def test_affine_problem_converges_in_one_iteration(quad_mesh):
    dp = linear_problem(quad_mesh)
    u = np.random.default_rng(3).standard_normal(dp.get_num_dofs())
    result = NewtonSolver(dp).solve(u)
    assert result.status is NewtonStatus.CONVERGED
    assert result.converged
    assert result.iterations == 1
    assert result.residual_norms[0] > result.residual_norms[-1]
    assert result.damping_factors == [1.0]


def test_quadratic_solution_is_reproduced(quad_mesh):
    dp = linear_problem(quad_mesh, p=2)
    u = np.zeros(dp.get_num_dofs())
    NewtonSolver(dp).solve(u).raise_for_status()
    sln = Solution(dp.spaces[0], u)
    for x, y in [(0.3, 0.6), (0.75, 0.1), (0.5, 0.5)]:
        assert np.isclose(sln.get_pt_value(x, y), x ** 2 + y ** 2)
        assert np.allclose(sln.get_pt_gradient(x, y), [2 * x, 2 * y])


def test_converged_initial_guess_needs_no_iteration(quad_mesh):
    dp = linear_problem(quad_mesh)
    u = np.zeros(dp.get_num_dofs())
    newton = NewtonSolver(dp)
    newton.solve(u)
    result = newton.solve(u)
    assert result.converged
    assert result.iterations == 0
    assert len(result.residual_norms) == 1


@pytest.mark.parametrize("auto_damping,source", [(False, 2.0), (True, 10.0)])
def test_nonlinear_residuals_are_monotone(quad_mesh, auto_damping, source):
    dp = nonlinear_problem(quad_mesh, source=source)
    u = np.zeros(dp.get_num_dofs())
    params = NewtonParameters(tol=1e-10, auto_damping=auto_damping, max_iter=30)
    result = NewtonSolver(dp, params=params).solve(u)
    assert result.converged
    assert 1 < result.iterations < 30
    norms = result.residual_norms
    assert all(b <= a for a, b in zip(norms, norms[1:]))
    assert norms[-1] <= 1e-10
    # the solution is positive inside for a positive source
    assert Solution(dp.spaces[0], u).get_pt_value(0.5, 0.5) > 0


def test_fixed_damping_halves_linear_residual(quad_mesh):
    dp = linear_problem(quad_mesh)
    u = np.zeros(dp.get_num_dofs())
    params = NewtonParameters(damping=0.5, max_iter=3, tol=1e-14)
    result = NewtonSolver(dp, params=params).solve(u)
    assert result.status is NewtonStatus.MAX_ITER_EXCEEDED
    r = np.array(result.residual_norms)
    assert np.allclose(r[1:] / r[:-1], 0.5)


def test_increment_criterion(quad_mesh):
    dp = nonlinear_problem(quad_mesh)
    params = NewtonParameters(convergence=Convergence.RESIDUAL_ABS | Convergence.INCREMENT_ABS,
                              tol=1e-9, increment_tol=1e-9, max_iter=30)
    result = NewtonSolver(dp, params=params).solve(np.zeros(dp.get_num_dofs()))
    assert result.converged
    assert result.increment_norms[-1] <= 1e-9


def test_relative_criterion(quad_mesh):
    dp = nonlinear_problem(quad_mesh)
    params = NewtonParameters(convergence=Convergence.RESIDUAL_REL, rel_tol=1e-6, max_iter=30)
    result = NewtonSolver(dp, params=params).solve(np.zeros(dp.get_num_dofs()))
    assert result.converged
    assert result.residual_norms[-1] <= 1e-6 * result.residual_norms[0]


def test_reused_jacobian_is_factorized_once(quad_mesh):
    dp = nonlinear_problem(quad_mesh, source=1.0)
    A, b = SparseMatrix(), Vector()
    solver = CountingSuperLU(A, b)
    params = NewtonParameters(reuse_jacobian=True, tol=1e-10, max_iter=50)
    result = NewtonSolver(dp, solver, A, b, params=params).solve(np.zeros(dp.get_num_dofs()))
    assert result.converged
    assert solver.n_factorizations == 1


def test_solve_newton_entry_point(quad_mesh, diagnostics, caplog):
    dp = nonlinear_problem(quad_mesh)
    A, b = SparseMatrix(), Vector()
    solver = create_linear_solver("superlu", A, b)
    u = np.zeros(dp.get_num_dofs())
    with caplog.at_level(logging.INFO, logger="pyhpfem.tests"):
        ok = solve_newton(u, dp, solver, A, b, NewtonParameters(tol=1e-10), diagnostics)
    assert ok
    assert np.any(u != 0.0)
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Newton: iter 0") for m in messages)
    assert any("converged" in m for m in messages)


def test_empty_system_converges_immediately():
    mesh = structured_quad_mesh(1, 1)
    space = H1Space(mesh, EssentialBC(ALL_SIDES, 2.0), p_init=1)
    dp = DiscreteProblem(DefaultWeakFormPoisson(), space)
    u = np.zeros(0)
    result = NewtonSolver(dp).solve(u)
    assert result.converged and result.iterations == 0


# --------------------------------------------------------------------------
# failure outcomes
# --------------------------------------------------------------------------
def test_max_iter_exceeded_is_reported(quad_mesh):
    dp = nonlinear_problem(quad_mesh)
    u = np.zeros(dp.get_num_dofs())
    result = NewtonSolver(dp, params=NewtonParameters(max_iter=1, tol=1e-12)).solve(u)
    assert result.status is NewtonStatus.MAX_ITER_EXCEEDED
    assert not result.converged
    assert result.iterations == 1
    with pytest.raises(MaxIterExceeded):
        result.raise_for_status()


def test_linear_solver_failure(quad_mesh):
    dp = nonlinear_problem(quad_mesh)
    A, b = SparseMatrix(), Vector()
    u = np.full(dp.get_num_dofs(), 0.25)
    newton = NewtonSolver(dp, FailingSolver(A, b), A, b)
    result = newton.solve(u)
    assert result.status is NewtonStatus.SOLVER_FAILED
    assert newton.status is NewtonStatus.SOLVER_FAILED
    assert isinstance(result.error, Singular)
    assert np.all(u == 0.25)
    with pytest.raises(Singular):
        result.raise_for_status()


def test_non_finite_initial_residual_diverges(quad_mesh):
    dp = nonlinear_problem(quad_mesh, source=np.nan)
    u = np.zeros(dp.get_num_dofs())
    result = NewtonSolver(dp).solve(u)
    assert result.status is NewtonStatus.DIVERGED
    assert isinstance(result.error, AssemblyFailure)
    assert result.iterations == 0


def test_non_finite_trial_keeps_last_iterate(quad_mesh):
    dp = nonlinear_problem(quad_mesh, coeff=CutoffCoefficient())
    u = np.zeros(dp.get_num_dofs())
    result = NewtonSolver(dp).solve(u)
    assert result.status is NewtonStatus.DIVERGED
    assert isinstance(result.error, AssemblyFailure)
    assert np.all(np.isfinite(u))
    assert not u.any()


def test_residual_above_allowed_maximum(quad_mesh):
    dp = nonlinear_problem(quad_mesh)
    params = NewtonParameters(tol=1e-12, max_allowed_residual_norm=1e-3)
    u = np.zeros(dp.get_num_dofs())
    result = NewtonSolver(dp, params=params).solve(u)
    assert result.status is NewtonStatus.DIVERGED
    assert not u.any()
    with pytest.raises(Diverged):
        result.raise_for_status()


def test_residual_growth_keeps_last_accepted_iterate(quad_mesh):
    # the undamped first step from zero overshoots by orders of magnitude
    dp = nonlinear_problem(quad_mesh, source=2000.0)
    u = np.zeros(dp.get_num_dofs())
    params = NewtonParameters(divergence_growth=1.0001, max_allowed_residual_norm=np.inf)
    result = NewtonSolver(dp, params=params).solve(u)
    assert result.status is NewtonStatus.DIVERGED
    assert isinstance(result.error, Diverged)
    assert "grew" in str(result.error)
    assert result.iterations == 1
    assert result.residual_norms[1] > result.residual_norms[0]
    assert not u.any()


def test_wrong_initial_vector(quad_mesh):
    dp = linear_problem(quad_mesh)
    with pytest.raises(ValueError):
        NewtonSolver(dp).solve(np.zeros(dp.get_num_dofs() + 2))


@pytest.mark.parametrize("kwargs", [
    {"damping": 0.0},
    {"damping": 1.5},
    {"damping_decrease": 1.0},
    {"damping_increase": 0.5},
    {"max_iter": -1},
    {"divergence_growth": 0.9},
])
def test_parameter_validation(kwargs):
    with pytest.raises(ValueError):
        NewtonParameters(**kwargs)
