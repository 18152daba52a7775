#!/usr/bin/env python
# coding: utf-8

"""
Stationary heat transfer in an L-shaped aluminium/copper body.

Problem setup:
- PDE: -div(λ grad T) = q   (λ = 236 in Aluminum, 386 in Copper)
- BC:  T = A x + B y + C         on Bottom, Inner, Left
       λ ∂T/∂n = α (T_ext - T)   on Outer

The script sweeps the uniform polynomial order and prints the number of DOFs,
the Newton history and a few point temperatures for every order.
"""
import argparse
import time

import numpy as np

from pyhpfem.assembly import DiscreteProblem
from pyhpfem.core.bcs import EssentialBC, EssentialBCs
from pyhpfem.core.solution import Solution
from pyhpfem.core.space import H1Space
from pyhpfem.diagnostics import Diagnostics
from pyhpfem.linalg import LinearSolverParameters, create_linear_solver, create_matrix, create_vector
from pyhpfem.solvers import NewtonParameters, NewtonSolver
from pyhpfem.utils.meshgen import l_shape_mesh
from pyhpfem.weakform import WeakFormPoissonNewton

LAMBDA_AL = 236.0        # thermal conductivity of Al around 20 °C
LAMBDA_CU = 386.0        # thermal conductivity of Cu around 20 °C
VOLUME_HEAT_SRC = 0.0
ALPHA = 5.0              # heat transfer coefficient
T_EXTERIOR = 50.0


class CustomDirichletCondition(EssentialBC):
    """T = A x + B y + C."""

    def __init__(self, markers, A, B, C):
        self.A, self.B, self.C = A, B, C
        super().__init__(markers, self.temperature)

    def temperature(self, x, y):
        return self.A * x + self.B * y + self.C


def run(p_min: int, p_max: int, init_ref_num: int, backend: str, bc_params, num_threads: int):
    diagnostics = Diagnostics.from_env()

    mesh = l_shape_mesh(element_markers=("Aluminum", "Aluminum", "Copper"),
                        boundary_markers={"right": "Outer", "top": "Outer"})
    for _ in range(init_ref_num):
        mesh.refine_all_elements()

    wf = WeakFormPoissonNewton({"Aluminum": LAMBDA_AL, "Copper": LAMBDA_CU},
                               f=-VOLUME_HEAT_SRC, bdy_newton="Outer",
                               alpha=ALPHA, t_exterior=T_EXTERIOR)
    bcs = EssentialBCs([CustomDirichletCondition(["Bottom", "Inner", "Left"], *bc_params)])
    space = H1Space(mesh, bcs, p_init=p_min, diagnostics=diagnostics)

    for p in range(p_min, p_max + 1):
        print(f"********* p_init = {p} *********")
        space.set_uniform_order(p)
        dp = DiscreteProblem(wf, space, num_threads=num_threads, diagnostics=diagnostics)
        ndof = dp.get_num_dofs()

        matrix = create_matrix(backend)
        rhs = create_vector(backend)
        t0 = time.perf_counter()
        with create_linear_solver(backend, matrix, rhs, LinearSolverParameters(backend=backend)) as solver:
            coeff_vec = np.zeros(ndof)
            newton = NewtonSolver(dp, solver, matrix, rhs, params=NewtonParameters(tol=1e-6),
                                  diagnostics=diagnostics)
            result = newton.solve(coeff_vec)
        elapsed = time.perf_counter() - t0
        result.raise_for_status()

        sln = Solution.vector_to_solution(coeff_vec, space)
        print(f"ndof = {ndof}, iterations = {result.iterations}, "
              f"|F| = {result.residual_norms[-1]:.3e}, time = {elapsed:.2f} s")
        print(f"coefficient sum = {coeff_vec.sum():.6g}")
        for x, y in [(2.0, 2.0), (2.0, 1.0), (1.5, 1.5)]:
            print(f"  T({x:.1f}, {y:.1f}) = {sln.get_pt_value(x, y):.6f}")
        matrix.release()
        rhs.release()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Heat transfer with a Newton boundary condition.")
    parser.add_argument("--p-min", type=int, default=1)
    parser.add_argument("--p-max", type=int, default=10)
    parser.add_argument("--init-ref-num", type=int, default=0)
    parser.add_argument("--backend", default="superlu")
    parser.add_argument("--threads", type=int, default=1)
    parser.add_argument("--bc", type=float, nargs=3, default=(0.0, 0.0, 20.0),
                        metavar=("A", "B", "C"), help="Dirichlet data T = A x + B y + C")
    args = parser.parse_args()
    run(args.p_min, args.p_max, args.init_ref_num, args.backend, args.bc, args.threads)
