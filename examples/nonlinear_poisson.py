"""Example: -div((1 + u²) grad u) = f on the unit square, solved by damped Newton.

The manufactured solution u = sin(πx) sin(πy) is used to report the L2 / H1
errors for a few uniform polynomial orders.
"""
import argparse

import numpy as np
import sympy as sp

from pyhpfem.assembly import DiscreteProblem
from pyhpfem.core.bcs import EssentialBC
from pyhpfem.core.solution import ExactSolution, Solution, calc_abs_error
from pyhpfem.core.space import H1Space
from pyhpfem.solvers import NewtonParameters, NewtonSolver
from pyhpfem.utils.meshgen import structured_quad_mesh, structured_tri_mesh
from pyhpfem.weakform import DefaultWeakFormPoisson, Function1D, Function2D

x, y, u = sp.symbols('x y u')
u_exact = sp.sin(sp.pi * x) * sp.sin(sp.pi * y)
lam = 1 + u ** 2
# residual source f = -s with s = -div(λ(u) grad u)
lam_u = lam.subs(u, u_exact)
source = -(sp.diff(lam_u * sp.diff(u_exact, x), x) + sp.diff(lam_u * sp.diff(u_exact, y), y))


def main(element_type: str, n: int, orders, auto_damping: bool):
    mesh = (structured_quad_mesh if element_type == "quad" else structured_tri_mesh)(n, n)
    wf = DefaultWeakFormPoisson(coeff=Function1D.from_sympy(lam, u),
                                f=Function2D.from_sympy(-source, x, y))
    exact = ExactSolution.from_sympy(mesh, u_exact, x, y)
    params = NewtonParameters(tol=1e-10, auto_damping=auto_damping, max_iter=25)

    print(f"{'p':>3} {'ndof':>6} {'iters':>6} {'L2 error':>12} {'H1 error':>12}")
    for p in orders:
        space = H1Space(mesh, EssentialBC(["Bottom", "Right", "Top", "Left"], 0.0), p_init=p)
        dp = DiscreteProblem(wf, space)
        coeff_vec = np.zeros(dp.get_num_dofs())
        result = NewtonSolver(dp, params=params).solve(coeff_vec)
        result.raise_for_status()
        sln = Solution(space, coeff_vec)
        print(f"{p:>3} {dp.ndof:>6} {result.iterations:>6} "
              f"{calc_abs_error(sln, exact, 'l2'):>12.4e} {calc_abs_error(sln, exact, 'h1'):>12.4e}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--element", choices=("quad", "tri"), default="quad")
    parser.add_argument("-n", type=int, default=4)
    parser.add_argument("--orders", type=int, nargs="+", default=[1, 2, 3, 4, 5])
    parser.add_argument("--auto-damping", action="store_true")
    args = parser.parse_args()
    main(args.element, args.n, args.orders, args.auto_damping)
