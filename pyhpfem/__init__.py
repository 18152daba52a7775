"""pyhpfem: hp-FEM nonlinear solve pipeline (H1 spaces, assembly, Newton)."""
from pyhpfem.assembly import DiscreteProblem
from pyhpfem.core import (ConstantSolution, DefaultEssentialBCConst, EssentialBC, EssentialBCs,
                          ExactSolution, H1Space, Mesh, Solution, calc_abs_error)
from pyhpfem.diagnostics import Diagnostics, Level
from pyhpfem.errors import *  # noqa: F401,F403
from pyhpfem.linalg import (LinearSolverParameters, create_linear_solver, create_matrix,
                            create_vector)
from pyhpfem.solvers import (Convergence, NewtonParameters, NewtonResult, NewtonSolver,
                             NewtonStatus, solve_newton)

__version__ = "0.1.0"
