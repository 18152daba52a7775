from .matrix import SparseMatrix, Vector
from .solvers import (BiCGStabSolver, CGSolver, GMRESSolver, KrylovSolver, LinearSolver,
                      LinearSolverParameters, SpsolveSolver, SuperLUSolver, available_backends,
                      create_linear_solver, create_matrix, create_vector, register_backend)
