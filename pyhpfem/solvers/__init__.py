from .newton import (Convergence, NewtonParameters, NewtonResult, NewtonSolver, NewtonStatus,
                     solve_newton)
