from .bcs import DefaultEssentialBCConst, EssentialBC, EssentialBCs
from .mesh import Mesh
from .solution import ConstantSolution, ExactSolution, Solution, calc_abs_error
from .space import AsmList, H1Space
