from .discrete_problem import DiscreteProblem
