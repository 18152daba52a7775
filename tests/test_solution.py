import numpy as np
import pytest
import sympy as sp

from pyhpfem.core.solution import ConstantSolution, ExactSolution, Solution, calc_abs_error
from pyhpfem.core.space import H1Space


@pytest.fixture
def linear_solution(quad_mesh):
    """u = x + y represented exactly by bilinear vertex functions."""
    space = H1Space(quad_mesh, p_init=1)
    coeffs = np.zeros(space.get_num_dofs())
    xy = quad_mesh.nodes_x_y_pos
    for v, d in space.get_vertex_dofs().items():
        coeffs[d] = xy[v, 0] + xy[v, 1]
    return space, coeffs


def test_point_values_and_gradients(linear_solution):
    space, coeffs = linear_solution
    sln = Solution(space, coeffs)
    assert np.isclose(sln.get_pt_value(0.3, 0.8), 1.1)
    assert np.allclose(sln.get_pt_gradient(0.3, 0.8), [1.0, 1.0])
    # points on shared edges and corners are found as well
    assert np.isclose(sln.get_pt_value(0.5, 0.5), 1.0)
    assert np.isclose(sln.get_pt_value(1.0, 1.0), 2.0)


def test_point_outside_mesh(linear_solution):
    sln = Solution(*linear_solution)
    with pytest.raises(ValueError):
        sln.get_pt_value(1.5, 0.5)


def test_norms(linear_solution):
    sln = Solution(*linear_solution)
    # ∫(x + y)² = 7/6 on the unit square, |∇u|² = 2
    assert np.isclose(sln.calc_norm("l2"), np.sqrt(7 / 6))
    assert np.isclose(sln.calc_norm("H1"), np.sqrt(7 / 6 + 2))
    with pytest.raises(ValueError):
        sln.calc_norm("linf")


def test_error_against_exact_solution(linear_solution, quad_mesh):
    sln = Solution(*linear_solution)
    x, y = sp.symbols('x y')
    exact = ExactSolution.from_sympy(quad_mesh, x + y, x, y)
    assert calc_abs_error(sln, exact, "h1") < 1e-12
    # finite-difference gradients when no derivative is supplied
    approx = ExactSolution(quad_mesh, lambda X, Y: X + Y)
    assert calc_abs_error(sln, approx, "h1") < 1e-6
    off = ConstantSolution(quad_mesh, 1.0)
    assert np.isclose(calc_abs_error(ConstantSolution(quad_mesh, 0.0), off, "l2"), 1.0)


def test_solution_is_a_snapshot(linear_solution, quad_mesh):
    space, coeffs = linear_solution
    sln = Solution.vector_to_solution(coeffs, space)
    coeffs[:] = 0.0
    assert np.isclose(sln.get_pt_value(0.3, 0.8), 1.1)

    c = sln.get_coefficients()
    c[:] = -1.0
    assert np.isclose(sln.get_pt_value(0.3, 0.8), 1.1)

    # later changes of the space or the mesh do not leak into the solution
    space.set_uniform_order(3)
    quad_mesh.refine_all_elements()
    assert space.get_num_dofs() != sln.ndof
    assert np.isclose(sln.get_pt_value(0.3, 0.8), 1.1)


def test_coefficients_are_read_only(linear_solution):
    sln = Solution(*linear_solution)
    with pytest.raises(ValueError):
        sln._coeffs[0] = 1.0


def test_length_mismatch(linear_solution):
    space, coeffs = linear_solution
    with pytest.raises(ValueError):
        Solution(space, coeffs[:-1])


def test_evaluate_on_unknown_element(linear_solution):
    sln = Solution(*linear_solution)
    with pytest.raises(KeyError):
        sln.evaluate_on_element(99, [[0.0, 0.0]])


def test_high_order_solution_on_triangles(tri_mesh):
    # a single bubble coefficient gives a function vanishing on every element boundary
    space = H1Space(tri_mesh, p_init=3)
    coeffs = np.zeros(space.get_num_dofs())
    bubble_dof = space.get_element_assembly_list(0).dof[-1]
    coeffs[bubble_dof] = 1.0
    sln = Solution(space, coeffs)
    assert abs(sln.get_pt_value(0.25, 0.0)) < 1e-12
    assert abs(sln.get_pt_value(0.25, 0.25)) < 1e-12   # on the diagonal
    assert sln.calc_norm("l2") > 0.0
