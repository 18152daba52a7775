import logging

import numpy as np
import pytest

from pyhpfem.core.bcs import DefaultEssentialBCConst, EssentialBC, EssentialBCs
from pyhpfem.core.space import H1Space
from pyhpfem.errors import DOFError, InvalidOrder
from pyhpfem.utils.meshgen import structured_quad_mesh

ALL_SIDES = ["Bottom", "Right", "Top", "Left"]


def all_ext_dofs(space):
    dofs = set()
    for elem in space.mesh.active_elements():
        dofs.update(space.get_element_assembly_list(elem.id).dof.tolist())
    return dofs


# --------------------------------------------------------------------------
# DOF counts
# --------------------------------------------------------------------------
@pytest.mark.parametrize("p", range(1, 11))
def test_ndof_quad_without_bcs(quad_mesh, p):
    space = H1Space(quad_mesh, p_init=p)
    assert space.get_num_dofs() == 9 + 12 * (p - 1) + 4 * (p - 1) ** 2
    assert space.get_num_constrained() == 0


@pytest.mark.parametrize("p", range(1, 11))
def test_ndof_tri_without_bcs(tri_mesh, p):
    space = H1Space(tri_mesh, p_init=p)
    assert space.get_num_dofs() == 9 + 16 * (p - 1) + 8 * (p - 1) * (p - 2) // 2


@pytest.mark.parametrize("p", [1, 2, 5])
def test_ndof_full_dirichlet(quad_mesh, p):
    space = H1Space(quad_mesh, EssentialBC(ALL_SIDES, 0.0), p_init=p)
    # one interior vertex, four interior edges and all bubbles stay free
    assert space.get_num_dofs() == 1 + 4 * (p - 1) + 4 * (p - 1) ** 2
    assert space.get_num_constrained() == 8 + 8 * (p - 1)


def test_single_element_full_dirichlet_has_no_free_dofs():
    mesh = structured_quad_mesh(1, 1)
    space = H1Space(mesh, EssentialBC(ALL_SIDES, 1.0), p_init=1)
    assert space.get_num_dofs() == 0
    assert np.allclose(space.get_dirichlet_values(), 1.0)


def test_heat_mesh_dofs(heat_mesh):
    bcs = EssentialBCs([DefaultEssentialBCConst(["Bottom", "Inner", "Left"], 20.0)])
    for p in (1, 2, 3):
        space = H1Space(heat_mesh, bcs, p_init=p)
        assert space.get_num_dofs() == 3 + 6 * (p - 1) + 3 * (p - 1) ** 2


# --------------------------------------------------------------------------
# numbering invariants
# --------------------------------------------------------------------------
def test_numbering_is_idempotent(quad_mesh):
    space = H1Space(quad_mesh, EssentialBC("Left", 0.0), p_init=3)
    n1 = space.assign_dofs()
    asm1 = [space.get_element_assembly_list(e.id) for e in quad_mesh.active_elements()]
    seq = space.numbering_seq
    n2 = space.assign_dofs()
    asm2 = [space.get_element_assembly_list(e.id) for e in quad_mesh.active_elements()]
    assert n1 == n2
    assert space.numbering_seq == seq + 1
    for a, b in zip(asm1, asm2):
        assert np.array_equal(a.idx, b.idx)
        assert np.array_equal(a.dof, b.dof)
        assert np.array_equal(a.coef, b.coef)


def test_hp_numbering_is_a_bijection(quad_mesh):
    space = H1Space(quad_mesh, EssentialBC(["Bottom"], 0.0), p_init=2)
    space.set_element_order(0, 5)
    space.set_element_order(3, 3)
    n = space.get_num_dofs() + space.get_num_constrained()
    assert all_ext_dofs(space) == set(range(n))


def test_edge_order_is_minimum_of_neighbours(quad_mesh):
    space = H1Space(quad_mesh, p_init=2)
    space.set_element_order(0, 4)
    edge = quad_mesh.edge_between(1, 4)          # shared by elements 0 and 1
    assert space.edge_order(edge) == 2
    assert len(space.get_edge_dofs()[(1, 4)]) == 1
    assert len(space.get_edge_dofs()[(0, 1)]) == 3  # boundary edge of element 0


def test_edge_signs_follow_global_direction(quad_mesh):
    space = H1Space(quad_mesh, p_init=3)
    ss = space.get_shapeset()
    asm = space.get_element_assembly_list(0)     # nodes (0, 1, 4, 3)
    sign = dict(zip(asm.idx.tolist(), asm.coef.tolist()))
    assert sign[ss.get_edge_index("quad", 0, 3)] == 1.0    # 0 -> 1
    assert sign[ss.get_edge_index("quad", 2, 3)] == -1.0   # 4 -> 3
    assert sign[ss.get_edge_index("quad", 2, 2)] == 1.0


def test_space_goes_stale_on_changes(quad_mesh):
    space = H1Space(quad_mesh, p_init=1)
    space.get_num_dofs()
    assert space.is_up_to_date()
    space.set_uniform_order(2)
    assert not space.is_up_to_date()
    assert space.get_num_dofs() == 9 + 12 + 4
    quad_mesh.refine_all_elements()
    assert not space.is_up_to_date()
    # children inherit their parent's order
    assert space.get_element_order(quad_mesh.active_elements()[0].id) == 2
    assert space.get_num_dofs() == 25 + 40 + 16


def test_numbering_is_logged(quad_mesh, diagnostics, caplog):
    space = H1Space(quad_mesh, p_init=2, diagnostics=diagnostics)
    with caplog.at_level(logging.INFO, logger="pyhpfem.tests"):
        space.assign_dofs()
    assert any("ndof=25" in r.getMessage() for r in caplog.records)


# --------------------------------------------------------------------------
# Dirichlet data
# --------------------------------------------------------------------------
def test_dirichlet_vertex_values(quad_mesh):
    space = H1Space(quad_mesh, EssentialBC(ALL_SIDES, lambda x, y: x + 2 * y), p_init=3)
    vals = space.get_dirichlet_values()
    xy = quad_mesh.nodes_x_y_pos
    for v, d in space.get_vertex_dofs().items():
        if space.is_constrained(d):
            assert np.isclose(vals[d - space.ndof], xy[v, 0] + 2 * xy[v, 1])
    # a linear trace needs no edge correction
    for k, dofs in space.get_edge_dofs().items():
        for d in dofs:
            if space.is_constrained(d):
                assert abs(vals[d - space.ndof]) < 1e-12


def test_dirichlet_edge_projection_of_quadratic(quad_mesh):
    space = H1Space(quad_mesh, EssentialBC("Bottom", lambda x, y: x ** 2), p_init=3)
    vals = space.get_dirichlet_values()
    c2, c3 = (vals[d - space.ndof] for d in space.get_edge_dofs()[(0, 1)])
    # x^2 on [0, 0.5] minus its linear interpolant is (s^2 - 1)/16 = l_2(s) * sqrt(6)/24
    assert np.isclose(c2, np.sqrt(6) / 24)
    assert abs(c3) < 1e-12


def test_extend_block_and_system_vector(quad_mesh):
    space = H1Space(quad_mesh, EssentialBC(ALL_SIDES, 3.0), p_init=1)
    space.assign_dofs(first_dof=2)
    ext = space.extend(np.array([7.0]))
    assert np.allclose(ext, [7.0] + [3.0] * 8)
    system = np.array([0.0, 0.0, 5.0, 0.0])
    assert np.allclose(space.extend(system)[:1], [5.0])
    out = np.empty(9)
    assert space.extend(system, out=out) is out
    with pytest.raises(ValueError):
        space.extend(np.zeros(2))


# --------------------------------------------------------------------------
# configuration errors
# --------------------------------------------------------------------------
def test_unknown_marker_raises_on_construction(quad_mesh):
    with pytest.raises(DOFError):
        H1Space(quad_mesh, EssentialBC("Nowhere", 0.0))
    space = H1Space(quad_mesh, EssentialBC("Left", 0.0))
    with pytest.raises(DOFError):
        space.set_essential_bcs(EssentialBC(["Left", "Nowhere"], 1.0))
    # the rejected set is not installed
    assert space.essential_bcs.markers == ["Left"]
    assert space.is_up_to_date()


def test_duplicate_marker_raises():
    with pytest.raises(DOFError):
        EssentialBCs([EssentialBC("Left", 0.0), EssentialBC(["Top", "Left"], 1.0)])


def test_hanging_mesh_raises(quad_mesh):
    quad_mesh.refine_element(0)
    with pytest.raises(DOFError):
        H1Space(quad_mesh)


def test_invalid_orders(quad_mesh):
    with pytest.raises(InvalidOrder):
        H1Space(quad_mesh, p_init=11)
    space = H1Space(quad_mesh)
    with pytest.raises(InvalidOrder):
        space.set_element_order(0, 0)


def test_inactive_and_unknown_elements(quad_mesh):
    space = H1Space(quad_mesh)
    quad_mesh.refine_all_elements()
    with pytest.raises(DOFError):
        space.set_element_order(0, 2)
    with pytest.raises(DOFError):
        space.get_element_order(1000)
    with pytest.raises(DOFError):
        space.get_element_assembly_list(0)
