import numpy as np
import pytest

from pyhpfem.fem import transform


def test_reference_to_global_mapping_tri():
    coords = np.array([[0.0, 0.0], [2.0, 0.0], [0.0, 1.0]])
    x = transform.x_mapping(coords, (1 / 3, 1 / 3))
    assert np.allclose(x, [[2 / 3, 1 / 3]])
    det, _ = transform.det_and_inverse(transform.jacobian(coords, [(0.2, 0.2)]))
    # detJ is twice the area for the unit reference triangle
    assert np.isclose(det[0], 2.0)


def test_bilinear_quad_jacobian_and_inverse():
    coords = np.array([[0.0, 0.0], [2.0, 0.0], [2.5, 1.0], [0.0, 1.5]])
    pts = np.array([[0.3, -0.2], [-0.7, 0.9]])
    J = transform.jacobian(coords, pts)
    det, inv = transform.det_and_inverse(J)
    assert np.all(det > 0)
    for k in range(len(pts)):
        assert np.allclose(inv[k] @ J[k], np.eye(2))


def test_physical_gradient_of_linear_function():
    # f(x, y) = 3x - 2y written through the geometry functions
    coords = np.array([[0.0, 0.0], [2.0, 0.1], [2.5, 1.0], [-0.2, 1.5]])
    pts = np.array([[0.1, 0.2], [-0.5, 0.5], [0.9, -0.9]])
    f_nodes = 3 * coords[:, 0] - 2 * coords[:, 1]
    _, dN = transform.geometry_shape('quad', pts)
    _, inv = transform.det_and_inverse(transform.jacobian(coords, pts))
    dref = np.einsum('n,qnb->qb', f_nodes, dN)[None]          # (1, nq, 2)
    grad = transform.map_gradients(inv, dref)[0]
    assert np.allclose(grad, [[3.0, -2.0]] * len(pts))


@pytest.mark.parametrize("coords", [
    np.array([[0.0, 0.0], [1.0, 0.2], [0.3, 1.1]]),
    np.array([[0.0, 0.0], [2.0, 0.0], [2.5, 1.0], [0.0, 1.5]]),
])
def test_inverse_mapping_roundtrip(coords):
    et = transform.element_type_of(coords)
    xi = transform.REF_CENTROID[et] + np.array([0.1, -0.05])
    x = transform.x_mapping(coords, xi)[0]
    assert np.allclose(transform.inverse_mapping(coords, x), xi)
    assert transform.is_inside_reference(et, *xi)


def test_edge_length():
    coords = np.array([[0.0, 0.0], [3.0, 0.0], [3.0, 4.0]])
    assert np.isclose(transform.edge_length(coords, 1), 4.0)
    assert np.isclose(transform.edge_length(coords, 2), 5.0)
