"""pyhpfem.fem.transform
Reference → physical mapping for affine triangles and bilinear quads.

Reference domains
-----------------
* quad : [-1, 1]², vertices (-1,-1), (1,-1), (1,1), (-1,1)
* tri  : (0,0), (1,0), (0,1)

All routines are vectorised over quadrature points.  ``J[q, a, b]`` is
∂x_a/∂ξ_b, so physical gradients are ``J⁻ᵀ ∇_ξ``.
"""
import numpy as np

REF_VERTICES = {
    "quad": np.array([[-1.0, -1.0], [1.0, -1.0], [1.0, 1.0], [-1.0, 1.0]]),
    "tri": np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]),
}
REF_CENTROID = {"quad": np.array([0.0, 0.0]), "tri": np.array([1.0 / 3.0, 1.0 / 3.0])}


def element_type_of(coords) -> str:
    return "tri" if len(coords) == 3 else "quad"


def geometry_shape(element_type: str, pts: np.ndarray):
    """Linear / bilinear geometry functions and their reference gradients.

    Returns ``N`` with shape (nq, nv) and ``dN`` with shape (nq, nv, 2).
    """
    pts = np.atleast_2d(np.asarray(pts, dtype=float))
    xi, eta = pts[:, 0], pts[:, 1]
    if element_type == "tri":
        N = np.column_stack([1.0 - xi - eta, xi, eta])
        dN = np.broadcast_to(np.array([[-1.0, -1.0], [1.0, 0.0], [0.0, 1.0]]),
                             (len(xi), 3, 2)).copy()
        return N, dN
    if element_type == "quad":
        sx = np.array([-1.0, 1.0, 1.0, -1.0])
        sy = np.array([-1.0, -1.0, 1.0, 1.0])
        fx = 1.0 + np.outer(xi, sx)
        fy = 1.0 + np.outer(eta, sy)
        N = 0.25 * fx * fy
        dN = np.empty((len(xi), 4, 2))
        dN[:, :, 0] = 0.25 * sx[None, :] * fy
        dN[:, :, 1] = 0.25 * fx * sy[None, :]
        return N, dN
    raise KeyError(element_type)


def x_mapping(coords: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Physical coordinates (nq, 2) of reference points ``pts``."""
    N, _ = geometry_shape(element_type_of(coords), pts)
    return N @ coords


def jacobian(coords: np.ndarray, pts: np.ndarray) -> np.ndarray:
    _, dN = geometry_shape(element_type_of(coords), pts)
    return np.einsum("na,qnb->qab", coords, dN)


def det_and_inverse(J: np.ndarray):
    """Closed-form determinant and inverse of a stack of 2×2 matrices."""
    det = J[:, 0, 0] * J[:, 1, 1] - J[:, 0, 1] * J[:, 1, 0]
    with np.errstate(divide="ignore", invalid="ignore"):
        inv = np.empty_like(J)
        inv[:, 0, 0] = J[:, 1, 1] / det
        inv[:, 0, 1] = -J[:, 0, 1] / det
        inv[:, 1, 0] = -J[:, 1, 0] / det
        inv[:, 1, 1] = J[:, 0, 0] / det
    return det, inv


def map_gradients(inv_J: np.ndarray, dref: np.ndarray) -> np.ndarray:
    """Push reference gradients (nb, nq, 2) to physical ones via J⁻ᵀ."""
    return np.einsum("qba,nqb->nqa", inv_J, dref)


def is_inside_reference(element_type: str, xi: float, eta: float, tol: float = 1e-10) -> bool:
    if element_type == "quad":
        return -1.0 - tol <= xi <= 1.0 + tol and -1.0 - tol <= eta <= 1.0 + tol
    return xi >= -tol and eta >= -tol and xi + eta <= 1.0 + tol


def inverse_mapping(coords: np.ndarray, x, tol: float = 1e-12, maxiter: int = 50) -> np.ndarray:
    """Reference coordinates of the physical point ``x`` (Newton iteration)."""
    etype = element_type_of(coords)
    x = np.asarray(x, dtype=float)
    xi = REF_CENTROID[etype].copy()
    for it in range(maxiter):
        X = x_mapping(coords, xi)[0]
        J = jacobian(coords, xi)[0]
        try:
            delta = np.linalg.solve(J, x - X)
        except np.linalg.LinAlgError:
            raise ValueError(f"Jacobian singular at iteration {it}, x={x}") from None
        xi += delta
        if np.linalg.norm(delta) < tol:
            break
    else:
        raise ValueError(f"Inverse mapping did not converge after {maxiter} iterations, x={x}")
    return xi


def edge_length(coords: np.ndarray, lid: int) -> float:
    a = coords[lid]
    b = coords[(lid + 1) % len(coords)]
    return float(np.hypot(*(b - a)))
