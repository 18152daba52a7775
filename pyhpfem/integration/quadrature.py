"""pyhpfem.integration.quadrature
Quadrature rules for the reference interval, triangle and quad, selected by
the polynomial degree they must integrate exactly.
"""
import numpy as np
from functools import lru_cache
from numpy.polynomial.legendre import leggauss


def _frozen(*arrays):
    for a in arrays:
        a.setflags(write=False)
    return arrays


# -------------------------------------------------------------------------
# 1‑D Gauss–Legendre
# -------------------------------------------------------------------------
def gauss_legendre(npts: int):
    if npts < 1:
        raise ValueError(npts)
    return leggauss(npts)  # (points, weights) on [-1, 1]


def points_for_degree(degree: int) -> int:
    """Number of Gauss points that integrate degree ``degree`` exactly."""
    return max(int(degree), 0) // 2 + 1


@lru_cache(maxsize=None)
def line_rule(degree: int):
    xi, w = gauss_legendre(points_for_degree(degree))
    return _frozen(np.asarray(xi, float), np.asarray(w, float))


# -------------------------------------------------------------------------
# Tensor‑product / collapsed constructions
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def quad_rule(degree: int):
    xi, wi = gauss_legendre(points_for_degree(degree))
    pts = np.array([[x, y] for y in xi for x in xi])
    wts = np.array([wx * wy for wy in wi for wx in wi])
    return _frozen(pts, wts)


@lru_cache(maxsize=None)
def tri_rule(degree: int):
    """Collapsed (Duffy) Gauss rule on the triangle (0,0)-(1,0)-(0,1).

    The collapse adds one polynomial degree in the radial direction, hence
    one extra point compared to the quad rule.
    """
    npts = (max(int(degree), 0) + 1) // 2 + 1
    xi, wi = gauss_legendre(npts)
    u = 0.5 * (xi + 1.0)   # [0,1]
    w_u = 0.5 * wi
    pts = []
    wts = []
    for i, ui in enumerate(u):
        for j, vj in enumerate(u):
            pts.append([ui, vj * (1.0 - ui)])
            wts.append(w_u[i] * w_u[j] * (1.0 - ui))
    return _frozen(np.array(pts), np.array(wts))


# -------------------------------------------------------------------------
# Edge rules (reference domain)
# -------------------------------------------------------------------------
def edge_points(element_type: str, edge_index: int, t: np.ndarray) -> np.ndarray:
    """Reference points of local edge ``edge_index`` for the parameter t ∈ [-1, 1].

    t = -1 is the local start vertex, t = 1 the local end vertex.
    """
    t = np.asarray(t, dtype=float)
    if element_type == 'tri':
        s = 0.5 * (t + 1.0)
        if edge_index == 0:   # (0,0)‑(1,0)
            return np.column_stack([s, np.zeros_like(s)])
        if edge_index == 1:   # (1,0)‑(0,1)
            return np.column_stack([1.0 - s, s])
        if edge_index == 2:   # (0,1)‑(0,0)
            return np.column_stack([np.zeros_like(s), 1.0 - s])
        raise IndexError(edge_index)
    if element_type == 'quad':
        one = np.ones_like(t)
        if edge_index == 0:   # bottom
            return np.column_stack([t, -one])
        if edge_index == 1:   # right
            return np.column_stack([one, t])
        if edge_index == 2:   # top
            return np.column_stack([-t, one])
        if edge_index == 3:   # left
            return np.column_stack([-one, -t])
        raise IndexError(edge_index)
    raise KeyError(element_type)


@lru_cache(maxsize=None)
def edge(element_type: str, edge_index: int, degree: int):
    """Reference points and weights (w.r.t. the parameter t ∈ [-1, 1])."""
    t, w = line_rule(degree)
    pts = edge_points(element_type, edge_index, t)
    return _frozen(pts, np.array(w))


# -------------------------------------------------------------------------
# Public API
# -------------------------------------------------------------------------
def volume(element_type: str, degree: int = 2):
    if element_type == 'tri':
        return tri_rule(degree)
    if element_type == 'quad':
        return quad_rule(degree)
    raise KeyError(element_type)


def reference_area(element_type: str) -> float:
    return 0.5 if element_type == 'tri' else 4.0
