"""pyhpfem.core.solution
Discrete solutions (coefficient vector + snapshot of the DOF map) and analytic
helper functions that can be evaluated wherever a solution can.
"""
from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import numpy as np
import sympy as sp

from pyhpfem.fem import transform
from pyhpfem.integration import quadrature


class MeshFunction:
    """Anything that can be evaluated element-wise at reference points."""

    def __init__(self, mesh):
        self.mesh = mesh

    def evaluate_on_element(self, eid: int, ref_points) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        raise NotImplementedError

    def _locate(self, x: float, y: float) -> Tuple[int, np.ndarray]:
        for eid in self._element_ids():
            coords = self.mesh.vertex_coords(eid)
            lo, hi = coords.min(axis=0), coords.max(axis=0)
            if not (lo[0] - 1e-12 <= x <= hi[0] + 1e-12 and lo[1] - 1e-12 <= y <= hi[1] + 1e-12):
                continue
            try:
                xi = transform.inverse_mapping(coords, (x, y))
            except ValueError:
                continue
            if transform.is_inside_reference(transform.element_type_of(coords), xi[0], xi[1], tol=1e-10):
                return eid, xi
        raise ValueError(f"Point ({x}, {y}) lies outside the mesh.")

    def _element_ids(self):
        return [e.id for e in self.mesh.active_elements()]

    def get_pt_value(self, x: float, y: float) -> float:
        eid, xi = self._locate(x, y)
        val, _, _ = self.evaluate_on_element(eid, xi[None, :])
        return float(val[0])

    def get_pt_gradient(self, x: float, y: float) -> np.ndarray:
        eid, xi = self._locate(x, y)
        _, dx, dy = self.evaluate_on_element(eid, xi[None, :])
        return np.array([dx[0], dy[0]])

    def _norm_degree(self, eid: int) -> int:
        return 8

    def calc_norm(self, kind: str = "l2") -> float:
        return calc_abs_error(self, ConstantSolution(self.mesh, 0.0), kind, elements=self._element_ids())


class Solution(MeshFunction):
    """Immutable pairing of a coefficient vector with the space's DOF map."""

    def __init__(self, space, coeff_vec):
        super().__init__(space.get_mesh())
        ndof = space.get_num_dofs()
        coeff_vec = np.asarray(coeff_vec, dtype=float)
        if coeff_vec.shape != (ndof,):
            raise ValueError(f"Coefficient vector has shape {coeff_vec.shape}, expected ({ndof},).")
        self.ndof = ndof
        self.shapeset = space.get_shapeset()
        self._coeffs = coeff_vec.copy()
        self._coeffs.setflags(write=False)
        self._ext = space.extend(coeff_vec)
        self._ext.setflags(write=False)
        self._ids = [e.id for e in self.mesh.active_elements()]
        self._orders: Dict[int, int] = {eid: space.get_element_order(eid) for eid in self._ids}
        self._asm = {}
        for eid in self._ids:
            al = space.get_element_assembly_list(eid)
            self._asm[eid] = (al.idx.copy(), al.dof.copy(), al.coef.copy())

    @classmethod
    def vector_to_solution(cls, coeff_vec, space) -> "Solution":
        return cls(space, coeff_vec)

    def get_coefficients(self) -> np.ndarray:
        return self._coeffs.copy()

    def _element_ids(self):
        return list(self._ids)

    def _norm_degree(self, eid: int) -> int:
        return 2 * self._orders[eid] + 2

    def evaluate_on_element(self, eid, ref_points):
        if eid not in self._asm:
            raise KeyError(f"Element {eid} is not part of this solution.")
        idx, dof, coef = self._asm[eid]
        etype = self.mesh.element(eid).element_type
        pts = np.atleast_2d(np.asarray(ref_points, dtype=float))
        val, dref = self.shapeset.tabulate(etype, idx, pts)
        _, inv = transform.det_and_inverse(transform.jacobian(self.mesh.vertex_coords(eid), pts))
        grad = transform.map_gradients(inv, dref)
        c = self._ext[dof] * coef
        return c @ val, c @ grad[..., 0], c @ grad[..., 1]

    def __repr__(self):
        return f"<Solution ndof={self.ndof}, elements={len(self._ids)}>"


class ConstantSolution(MeshFunction):
    def __init__(self, mesh, value: float):
        super().__init__(mesh)
        self.value = float(value)

    def evaluate_on_element(self, eid, ref_points):
        n = np.atleast_2d(ref_points).shape[0]
        return np.full(n, self.value), np.zeros(n), np.zeros(n)


class ExactSolution(MeshFunction):
    """Analytic ``fn(x, y)`` with gradient ``grad(x, y) -> (dx, dy)``.

    Without ``grad`` the gradient is approximated by central differences.
    """

    def __init__(self, mesh, fn: Callable, grad: Optional[Callable] = None, h: float = 1e-6):
        super().__init__(mesh)
        self.fn = fn
        self.grad = grad
        self.h = h

    @classmethod
    def from_sympy(cls, mesh, expr, x, y) -> "ExactSolution":
        expr = sp.sympify(expr)
        f = sp.lambdify((x, y), expr, 'numpy')
        fx = sp.lambdify((x, y), sp.diff(expr, x), 'numpy')
        fy = sp.lambdify((x, y), sp.diff(expr, y), 'numpy')
        return cls(mesh, f, lambda X, Y: (fx(X, Y), fy(X, Y)))

    def _values(self, X, Y):
        return np.asarray(self.fn(X, Y), dtype=float) + np.zeros_like(X)

    def evaluate_on_element(self, eid, ref_points):
        xy = transform.x_mapping(self.mesh.vertex_coords(eid), ref_points)
        X, Y = xy[:, 0], xy[:, 1]
        val = self._values(X, Y)
        if self.grad is not None:
            dx, dy = self.grad(X, Y)
        else:
            h = self.h
            dx = (self._values(X + h, Y) - self._values(X - h, Y)) / (2 * h)
            dy = (self._values(X, Y + h) - self._values(X, Y - h)) / (2 * h)
        return val, np.asarray(dx, dtype=float) + np.zeros_like(X), np.asarray(dy, dtype=float) + np.zeros_like(X)


def calc_abs_error(u: MeshFunction, v: MeshFunction, kind: str = "l2", elements=None) -> float:
    """‖u - v‖ in the L2 or H1 norm, integrated over ``u``'s elements."""
    kind = kind.lower()
    if kind not in ("l2", "h1"):
        raise ValueError(f"Unknown norm '{kind}' (use 'l2' or 'h1').")
    mesh = u.mesh
    total = 0.0
    for eid in (elements if elements is not None else u._element_ids()):
        etype = mesh.element(eid).element_type
        pts, w = quadrature.volume(etype, u._norm_degree(eid))
        det, _ = transform.det_and_inverse(transform.jacobian(mesh.vertex_coords(eid), pts))
        uv, ux, uy = u.evaluate_on_element(eid, pts)
        vv, vx, vy = v.evaluate_on_element(eid, pts)
        integrand = (uv - vv) ** 2
        if kind == "h1":
            integrand = integrand + (ux - vx) ** 2 + (uy - vy) ** 2
        total += float((w * det * integrand).sum())
    return float(np.sqrt(total))
