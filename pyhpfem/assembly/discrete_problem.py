"""pyhpfem.assembly.discrete_problem
Binds a :class:`WeakForm` to one or more H1 spaces and assembles the global
residual vector and Jacobian matrix for a given coefficient vector.

The CSR pattern of the free-DOF system and the per-element scatter positions
are built once per (mesh, space numbering, weak form) state and reused by every
later pass; only the CSR ``data`` array is refilled.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import numpy as np

from pyhpfem.assembly.kernels import all_finite, scatter_matrix, scatter_vector
from pyhpfem.diagnostics import Diagnostics
from pyhpfem.errors import AssemblyFailure, DOFError
from pyhpfem.fem import transform
from pyhpfem.integration import quadrature
from pyhpfem.linalg.matrix import SparseMatrix, Vector
from pyhpfem.weakform.forms import Func, Geom, MatrixForm, WeakForm

# d(xi)/dt along each local edge (t ∈ [-1, 1])
_EDGE_DXI = {
    "tri": np.array([[0.5, 0.0], [-0.5, 0.5], [0.0, -0.5]]),
    "quad": np.array([[1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0]]),
}


class _ElementPlan:
    """Free local rows and CSR positions of one element, per block."""
    __slots__ = ("rows", "gdofs", "pos")

    def __init__(self):
        self.rows: Dict[int, np.ndarray] = {}     # space -> local indices of free DOFs
        self.gdofs: Dict[int, np.ndarray] = {}    # space -> global free DOFs
        self.pos: Dict[Tuple[int, int], np.ndarray] = {}


class DiscreteProblem:
    """Residual / Jacobian assembler.

    Parameters
    ----------
    wf : WeakForm
    spaces : H1Space or list of H1Space
        One space per equation of ``wf``; all must share one mesh.
    num_threads : int
        Elements are split into this many chunks that are evaluated
        concurrently into private buffers.
    """

    def __init__(self, wf: WeakForm, spaces, num_threads: int = 1,
                 diagnostics: Optional[Diagnostics] = None):
        self.wf = wf
        self.spaces = list(spaces) if isinstance(spaces, (list, tuple)) else [spaces]
        if not self.spaces:
            raise DOFError("DiscreteProblem needs at least one space.")
        self.mesh = self.spaces[0].get_mesh()
        for s in self.spaces[1:]:
            if s.get_mesh() is not self.mesh:
                raise DOFError("All spaces of a DiscreteProblem must share one mesh.")
        if wf.neq != len(self.spaces):
            raise ValueError(f"WeakForm has {wf.neq} equation(s) but {len(self.spaces)} space(s) were given.")
        self.num_threads = max(1, int(num_threads))
        self.diagnostics = diagnostics if diagnostics is not None else self.spaces[0].diagnostics

        self.ndof = 0
        self._pattern_key = None
        self._indptr = None
        self._indices = None
        self._plans: Dict[int, _ElementPlan] = {}
        self._geom_cache: Dict[tuple, tuple] = {}
        self._tab_cache: Dict[tuple, tuple] = {}

    # ------------------------------------------------------------------
    @property
    def is_linear(self) -> bool:
        return self.wf.is_linear

    def get_num_dofs(self) -> int:
        offset = 0
        for s in self.spaces:
            if not s.is_up_to_date() or s.first_dof != offset:
                s.assign_dofs(offset)
            offset += s.ndof
        self.ndof = offset
        return offset

    def invalidate(self) -> None:
        """Drop the cached pattern and per-element caches."""
        self._pattern_key = None
        self._plans = {}
        self._geom_cache.clear()
        self._tab_cache.clear()

    # ------------------------------------------------------------------
    # sparsity
    # ------------------------------------------------------------------
    def _current_key(self):
        return (self.mesh.seq, tuple(s.numbering_seq for s in self.spaces), self.wf.seq)

    def _coupled_blocks(self) -> List[Tuple[int, int]]:
        return sorted({(f.i, f.j) for f in self.wf.matrix_forms})

    def _build_pattern(self) -> None:
        n = self.ndof
        blocks = self._coupled_blocks()
        active = self.mesh.active_elements()

        plans: Dict[int, _ElementPlan] = {}
        rows_cols = [{r} for r in range(n)]
        for elem in active:
            plan = _ElementPlan()
            for i, s in enumerate(self.spaces):
                al = s.get_element_assembly_list(elem.id)
                free = np.nonzero(al.dof < s.ndof)[0]
                plan.rows[i] = free
                plan.gdofs[i] = s.first_dof + al.dof[free]
            for i, j in blocks:
                cols = plan.gdofs[j].tolist()
                for r in plan.gdofs[i]:
                    rows_cols[r].update(cols)
            plans[elem.id] = plan

        indptr = np.zeros(n + 1, dtype=np.int64)
        for r in range(n):
            indptr[r + 1] = indptr[r] + len(rows_cols[r])
        indices = np.empty(indptr[-1], dtype=np.int64)
        for r in range(n):
            indices[indptr[r]:indptr[r + 1]] = sorted(rows_cols[r])

        # flattened positions, row-major order matching K[np.ix_(rows_i, rows_j)].ravel()
        for plan in plans.values():
            for i, j in blocks:
                gi, gj = plan.gdofs[i], plan.gdofs[j]
                pflat = np.empty(len(gi) * len(gj), dtype=np.int64)
                for a, r in enumerate(gi):
                    lo, hi = indptr[r], indptr[r + 1]
                    pflat[a * len(gj):(a + 1) * len(gj)] = lo + np.searchsorted(indices[lo:hi], gj)
                plan.pos[(i, j)] = pflat

        self._indptr, self._indices, self._plans = indptr, indices, plans
        self._pattern_key = self._current_key()
        self.diagnostics.verbose("DiscreteProblem: pattern n=%d nnz=%d", n, len(indices))

    def _ensure_pattern(self) -> None:
        self.get_num_dofs()
        if self._pattern_key != self._current_key():
            self._geom_cache.clear()
            self._build_pattern()

    def get_sparsity(self) -> Tuple[np.ndarray, np.ndarray]:
        self._ensure_pattern()
        return self._indptr, self._indices

    # ------------------------------------------------------------------
    # geometry and tabulation caches
    # ------------------------------------------------------------------
    def _volume_geometry(self, elem, degree: int):
        key = (elem.id, degree, -1)
        g = self._geom_cache.get(key)
        if g is None:
            et = elem.element_type
            pts, w = quadrature.volume(et, degree)
            coords = self.mesh.vertex_coords(elem.id)
            det, inv = transform.det_and_inverse(transform.jacobian(coords, pts))
            if not all_finite(det) or np.any(det <= 0.0):
                raise AssemblyFailure("Non-positive Jacobian determinant", element_id=elem.id)
            xy = transform.x_mapping(coords, pts)
            g = (pts, w * det, inv, xy, None)
            self._geom_cache[key] = g
        return g

    def _edge_geometry(self, elem, lid: int, degree: int):
        key = (elem.id, degree, lid)
        g = self._geom_cache.get(key)
        if g is None:
            et = elem.element_type
            pts, w = quadrature.edge(et, lid, degree)
            coords = self.mesh.vertex_coords(elem.id)
            J = transform.jacobian(coords, pts)
            det, inv = transform.det_and_inverse(J)
            if not all_finite(det) or np.any(det <= 0.0):
                raise AssemblyFailure("Non-positive Jacobian determinant", element_id=elem.id)
            dxdt = J @ _EDGE_DXI[et][lid]                    # (nq, 2)
            ds = np.hypot(dxdt[:, 0], dxdt[:, 1])
            tang = dxdt / ds[:, None]
            normal = np.column_stack([tang[:, 1], -tang[:, 0]])
            xy = transform.x_mapping(coords, pts)
            g = (pts, w * ds, inv, xy, (normal, tang))
            self._geom_cache[key] = g
        return g

    def _tabulate(self, space, elem, al, degree: int, where: int):
        key = (elem.element_type, al.idx.tobytes(), degree, where)
        t = self._tab_cache.get(key)
        if t is None:
            if where < 0:
                pts, _ = quadrature.volume(elem.element_type, degree)
            else:
                pts, _ = quadrature.edge(elem.element_type, where, degree)
            t = space.get_shapeset().tabulate(elem.element_type, al.idx, pts)
            self._tab_cache[key] = t
        return t

    # ------------------------------------------------------------------
    # element kernel
    # ------------------------------------------------------------------
    def _basis(self, elem, degree: int, where: int, inv):
        """Physical basis (val, dx, dy) per space, signs applied."""
        out = []
        for s in self.spaces:
            al = s.get_element_assembly_list(elem.id)
            val, dref = self._tabulate(s, elem, al, degree, where)
            grad = transform.map_gradients(inv, dref)
            c = al.coef[:, None]
            out.append((c * val, c * grad[..., 0], c * grad[..., 1]))
        return out

    def _u_ext(self, elem, basis, ext_vecs) -> List[Func]:
        u_ext = []
        for s, (val, dx, dy), ext in zip(self.spaces, basis, ext_vecs):
            coeffs = ext[s.get_element_assembly_list(elem.id).dof]
            u_ext.append(Func(coeffs @ val, coeffs @ dx, coeffs @ dy))
        return u_ext

    def _ext_funcs(self, form, elem, pts) -> List[Func]:
        funcs = []
        for fn in (*form.ext, *self.wf.ext):
            val, dx, dy = fn.evaluate_on_element(elem.id, pts)
            funcs.append(Func(val, dx, dy))
        return funcs

    def _check(self, arr, elem, form):
        a = np.ascontiguousarray(arr, dtype=float).ravel()
        if not all_finite(a):
            raise AssemblyFailure("Non-finite local contribution", element_id=elem.id, form=form.name)
        return a

    def _element_forms(self, elem):
        """Matching forms grouped by quadrature degree and evaluation site."""
        p = max(s.get_element_order(elem.id) for s in self.spaces)
        groups: Dict[Tuple[int, int, Optional[str]], list] = {}
        for form in (*self.wf.mfvol, *self.wf.vfvol):
            if form.matches(elem.marker):
                groups.setdefault((max(2 * p + form.extra_order, 1), -1, None), []).append(form)
        surf = [*self.wf.mfsurf, *self.wf.vfsurf]
        if surf:
            for lid, gid in enumerate(self.mesh.element_edges(elem.id)):
                edge = self.mesh.edge(gid)
                if not edge.is_boundary:
                    continue
                for form in surf:
                    if form.matches(edge.marker):
                        deg = max(2 * p + form.extra_order, 1)
                        groups.setdefault((deg, lid, edge.marker), []).append(form)
        return groups

    def _assemble_element(self, elem, ext_vecs, data, res):
        plan = self._plans[elem.id]
        diam = self.mesh.element_diameter(elem.id)
        local_mat: Dict[Tuple[int, int], np.ndarray] = {}
        local_vec: Dict[int, np.ndarray] = {}

        for (degree, where, edge_marker), forms in self._element_forms(elem).items():
            if where < 0:
                pts, wt, inv, xy, surf = self._volume_geometry(elem, degree)
            else:
                pts, wt, inv, xy, surf = self._edge_geometry(elem, where, degree)
            basis = self._basis(elem, degree, where, inv)
            u_ext = self._u_ext(elem, basis, ext_vecs)
            e = Geom(x=xy[:, 0], y=xy[:, 1], id=elem.id, elem_marker=elem.marker,
                     diam=diam, area=float(self._volume_geometry(elem, 2)[1].sum()))
            if surf is not None:
                normal, tang = surf
                e.nx, e.ny = normal[:, 0], normal[:, 1]
                e.tx, e.ty = tang[:, 0], tang[:, 1]
                e.edge_marker = edge_marker
                e.isurf = where

            for form in forms:
                ext = self._ext_funcs(form, elem, pts)
                if isinstance(form, MatrixForm):
                    if data is None:
                        continue
                    vi, ui = basis[form.i], basis[form.j]
                    v = Func(vi[0][:, None, :], vi[1][:, None, :], vi[2][:, None, :])
                    u = Func(ui[0][None, :, :], ui[1][None, :, :], ui[2][None, :, :])
                    K = np.asarray(form.value(wt, u_ext, u, v, e, ext), dtype=float)
                    self._check(K, elem, form)
                    key = (form.i, form.j)
                    local_mat[key] = local_mat[key] + K if key in local_mat else K
                else:
                    if res is None:
                        continue
                    vi = basis[form.i]
                    v = Func(vi[0], vi[1], vi[2])
                    F = np.asarray(form.value(wt, u_ext, v, e, ext), dtype=float)
                    self._check(F, elem, form)
                    local_vec[form.i] = local_vec[form.i] + F if form.i in local_vec else F

        for (i, j), K in local_mat.items():
            Kr = K[np.ix_(plan.rows[i], plan.rows[j])]
            scatter_matrix(data, plan.pos[(i, j)], np.ascontiguousarray(Kr).ravel())
        for i, F in local_vec.items():
            scatter_vector(res, plan.gdofs[i], np.ascontiguousarray(F[plan.rows[i]]))

    def _assemble_chunk(self, elems, ext_vecs, want_matrix: bool, want_rhs: bool):
        data = np.zeros(len(self._indices)) if want_matrix else None
        res = np.zeros(self.ndof) if want_rhs else None
        for elem in elems:
            self._assemble_element(elem, ext_vecs, data, res)
        return data, res

    # ------------------------------------------------------------------
    # public entry point
    # ------------------------------------------------------------------
    def assemble(self, coeff_vec, matrix: Optional[SparseMatrix] = None,
                 rhs: Optional[Vector] = None) -> None:
        """Assemble ``J(u)`` into ``matrix`` and ``F(u)`` into ``rhs`` (either may be None)."""
        self._ensure_pattern()
        coeff_vec = np.asarray(coeff_vec, dtype=float)
        if coeff_vec.shape != (self.ndof,):
            raise ValueError(f"Coefficient vector has shape {coeff_vec.shape}, expected ({self.ndof},).")
        ext_vecs = [s.extend(coeff_vec) for s in self.spaces]

        if matrix is not None and not matrix.has_pattern(self._indptr, self._indices):
            matrix.set_pattern(self._indptr.copy(), self._indices.copy())
        if rhs is not None:
            rhs.alloc(self.ndof)

        elems = self.mesh.active_elements()
        try:
            with self.diagnostics.timer("assemble"):
                if self.num_threads > 1 and len(elems) > 1:
                    chunks = [c for c in np.array_split(np.arange(len(elems)), self.num_threads) if len(c)]
                    with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
                        futures = [pool.submit(self._assemble_chunk, [elems[k] for k in c], ext_vecs,
                                               matrix is not None, rhs is not None) for c in chunks]
                        parts = [f.result() for f in futures]
                else:
                    parts = [self._assemble_chunk(elems, ext_vecs, matrix is not None, rhs is not None)]
        except AssemblyFailure as exc:
            self.diagnostics.warn("Assembly failed: %s", exc)
            raise

        if matrix is not None:
            matrix.zero()
            for data, _ in parts:
                matrix.data += data
            matrix.mark_changed()
        if rhs is not None:
            for _, res in parts:
                rhs.data += res

    def __repr__(self):
        return f"<DiscreteProblem ndof={self.ndof} spaces={len(self.spaces)} wf={self.wf!r}>"
