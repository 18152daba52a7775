"""pyhpfem.core.space
H1 function space: per-element polynomial orders and the DOF map.

DOF indices live in an *extended* index space: free DOFs are ``[0, ndof)``
and the basis functions fixed by essential conditions follow in
``[ndof, ndof + n_constrained)``.  Assembly lists store these local extended
indices; a space that is part of a system additionally carries
``first_dof``, the offset of its free block in the global vector.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from pyhpfem.core.bcs import EssentialBCs, as_essential_bcs
from pyhpfem.diagnostics import Diagnostics
from pyhpfem.errors import DOFError
from pyhpfem.fem.shapeset import (H1LobattoShapeset, edge_orientation_sign,
                                  get_shapeset, lobatto)
from pyhpfem.integration.quadrature import line_rule


@dataclass(frozen=True)
class AsmList:
    """Per-element assembly list: shape-function index, extended DOF, sign."""
    idx: np.ndarray
    dof: np.ndarray
    coef: np.ndarray

    @property
    def cnt(self) -> int:
        return len(self.idx)

    def __len__(self):
        return len(self.idx)


def _key(a: int, b: int) -> Tuple[int, int]:
    return (a, b) if a < b else (b, a)


class H1Space:
    """Continuous hierarchic H1 space over the active elements of a mesh.

    DOFs are numbered on construction, so an unknown boundary marker or a
    non-conforming mesh raises ``DOFError`` right away. The map is
    recomputed whenever the space, the mesh or the boundary-condition set
    changed since the last numbering.
    """

    def __init__(self, mesh, essential_bcs=None, p_init: int = 1,
                 shapeset: Optional[H1LobattoShapeset] = None,
                 diagnostics: Optional[Diagnostics] = None):
        self.mesh = mesh
        self.shapeset = shapeset if shapeset is not None else get_shapeset()
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics.from_env()
        self.essential_bcs: EssentialBCs = as_essential_bcs(essential_bcs)
        self._orders: Dict[int, int] = {}
        self.seq = 0
        self.first_dof = 0

        self._numbered_for = None
        self.numbering_seq = 0
        self.ndof = 0
        self._ncon = 0
        self._asm: Dict[int, AsmList] = {}
        self._vertex_dofs: Dict[int, int] = {}
        self._edge_dofs: Dict[Tuple[int, int], List[int]] = {}
        self._dirichlet = np.zeros(0)

        self.set_uniform_order(p_init)
        self.assign_dofs(self.first_dof)

    # ------------------------------------------------------------------
    # order / BC management
    # ------------------------------------------------------------------
    def _invalidate(self):
        self.seq += 1

    def set_uniform_order(self, p: int) -> None:
        p = self.shapeset.check_order(p)
        for elem in self.mesh.elements_list:
            self._orders[elem.id] = p
        self._invalidate()

    def set_element_order(self, eid: int, p: int) -> None:
        p = self.shapeset.check_order(p)
        elem = self._active_element(eid)
        self._orders[elem.id] = p
        self._invalidate()

    def get_element_order(self, eid: int) -> int:
        try:
            elem = self.mesh.element(eid)
        except IndexError:
            raise DOFError(f"Unknown element id {eid}.") from None
        # refined children inherit the order of the closest ancestor
        while elem.id not in self._orders and elem.parent is not None:
            elem = self.mesh.element(elem.parent)
        return self._orders.get(elem.id, self.shapeset.min_order)

    def set_essential_bcs(self, bcs) -> None:
        bcs = as_essential_bcs(bcs)
        bcs.validate(self.mesh)
        self.essential_bcs = bcs
        self._invalidate()

    def _active_element(self, eid: int):
        try:
            elem = self.mesh.element(eid)
        except IndexError:
            raise DOFError(f"Unknown element id {eid}.") from None
        if not elem.active:
            raise DOFError(f"Element {eid} is not active.")
        return elem

    # ------------------------------------------------------------------
    # numbering
    # ------------------------------------------------------------------
    def _state(self):
        return (self.seq, self.mesh.seq, self.essential_bcs.seq, id(self.essential_bcs), self.first_dof)

    def is_up_to_date(self) -> bool:
        return self._numbered_for == self._state()

    def _ensure_numbered(self):
        if not self.is_up_to_date():
            self.assign_dofs(self.first_dof)

    def edge_order(self, edge) -> int:
        p = self.get_element_order(edge.left)
        if edge.right is not None:
            p = min(p, self.get_element_order(edge.right))
        return p

    def assign_dofs(self, first_dof: int = 0) -> int:
        """Number all DOFs; returns ``ndof``."""
        mesh = self.mesh
        active = mesh.active_elements()
        if not active:
            raise DOFError("The mesh has no active elements.")
        hanging = mesh.hanging_edges()
        if hanging:
            raise DOFError(f"Mesh is non-conforming: {len(hanging)} hanging edge(s), "
                           f"e.g. {hanging[0]}.")
        self.essential_bcs.validate(mesh)

        ss = self.shapeset
        # essential data: vertex -> bc, edge key -> bc
        vertex_bc = {}
        edge_bc = {}
        for edge in mesh.boundary_edges():
            bc = self.essential_bcs.get_boundary_condition(edge.marker)
            if bc is None:
                continue
            edge_bc[edge.key()] = (edge, bc)
            for v in edge.nodes:
                vertex_bc.setdefault(v, bc)

        n_free = 0
        n_con = 0
        # constrained slots carry a negative tag until ndof is known
        def take(constrained: bool) -> int:
            nonlocal n_free, n_con
            if constrained:
                n_con += 1
                return -n_con
            n_free += 1
            return n_free - 1

        vertex_dofs: Dict[int, int] = {}
        edge_dofs: Dict[Tuple[int, int], List[int]] = {}
        raw_asm = {}
        for elem in active:
            et = elem.element_type
            p = self.get_element_order(elem.id)
            idx, dofs, coef = [], [], []
            for i, v in enumerate(elem.nodes):
                if v not in vertex_dofs:
                    vertex_dofs[v] = take(v in vertex_bc)
                idx.append(ss.get_vertex_index(et, i))
                dofs.append(vertex_dofs[v])
                coef.append(1.0)
            for lid in range(elem.nvert):
                a, b = elem.local_edge(lid)
                k_ab = _key(a, b)
                edge = mesh.edge_between(a, b)
                q = self.edge_order(edge)
                if k_ab not in edge_dofs:
                    edge_dofs[k_ab] = [take(k_ab in edge_bc) for _ in range(2, q + 1)]
                for k, d in zip(range(2, q + 1), edge_dofs[k_ab]):
                    idx.append(ss.get_edge_index(et, lid, k))
                    dofs.append(d)
                    coef.append(edge_orientation_sign(k, (a, b)))
            for bi in ss.get_bubble_indices(et, p):
                idx.append(bi)
                dofs.append(take(False))
                coef.append(1.0)
            raw_asm[elem.id] = (idx, dofs, coef)

        def ext(d: int) -> int:
            return d if d >= 0 else n_free + (-d - 1)

        self._asm = {eid: AsmList(np.asarray(i, dtype=np.int64),
                                  np.asarray([ext(d) for d in ds], dtype=np.int64),
                                  np.asarray(c, dtype=float))
                     for eid, (i, ds, c) in raw_asm.items()}
        self._vertex_dofs = {v: ext(d) for v, d in vertex_dofs.items()}
        self._edge_dofs = {k: [ext(d) for d in ds] for k, ds in edge_dofs.items()}
        self.ndof = n_free
        self._ncon = n_con
        self.first_dof = int(first_dof)
        self._dirichlet = self._compute_dirichlet(vertex_bc, edge_bc)
        self._numbered_for = self._state()
        self.numbering_seq += 1
        self.diagnostics.info("H1Space: ndof=%d, constrained=%d, elements=%d",
                              self.ndof, self._ncon, len(active))
        return self.ndof

    def _compute_dirichlet(self, vertex_bc, edge_bc) -> np.ndarray:
        vals = np.zeros(self._ncon)
        xy = self.mesh.nodes_x_y_pos
        for v, bc in vertex_bc.items():
            vals[self._vertex_dofs[v] - self.ndof] = float(bc.evaluate(xy[v, 0], xy[v, 1]))
        for k_ab, (edge, bc) in edge_bc.items():
            dofs = self._edge_dofs[k_ab]
            if not dofs:
                continue
            a, b = k_ab     # global direction: lower id -> higher id
            q = len(dofs) + 1
            s, w = line_rule(2 * q + 8)
            x = 0.5 * (1 - s)[:, None] * xy[a] + 0.5 * (1 + s)[:, None] * xy[b]
            ga = vals[self._vertex_dofs[a] - self.ndof]
            gb = vals[self._vertex_dofs[b] - self.ndof]
            r = bc.evaluate(x[:, 0], x[:, 1]) - ga * lobatto(0)(s) - gb * lobatto(1)(s)
            L = np.array([lobatto(k)(s) for k in range(2, q + 1)])
            M = (L * w) @ L.T
            c = np.linalg.solve(M, (L * w) @ r)
            for d, ck in zip(dofs, c):
                vals[d - self.ndof] = ck
        return vals

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get_num_dofs(self) -> int:
        self._ensure_numbered()
        return self.ndof

    def get_num_constrained(self) -> int:
        self._ensure_numbered()
        return self._ncon

    def get_element_assembly_list(self, eid: int) -> AsmList:
        self._ensure_numbered()
        self._active_element(eid)
        return self._asm[eid]

    def get_dirichlet_values(self) -> np.ndarray:
        self._ensure_numbered()
        return self._dirichlet.copy()

    def extend(self, coeff_vec, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Return ``[free coefficients of this space, Dirichlet values]``.

        ``coeff_vec`` is either this space's block (length ``ndof``) or a
        system vector, in which case the block starting at ``first_dof`` is used.
        """
        self._ensure_numbered()
        coeff_vec = np.asarray(coeff_vec, dtype=float)
        if coeff_vec.shape[0] == self.ndof:
            block = coeff_vec
        elif coeff_vec.shape[0] >= self.first_dof + self.ndof:
            block = coeff_vec[self.first_dof:self.first_dof + self.ndof]
        else:
            raise ValueError(f"Coefficient vector of length {coeff_vec.shape[0]} does not "
                             f"match ndof={self.ndof}.")
        n = self.ndof + self._ncon
        if out is None or out.shape != (n,):
            out = np.empty(n)
        out[:self.ndof] = block
        out[self.ndof:] = self._dirichlet
        return out

    def get_vertex_dofs(self) -> Dict[int, int]:
        self._ensure_numbered()
        return dict(self._vertex_dofs)

    def get_edge_dofs(self) -> Dict[Tuple[int, int], List[int]]:
        self._ensure_numbered()
        return {k: list(v) for k, v in self._edge_dofs.items()}

    def is_constrained(self, ext_dof: int) -> bool:
        return ext_dof >= self.ndof

    def get_mesh(self):
        return self.mesh

    def get_shapeset(self):
        return self.shapeset

    def __repr__(self):
        state = f"ndof={self.ndof}" if self.is_up_to_date() else "stale"
        return f"<H1Space {state}, seq={self.seq}, mesh={self.mesh!r}>"
