import numpy as np
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pyhpfem.core.topology import Edge, Element


def _key(a: int, b: int) -> Tuple[int, int]:
    return (a, b) if a < b else (b, a)


class Mesh:
    """
    Two-dimensional mesh of triangles and quadrilaterals with a refinement forest.

    Elements are given as ``(v0, v1, v2[, v3], marker)`` tuples; the marker is
    optional and defaults to ``""``.  Boundary edges are tagged through
    ``(va, vb, marker)`` tuples.  Refining an element keeps it in
    ``elements_list`` (inactive) and appends its four children; the edge graph
    of the *active* mesh is rebuilt lazily after every topology change and
    ``seq`` is incremented so that dependent spaces know they are stale.
    """
    # Local-corner indices that form each edge, in CCW order.
    _EDGE_TABLE = {
        'tri':  ((0, 1), (1, 2), (2, 0)),
        'quad': ((0, 1), (1, 2), (2, 3), (3, 0)),
    }

    def __init__(self,
                 vertices,
                 elements: Sequence[Sequence],
                 boundaries: Iterable[Sequence] = ()):
        verts = np.asarray(vertices, dtype=float)
        if verts.ndim != 2 or verts.shape[1] != 2:
            raise ValueError(f"vertices must have shape (n, 2), got {verts.shape}")
        self._vertices: List[List[float]] = verts.tolist()
        self._xy_cache: Optional[np.ndarray] = None

        self.elements_list: List[Element] = []
        for raw in elements:
            nodes, marker = self._split_element_spec(raw)
            self._add_element(nodes, marker)

        self._boundary_markers: Dict[Tuple[int, int], str] = {}
        for va, vb, marker in boundaries:
            self._boundary_markers[_key(int(va), int(vb))] = str(marker)

        # Edges ever shared by two elements; their descendants stay interior.
        self._interior_keys: Set[Tuple[int, int]] = set()
        counts: Dict[Tuple[int, int], int] = {}
        for elem in self.elements_list:
            for i in range(elem.nvert):
                k = _key(*elem.local_edge(i))
                counts[k] = counts.get(k, 0) + 1
        for k, c in counts.items():
            if c > 2:
                raise ValueError(f"Edge {k} is shared by {c} elements.")
            if c == 2:
                self._interior_keys.add(k)
        for k in self._boundary_markers:
            if k not in counts:
                raise ValueError(f"Boundary edge {k} is not an edge of any element.")
            if k in self._interior_keys:
                raise ValueError(f"Boundary marker given for interior edge {k}.")

        self._midpoints: Dict[Tuple[int, int], int] = {}
        self.edges_list: List[Edge] = []
        self._edge_dict: Dict[Tuple[int, int], Edge] = {}
        self._hanging: List[Tuple[int, int]] = []
        self._topology_stale = True
        self.seq = 0

    # ------------------------------------------------------------------
    # construction helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _split_element_spec(raw) -> Tuple[Tuple[int, ...], str]:
        raw = list(raw)
        marker = ""
        if raw and isinstance(raw[-1], str):
            marker = raw.pop()
        if len(raw) not in (3, 4):
            raise ValueError(f"Element needs 3 or 4 vertices, got {len(raw)}.")
        return tuple(int(v) for v in raw), marker

    def _signed_area(self, nodes: Sequence[int]) -> float:
        xy = np.asarray([self._vertices[n] for n in nodes])
        x, y = xy[:, 0], xy[:, 1]
        return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))

    def _add_element(self, nodes, marker, *, level=0, parent=None) -> int:
        for n in nodes:
            if not 0 <= n < len(self._vertices):
                raise ValueError(f"Vertex id {n} out of range.")
        area = self._signed_area(nodes)
        if abs(area) < 1e-14:
            raise ValueError(f"Degenerate element with vertices {nodes}.")
        if area < 0:
            nodes = (nodes[0],) + tuple(reversed(nodes[1:]))
        eid = len(self.elements_list)
        self.elements_list.append(Element(id=eid, nodes=tuple(nodes), marker=marker,
                                          level=level, parent=parent))
        return eid

    def _add_vertex(self, x: float, y: float) -> int:
        self._vertices.append([float(x), float(y)])
        self._xy_cache = None
        return len(self._vertices) - 1

    def _midpoint(self, a: int, b: int) -> int:
        k = _key(a, b)
        mid = self._midpoints.get(k)
        if mid is None:
            xa, ya = self._vertices[a]
            xb, yb = self._vertices[b]
            mid = self._add_vertex(0.5 * (xa + xb), 0.5 * (ya + yb))
            self._midpoints[k] = mid
            # children of a tagged / interior edge inherit its status
            if k in self._boundary_markers:
                marker = self._boundary_markers[k]
                self._boundary_markers[_key(a, mid)] = marker
                self._boundary_markers[_key(mid, b)] = marker
            if k in self._interior_keys:
                self._interior_keys.add(_key(a, mid))
                self._interior_keys.add(_key(mid, b))
        return mid

    # ------------------------------------------------------------------
    # topology of the active mesh
    # ------------------------------------------------------------------
    def _build_topology(self):
        """Rebuild active edges, neighbours and outward normals."""
        xy = self.nodes_x_y_pos
        incidences: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        for elem in self.active_elements():
            for lid in range(elem.nvert):
                incidences.setdefault(_key(*elem.local_edge(lid)), []).append((elem.id, lid))

        self.edges_list = []
        self._edge_dict = {}
        self._hanging = []
        elem_edges: Dict[int, List[int]] = {e.id: [-1] * e.nvert for e in self.active_elements()}
        for k in sorted(incidences):
            owners = incidences[k]
            left_eid, lid = owners[0]
            vA, vB = self.elements_list[left_eid].local_edge(lid)
            right_eid, rlid = owners[1] if len(owners) > 1 else (None, None)
            # a coarse edge whose other side was split
            if right_eid is None and k in self._interior_keys and k in self._midpoints:
                self._hanging.append(k)
            d = xy[vB] - xy[vA]
            L = float(np.hypot(d[0], d[1]))
            edge = Edge(gid=len(self.edges_list), nodes=(vA, vB), left=left_eid, right=right_eid,
                        lid=lid, rlid=rlid,
                        marker=self._boundary_markers.get(k, "") if right_eid is None else "",
                        normal=np.array([d[1] / L, -d[0] / L]))
            self.edges_list.append(edge)
            self._edge_dict[k] = edge
            for eid, l in owners:
                elem_edges[eid][l] = edge.gid

        for eid, gids in elem_edges.items():
            self.elements_list[eid].edges = tuple(gids)
        self._topology_stale = False

    def _ensure_topology(self):
        if self._topology_stale:
            self._build_topology()

    # ------------------------------------------------------------------
    # refinement
    # ------------------------------------------------------------------
    def refine_element(self, eid: int) -> Tuple[int, ...]:
        """Split an active element into four children and return their ids."""
        elem = self.element(eid)
        if not elem.active:
            raise ValueError(f"Element {eid} is not active.")
        v = elem.nodes
        mids = [self._midpoint(*elem.local_edge(i)) for i in range(elem.nvert)]
        if elem.element_type == 'tri':
            m01, m12, m20 = mids
            child_nodes = [(v[0], m01, m20), (m01, v[1], m12), (m20, m12, v[2]), (m01, m12, m20)]
            inner = [(m01, m12), (m12, m20), (m20, m01)]
        else:
            m01, m12, m23, m30 = mids
            cx, cy = np.mean([self._vertices[n] for n in v], axis=0)
            c = self._add_vertex(cx, cy)
            child_nodes = [(v[0], m01, c, m30), (m01, v[1], m12, c), (c, m12, v[2], m23), (m30, c, m23, v[3])]
            inner = [(m01, c), (m12, c), (m23, c), (m30, c)]
        for a, b in inner:
            self._interior_keys.add(_key(a, b))

        children = tuple(self._add_element(nodes, elem.marker, level=elem.level + 1, parent=eid)
                         for nodes in child_nodes)
        elem.children = children
        elem.active = False
        self._topology_stale = True
        self.seq += 1
        return children

    def refine_all_elements(self) -> None:
        for elem in list(self.active_elements()):
            self.refine_element(elem.id)

    def refine_by_marker(self, marker: str, times: int = 1) -> None:
        """Refine every active element carrying ``marker`` (repeated ``times``)."""
        for _ in range(times):
            for elem in list(self.active_elements()):
                if elem.marker == marker:
                    self.refine_element(elem.id)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    @property
    def nodes_x_y_pos(self) -> np.ndarray:
        if self._xy_cache is None:
            self._xy_cache = np.asarray(self._vertices, dtype=float)
        return self._xy_cache

    @property
    def n_vertices(self) -> int:
        return len(self._vertices)

    @property
    def edges(self) -> List[Edge]:
        self._ensure_topology()
        return self.edges_list

    def element(self, eid: int) -> Element:
        if not 0 <= eid < len(self.elements_list):
            raise IndexError(f"Element ID {eid} out of range.")
        return self.elements_list[eid]

    def edge(self, edge_id: int) -> Edge:
        edges = self.edges
        if not 0 <= edge_id < len(edges):
            raise IndexError(f"Edge ID {edge_id} out of range.")
        return edges[edge_id]

    def edge_between(self, a: int, b: int) -> Edge:
        self._ensure_topology()
        return self._edge_dict[_key(a, b)]

    def element_edges(self, eid: int) -> Tuple[int, ...]:
        self._ensure_topology()
        return self.element(eid).edges

    def active_elements(self) -> List[Element]:
        return [e for e in self.elements_list if e.active]

    def get_num_active_elements(self) -> int:
        return sum(1 for e in self.elements_list if e.active)

    def active_vertices(self) -> List[int]:
        return sorted({n for e in self.active_elements() for n in e.nodes})

    def boundary_edges(self, marker: Optional[str] = None) -> List[Edge]:
        return [e for e in self.edges if e.is_boundary and (marker is None or e.marker == marker)]

    def boundary_markers(self) -> Set[str]:
        return {e.marker for e in self.edges if e.is_boundary}

    def element_markers(self) -> Set[str]:
        return {e.marker for e in self.active_elements()}

    def hanging_edges(self) -> List[Tuple[int, int]]:
        self._ensure_topology()
        return list(self._hanging)

    def is_conforming(self) -> bool:
        return not self.hanging_edges()

    def vertex_coords(self, eid: int) -> np.ndarray:
        return self.nodes_x_y_pos[list(self.element(eid).nodes)]

    def element_diameter(self, eid: int) -> float:
        xy = self.vertex_coords(eid)
        d = xy[:, None, :] - xy[None, :, :]
        return float(np.sqrt((d ** 2).sum(axis=-1)).max())

    def areas(self) -> np.ndarray:
        """Geometric area of every element (inactive ones included)."""
        return np.array([self._signed_area(e.nodes) for e in self.elements_list])

    def __repr__(self):
        return (f"<Mesh n_vertices={self.n_vertices}, "
                f"n_active={self.get_num_active_elements()}, "
                f"n_elems={len(self.elements_list)}, seq={self.seq}>")
