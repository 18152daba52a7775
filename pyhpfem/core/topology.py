import numpy as np
from dataclasses import dataclass, field
from typing import Tuple, List, Optional


@dataclass(slots=True)
class Edge:
    gid: int
    nodes: Tuple[int, int]      # global vertex ids, in the left element's CCW order
    left: int                   # active element on the left of (nodes[0] -> nodes[1])
    right: Optional[int]        # neighbouring active element, None on the boundary
    lid: int = 0                # local edge index within the left element
    rlid: Optional[int] = None  # local edge index within the right element
    marker: str = ""            # boundary marker ("" for interior edges)
    normal: np.ndarray = field(default=None, repr=False)

    @property
    def is_boundary(self) -> bool:
        return self.right is None

    def key(self) -> Tuple[int, int]:
        a, b = self.nodes
        return (a, b) if a < b else (b, a)


@dataclass(slots=True)
class Element:
    id: int
    nodes: Tuple[int, ...]              # vertex ids, counter-clockwise
    marker: str = ""                    # material / region marker
    level: int = 0                      # refinement level (0 for roots)
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    active: bool = True
    edges: Tuple[int, ...] = field(default_factory=tuple)   # active-edge gids (rebuilt lazily)

    @property
    def element_type(self) -> str:
        return "tri" if len(self.nodes) == 3 else "quad"

    @property
    def nvert(self) -> int:
        return len(self.nodes)

    def local_edge(self, i: int) -> Tuple[int, int]:
        """Vertex ids of local edge ``i`` in local (CCW) direction."""
        return self.nodes[i], self.nodes[(i + 1) % len(self.nodes)]

    def contains_node(self, node_id: int) -> bool:
        return node_id in self.nodes

    def is_root(self) -> bool:
        return self.parent is None
