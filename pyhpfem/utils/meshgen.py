"""pyhpfem.utils.meshgen
Mesh generators for quick tests and examples.
"""
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

from pyhpfem.core.mesh import Mesh

__all__ = ["structured_quad_mesh", "structured_tri_mesh", "l_shape_mesh"]

_SIDES = ("Bottom", "Right", "Top", "Left")


def _grid(nx: int, ny: int, Lx: float, Ly: float, origin):
    if nx < 1 or ny < 1:
        raise ValueError("nx and ny must be positive.")
    x = np.linspace(0.0, Lx, nx + 1) + origin[0]
    y = np.linspace(0.0, Ly, ny + 1) + origin[1]
    X, Y = np.meshgrid(x, y)          # row j = y[j]
    return np.column_stack([X.ravel(), Y.ravel()])


def _grid_boundaries(nx: int, ny: int, markers: Sequence[str]):
    vid = lambda i, j: j * (nx + 1) + i
    bottom, right, top, left = markers
    bnd = []
    bnd += [(vid(i, 0), vid(i + 1, 0), bottom) for i in range(nx)]
    bnd += [(vid(nx, j), vid(nx, j + 1), right) for j in range(ny)]
    bnd += [(vid(i + 1, ny), vid(i, ny), top) for i in range(nx)]
    bnd += [(vid(0, j + 1), vid(0, j), left) for j in range(ny)]
    return bnd


def structured_quad_mesh(nx: int, ny: int, Lx: float = 1.0, Ly: float = 1.0, *,
                         origin: Tuple[float, float] = (0.0, 0.0), marker: str = "",
                         boundary_markers: Sequence[str] = _SIDES) -> Mesh:
    """nx × ny quads on ``origin + [0, Lx] × [0, Ly]``; sides tagged bottom/right/top/left."""
    pts = _grid(nx, ny, Lx, Ly, origin)
    vid = lambda i, j: j * (nx + 1) + i
    elems = [(vid(i, j), vid(i + 1, j), vid(i + 1, j + 1), vid(i, j + 1), marker)
             for j in range(ny) for i in range(nx)]
    return Mesh(pts, elems, _grid_boundaries(nx, ny, boundary_markers))


def structured_tri_mesh(nx: int, ny: int, Lx: float = 1.0, Ly: float = 1.0, *,
                        origin: Tuple[float, float] = (0.0, 0.0), marker: str = "",
                        boundary_markers: Sequence[str] = _SIDES) -> Mesh:
    """Every grid cell split into two triangles along its (0,0)-(1,1) diagonal."""
    pts = _grid(nx, ny, Lx, Ly, origin)
    vid = lambda i, j: j * (nx + 1) + i
    elems = []
    for j in range(ny):
        for i in range(nx):
            v00, v10, v11, v01 = vid(i, j), vid(i + 1, j), vid(i + 1, j + 1), vid(i, j + 1)
            elems.append((v00, v10, v11, marker))
            elems.append((v00, v11, v01, marker))
    return Mesh(pts, elems, _grid_boundaries(nx, ny, boundary_markers))


def l_shape_mesh(scale: float = 1.0, *,
                 element_markers: Sequence[str] = ("", "", ""),
                 boundary_markers: Optional[Mapping[str, str]] = None) -> Mesh:
    """
    L-shaped domain ``[0, 2]² \\ [0, 1]²`` (times ``scale``) made of three unit quads.

    Sides are ``bottom`` (y=0), ``right`` (x=2), ``top`` (y=2), ``left`` (x=0)
    and ``inner`` (the two re-entrant edges); ``boundary_markers`` maps side
    names to marker strings, unmapped sides keep their capitalised name.
    Elements are ordered bottom-right, top-left, top-right.
    """
    names = {s: s.capitalize() for s in ("bottom", "right", "top", "left", "inner")}
    names.update(boundary_markers or {})
    pts = scale * np.array([[1.0, 0.0], [2.0, 0.0], [2.0, 1.0], [1.0, 1.0],
                            [0.0, 1.0], [0.0, 2.0], [1.0, 2.0], [2.0, 2.0]])
    m0, m1, m2 = element_markers
    elems = [(0, 1, 2, 3, m0), (4, 3, 6, 5, m1), (3, 2, 7, 6, m2)]
    bnd = [(0, 1, names["bottom"]),
           (1, 2, names["right"]), (2, 7, names["right"]),
           (7, 6, names["top"]), (6, 5, names["top"]),
           (5, 4, names["left"]),
           (4, 3, names["inner"]), (3, 0, names["inner"])]
    return Mesh(pts, elems, bnd)
