# pyhpfem.fem.shapeset
"""
Hierarchic H1 shapeset built from integrated Legendre (Lobatto) polynomials.

Every shape function of an element type has a fixed integer index:

* ``0 .. nv-1``                       vertex functions (nodal at the corners)
* ``nv + lid*(max_order-1) + (k-2)``  edge function of degree ``k`` on local edge ``lid``
* afterwards                          bubble functions, ordered by total degree

Edge functions are written in the *local* edge direction (parameter
``t ∈ [-1, 1]`` from the first to the second local vertex).  Their trace on the
edge is ``l_k(t)``, identical for triangles and quads, and ``l_k(-t) =
(-1)^k l_k(t)``; a space therefore only needs a ±1 factor to glue neighbours.

The sympy expressions are lambdified once and cached, following the
``fem.reference`` factories of the original code base.
"""
from functools import lru_cache
from typing import Dict, List, Tuple

import numpy as np
import sympy as sp

from pyhpfem.errors import InvalidOrder

MIN_ORDER = 1
MAX_ORDER = 10

_x, _y = sp.symbols('xi eta')
_s = sp.symbols('s')


# -------------------------------------------------------------------------
# 1‑D Lobatto polynomials
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def lobatto_expr(k: int) -> sp.Expr:
    """l_0 = (1-s)/2, l_1 = (1+s)/2, l_k = (L_k - L_{k-2}) / sqrt(2(2k-1))."""
    if k == 0:
        return (1 - _s) / 2
    if k == 1:
        return (1 + _s) / 2
    return sp.expand((sp.legendre(k, _s) - sp.legendre(k - 2, _s)) / sp.sqrt(2 * (2 * k - 1)))


@lru_cache(maxsize=None)
def _kernel_expr(j: int) -> sp.Expr:
    """phi_j = l_{j+2} / (l_0 l_1), a polynomial of degree j."""
    k = j + 2
    num = sp.expand(sp.legendre(k, _s) - sp.legendre(k - 2, _s))
    q = sp.quo(num, sp.expand((1 - _s) * (1 + _s) / 4), _s)
    return sp.expand(q / sp.sqrt(2 * (2 * k - 1)))


def _as_array_fn(expr, symbols):
    f = sp.lambdify(symbols, expr, 'numpy')

    def call(*args):
        # constants come back as scalars
        return np.asarray(f(*args), dtype=float) + np.zeros_like(args[0], dtype=float)
    return call


@lru_cache(maxsize=None)
def lobatto(k: int):
    return _as_array_fn(lobatto_expr(k), (_s,))


@lru_cache(maxsize=None)
def lobatto_derivative(k: int):
    return _as_array_fn(sp.diff(lobatto_expr(k), _s), (_s,))


def _l(k, arg):
    return lobatto_expr(k).subs(_s, arg)


# -------------------------------------------------------------------------
# symbolic shape functions per element type
# -------------------------------------------------------------------------
_QUAD_VERTEX = (
    _l(0, _x) * _l(0, _y),
    _l(1, _x) * _l(0, _y),
    _l(1, _x) * _l(1, _y),
    _l(0, _x) * _l(1, _y),
)

_LAM = (1 - _x - _y, _x, _y)
_TRI_EDGE_VERTS = ((0, 1), (1, 2), (2, 0))


def _quad_edge(lid: int, k: int) -> sp.Expr:
    if lid == 0:
        return _l(k, _x) * _l(0, _y)
    if lid == 1:
        return _l(1, _x) * _l(k, _y)
    if lid == 2:
        return _l(k, -_x) * _l(1, _y)
    return _l(0, _x) * _l(k, -_y)


def _tri_edge(lid: int, k: int) -> sp.Expr:
    a, b = _TRI_EDGE_VERTS[lid]
    la, lb = _LAM[a], _LAM[b]
    # factored form keeps the vertex values exact for high k
    return la * lb * _kernel_expr(k - 2).subs(_s, lb - la)


def _bubble_pairs(element_type: str, p: int) -> List[Tuple[int, int]]:
    """Degree pairs of the bubbles of order ``p``, sorted by total degree."""
    if element_type == 'quad':
        pairs = [(i, j) for i in range(2, p + 1) for j in range(2, p + 1)]
        return sorted(pairs, key=lambda ij: (max(ij), ij))
    pairs = [(a, b) for a in range(p - 2) for b in range(p - 2) if a + b <= p - 3]
    return sorted(pairs, key=lambda ab: (ab[0] + ab[1], ab))


def _bubble(element_type: str, pair: Tuple[int, int]) -> sp.Expr:
    if element_type == 'quad':
        i, j = pair
        return _l(i, _x) * _l(j, _y)
    a, b = pair
    l0, l1, l2 = _LAM
    return (l0 * l1 * l2
            * sp.legendre(a, _s).subs(_s, l1 - l0)
            * sp.legendre(b, _s).subs(_s, 2 * l2 - 1))


# -------------------------------------------------------------------------
# Shapeset
# -------------------------------------------------------------------------
class H1LobattoShapeset:
    """Hierarchic H1 shapeset for ``'tri'`` and ``'quad'`` of orders 1..10."""

    min_order = MIN_ORDER
    max_order = MAX_ORDER
    num_components = 1

    def __init__(self, max_order: int = MAX_ORDER):
        if not MIN_ORDER <= max_order <= MAX_ORDER:
            raise InvalidOrder(max_order, MIN_ORDER, MAX_ORDER)
        self.max_order = max_order
        self._bubbles: Dict[str, List[Tuple[int, int]]] = {
            et: _bubble_pairs(et, max_order) for et in ('tri', 'quad')
        }

    # -- validation -----------------------------------------------------
    def check_order(self, p) -> int:
        if isinstance(p, bool) or int(p) != p or not self.min_order <= p <= self.max_order:
            raise InvalidOrder(p, self.min_order, self.max_order)
        return int(p)

    # -- index bookkeeping ----------------------------------------------
    @staticmethod
    def num_vertices(element_type: str) -> int:
        return 3 if element_type == 'tri' else 4

    def get_vertex_index(self, element_type: str, i: int) -> int:
        return i

    def get_edge_index(self, element_type: str, lid: int, k: int) -> int:
        if not 2 <= k <= self.max_order:
            raise InvalidOrder(k, 2, self.max_order)
        return self.num_vertices(element_type) + lid * (self.max_order - 1) + (k - 2)

    def _bubble_offset(self, element_type: str) -> int:
        nv = self.num_vertices(element_type)
        return nv + nv * (self.max_order - 1)

    def get_num_bubbles(self, element_type: str, p: int) -> int:
        if element_type == 'quad':
            return (p - 1) ** 2
        return (p - 1) * (p - 2) // 2

    def get_bubble_indices(self, element_type: str, p: int) -> List[int]:
        p = self.check_order(p)
        off = self._bubble_offset(element_type)
        n = self.get_num_bubbles(element_type, p)
        return list(range(off, off + n))

    def get_edge_degree(self, element_type: str, index: int) -> int:
        nv = self.num_vertices(element_type)
        return (index - nv) % (self.max_order - 1) + 2

    def get_num_functions(self, element_type: str) -> int:
        return self._bubble_offset(element_type) + len(self._bubbles[element_type])

    # -- symbolic / numeric functions -------------------------------------
    def expression(self, element_type: str, index: int) -> sp.Expr:
        nv = self.num_vertices(element_type)
        if index < nv:
            return _QUAD_VERTEX[index] if element_type == 'quad' else _LAM[index]
        off = self._bubble_offset(element_type)
        if index < off:
            lid, k = divmod(index - nv, self.max_order - 1)
            k += 2
            return _quad_edge(lid, k) if element_type == 'quad' else _tri_edge(lid, k)
        return _bubble(element_type, self._bubbles[element_type][index - off])

    @lru_cache(maxsize=None)
    def _functions(self, element_type: str, index: int):
        expr = self.expression(element_type, index)
        return (_as_array_fn(expr, (_x, _y)),
                _as_array_fn(sp.diff(expr, _x), (_x, _y)),
                _as_array_fn(sp.diff(expr, _y), (_x, _y)))

    def tabulate(self, element_type: str, indices, pts):
        """Values ``(nb, nq)`` and reference gradients ``(nb, nq, 2)`` at ``pts``."""
        pts = np.atleast_2d(np.asarray(pts, dtype=float))
        xi, eta = pts[:, 0], pts[:, 1]
        nb, nq = len(indices), len(xi)
        val = np.empty((nb, nq))
        grad = np.empty((nb, nq, 2))
        for n, idx in enumerate(indices):
            f, fx, fy = self._functions(element_type, int(idx))
            val[n] = f(xi, eta)
            grad[n, :, 0] = fx(xi, eta)
            grad[n, :, 1] = fy(xi, eta)
        return val, grad

    def __hash__(self):
        return hash((type(self).__name__, self.max_order))

    def __eq__(self, other):
        return type(other) is type(self) and other.max_order == self.max_order

    def __repr__(self):
        return f"<H1LobattoShapeset max_order={self.max_order}>"


@lru_cache(maxsize=None)
def get_shapeset(max_order: int = MAX_ORDER) -> H1LobattoShapeset:
    return H1LobattoShapeset(max_order)


def edge_orientation_sign(k: int, local: Tuple[int, int]) -> float:
    """±1 for an edge function of degree ``k`` seen from local direction ``local``."""
    a, b = local
    return -1.0 if (a > b and k % 2 == 1) else 1.0
