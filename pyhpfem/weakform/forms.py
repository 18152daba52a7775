"""pyhpfem.weakform.forms
Weak-form containers and the data handed to form integrands.

Integrands are vectorised over quadrature points and basis functions:

* matrix forms: ``value(wt, u_ext, u, v, e, ext)`` with ``v.val`` shaped
  ``(nv, 1, nq)`` and ``u.val`` shaped ``(1, nu, nq)``; the result is the
  ``(nv, nu)`` local matrix (rows = test functions).
* vector forms: ``value(wt, u_ext, v, e, ext)`` with ``v.val`` shaped
  ``(nv, nq)``; the result is the ``(nv,)`` local vector.

``wt`` already contains the quadrature weight times the Jacobian (or the edge
length factor for surface forms), so ``(wt * integrand).sum(axis=-1)`` is the
integral.  ``u_ext[k]`` is the current iterate of component ``k`` at the
quadrature points; ``ext`` holds the form's external functions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np

ANY = "ANY"   # matches every element / boundary marker


@dataclass
class Func:
    """Values and physical gradient components of a function at quadrature points."""
    val: np.ndarray
    dx: np.ndarray
    dy: np.ndarray

    @property
    def grad(self):
        return np.stack([self.dx, self.dy], axis=-1)


@dataclass
class Geom:
    """Geometry at the quadrature points of an element (or of one of its edges)."""
    x: np.ndarray
    y: np.ndarray
    id: int
    elem_marker: str
    diam: float
    area: float
    nx: Optional[np.ndarray] = None
    ny: Optional[np.ndarray] = None
    tx: Optional[np.ndarray] = None
    ty: Optional[np.ndarray] = None
    edge_marker: Optional[str] = None
    isurf: Optional[int] = None


Areas = Union[str, Sequence[str]]


class Form:
    """Common part of all forms: block index, markers, external functions."""

    def __init__(self, i: int = 0, area: Areas = ANY, ext: Optional[Sequence] = None,
                 extra_order: int = 0, name: Optional[str] = None):
        self.i = int(i)
        self.areas: List[str] = [area] if isinstance(area, str) else [str(a) for a in area]
        if not self.areas:
            raise ValueError("A form needs at least one area marker (use ANY).")
        self.ext = list(ext or [])
        self.extra_order = int(extra_order)
        self.name = name or type(self).__name__
        self.wf: Optional[WeakForm] = None

    def matches(self, marker: Optional[str]) -> bool:
        return ANY in self.areas or marker in self.areas

    def set_ext(self, ext) -> None:
        self.ext = list(ext) if isinstance(ext, (list, tuple)) else [ext]

    def __repr__(self):
        return f"<{self.name} i={self.i} areas={self.areas}>"


class MatrixForm(Form):
    surface = False

    def __init__(self, i: int = 0, j: int = 0, area: Areas = ANY, **kw):
        super().__init__(i, area, **kw)
        self.j = int(j)

    def value(self, wt, u_ext, u, v, e, ext):
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.name} i={self.i} j={self.j} areas={self.areas}>"


class VectorForm(Form):
    surface = False

    def value(self, wt, u_ext, v, e, ext):
        raise NotImplementedError


class MatrixFormVol(MatrixForm):
    pass


class MatrixFormSurf(MatrixForm):
    surface = True


class VectorFormVol(VectorForm):
    pass


class VectorFormSurf(VectorForm):
    surface = True


class WeakForm:
    """Ordered collection of Jacobian (matrix) and residual (vector) forms.

    ``seq`` changes on every ``add_*`` call; discrete problems use it to know
    when their cached sparsity pattern is out of date.
    """

    def __init__(self, neq: int = 1, is_linear: bool = False):
        self.neq = int(neq)
        self.is_linear = bool(is_linear)
        self.mfvol: List[MatrixFormVol] = []
        self.mfsurf: List[MatrixFormSurf] = []
        self.vfvol: List[VectorFormVol] = []
        self.vfsurf: List[VectorFormSurf] = []
        self.ext: list = []
        self.seq = 0

    def _check_block(self, form: Form):
        idx = [form.i] + ([form.j] if isinstance(form, MatrixForm) else [])
        for k in idx:
            if not 0 <= k < self.neq:
                raise IndexError(f"{form!r}: block index {k} out of range for neq={self.neq}.")
        form.wf = self
        self.seq += 1

    def add_matrix_form(self, form: MatrixFormVol) -> None:
        self._check_block(form)
        self.mfvol.append(form)

    def add_matrix_form_surf(self, form: MatrixFormSurf) -> None:
        self._check_block(form)
        self.mfsurf.append(form)

    def add_vector_form(self, form: VectorFormVol) -> None:
        self._check_block(form)
        self.vfvol.append(form)

    def add_vector_form_surf(self, form: VectorFormSurf) -> None:
        self._check_block(form)
        self.vfsurf.append(form)

    def set_ext(self, ext) -> None:
        """External functions appended to the ``ext`` list of every form."""
        self.ext = list(ext) if isinstance(ext, (list, tuple)) else [ext]
        self.seq += 1

    @property
    def matrix_forms(self) -> List[MatrixForm]:
        return [*self.mfvol, *self.mfsurf]

    @property
    def vector_forms(self) -> List[VectorForm]:
        return [*self.vfvol, *self.vfsurf]

    def get_areas(self) -> set:
        return {a for f in (*self.matrix_forms, *self.vector_forms) for a in f.areas}

    def __repr__(self):
        return (f"<{type(self).__name__} neq={self.neq} mfvol={len(self.mfvol)} "
                f"mfsurf={len(self.mfsurf)} vfvol={len(self.vfvol)} vfsurf={len(self.vfsurf)}>")
