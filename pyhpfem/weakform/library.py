"""
Default H1 forms.

Residual forms follow the convention ``F(u) = 0``; a volumetric source enters
the residual with a plus sign, so ``-div(c grad u) = s`` is written with
``f = -s``.  Jacobian forms are the exact derivatives of the matching residual
forms (including the ``dc/du`` term of a nonlinear ``c(u)``).
"""
from typing import Mapping, Union

from pyhpfem.weakform.forms import (ANY, MatrixFormSurf, MatrixFormVol,
                                    VectorFormSurf, VectorFormVol, WeakForm)
from pyhpfem.weakform.functions import as_function1d, as_function2d
from pyhpfem.weakform.integrals import (int_F_grad_u_grad_v, int_F_u_v, int_F_v)


# ---------------------------------------------------------------------------
# volumetric
# ---------------------------------------------------------------------------
class DefaultJacobianDiffusion(MatrixFormVol):
    """d/du of ∫ c(u) ∇u·∇v."""

    def __init__(self, i=0, j=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, j, area, **kw)
        self.coeff = as_function1d(coeff)

    def value(self, wt, u_ext, u, v, e, ext):
        U = u_ext[self.j]
        lam = self.coeff.value(U.val)
        out = int_F_grad_u_grad_v(wt, lam, u, v)
        if not self.coeff.is_constant:
            dlam = self.coeff.derivative(U.val)
            out = out + (wt * dlam * u.val * (U.dx * v.dx + U.dy * v.dy)).sum(axis=-1)
        return out


class DefaultResidualDiffusion(VectorFormVol):
    """∫ c(u) ∇u·∇v."""

    def __init__(self, i=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, area, **kw)
        self.coeff = as_function1d(coeff)

    def value(self, wt, u_ext, v, e, ext):
        U = u_ext[self.i]
        lam = self.coeff.value(U.val)
        return (wt * lam * (U.dx * v.dx + U.dy * v.dy)).sum(axis=-1)


class DefaultMatrixFormVol(MatrixFormVol):
    """∫ c(x, y) u v."""

    def __init__(self, i=0, j=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, j, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, u, v, e, ext):
        return int_F_u_v(wt, self.coeff.value(e.x, e.y), u, v)


class DefaultResidualVol(VectorFormVol):
    """∫ c(x, y) u v, the residual matching :class:`DefaultMatrixFormVol`."""

    def __init__(self, i=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, v, e, ext):
        return int_F_v(wt, self.coeff.value(e.x, e.y) * u_ext[self.i].val, v)


class DefaultVectorFormVol(VectorFormVol):
    """∫ f(x, y) v."""

    def __init__(self, i=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, v, e, ext):
        return int_F_v(wt, self.coeff.value(e.x, e.y), v)


# ---------------------------------------------------------------------------
# surface
# ---------------------------------------------------------------------------
class DefaultMatrixFormSurf(MatrixFormSurf):
    """∫_Γ c(x, y) u v."""

    def __init__(self, i=0, j=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, j, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, u, v, e, ext):
        return int_F_u_v(wt, self.coeff.value(e.x, e.y), u, v)


class DefaultResidualSurf(VectorFormSurf):
    """∫_Γ c(x, y) u v."""

    def __init__(self, i=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, v, e, ext):
        return int_F_v(wt, self.coeff.value(e.x, e.y) * u_ext[self.i].val, v)


class DefaultVectorFormSurf(VectorFormSurf):
    """∫_Γ g(x, y) v."""

    def __init__(self, i=0, area=ANY, coeff=1.0, **kw):
        super().__init__(i, area, **kw)
        self.coeff = as_function2d(coeff)

    def value(self, wt, u_ext, v, e, ext):
        return int_F_v(wt, self.coeff.value(e.x, e.y), v)


# ---------------------------------------------------------------------------
# complete weak forms
# ---------------------------------------------------------------------------
class DefaultWeakFormPoisson(WeakForm):
    """``-div(c(u) ∇u) + f = 0`` on ``area`` (one equation)."""

    def __init__(self, area=ANY, coeff=1.0, f=0.0):
        coeff = as_function1d(coeff)
        super().__init__(1, is_linear=coeff.is_constant)
        self.add_matrix_form(DefaultJacobianDiffusion(0, 0, area, coeff))
        self.add_vector_form(DefaultResidualDiffusion(0, area, coeff))
        self.add_vector_form(DefaultVectorFormVol(0, area, f))


class WeakFormPoissonNewton(WeakForm):
    """Heat conduction with per-material conductivity and a Newton (Robin) boundary.

    ``λ ∂u/∂n = α (T_ext - u)`` on ``bdy_newton``; ``f`` enters the residual
    with a plus sign (pass ``-source``).
    """

    def __init__(self, materials: Mapping[str, Union[float, object]], f=0.0,
                 bdy_newton=(), alpha: float = 0.0, t_exterior: float = 0.0):
        coeffs = {m: as_function1d(c) for m, c in materials.items()}
        super().__init__(1, is_linear=all(c.is_constant for c in coeffs.values()))
        for marker, lam in coeffs.items():
            self.add_matrix_form(DefaultJacobianDiffusion(0, 0, marker, lam))
            self.add_vector_form(DefaultResidualDiffusion(0, marker, lam))
        self.add_vector_form(DefaultVectorFormVol(0, ANY, f))
        if bdy_newton:
            self.add_matrix_form_surf(DefaultMatrixFormSurf(0, 0, bdy_newton, alpha))
            self.add_vector_form_surf(DefaultResidualSurf(0, bdy_newton, alpha))
            self.add_vector_form_surf(DefaultVectorFormSurf(0, bdy_newton, -alpha * t_exterior))
