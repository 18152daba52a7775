"""
Coefficient functions used by the default forms.

``Function1D`` depends on the solution value (nonlinear coefficients such as
``lambda(u)``), ``Function2D`` on the physical coordinates.  Both are constant
unless a subclass overrides ``value``; ``from_sympy`` builds one from a sympy
expression and differentiates it symbolically.
"""
from typing import Callable, Optional

import numpy as np
import sympy as sp


class Function1D:
    """c(u) with derivative dc/du."""

    def __init__(self, value: float = 1.0):
        self.const = float(value)
        self.is_constant = type(self) is Function1D

    def value(self, u):
        return np.full_like(np.asarray(u, dtype=float), self.const)

    def derivative(self, u):
        return np.zeros_like(np.asarray(u, dtype=float))

    @classmethod
    def from_sympy(cls, expr, symbol) -> "Function1D":
        return SymbolicFunction1D(expr, symbol)

    def __repr__(self):
        return f"{type(self).__name__}({self.const})" if self.is_constant else f"<{type(self).__name__}>"


class SymbolicFunction1D(Function1D):
    def __init__(self, expr, symbol):
        super().__init__(0.0)
        self.expr = sp.sympify(expr)
        self.symbol = symbol
        self._f = sp.lambdify(symbol, self.expr, 'numpy')
        self._df = sp.lambdify(symbol, sp.diff(self.expr, symbol), 'numpy')
        self.is_constant = False

    def value(self, u):
        u = np.asarray(u, dtype=float)
        return np.asarray(self._f(u), dtype=float) + np.zeros_like(u)

    def derivative(self, u):
        u = np.asarray(u, dtype=float)
        return np.asarray(self._df(u), dtype=float) + np.zeros_like(u)

    def __repr__(self):
        return f"SymbolicFunction1D({self.expr})"


class Function2D:
    """f(x, y); a plain callable ``fn(x, y)`` can be wrapped directly."""

    def __init__(self, value: float = 1.0, fn: Optional[Callable] = None):
        self.const = float(value)
        self.fn = fn
        self.is_constant = fn is None and type(self) is Function2D

    def value(self, x, y):
        x = np.asarray(x, dtype=float)
        if self.fn is not None:
            return np.asarray(self.fn(x, np.asarray(y, dtype=float)), dtype=float) + np.zeros_like(x)
        return np.full_like(x, self.const)

    @classmethod
    def from_sympy(cls, expr, x, y) -> "Function2D":
        return cls(fn=sp.lambdify((x, y), sp.sympify(expr), 'numpy'))

    def __repr__(self):
        return f"Function2D({self.const})" if self.is_constant else "<Function2D>"


def as_function1d(c) -> Function1D:
    if isinstance(c, Function1D):
        return c
    if callable(c):
        raise TypeError("Use Function1D subclasses or Function1D.from_sympy for u-dependent coefficients.")
    return Function1D(float(c))


def as_function2d(c) -> Function2D:
    if isinstance(c, Function2D):
        return c
    if callable(c):
        return Function2D(fn=c)
    return Function2D(float(c))
