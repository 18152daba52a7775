# conftest.py
import logging

import pytest

from pyhpfem.diagnostics import Diagnostics, Level
from pyhpfem.utils.meshgen import l_shape_mesh, structured_quad_mesh, structured_tri_mesh


@pytest.fixture
def diagnostics():
    """Reporting context with every level enabled, routed to caplog."""
    return Diagnostics(set(Level), logger=logging.getLogger("pyhpfem.tests"))


@pytest.fixture
def quad_mesh():
    return structured_quad_mesh(2, 2)


@pytest.fixture
def tri_mesh():
    return structured_tri_mesh(2, 2)


@pytest.fixture
def heat_mesh():
    """Two-material L-shape: Dirichlet on Bottom/Inner/Left, Newton boundary on Outer."""
    return l_shape_mesh(element_markers=("Aluminum", "Aluminum", "Copper"),
                        boundary_markers={"right": "Outer", "top": "Outer"})
