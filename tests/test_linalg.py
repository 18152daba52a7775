import numpy as np
import pytest

from pyhpfem.errors import BackendError, Singular
from pyhpfem.linalg import (LinearSolverParameters, SparseMatrix, SpsolveSolver, SuperLUSolver,
                            Vector, available_backends, create_linear_solver, create_matrix,
                            create_vector)


def laplacian_1d(n):
    """Tridiagonal SPD matrix assembled through the pattern API."""
    A = SparseMatrix()
    A.prealloc(n)
    for i in range(n):
        for j in (i - 1, i, i + 1):
            if 0 <= j < n:
                A.pre_add_ij(i, j)
    A.alloc()
    for i in range(n):
        A.add(i, i, 2.0)
        if i > 0:
            A.add(i, i - 1, -1.0)
        if i < n - 1:
            A.add(i, i + 1, -1.0)
    return A


class TestSparseMatrix:
    def test_pattern(self):
        A = SparseMatrix()
        A.prealloc(3)
        A.pre_add_ij(0, 2)
        A.pre_add_ij(0, 0)
        A.pre_add_ij(0, 2)
        A.pre_add_ij(2, 1)
        A.alloc()
        assert A.get_size() == 3
        assert A.get_nnz() == 3
        assert A.indptr.tolist() == [0, 2, 2, 3]
        assert A.indices.tolist() == [0, 2, 1]

    def test_add_get_and_zero(self):
        A = laplacian_1d(4)
        A.add(1, 1, 0.5)
        assert A.get(1, 1) == 2.5
        assert A.get(0, 3) == 0.0
        with pytest.raises(KeyError):
            A.add(0, 3, 1.0)
        dense = A.to_scipy().toarray()
        assert np.allclose(dense, dense.T)
        A.zero()
        assert A.to_scipy().nnz == A.get_nnz()
        assert not A.to_scipy().toarray().any()

    def test_seq_tracks_changes(self):
        A = laplacian_1d(3)
        seq = A.seq
        A.add_positions([0, 0], [1.0, 1.0])
        assert A.seq == seq + 1
        assert A.data[0] == 4.0
        A.mark_changed()
        assert A.seq == seq + 2

    def test_pre_add_requires_prealloc(self):
        with pytest.raises(RuntimeError):
            SparseMatrix().pre_add_ij(0, 0)

    def test_has_pattern_and_release(self):
        A = laplacian_1d(3)
        assert A.has_pattern(A.indptr.copy(), A.indices.copy())
        A.release()
        assert A.get_nnz() == 0
        assert not A.has_pattern([0], [])


def test_vector_operations():
    v = Vector(3)
    v.add([0, 0, 2], [1.0, 2.0, 4.0])
    assert v.get(0) == 3.0
    v.change_sign()
    assert np.allclose(v.data, [-3.0, 0.0, -4.0])
    assert np.isclose(v.norm(), 5.0)
    assert np.isclose(v.norm(np.inf), 4.0)
    v.alloc(5)
    assert len(v) == 5 and v.norm() == 0.0


@pytest.mark.parametrize("backend,precond", [
    ("superlu", None),
    ("spsolve", None),
    ("cg", None),
    ("cg", "ilu"),
    ("gmres", "ilu"),
    ("bicgstab", None),
])
def test_backends_agree(backend, precond):
    n = 20
    A = laplacian_1d(n)
    b = Vector(n)
    b.set(np.arange(n), np.linspace(0.0, 1.0, n))
    params = LinearSolverParameters(backend=backend, tol=1e-12, preconditioner=precond)
    solver = create_linear_solver(None, A, b, params)
    assert solver.name == backend
    x = solver.solve()
    assert np.allclose(x, np.linalg.solve(A.to_scipy().toarray(), b.data), atol=1e-8)


def test_direct_factorization_is_reused():
    A = laplacian_1d(5)
    b = Vector(5)
    b.data[:] = 1.0
    solver = SuperLUSolver(A, b)
    solver.solve()
    lu = solver._lu
    assert solver.factorized
    b.data[:] = 2.0
    x = solver.solve()
    assert solver._lu is lu
    assert np.allclose(A.to_scipy() @ x, 2.0)
    A.add(0, 0, 1.0)
    assert not solver.factorized
    solver.solve()
    assert solver._lu is not lu


@pytest.mark.parametrize("backend", ["superlu", "spsolve"])
def test_singular_matrix(backend):
    A = SparseMatrix()
    A.set_pattern([0, 2, 4], [0, 1, 0, 1])
    A.data[:] = 1.0
    b = Vector(2)
    b.data[:] = [1.0, 2.0]
    with pytest.raises(Singular):
        create_linear_solver(backend, A, b).solve()


def test_unknown_backend():
    with pytest.raises(BackendError):
        create_linear_solver("petsc", SparseMatrix(), Vector())
    with pytest.raises(BackendError):
        create_matrix("petsc")
    assert "superlu" in available_backends()


def test_unknown_preconditioner():
    A = laplacian_1d(3)
    b = Vector(3)
    b.data[:] = 1.0
    params = LinearSolverParameters(backend="cg", preconditioner="amg")
    with pytest.raises(BackendError):
        create_linear_solver(None, A, b, params).solve()


def test_backend_from_environment(monkeypatch):
    monkeypatch.setenv("PYHPFEM_LINEAR_SOLVER", "spsolve")
    solver = create_linear_solver(None, create_matrix(), create_vector())
    assert isinstance(solver, SpsolveSolver)


def test_size_checks_and_empty_system():
    A = SparseMatrix()
    A.set_pattern([0], [])
    assert create_linear_solver("superlu", A, Vector(0)).solve().shape == (0,)
    with pytest.raises(BackendError):
        create_linear_solver("superlu", laplacian_1d(3), Vector(2)).solve()


def test_context_manager_releases():
    A = laplacian_1d(3)
    b = Vector(3)
    b.data[:] = 1.0
    with create_linear_solver("superlu", A, b) as solver:
        solver.solve()
        assert solver.factorized
    assert not solver.factorized
    assert solver.sln is None
