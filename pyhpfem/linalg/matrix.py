"""
CSR matrix and dense vector containers backed by numpy / scipy.sparse.

Both are owned objects: buffers are allocated explicitly, reused across
assembly passes and dropped with ``release()``.  ``seq`` is bumped on every
modification so that a factorization can tell whether it is still valid.
"""
from typing import List, Optional, Set

import numpy as np
import scipy.sparse as sp


class SparseMatrix:
    """Square CSR matrix with a fixed sparsity pattern."""

    def __init__(self):
        self.size = 0
        self.indptr: Optional[np.ndarray] = None
        self.indices: Optional[np.ndarray] = None
        self.data: Optional[np.ndarray] = None
        self._pages: Optional[List[Set[int]]] = None
        self.seq = 0

    # -- pattern -----------------------------------------------------------
    def prealloc(self, n: int) -> None:
        self.size = int(n)
        self._pages = [set() for _ in range(self.size)]

    def pre_add_ij(self, row: int, col: int) -> None:
        if self._pages is None:
            raise RuntimeError("prealloc() must be called before pre_add_ij().")
        self._pages[row].add(int(col))

    def alloc(self) -> None:
        """Turn the pre-added (row, col) pairs into the CSR pattern."""
        if self._pages is None:
            raise RuntimeError("prealloc() must be called before alloc().")
        counts = np.fromiter((len(p) for p in self._pages), dtype=np.int64, count=self.size)
        indptr = np.zeros(self.size + 1, dtype=np.int64)
        np.cumsum(counts, out=indptr[1:])
        indices = np.empty(indptr[-1], dtype=np.int64)
        for r, page in enumerate(self._pages):
            indices[indptr[r]:indptr[r + 1]] = sorted(page)
        self._pages = None
        self.set_pattern(indptr, indices)

    def set_pattern(self, indptr, indices) -> None:
        self.indptr = np.asarray(indptr, dtype=np.int64)
        self.indices = np.asarray(indices, dtype=np.int64)
        self.size = len(self.indptr) - 1
        self.data = np.zeros(len(self.indices))
        self.seq += 1

    def has_pattern(self, indptr, indices) -> bool:
        return (self.indptr is not None
                and np.array_equal(self.indptr, indptr)
                and np.array_equal(self.indices, indices))

    # -- values ------------------------------------------------------------
    def _position(self, row: int, col: int) -> int:
        lo, hi = self.indptr[row], self.indptr[row + 1]
        k = lo + np.searchsorted(self.indices[lo:hi], col)
        if k >= hi or self.indices[k] != col:
            raise KeyError(f"Entry ({row}, {col}) is not in the sparsity pattern.")
        return int(k)

    def add(self, row: int, col: int, value: float) -> None:
        self.data[self._position(row, col)] += value
        self.seq += 1

    def add_positions(self, pos, values) -> None:
        np.add.at(self.data, np.asarray(pos), np.asarray(values, dtype=float))
        self.seq += 1

    def get(self, row: int, col: int) -> float:
        try:
            return float(self.data[self._position(row, col)])
        except KeyError:
            return 0.0

    def zero(self) -> None:
        if self.data is not None:
            self.data.fill(0.0)
        self.seq += 1

    def mark_changed(self) -> None:
        self.seq += 1

    def get_size(self) -> int:
        return self.size

    def get_nnz(self) -> int:
        return 0 if self.indices is None else len(self.indices)

    def to_scipy(self) -> sp.csr_matrix:
        """Zero-copy scipy view of the current values."""
        if self.data is None:
            return sp.csr_matrix((self.size, self.size))
        return sp.csr_matrix((self.data, self.indices, self.indptr), shape=(self.size, self.size))

    def release(self) -> None:
        self.indptr = self.indices = self.data = None
        self._pages = None
        self.size = 0
        self.seq += 1

    def __repr__(self):
        return f"<SparseMatrix size={self.size} nnz={self.get_nnz()}>"


class Vector:
    """Dense float64 vector."""

    def __init__(self, n: int = 0):
        self.data = np.zeros(int(n))

    def alloc(self, n: int) -> None:
        if self.data is None or len(self.data) != n:
            self.data = np.zeros(int(n))
        else:
            self.data.fill(0.0)

    @property
    def length(self) -> int:
        return 0 if self.data is None else len(self.data)

    def zero(self) -> None:
        self.data.fill(0.0)

    def add(self, idx, values) -> None:
        np.add.at(self.data, np.asarray(idx), values)

    def set(self, idx, values) -> None:
        self.data[np.asarray(idx)] = values

    def get(self, idx):
        return self.data[idx]

    def change_sign(self) -> None:
        np.negative(self.data, out=self.data)

    def norm(self, ord=None) -> float:
        return float(np.linalg.norm(self.data, ord=ord)) if self.length else 0.0

    def release(self) -> None:
        self.data = None

    def __len__(self):
        return self.length

    def __repr__(self):
        return f"<Vector length={self.length}>"
