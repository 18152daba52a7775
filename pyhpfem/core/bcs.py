from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

import numpy as np

from pyhpfem.errors import DOFError

Value = Union[float, Callable[[np.ndarray, np.ndarray], np.ndarray]]


class EssentialBC:
    """Dirichlet condition ``u = value`` on the boundary edges carrying ``markers``.

    ``value`` is either a constant or a vectorised callable ``f(x, y)``.
    """

    def __init__(self, markers: Union[str, Sequence[str]], value: Value = 0.0):
        if isinstance(markers, str):
            markers = [markers]
        self.markers: List[str] = [str(m) for m in markers]
        if not self.markers:
            raise ValueError("EssentialBC needs at least one boundary marker.")
        self.value = value

    @property
    def is_constant(self) -> bool:
        return not callable(self.value)

    def evaluate(self, x, y) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        if self.is_constant:
            return np.full_like(x, float(self.value))
        return np.asarray(self.value(x, y), dtype=float) + np.zeros_like(x)

    def __repr__(self):
        v = self.value if self.is_constant else getattr(self.value, "__name__", "callable")
        return f"EssentialBC(markers={self.markers}, value={v})"


class DefaultEssentialBCConst(EssentialBC):
    """Constant Dirichlet value."""

    def __init__(self, markers, value: float):
        super().__init__(markers, float(value))


class EssentialBCs:
    """Ordered collection of :class:`EssentialBC`; each marker may be claimed once."""

    def __init__(self, bcs: Optional[Iterable[EssentialBC]] = None):
        self._bcs: List[EssentialBC] = []
        self._by_marker: Dict[str, EssentialBC] = {}
        self.seq = 0
        for bc in bcs or ():
            self.add_boundary_condition(bc)

    def add_boundary_condition(self, bc: EssentialBC) -> None:
        for m in bc.markers:
            if m in self._by_marker:
                raise DOFError(f"Boundary marker '{m}' has more than one essential condition.")
        self._bcs.append(bc)
        for m in bc.markers:
            self._by_marker[m] = bc
        self.seq += 1

    def get_boundary_condition(self, marker: str) -> Optional[EssentialBC]:
        return self._by_marker.get(marker)

    @property
    def markers(self) -> List[str]:
        return list(self._by_marker)

    def validate(self, mesh) -> None:
        known = mesh.boundary_markers()
        for m in self._by_marker:
            if m not in known:
                raise DOFError(f"Boundary marker '{m}' does not exist on the mesh boundary "
                               f"(known: {sorted(known)}).")

    def __iter__(self) -> Iterator[EssentialBC]:
        return iter(self._bcs)

    def __len__(self) -> int:
        return len(self._bcs)

    def __bool__(self) -> bool:
        return bool(self._bcs)


def as_essential_bcs(bcs) -> EssentialBCs:
    if bcs is None:
        return EssentialBCs()
    if isinstance(bcs, EssentialBCs):
        return bcs
    if isinstance(bcs, EssentialBC):
        return EssentialBCs([bcs])
    return EssentialBCs(list(bcs))
