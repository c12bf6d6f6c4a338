"""
Solution vectors for implicit integration.

A SolutionLayout assigns each leaf PK a contiguous slice of one flat
vector; couplers span the slices of their children. A SolutionVector is a
numpy array bound to a layout and addressed by PK name.
"""

import numpy as np

from hydrocore.errors import ConfigurationError


class SolutionLayout:
    """Named slices of a flat vector."""

    def __init__(self):
        self._slices: dict[str, slice] = {}
        self._size = 0

    @property
    def size(self) -> int:
        """Total length."""
        return self._size

    @property
    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._slices)

    def register(self, name: str, length: int) -> slice:
        """Append a slice of length for a leaf PK."""
        if name in self._slices:
            raise ConfigurationError(f"'{name}' is already part of the solution")
        if length < 0:
            raise ConfigurationError(f"Negative length {length} for '{name}'")
        sl = slice(self._size, self._size + length)
        self._slices[name] = sl
        self._size += length
        return sl

    def register_span(self, name: str, first: str, last: str) -> slice:
        """Register a coupler covering the slices from first to last."""
        if name in self._slices:
            raise ConfigurationError(f"'{name}' is already part of the solution")
        sl = slice(self.slice_of(first).start, self.slice_of(last).stop)
        self._slices[name] = sl
        return sl

    def slice_of(self, name: str) -> slice:
        """Slice of a registered name."""
        if name not in self._slices:
            raise ConfigurationError(f"'{name}' is not part of the solution. Known: {self.names}")
        return self._slices[name]

    def __contains__(self, name: str) -> bool:
        return name in self._slices


class SolutionVector:
    """Flat vector addressed by PK name."""

    def __init__(self, layout: SolutionLayout, data: np.ndarray | None = None):
        self.layout = layout
        if data is None:
            data = np.zeros(layout.size)
        data = np.asarray(data, dtype=np.float64)
        if data.shape != (layout.size,):
            raise ConfigurationError(f"Vector of shape {data.shape} for layout of size {layout.size}")
        self.data = data

    def sub(self, name: str) -> np.ndarray:
        """Writable view of one PK's slice."""
        return self.data[self.layout.slice_of(name)]

    def copy(self) -> "SolutionVector":
        return SolutionVector(self.layout, self.data.copy())

    def zeros_like(self) -> "SolutionVector":
        return SolutionVector(self.layout)

    def assign(self, other: "SolutionVector") -> None:
        self.data[:] = other.data

    def __len__(self) -> int:
        return self.data.shape[0]
