"""Two-dimensional raster grids over numpy arrays.

A Grid either owns its buffer (allocated at construction) or borrows an
externally owned array via Grid.wrap(), in which case no copy is made and
writes through the grid are visible to the owner. Dimensions are fixed for
the grid's lifetime. Element access with (row, col) is bounds-checked;
negative indices are rejected rather than wrapped around as numpy would.
"""

from __future__ import annotations

from typing import Iterator, Tuple

import numpy as np

from pestspread.errors import ConfigurationError


class Grid:
    """Bounds-checked rows x cols matrix of counts or rates.

    Args:
        rows: Number of rows (must be positive).
        cols: Number of columns (must be positive).
        value: Initial fill value.
        dtype: numpy dtype of the buffer.
    """

    __slots__ = ("_data", "_owned")

    def __init__(self, rows: int, cols: int, value=0, dtype=np.int64):
        if rows <= 0 or cols <= 0:
            raise ConfigurationError(
                f"grid dimensions must be positive, got {rows}x{cols}"
            )
        self._data = np.full((rows, cols), value, dtype=dtype)
        self._owned = True

    @classmethod
    def wrap(cls, array: np.ndarray) -> "Grid":
        """Borrow an existing 2-D array without copying it."""
        if not isinstance(array, np.ndarray) or array.ndim != 2:
            raise ConfigurationError("Grid.wrap() needs a 2-D numpy array")
        if array.shape[0] == 0 or array.shape[1] == 0:
            raise ConfigurationError(
                f"grid dimensions must be positive, got {array.shape}"
            )
        grid = cls.__new__(cls)
        grid._data = array
        grid._owned = False
        return grid

    @classmethod
    def from_array(cls, array, dtype=None) -> "Grid":
        """Create an owning grid holding a copy of array."""
        data = np.array(array, dtype=dtype, copy=True)
        if data.ndim != 2:
            raise ConfigurationError(
                f"grid data must be 2-D, got {data.ndim} dimensions"
            )
        return cls.wrap(data)._take_ownership()

    def _take_ownership(self) -> "Grid":
        self._owned = True
        return self

    # ── shape ────────────────────────────────────────────────────────

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def owned(self) -> bool:
        """False when the buffer belongs to the caller of wrap()."""
        return self._owned

    @property
    def array(self) -> np.ndarray:
        """Raw buffer, for interop with raster I/O and vectorised math."""
        return self._data

    def contains(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def same_shape(self, other: "Grid") -> bool:
        return self.shape == other.shape

    # ── element access ───────────────────────────────────────────────

    def _check(self, key) -> Tuple[int, int]:
        try:
            row, col = key
        except (TypeError, ValueError):
            raise IndexError(f"grid index must be (row, col), got {key!r}")
        if not self.contains(row, col):
            raise IndexError(
                f"cell ({row}, {col}) outside grid of {self.rows}x{self.cols}"
            )
        return row, col

    def __getitem__(self, key):
        row, col = self._check(key)
        return self._data[row, col]

    def __setitem__(self, key, value) -> None:
        row, col = self._check(key)
        self._data[row, col] = value

    def cells(self) -> Iterator[Tuple[int, int]]:
        """Row-major iteration over all (row, col) pairs."""
        for row in range(self.rows):
            for col in range(self.cols):
                yield row, col

    # ── whole-grid operations ────────────────────────────────────────

    def copy(self) -> "Grid":
        return Grid.wrap(self._data.copy())._take_ownership()

    def fill(self, value) -> None:
        self._data.fill(value)

    def sum(self):
        return self._data.sum()

    def __iadd__(self, other):
        self._data += other._data if isinstance(other, Grid) else other
        return self

    def __isub__(self, other):
        self._data -= other._data if isinstance(other, Grid) else other
        return self

    def __eq__(self, other) -> bool:
        if not isinstance(other, Grid):
            return NotImplemented
        return self.shape == other.shape and bool(
            np.array_equal(self._data, other._data)
        )

    __hash__ = None

    def __repr__(self) -> str:
        kind = "owned" if self._owned else "borrowed"
        return f"Grid({self.rows}x{self.cols}, {self._data.dtype}, {kind})"
