"""Rectangular multidimensional grids holding one value per point.

A :class:`Grid` is a list of :class:`Axis` objects plus a flat numpy
buffer.  The flat index runs over the points with the **first axis
varying fastest**, which is also the order used when grids are written
to disk and when masses are accumulated.

Axis conventions
----------------
* non-periodic axis: ``nbins + 1`` points, both ends included
* periodic axis:     ``nbins`` points, upper end excluded
* ``dx = (maximum - minimum) / nbins`` in both cases

Usage
-----
>>> g = Grid.from_bounds("targetdist", ["s1", "s2"], [-1, -1], [1, 1], [20, 20])
>>> g.size                    # 441
>>> g.point(0)                # array([-1., -1.])
>>> g.values[:] = 1.0
>>> g.project(["s1"]).size    # 21
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "Axis",
    "Grid",
]


# ═══════════════════════════════════════════════════════════════════
# Axis
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Axis:
    """One grid dimension."""

    name: str
    minimum: float
    maximum: float
    nbins: int
    periodic: bool = False

    def __post_init__(self):
        if int(self.nbins) < 1:
            raise ValueError(f"axis {self.name!r}: nbins must be >= 1, got {self.nbins}")
        if not float(self.maximum) > float(self.minimum):
            raise ValueError(
                f"axis {self.name!r}: maximum ({self.maximum}) must exceed "
                f"minimum ({self.minimum})")

    @property
    def dx(self) -> float:
        return (float(self.maximum) - float(self.minimum)) / int(self.nbins)

    @property
    def npoints(self) -> int:
        return int(self.nbins) if self.periodic else int(self.nbins) + 1

    @property
    def length(self) -> float:
        return float(self.maximum) - float(self.minimum)

    def coordinates(self) -> np.ndarray:
        """Coordinates of the grid points along this axis."""
        return float(self.minimum) + self.dx * np.arange(self.npoints, dtype=float)

    def quadrature_weights(self) -> np.ndarray:
        """Boundary-aware 1-D integration weights.

        Periodic axes weight every point by ``dx``.  Non-periodic axes
        use the trapezoidal rule, ``dx / 2`` at both end points.
        """
        w = np.full(self.npoints, self.dx, dtype=float)
        if not self.periodic:
            w[0] *= 0.5
            w[-1] *= 0.5
        return w

    def index_of(self, x: float) -> int:
        """Index of the grid point nearest to *x*."""
        k = int(np.floor((float(x) - float(self.minimum)) / self.dx + 0.5))
        if self.periodic:
            return k % self.npoints
        if k < 0 or k >= self.npoints:
            raise IndexError(
                f"coordinate {x} is outside axis {self.name!r} "
                f"[{self.minimum}, {self.maximum}]")
        return k


# ═══════════════════════════════════════════════════════════════════
# Grid
# ═══════════════════════════════════════════════════════════════════

class Grid:
    """Rectangular grid with one float per point.

    Parameters
    ----------
    name : str
        Label used as the value column when the grid is written.
    axes : sequence of Axis
        The dimensions.  Fixed for the lifetime of the grid.
    values : array_like, optional
        Initial flat values (first axis fastest).  Zeros by default.
    """

    def __init__(
        self,
        name: str,
        axes: Sequence[Axis],
        values: Optional[np.ndarray] = None,
    ):
        if len(axes) == 0:
            raise ValueError("a grid needs at least one axis")
        self.name = name
        self._axes: Tuple[Axis, ...] = tuple(axes)
        names = [a.name for a in self._axes]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate axis names in {names}")
        self._shape = tuple(a.npoints for a in self._axes)
        size = int(np.prod(self._shape))
        if values is None:
            self._values = np.zeros(size, dtype=float)
        else:
            arr = np.array(values, dtype=float).reshape(-1)
            if arr.size != size:
                raise ValueError(
                    f"grid {name!r} expects {size} values, got {arr.size}")
            self._values = arr

    @classmethod
    def from_bounds(
        cls,
        name: str,
        arg_names: Sequence[str],
        minima: Sequence[float],
        maxima: Sequence[float],
        nbins: Sequence[int],
        periodic: Optional[Sequence[bool]] = None,
    ) -> "Grid":
        """Build a grid from per-axis parameter lists."""
        d = len(arg_names)
        if periodic is None:
            periodic = [False] * d
        if not (len(minima) == len(maxima) == len(nbins) == len(periodic) == d):
            raise ValueError(
                "mismatch between number of values given for grid parameters")
        axes = [
            Axis(str(arg_names[k]), float(minima[k]), float(maxima[k]),
                 int(nbins[k]), bool(periodic[k]))
            for k in range(d)
        ]
        return cls(name, axes)

    # ── shape ───────────────────────────────────────────────────

    @property
    def axes(self) -> Tuple[Axis, ...]:
        return self._axes

    @property
    def dimension(self) -> int:
        return len(self._axes)

    @property
    def shape(self) -> Tuple[int, ...]:
        """Number of points per axis."""
        return self._shape

    @property
    def size(self) -> int:
        return self._values.size

    @property
    def arg_names(self) -> List[str]:
        return [a.name for a in self._axes]

    @property
    def dx(self) -> Tuple[float, ...]:
        return tuple(a.dx for a in self._axes)

    @property
    def bin_volume(self) -> float:
        return float(np.prod(self.dx))

    def bounds(self) -> Tuple[List[str], List[float], List[float], List[int], List[bool]]:
        """``(arg_names, minima, maxima, nbins, periodic)`` of the axes."""
        return (
            self.arg_names,
            [float(a.minimum) for a in self._axes],
            [float(a.maximum) for a in self._axes],
            [int(a.nbins) for a in self._axes],
            [bool(a.periodic) for a in self._axes],
        )

    def same_shape(self, other: "Grid") -> bool:
        """True if *other* has identical axes."""
        return self._axes == other._axes

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"Grid({self.name!r}, args={self.arg_names}, shape={self._shape})"

    # ── values ──────────────────────────────────────────────────

    @property
    def values(self) -> np.ndarray:
        """Flat value buffer.  Writes go straight into the grid."""
        return self._values

    def set_values(self, values: np.ndarray) -> None:
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.size != self.size:
            raise ValueError(
                f"grid {self.name!r} expects {self.size} values, got {arr.size}")
        self._values[:] = arr

    def as_array(self) -> np.ndarray:
        """Values reshaped to ``shape`` (axis *k* is array axis *k*)."""
        return self._values.reshape(self._shape, order="F")

    def _check_index(self, index: int) -> int:
        index = int(index)
        if index < 0 or index >= self.size:
            raise IndexError(
                f"index {index} out of range for grid {self.name!r} "
                f"of size {self.size}")
        return index

    def value(self, index: int) -> float:
        return float(self._values[self._check_index(index)])

    def set_value(self, index: int, value: float) -> None:
        self._values[self._check_index(index)] = value

    def value_at(self, point: Sequence[float]) -> float:
        return float(self._values[self.index_of(point)])

    def set_value_at(self, point: Sequence[float], value: float) -> None:
        self._values[self.index_of(point)] = value

    # ── point ↔ index ───────────────────────────────────────────

    def point(self, index: int) -> np.ndarray:
        """Coordinates of the point with flat *index*."""
        index = self._check_index(index)
        multi = np.unravel_index(index, self._shape, order="F")
        return np.array(
            [float(a.minimum) + a.dx * k for a, k in zip(self._axes, multi)])

    def index_of(self, point: Sequence[float]) -> int:
        """Flat index of the grid point nearest to *point*."""
        if len(point) != self.dimension:
            raise IndexError(
                f"point has {len(point)} coordinates, grid {self.name!r} "
                f"has dimension {self.dimension}")
        multi = tuple(a.index_of(x) for a, x in zip(self._axes, point))
        return int(np.ravel_multi_index(multi, self._shape, order="F"))

    def points(self) -> np.ndarray:
        """All point coordinates, shape ``(size, dimension)``."""
        mesh = np.meshgrid(*[a.coordinates() for a in self._axes], indexing="ij")
        return np.stack([m.reshape(-1, order="F") for m in mesh], axis=1)

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray, float]]:
        """Yield ``(index, point, value)`` for every point."""
        pts = self.points()
        for index in range(self.size):
            yield index, pts[index], float(self._values[index])

    # ── bulk operations ─────────────────────────────────────────

    def scale(self, factor: float) -> None:
        self._values *= factor

    def clear(self) -> None:
        self._values[:] = 0.0

    def min_value(self) -> float:
        return float(np.min(self._values))

    def max_value(self) -> float:
        return float(np.max(self._values))

    def set_min_to_zero(self) -> None:
        """Shift all values so the smallest one is exactly 0.

        Non-finite entries (``-log 0``) are ignored when locating the
        minimum.
        """
        finite = self._values[np.isfinite(self._values)]
        if finite.size == 0:
            return
        self._values -= np.min(finite)

    def copy(self, name: Optional[str] = None) -> "Grid":
        return Grid(name or self.name, self._axes, self._values.copy())

    # ── projection ──────────────────────────────────────────────

    def project(self, arg_names: Sequence[str], name: Optional[str] = None) -> "Grid":
        """Project onto the axes named in *arg_names*.

        Dropped axes are summed with their quadrature weights (the
        dropped bin widths, halved at non-periodic boundaries), so
        integrating the result over the kept axes gives the same mass
        as integrating the full grid.

        This differs from the classic VES marginal, a plain sum scaled
        by the dropped bin widths, which over-counts the boundary points
        of non-periodic axes and only approximates that mass.

        Raises
        ------
        ValueError
            If a name is unknown, repeated, or no axis would be dropped.
        """
        names = self.arg_names
        keep = []
        for a in arg_names:
            if a not in names:
                raise ValueError(f"grid {self.name!r} has no axis {a!r}; axes are {names}")
            keep.append(names.index(a))
        if len(set(keep)) != len(keep):
            raise ValueError(f"repeated axis in projection {list(arg_names)}")
        if len(keep) == 0 or len(keep) >= self.dimension:
            raise ValueError(
                "the number of projection axes must be between 1 and "
                f"{self.dimension - 1}")

        arr = self.as_array()
        for k in sorted(set(range(self.dimension)) - set(keep), reverse=True):
            arr = np.tensordot(arr, self._axes[k].quadrature_weights(), axes=([k], [0]))
        # remaining array axes are the kept axes in ascending order
        remaining = sorted(keep)
        arr = np.transpose(arr, [remaining.index(k) for k in keep])
        axes = [self._axes[k] for k in keep]
        return Grid(name or f"{self.name}_proj", axes, arr.reshape(-1, order="F"))
