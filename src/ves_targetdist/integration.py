"""Quadrature weights and grid integration.

The per-point weight is the product of the 1-D weights of each axis
(:meth:`Axis.quadrature_weights`): ``dx`` everywhere on periodic axes,
trapezoidal on non-periodic ones.

Masses are accumulated with ``numpy.sum`` over the flat traversal order,
which is deterministic for identical inputs; restarts and repeated runs
therefore reproduce bit-identical normalisations.
"""

from __future__ import annotations

import numpy as np

from .errors import NormalizationFailureError
from .grid import Grid

__all__ = [
    "integration_weights",
    "integrate_grid",
    "normalize_grid",
]


def integration_weights(grid: Grid) -> np.ndarray:
    """Flat array of per-point quadrature weights for *grid*."""
    w = np.ones(1)
    # first axis fastest: build the outer product from the last axis inwards
    for axis in reversed(grid.axes):
        w = np.multiply.outer(w, axis.quadrature_weights()).reshape(-1)
    return w


def integrate_grid(grid: Grid) -> float:
    """Integral of the grid values over the full domain."""
    return float(np.sum(integration_weights(grid) * grid.values))


def normalize_grid(grid: Grid) -> float:
    """Scale *grid* to unit mass in place and return the previous mass.

    Raises
    ------
    NormalizationFailureError
        If the mass is not positive; the grid is left unchanged.
    """
    mass = integrate_grid(grid)
    if not mass > 0.0:
        raise NormalizationFailureError(
            f"cannot normalize grid {grid.name!r}, integrating over it gives {mass:.6g}")
    grid.scale(1.0 / mass)
    return mass
