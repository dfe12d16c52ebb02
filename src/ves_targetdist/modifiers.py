"""Value transforms applied to a freshly computed target distribution.

A :class:`Modifier` maps the raw grid values to new values; the engine
renormalises to unit mass after each one and applies them in the order
they were registered::

    raw p(s)
        ↓ WellTemperedModifier(γ=5)      p → p^(1/5), renormalise
        ↓ <next modifier>                ..., renormalise

Only one kind exists today: the well-tempered broadening
``p(s) → [p(s)]^(1/γ)``.  It cannot be combined with the bias cutoff.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from .errors import ConfigurationError

__all__ = [
    "Modifier",
    "WellTemperedModifier",
]


@runtime_checkable
class Modifier(Protocol):
    """Protocol for a target-distribution value transform."""

    @property
    def name(self) -> str:
        ...

    def modify(self, values: np.ndarray, points: np.ndarray) -> np.ndarray:
        """Return transformed values.

        Parameters
        ----------
        values : ndarray, shape (n,)
            Current grid values.
        points : ndarray, shape (n, d)
            Coordinates of each grid point.
        """
        ...


class WellTemperedModifier:
    """Broaden a distribution as ``p^(1/γ)``."""

    def __init__(self, factor: float):
        if not factor > 0.0:
            raise ConfigurationError(
                f"well-tempered factor must be positive, got {factor}")
        self.factor = float(factor)

    @property
    def name(self) -> str:
        return "welltempered"

    def modify(self, values: np.ndarray, points: np.ndarray) -> np.ndarray:
        return np.power(values, 1.0 / self.factor)

    def __repr__(self) -> str:
        return f"WellTemperedModifier({self.factor})"
