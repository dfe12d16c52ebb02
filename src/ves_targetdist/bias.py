"""Bias-side collaborators: thermal context and the cutoff switching function.

The coordinating bias action is external to this package.  What the
target distributions need from it is small:

* the inverse temperature β (well-tempered and analytic variants),
* a smooth switching function of the uncut bias value, used when the
  bias cutoff is active.

Bias cutoff
-----------
With a cutoff value *c* the bias is switched off smoothly through the
Fermi function

.. math::

    S(V) = \\frac{1}{1 + e^{\\lambda (V - c)}}

and the target distribution picks up two factors: ``S`` itself (from
p(s)) and the derivative factor ``S + V dS/dV`` (from the force of the
switched bias, d[V S(V)]/dV).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy.special import expit

from .errors import ConfigurationError

__all__ = [
    "BiasContext",
    "FermiSwitchingFunction",
]


@dataclass(frozen=True)
class BiasContext:
    """Thermal information supplied by the coordinating bias action.

    Parameters
    ----------
    beta : float
        Inverse temperature 1/kBT, in inverse energy units.
    """

    beta: float

    def __post_init__(self):
        if not self.beta > 0.0:
            raise ConfigurationError(f"beta must be positive, got {self.beta}")

    @classmethod
    def from_kbt(cls, kbt: float) -> "BiasContext":
        if not kbt > 0.0:
            raise ConfigurationError(f"kBT must be positive, got {kbt}")
        return cls(beta=1.0 / kbt)

    @property
    def kbt(self) -> float:
        return 1.0 / self.beta


@dataclass(frozen=True)
class FermiSwitchingFunction:
    """Fermi switching function centred on the bias cutoff value."""

    cutoff: float
    fermi_lambda: float = 10.0
    exp_max: float = 100.0

    def __post_init__(self):
        if self.cutoff <= 0.0:
            raise ConfigurationError(
                f"bias cutoff must be positive, got {self.cutoff}")
        if self.fermi_lambda <= 0.0:
            raise ConfigurationError(
                f"Fermi lambda must be positive, got {self.fermi_lambda}")

    def __call__(self, bias: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(S(V), S(V) + V dS/dV)`` for an array of bias values."""
        bias = np.asarray(bias, dtype=float)
        x = np.minimum(self.fermi_lambda * (bias - self.cutoff), self.exp_max)
        value = expit(-x)
        # dS/dV = -lambda e^x S^2 = -lambda S (1 - S)
        dvalue = -self.fermi_lambda * value * (1.0 - value)
        return value, value + bias * dvalue
