"""WELL_TEMPERED — the self-referential well-tempered target distribution.

.. math::

    p(\\mathbf{s}) =
    \\frac{e^{-(\\beta/\\gamma) F(\\mathbf{s})}}
          {\\int d\\mathbf{s}\\, e^{-(\\beta/\\gamma) F(\\mathbf{s})}}

with bias factor γ > 1.  F is not known in advance: the bias action
links its current free-energy estimate and the distribution is
recomputed from it on every update, so the distribution is dynamic.

At convergence ``F(s) = -(1 / (1 - 1/γ)) V(s)``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import numpy as np

from .errors import ConfigurationError, UsageError
from .nodes import DistributionNode
from .pipeline import GridPair

if TYPE_CHECKING:
    from .engine import TargetDistribution

__all__ = [
    "WellTemperedDistribution",
]


class WellTemperedDistribution(DistributionNode):
    """Well-tempered distribution ``exp(-(β/γ) F)`` of the linked free energy.

    Parameters
    ----------
    bias_factor : float
        γ, must be larger than one.
    """

    name = "WELL_TEMPERED"
    policy_keywords = frozenset({"BIAS_CUTOFF"})

    def __init__(self, bias_factor: float):
        super().__init__()
        if not float(bias_factor) > 1.0:
            raise ConfigurationError(
                f"{self.name}: the value of the bias factor doesn't make sense, "
                f"it should be larger than 1.0 (got {bias_factor})")
        self.bias_factor = float(bias_factor)
        self._set_dynamic()
        self._set_fes_grid_needed()

    @classmethod
    def from_keywords(cls, reader, registry):
        return cls(reader.parse("BIASFACTOR", float))

    def value(self, point, grid):
        raise UsageError(f"pointwise evaluation is not available for {self.name}")

    def update_grid(self, engine: "TargetDistribution", pair: GridPair) -> None:
        fes = pair.collaborator("fes", self.name)
        beta_prime = engine.beta / self.bias_factor
        exponent = beta_prime * fes.values
        pair.log_grid.set_values(exponent)
        pair.log_grid.set_min_to_zero()
        # shift by the minimum before exponentiating; the constant
        # cancels in the normalisation
        values = np.exp(-(exponent - np.min(exponent)))
        pair.grid.set_values(values)
        pair.grid.scale(1.0 / pair.integrate())

    def describe(self) -> Dict[str, Any]:
        return {"bias_factor": self.bias_factor}
