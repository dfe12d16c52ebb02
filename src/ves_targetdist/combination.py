"""LINEAR_COMBINATION — weighted sum of other target distributions.

.. math::

    p(\\mathbf{s}) = \\sum_i w_i \\, p_i(\\mathbf{s}), \\qquad \\sum_i w_i = 1

The children are full :class:`~ves_targetdist.engine.TargetDistribution`
objects with their own grids and policies (a child can, for instance,
carry its own ``NORMALIZE``).  They are owned by the combination and
closed with it.  The combination is dynamic as soon as one child is,
and needs a collaborator grid as soon as one child does.

Usage
-----
>>> from ves_targetdist import create_target_distribution
>>> td = create_target_distribution(
...     "LINEAR_COMBINATION DISTRIBUTION1={UNIFORM} "
...     "DISTRIBUTION2={GAUSSIAN CENTER=-2.0 SIGMA=0.5} WEIGHTS=1,3")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError, DimensionMismatchError, UsageError
from .grid import Grid
from .keywords import split_words
from .nodes import DistributionNode, _normalized_weights
from .pipeline import GridPair, GridSide

if TYPE_CHECKING:
    from .bias import BiasContext
    from .engine import TargetDistribution

__all__ = [
    "LinearCombination",
]

logger = logging.getLogger(__name__)


class LinearCombination(DistributionNode):
    """Weighted linear combination of two or more target distributions.

    Parameters
    ----------
    distributions : sequence of TargetDistribution
        The children.  At least two.  Ownership passes to the combination.
    weights : sequence of float, optional
        One non-negative weight per child, normalised to sum to one.
        Equal weights by default.
    """

    name = "LINEAR_COMBINATION"
    policy_keywords = frozenset({"BIAS_CUTOFF", "WELLTEMPERED_FACTOR", "NORMALIZE"})

    def __init__(
        self,
        distributions: Sequence["TargetDistribution"],
        weights: Optional[Sequence[float]] = None,
    ):
        super().__init__()
        self.distributions: Tuple["TargetDistribution", ...] = tuple(distributions)
        n = len(self.distributions)
        if n == 0:
            raise ConfigurationError(f"{self.name}: no distributions are given")
        if n == 1:
            raise ConfigurationError(
                f"{self.name}: giving only one distribution does not make sense")
        self.weights = _normalized_weights(self.name, weights, n)
        for child in self.distributions:
            if child.is_dynamic:
                self._set_dynamic()
            if child.needs_fes_grid:
                self._set_fes_grid_needed()
            if child.needs_bias_grid:
                self._set_bias_grid_needed()
            if child.needs_bias_without_cutoff_grid:
                self._needs_bias_without_cutoff_grid = True

    @classmethod
    def from_keywords(cls, reader, registry):
        children = []
        i = 1
        while True:
            text = reader.parse_numbered("DISTRIBUTION", i)
            if text is None:
                break
            children.append(registry.create_from_words(split_words(text)))
            i += 1
        weights = reader.parse_vector("WEIGHTS", optional=True)
        return cls(children, weights)

    # ── grids ───────────────────────────────────────────────────

    def setup_additional_grids(self, engine: "TargetDistribution", pair: GridPair) -> None:
        bounds = pair.grid.bounds()
        for i, child in enumerate(self.distributions):
            if pair.side is GridSide.PRIMARY:
                child.setup_grids(*bounds)
            else:
                child.setup_reweight_grids(*bounds)
            if child.dimension != engine.dimension:
                raise DimensionMismatchError(
                    f"{self.name}: all target distributions must have the same "
                    f"dimension (child {i + 1} has {child.dimension}, "
                    f"expected {engine.dimension})")

    def update_grid(self, engine: "TargetDistribution", pair: GridPair) -> None:
        # children run their whole pipeline (both sides) once per update
        if pair.side is GridSide.PRIMARY:
            for child in self.distributions:
                child.update()
        values = np.zeros(pair.grid.size)
        for w, child in zip(self.weights, self.distributions):
            values += w * child.grid_pair(pair.side).grid.values
        pair.grid.set_values(values)
        pair.refresh_log()

    def value(self, point, grid):
        raise UsageError(f"pointwise evaluation is not available for {self.name}")

    # ── link forwarding ─────────────────────────────────────────

    def forward_link(self, kind: str, grid: Optional[Grid], side: GridSide) -> None:
        for child in self.distributions:
            child.link_grid(kind, grid, side)

    def forward_context(self, context: "BiasContext") -> None:
        for child in self.distributions:
            child.link_bias_context(context)

    def close(self) -> None:
        super().close()
        for child in self.distributions:
            child.close()
        logger.debug("%s: closed %d children", self.name, len(self.distributions))

    def describe(self) -> Dict[str, Any]:
        return {
            "weights": self.weights.tolist(),
            "distributions": [c.name for c in self.distributions],
        }
