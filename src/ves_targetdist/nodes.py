"""DistributionNode — the interface every target-distribution variant implements.

A node knows how to fill a grid with raw target-distribution values.
Everything that happens afterwards (modifiers, bias cutoff, shifting,
normalisation, sanity checks) is done by the owning
:class:`~ves_targetdist.engine.TargetDistribution`.

Variants form a closed set, selected by name through
:mod:`ves_targetdist.registry`:

================== ============================== ===================
name               class                          static / dynamic
================== ============================== ===================
UNIFORM            :class:`UniformDistribution`   static
GAUSSIAN           :class:`GaussianDistribution`  static
LINEAR_COMBINATION ``LinearCombination``          dynamic if any child
MATHEVAL_DIST      ``ExpressionDistribution``     dynamic if uses FE
WELL_TEMPERED      ``WellTemperedDistribution``   dynamic
================== ============================== ===================

Static nodes only implement :meth:`DistributionNode.evaluate`; the base
class evaluates them once per grid side and restores the cached raw
values on every later update, so repeated updates are bit-identical.
"""

from __future__ import annotations

import logging
from abc import ABC
from typing import TYPE_CHECKING, Any, ClassVar, Dict, FrozenSet, List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError, UsageError
from .grid import Grid
from .pipeline import GridPair, GridSide

if TYPE_CHECKING:
    from .bias import BiasContext
    from .engine import TargetDistribution
    from .keywords import KeywordReader
    from .registry import TargetDistributionRegister

__all__ = [
    "POLICY_KEYWORDS",
    "DistributionNode",
    "UniformDistribution",
    "GaussianDistribution",
]

logger = logging.getLogger(__name__)

POLICY_KEYWORDS: FrozenSet[str] = frozenset(
    {"BIAS_CUTOFF", "WELLTEMPERED_FACTOR", "SHIFT_TO_ZERO", "NORMALIZE"})


# ═══════════════════════════════════════════════════════════════════
# DistributionNode
# ═══════════════════════════════════════════════════════════════════

class DistributionNode(ABC):
    """Base class of all target-distribution variants.

    Class attributes
    ----------------
    name : str
        Registry name, e.g. ``"UNIFORM"``.
    policy_keywords : frozenset of str
        Which of :data:`POLICY_KEYWORDS` the variant accepts.
    """

    name: ClassVar[str] = ""
    policy_keywords: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self):
        self._dynamic = False
        self._dimension = 0
        self._needs_bias_grid = False
        self._needs_bias_without_cutoff_grid = False
        self._needs_fes_grid = False
        self._raw_cache: Dict[GridSide, np.ndarray] = {}

    # ── declared nature ─────────────────────────────────────────

    @property
    def is_dynamic(self) -> bool:
        return self._dynamic

    @property
    def is_static(self) -> bool:
        return not self.is_dynamic

    @property
    def dimension(self) -> int:
        """Intrinsic dimension, or 0 if taken from the grid."""
        return self._dimension

    @property
    def needs_bias_grid(self) -> bool:
        return self._needs_bias_grid

    @property
    def needs_bias_without_cutoff_grid(self) -> bool:
        return self._needs_bias_without_cutoff_grid

    @property
    def needs_fes_grid(self) -> bool:
        return self._needs_fes_grid

    def _set_dynamic(self) -> None:
        self._dynamic = True

    def _set_dimension(self, dimension: int) -> None:
        if self._dimension != 0:
            raise UsageError(
                f"{self.name}: the dimension has already been set to {self._dimension}")
        self._dimension = int(dimension)

    def _set_fes_grid_needed(self) -> None:
        self._needs_fes_grid = True

    def _set_bias_grid_needed(self) -> None:
        self._needs_bias_grid = True

    # ── construction from keywords ──────────────────────────────

    @classmethod
    def from_keywords(
        cls,
        reader: "KeywordReader",
        registry: "TargetDistributionRegister",
    ) -> "DistributionNode":
        """Build the node from construction words.  No parameters by default."""
        return cls()

    # ── evaluation ──────────────────────────────────────────────

    def evaluate(self, points: np.ndarray, grid: Grid) -> np.ndarray:
        """Vectorised pointwise value, shape ``(len(points),)``.

        Only static variants implement this.
        """
        raise UsageError(f"pointwise evaluation is not available for {self.name}")

    def value(self, point: Sequence[float], grid: Grid) -> float:
        """Target-distribution value at a single point."""
        if self.is_dynamic:
            raise UsageError(
                f"{self.name} is a dynamic target distribution, "
                "its value cannot be evaluated pointwise")
        point = np.asarray(point, dtype=float).reshape(1, -1)
        return float(self.evaluate(point, grid)[0])

    def update_grid(self, engine: "TargetDistribution", pair: GridPair) -> None:
        """Write the raw values into ``pair.grid`` and refresh ``pair.log_grid``."""
        raw = self._raw_cache.get(pair.side)
        if raw is None:
            raw = np.broadcast_to(
                np.asarray(self.evaluate(pair.points, pair.grid), dtype=float),
                (pair.grid.size,),
            ).copy()
            self._raw_cache[pair.side] = raw
            logger.debug("%s: computed static %s grid (%d points)",
                         self.name, pair.side.value, raw.size)
        pair.grid.set_values(raw)
        pair.refresh_log()

    # ── hooks called by the engine ──────────────────────────────

    def setup_additional_grids(self, engine: "TargetDistribution", pair: GridPair) -> None:
        """Called once after the engine allocated the grids of ``pair.side``."""

    def forward_link(self, kind: str, grid: Optional[Grid], side: GridSide) -> None:
        """Called when a collaborator grid is linked to the owning engine."""

    def forward_context(self, context: "BiasContext") -> None:
        """Called when the bias context is linked to the owning engine."""

    def close(self) -> None:
        self._raw_cache.clear()

    def describe(self) -> Dict[str, Any]:
        """Variant-specific parameters for :meth:`TargetDistribution.description`."""
        return {}


# ═══════════════════════════════════════════════════════════════════
# UNIFORM
# ═══════════════════════════════════════════════════════════════════

class UniformDistribution(DistributionNode):
    """Constant density ``1 / volume`` over the grid domain."""

    name = "UNIFORM"
    policy_keywords = POLICY_KEYWORDS

    def evaluate(self, points: np.ndarray, grid: Grid) -> np.ndarray:
        volume = float(np.prod([a.length for a in grid.axes]))
        return np.full(len(points), 1.0 / volume)


# ═══════════════════════════════════════════════════════════════════
# GAUSSIAN
# ═══════════════════════════════════════════════════════════════════

class GaussianDistribution(DistributionNode):
    """Weighted sum of diagonal normal densities.

    .. math::

        p(\\mathbf{s}) = \\sum_k w_k \\prod_i
            \\frac{1}{\\sqrt{2\\pi}\\,\\sigma_{k,i}}
            \\exp\\!\\left(-\\frac{(s_i-\\mu_{k,i})^2}{2\\sigma_{k,i}^2}\\right)

    Parameters
    ----------
    centers : sequence of sequence of float
        One center per Gaussian.  Their length fixes the dimension.
    sigmas : sequence of sequence of float
        One width vector per Gaussian, all entries positive.
    weights : sequence of float, optional
        Relative weights, normalised to one.  Equal by default.
    """

    name = "GAUSSIAN"
    policy_keywords = POLICY_KEYWORDS

    def __init__(
        self,
        centers: Sequence[Sequence[float]],
        sigmas: Sequence[Sequence[float]],
        weights: Optional[Sequence[float]] = None,
    ):
        super().__init__()
        self.centers = np.atleast_2d(np.asarray(centers, dtype=float))
        self.sigmas = np.atleast_2d(np.asarray(sigmas, dtype=float))
        n = self.centers.shape[0]
        if n == 0:
            raise ConfigurationError(f"{self.name}: no centers given")
        if self.sigmas.shape != self.centers.shape:
            raise ConfigurationError(
                f"{self.name}: every center needs a sigma of the same dimension "
                f"(centers {self.centers.shape}, sigmas {self.sigmas.shape})")
        if np.any(self.sigmas <= 0.0):
            raise ConfigurationError(f"{self.name}: sigmas must be positive")
        self.weights = _normalized_weights(self.name, weights, n)
        self._set_dimension(self.centers.shape[1])

    @classmethod
    def from_keywords(cls, reader, registry):
        centers: List[List[float]] = []
        sigmas: List[List[float]] = []
        single_center = reader.parse_vector("CENTER", optional=True)
        if single_center is not None:
            centers.append(single_center)
            sigmas.append(reader.parse_vector("SIGMA"))
        else:
            i = 1
            while True:
                center = reader.parse_numbered_vector("CENTER", i)
                if center is None:
                    break
                sigma = reader.parse_numbered_vector("SIGMA", i)
                if sigma is None:
                    raise ConfigurationError(f"{cls.name}: CENTER{i} given without SIGMA{i}")
                centers.append(center)
                sigmas.append(sigma)
                i += 1
        if not centers:
            raise ConfigurationError(f"target distribution {cls.name} requires CENTER keyword")
        weights = reader.parse_vector("WEIGHTS", optional=True)
        return cls(centers, sigmas, weights)

    def evaluate(self, points: np.ndarray, grid: Grid) -> np.ndarray:
        points = np.asarray(points, dtype=float)
        total = np.zeros(len(points))
        for w, mu, sigma in zip(self.weights, self.centers, self.sigmas):
            z = (points - mu) / sigma
            norm = np.prod(np.sqrt(2.0 * np.pi) * sigma)
            total += w * np.exp(-0.5 * np.sum(z * z, axis=1)) / norm
        return total

    def describe(self) -> Dict[str, Any]:
        return {"centers": self.centers.tolist(), "sigmas": self.sigmas.tolist(),
                "weights": self.weights.tolist()}


def _normalized_weights(owner: str, weights: Optional[Sequence[float]], n: int) -> np.ndarray:
    """Validate *weights* against *n* entries and scale them to sum to one."""
    if weights is None:
        return np.full(n, 1.0 / n)
    w = np.asarray(weights, dtype=float).reshape(-1)
    if w.size != n:
        raise ConfigurationError(
            f"{owner}: there has to be as many weights as distributions "
            f"({w.size} weights for {n})")
    if np.any(w < 0.0):
        raise ConfigurationError(f"{owner}: weights cannot be negative")
    total = float(np.sum(w))
    if not total > 0.0:
        raise ConfigurationError(f"{owner}: weights sum to zero")
    return w / total
