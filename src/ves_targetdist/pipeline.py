"""The fixed-order update pipeline as explicit data.

Every call to :meth:`TargetDistribution.update` executes a *plan*: a
tuple of :class:`PipelineStep` values chosen by :func:`plan_pipeline`
from the distribution's :class:`PolicyFlags` and the grid side::

    UPDATE_GRID          node recomputes raw values
    APPLY_MODIFIERS      each modifier, renormalised after each
    BIAS_CUTOFF    ┐
    SHIFT_TO_ZERO  ├     at most one of these three
    FORCE_NORMALIZATION ┘
    CHECK_NORMALIZATION  primary grid only, warning on drift
    CHECK_NONNEGATIVE    primary grid only, warning on negatives

The reweight side runs the same plan without the two checks.  The
engine records what it did in a :class:`PipelineTrace`, so the order can
be asserted directly in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError, DimensionMismatchError, UsageError
from .grid import Grid
from .integration import integration_weights

__all__ = [
    "GridSide",
    "PipelineStep",
    "PolicyFlags",
    "CollaboratorLinks",
    "GridPair",
    "StepRecord",
    "PipelineTrace",
    "plan_pipeline",
]


class GridSide(str, Enum):
    """Which grid pair a pipeline run operates on."""
    PRIMARY = "primary"
    REWEIGHT = "reweight"


# ═══════════════════════════════════════════════════════════════════
# Grid pairs and their collaborator links
# ═══════════════════════════════════════════════════════════════════

@dataclass
class CollaboratorLinks:
    """Non-owning references to grids supplied by the bias action.

    The engine reads these grids but never allocates, resizes or
    releases them.
    """

    bias: Optional[Grid] = None
    bias_without_cutoff: Optional[Grid] = None
    fes: Optional[Grid] = None

    KINDS = ("bias", "bias_without_cutoff", "fes")

    def clear(self) -> None:
        self.bias = None
        self.bias_without_cutoff = None
        self.fes = None


@dataclass
class GridPair:
    """A value grid, its ``-log`` companion and the links used to fill them."""

    side: GridSide
    grid: Grid
    log_grid: Grid
    links: CollaboratorLinks
    weights: np.ndarray = field(init=False, repr=False)
    _points: Optional[np.ndarray] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.weights = integration_weights(self.grid)

    @property
    def points(self) -> np.ndarray:
        if self._points is None:
            self._points = self.grid.points()
        return self._points

    def integrate(self, values: Optional[np.ndarray] = None) -> float:
        """Quadrature sum over *values* (the grid values by default)."""
        if values is None:
            values = self.grid.values
        return float(np.sum(self.weights * values))

    def refresh_log(self) -> None:
        """Set the log grid to ``-log(value)`` shifted to a zero minimum."""
        with np.errstate(divide="ignore", invalid="ignore"):
            self.log_grid.set_values(-np.log(self.grid.values))
        self.log_grid.set_min_to_zero()

    def collaborator(self, kind: str, owner: str) -> Grid:
        """Return the linked grid of *kind*, validated for use.

        Raises
        ------
        UsageError
            If nothing has been linked.
        DimensionMismatchError
            If the linked grid has a different number of points.
        """
        grid = getattr(self.links, kind)
        if grid is None:
            label = kind.replace("_", " ")
            if self.side is GridSide.REWEIGHT:
                label += " reweight"
            raise UsageError(f"{owner}: the {label} grid has to be linked")
        if grid.size != self.grid.size:
            raise DimensionMismatchError(
                f"{owner}: linked {kind} grid has {grid.size} points, "
                f"the {self.side.value} grid has {self.grid.size}")
        return grid


class PipelineStep(str, Enum):
    UPDATE_GRID = "update_grid"
    APPLY_MODIFIERS = "apply_modifiers"
    BIAS_CUTOFF = "bias_cutoff"
    SHIFT_TO_ZERO = "shift_to_zero"
    FORCE_NORMALIZATION = "force_normalization"
    CHECK_NORMALIZATION = "check_normalization"
    CHECK_NONNEGATIVE = "check_nonnegative"


# ═══════════════════════════════════════════════════════════════════
# PolicyFlags
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PolicyFlags:
    """Post-processing policies of one target distribution.

    ``bias_cutoff``, ``shift_to_zero`` and ``force_normalization`` are
    pairwise exclusive.  Use :meth:`from_keywords` to derive the check
    flags the same way the keyword parser does.
    """

    bias_cutoff: bool = False
    shift_to_zero: bool = False
    force_normalization: bool = False
    check_normalization: bool = True
    check_nonnegative: bool = True

    def __post_init__(self):
        if self.bias_cutoff and self.shift_to_zero:
            raise ConfigurationError(
                "using SHIFT_TO_ZERO with bias cutoff is not allowed")
        if self.bias_cutoff and self.force_normalization:
            raise ConfigurationError(
                "using NORMALIZE with bias cutoff is not allowed, the target "
                "distribution will be automatically normalized")
        if self.shift_to_zero and self.force_normalization:
            raise ConfigurationError(
                "using NORMALIZE with SHIFT_TO_ZERO is not needed, the target "
                "distribution will be automatically normalized")

    @classmethod
    def from_keywords(
        cls,
        *,
        bias_cutoff: bool = False,
        shift_to_zero: bool = False,
        normalize: bool = False,
    ) -> "PolicyFlags":
        # the cutoff-switched p(s) carries the derivative factor, so its
        # mass is not expected to be one
        check_normalization = not (bias_cutoff or normalize)
        return cls(
            bias_cutoff=bias_cutoff,
            shift_to_zero=shift_to_zero,
            force_normalization=normalize,
            check_normalization=check_normalization,
            check_nonnegative=not shift_to_zero,
        )


def plan_pipeline(
    flags: PolicyFlags,
    side: GridSide = GridSide.PRIMARY,
    n_modifiers: int = 0,
) -> Tuple[PipelineStep, ...]:
    """Return the ordered steps one update executes on *side*."""
    steps: List[PipelineStep] = [PipelineStep.UPDATE_GRID]
    if n_modifiers > 0:
        steps.append(PipelineStep.APPLY_MODIFIERS)
    if flags.bias_cutoff:
        steps.append(PipelineStep.BIAS_CUTOFF)
    elif flags.shift_to_zero:
        steps.append(PipelineStep.SHIFT_TO_ZERO)
    elif flags.force_normalization:
        steps.append(PipelineStep.FORCE_NORMALIZATION)
    if side is GridSide.PRIMARY:
        if flags.check_normalization and not flags.bias_cutoff:
            steps.append(PipelineStep.CHECK_NORMALIZATION)
        if flags.check_nonnegative:
            steps.append(PipelineStep.CHECK_NONNEGATIVE)
    return tuple(steps)


# ═══════════════════════════════════════════════════════════════════
# Trace
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StepRecord:
    """One executed pipeline step."""
    side: GridSide
    step: PipelineStep
    mass: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineTrace:
    """Ordered record of the steps executed by one ``update()`` call."""

    distribution: str
    records: List[StepRecord] = field(default_factory=list)

    def add(self, record: StepRecord) -> None:
        self.records.append(record)

    def steps(self, side: Optional[GridSide] = None) -> Tuple[PipelineStep, ...]:
        return tuple(
            r.step for r in self.records
            if side is None or r.side is side
        )

    def warnings(self) -> List[StepRecord]:
        """Check steps that flagged a problem."""
        return [r for r in self.records if r.details.get("warning")]

    def summary(self) -> str:
        parts = []
        for side in GridSide:
            steps = self.steps(side)
            if steps:
                parts.append(f"{side.value}: " + " → ".join(s.value for s in steps))
        return f"{self.distribution}: " + "; ".join(parts)
