"""TargetDistribution — owner of the grids and driver of the update pipeline.

One :class:`TargetDistribution` wraps one
:class:`~ves_targetdist.nodes.DistributionNode` and owns:

* the primary pair ``targetdist`` / ``log_targetdist``,
* optionally the mirrored pair ``reweight`` / ``log_reweight``,
* the registered modifiers and the policy flags.

Collaborator grids (bias, bias without cutoff, free energy and their
reweight counterparts) are linked by reference and never owned.

Lifecycle
---------
::

    UNCONFIGURED ──setup_grids()──▶ GRIDS_ALLOCATED ──update()──▶ UPDATED ─┐
                                        │                          ▲        │
                                 restart_from()                    └update()┘
    any state ──close()──▶ DESTROYED

Update pipeline
---------------
Each :meth:`TargetDistribution.update` executes
:func:`~ves_targetdist.pipeline.plan_pipeline` on the primary pair and,
when active, on the reweight pair.  The executed steps are recorded in
:attr:`TargetDistribution.last_trace`.

Usage
-----
>>> td = create_target_distribution("WELL_TEMPERED", bias_factor=10)
>>> td.setup_grids(["s1"], [-3.0], [3.0], [60])
>>> td.link_bias_context(BiasContext(beta=1.0))
>>> td.link_fes_grid(fes)
>>> td.update()
>>> td.targetdist_grid.values
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from .bias import BiasContext, FermiSwitchingFunction
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    NormalizationFailureError,
    RestartMismatchError,
    UsageError,
)
from .grid import Grid
from .gridio import read_grid, write_grid
from .modifiers import Modifier, WellTemperedModifier
from .nodes import DistributionNode
from .pipeline import (
    CollaboratorLinks,
    GridPair,
    GridSide,
    PipelineStep,
    PipelineTrace,
    PolicyFlags,
    StepRecord,
    plan_pipeline,
)
from .tolerances import DEFAULT_TOLERANCES, ToleranceRegistry

__all__ = [
    "EngineState",
    "TargetDistribution",
    "marginal_distribution",
]

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    UNCONFIGURED = "unconfigured"
    GRIDS_ALLOCATED = "grids_allocated"
    UPDATED = "updated"
    DESTROYED = "destroyed"


def marginal_distribution(grid: Grid, arg_names: Sequence[str]) -> Grid:
    """Marginal of a normalised distribution grid over *arg_names*.

    Raises
    ------
    ValueError
        For one-dimensional grids, or unless ``0 < len(arg_names) < dimension``.
    """
    if grid.dimension < 2:
        raise ValueError(
            "doesn't make sense calculating the marginal distribution for a "
            "one-dimensional distribution")
    if not 0 < len(arg_names) < grid.dimension:
        raise ValueError(
            "the number of arguments for the marginal distribution should be "
            "less than the dimension of the full distribution")
    return grid.project(arg_names, name=f"{grid.name}_marginal")


# ═══════════════════════════════════════════════════════════════════
# TargetDistribution
# ═══════════════════════════════════════════════════════════════════

class TargetDistribution:
    """A target distribution: one variant node plus its grids and policies.

    Parameters
    ----------
    node : DistributionNode
        The variant computing raw values.  Owned by the engine.
    bias_cutoff : float
        Bias cutoff value; ``0`` disables the cutoff.
    welltempered_factor : float
        γ of a :class:`WellTemperedModifier`; ``0`` registers none.
    shift_to_zero : bool
        Shift the minimum to zero and renormalise after each update.
    normalize : bool
        Force renormalisation after each update.
    tolerances : ToleranceRegistry, optional
        Check thresholds and switching parameters.

    Raises
    ------
    ConfigurationError
        For negative values, contradicting policies, or a policy the
        variant does not support.
    """

    def __init__(
        self,
        node: DistributionNode,
        *,
        bias_cutoff: float = 0.0,
        welltempered_factor: float = 0.0,
        shift_to_zero: bool = False,
        normalize: bool = False,
        tolerances: Optional[ToleranceRegistry] = None,
    ):
        self.node = node
        self.name = node.name
        self._t = tolerances or DEFAULT_TOLERANCES
        self.modifiers: List[Modifier] = []
        self.switching: Optional[FermiSwitchingFunction] = None

        if bias_cutoff < 0.0:
            raise ConfigurationError(
                f"{self.name}: negative value in BIAS_CUTOFF does not make sense")
        cutoff_active = bias_cutoff > 0.0
        self._require_policy("BIAS_CUTOFF", cutoff_active)
        if cutoff_active:
            self.switching = self._t.switching_function(bias_cutoff)

        if welltempered_factor < 0.0:
            raise ConfigurationError(
                f"{self.name}: negative value in WELLTEMPERED_FACTOR does not make sense")
        if welltempered_factor > 0.0:
            self._require_policy("WELLTEMPERED_FACTOR", True)
            if cutoff_active:
                raise ConfigurationError(
                    f"{self.name}: using WELLTEMPERED_FACTOR with bias cutoff is not allowed")
            self.modifiers.append(WellTemperedModifier(welltempered_factor))

        self._require_policy("SHIFT_TO_ZERO", shift_to_zero)
        self._require_policy("NORMALIZE", normalize)
        try:
            self.flags = PolicyFlags.from_keywords(
                bias_cutoff=cutoff_active,
                shift_to_zero=bool(shift_to_zero),
                normalize=bool(normalize),
            )
        except ConfigurationError as e:
            raise ConfigurationError(f"{self.name}: {e}") from e

        self.state = EngineState.UNCONFIGURED
        self._dimension = node.dimension
        self._pairs: Dict[GridSide, GridPair] = {}
        self._links: Dict[GridSide, CollaboratorLinks] = {
            GridSide.PRIMARY: CollaboratorLinks(),
            GridSide.REWEIGHT: CollaboratorLinks(),
        }
        self.context: Optional[BiasContext] = None
        self.last_trace: Optional[PipelineTrace] = None
        self.n_updates = 0

        self._handlers: Dict[PipelineStep, Callable[[GridPair], StepRecord]] = {
            PipelineStep.UPDATE_GRID: self._update_grid,
            PipelineStep.APPLY_MODIFIERS: self._apply_modifiers,
            PipelineStep.BIAS_CUTOFF: self._apply_bias_cutoff,
            PipelineStep.SHIFT_TO_ZERO: self._shift_to_zero,
            PipelineStep.FORCE_NORMALIZATION: self._force_normalization,
            PipelineStep.CHECK_NORMALIZATION: self._check_normalization,
            PipelineStep.CHECK_NONNEGATIVE: self._check_nonnegative,
        }

    def _require_policy(self, keyword: str, active: bool) -> None:
        if active and keyword not in self.node.policy_keywords:
            raise ConfigurationError(
                f"{self.name}: this target distribution does not support {keyword}")

    # ── declared nature ─────────────────────────────────────────

    @property
    def is_dynamic(self) -> bool:
        return self.node.is_dynamic or self.flags.bias_cutoff

    @property
    def is_static(self) -> bool:
        return not self.is_dynamic

    @property
    def needs_fes_grid(self) -> bool:
        return self.node.needs_fes_grid

    @property
    def needs_bias_grid(self) -> bool:
        return self.node.needs_bias_grid

    @property
    def needs_bias_without_cutoff_grid(self) -> bool:
        return self.node.needs_bias_without_cutoff_grid or self.flags.bias_cutoff

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def tolerances(self) -> ToleranceRegistry:
        return self._t

    @property
    def beta(self) -> float:
        if self.context is None:
            raise UsageError(f"{self.name}: the bias context has to be linked to use beta")
        return self.context.beta

    # ── grids ───────────────────────────────────────────────────

    @property
    def reweight_active(self) -> bool:
        return GridSide.REWEIGHT in self._pairs

    def grid_pair(self, side: GridSide = GridSide.PRIMARY) -> GridPair:
        if self.state is EngineState.DESTROYED:
            raise UsageError(f"{self.name}: the target distribution has been closed")
        try:
            return self._pairs[side]
        except KeyError:
            raise UsageError(
                f"{self.name}: the {side.value} grids have not been set up") from None

    @property
    def targetdist_grid(self) -> Grid:
        return self.grid_pair(GridSide.PRIMARY).grid

    @property
    def log_targetdist_grid(self) -> Grid:
        return self.grid_pair(GridSide.PRIMARY).log_grid

    @property
    def reweight_grid(self) -> Grid:
        return self.grid_pair(GridSide.REWEIGHT).grid

    @property
    def log_reweight_grid(self) -> Grid:
        return self.grid_pair(GridSide.REWEIGHT).log_grid

    def _check_not_destroyed(self) -> None:
        if self.state is EngineState.DESTROYED:
            raise UsageError(f"{self.name}: the target distribution has been closed")

    def _claim_dimension(self, dimension: int) -> None:
        if self._dimension == 0:
            self._dimension = dimension
        elif dimension != self._dimension:
            raise DimensionMismatchError(
                f"{self.name}: the target distribution has dimension "
                f"{self._dimension} but the grid has {dimension} arguments")

    def _allocate(self, side: GridSide, arg_names, minima, maxima, nbins, periodic) -> GridPair:
        prefix = "targetdist" if side is GridSide.PRIMARY else "reweight"
        grid = Grid.from_bounds(prefix, arg_names, minima, maxima, nbins, periodic)
        log_grid = Grid(f"log_{prefix}", grid.axes)
        pair = GridPair(side, grid, log_grid, self._links[side])
        self._pairs[side] = pair
        return pair

    def setup_grids(
        self,
        arg_names: Sequence[str],
        minima: Sequence[float],
        maxima: Sequence[float],
        nbins: Sequence[int],
        periodic: Optional[Sequence[bool]] = None,
    ) -> None:
        """Allocate the primary grids; fixes the dimension for good."""
        self._check_not_destroyed()
        if self.state is not EngineState.UNCONFIGURED:
            raise UsageError(f"{self.name}: the grids have already been set up")
        self._claim_dimension(len(arg_names))
        pair = self._allocate(GridSide.PRIMARY, arg_names, minima, maxima, nbins, periodic)
        self.state = EngineState.GRIDS_ALLOCATED
        logger.debug("%s: allocated %s grids %s", self.name, pair.side.value, pair.grid.shape)
        self.node.setup_additional_grids(self, pair)

    def setup_reweight_grids(
        self,
        arg_names: Sequence[str],
        minima: Sequence[float],
        maxima: Sequence[float],
        nbins: Sequence[int],
        periodic: Optional[Sequence[bool]] = None,
    ) -> None:
        """Allocate and activate the mirrored reweight grids."""
        self._check_not_destroyed()
        if self.state is EngineState.UNCONFIGURED:
            raise UsageError(
                f"{self.name}: set up the primary grids before the reweight grids")
        if self.reweight_active:
            raise UsageError(f"{self.name}: the reweight grids have already been set up")
        if len(arg_names) != self._dimension:
            raise DimensionMismatchError(
                f"{self.name}: reweight grid has {len(arg_names)} arguments, "
                f"the target distribution has dimension {self._dimension}")
        pair = self._allocate(GridSide.REWEIGHT, arg_names, minima, maxima, nbins, periodic)
        logger.debug("%s: allocated %s grids %s", self.name, pair.side.value, pair.grid.shape)
        self.node.setup_additional_grids(self, pair)

    # ── collaborator links ──────────────────────────────────────

    def link_bias_context(self, context: BiasContext) -> None:
        self._check_not_destroyed()
        self.context = context
        self.node.forward_context(context)

    def link_grid(self, kind: str, grid: Optional[Grid], side: GridSide = GridSide.PRIMARY) -> None:
        """Link (or unlink, with ``None``) a collaborator grid by kind name."""
        self._check_not_destroyed()
        if kind not in CollaboratorLinks.KINDS:
            raise ValueError(f"unknown collaborator grid {kind!r}; use one of {CollaboratorLinks.KINDS}")
        setattr(self._links[side], kind, grid)
        self.node.forward_link(kind, grid, side)

    def link_bias_grid(self, grid: Grid) -> None:
        self.link_grid("bias", grid)

    def link_bias_without_cutoff_grid(self, grid: Grid) -> None:
        self.link_grid("bias_without_cutoff", grid)

    def link_fes_grid(self, grid: Grid) -> None:
        self.link_grid("fes", grid)

    def link_bias_rw_grid(self, grid: Grid) -> None:
        self.link_grid("bias", grid, GridSide.REWEIGHT)

    def link_bias_without_cutoff_rw_grid(self, grid: Grid) -> None:
        self.link_grid("bias_without_cutoff", grid, GridSide.REWEIGHT)

    def link_fes_rw_grid(self, grid: Grid) -> None:
        self.link_grid("fes", grid, GridSide.REWEIGHT)

    # ── update pipeline ─────────────────────────────────────────

    def update(self) -> PipelineTrace:
        """Recompute the grids.  Returns the executed :class:`PipelineTrace`."""
        self._check_not_destroyed()
        if self.state is EngineState.UNCONFIGURED:
            raise UsageError(f"{self.name}: the grids have not been set up using setup_grids")
        trace = PipelineTrace(self.name)
        for side in (GridSide.PRIMARY, GridSide.REWEIGHT):
            pair = self._pairs.get(side)
            if pair is None:
                continue
            for step in plan_pipeline(self.flags, side, len(self.modifiers)):
                trace.add(self._handlers[step](pair))
        self.state = EngineState.UPDATED
        self.n_updates += 1
        self.last_trace = trace
        return trace

    def _update_grid(self, pair: GridPair) -> StepRecord:
        self.node.update_grid(self, pair)
        return StepRecord(pair.side, PipelineStep.UPDATE_GRID)

    def _apply_modifiers(self, pair: GridPair) -> StepRecord:
        masses = {}
        for modifier in self.modifiers:
            values = modifier.modify(pair.grid.values, pair.points)
            mass = pair.integrate(values)
            if not mass > 0.0:
                raise NormalizationFailureError(
                    f"{self.name}: integrating after the {modifier.name} modifier "
                    f"gives {mass:.6g}")
            pair.grid.set_values(values)
            pair.grid.scale(1.0 / mass)
            pair.refresh_log()
            masses[modifier.name] = mass
        return StepRecord(pair.side, PipelineStep.APPLY_MODIFIERS, details={"masses": masses})

    def _apply_bias_cutoff(self, pair: GridPair) -> StepRecord:
        bias = pair.collaborator("bias_without_cutoff", self.name)
        swf, deriv_factor = self.switching(bias.values)
        # the switching function multiplies p(s); the derivative factor
        # comes from the force of the switched bias
        values = pair.grid.values * swf
        mass = pair.integrate(values)
        if not mass > 0.0:
            raise NormalizationFailureError(
                f"{self.name}: integrating the bias-cutoff distribution gives {mass:.6g}")
        pair.grid.set_values(values * deriv_factor)
        pair.grid.scale(1.0 / mass)
        # the log grid keeps the unswitched distribution; the derivative
        # factor can be negative
        return StepRecord(pair.side, PipelineStep.BIAS_CUTOFF, mass=mass)

    def _shift_to_zero(self, pair: GridPair) -> StepRecord:
        shift = -pair.grid.min_value()
        pair.grid.set_min_to_zero()
        mass = pair.integrate()
        if not mass > 0.0:
            raise NormalizationFailureError(
                f"{self.name}: the distribution shifted to zero cannot be normalized, "
                f"integrating over the {pair.side.value} grid gives {mass:.6g}")
        pair.grid.scale(1.0 / mass)
        pair.refresh_log()
        return StepRecord(pair.side, PipelineStep.SHIFT_TO_ZERO, mass=mass,
                          details={"shift": shift})

    def _force_normalization(self, pair: GridPair) -> StepRecord:
        mass = pair.integrate()
        if not mass > 0.0:
            raise NormalizationFailureError(
                f"{self.name}: something went wrong trying to normalize the target "
                f"distribution, integrating over it gives {mass:.6g}")
        pair.grid.scale(1.0 / mass)
        return StepRecord(pair.side, PipelineStep.FORCE_NORMALIZATION, mass=mass)

    def _check_normalization(self, pair: GridPair) -> StepRecord:
        mass = pair.integrate()
        warn = self._t.mass_drifted(mass)
        if warn:
            logger.warning(
                "the target distribution grid in %s is not properly normalized, "
                "integrating over the grid gives: %.6g - You can avoid this problem "
                "by using the NORMALIZE keyword", self.name, mass)
        return StepRecord(pair.side, PipelineStep.CHECK_NORMALIZATION, mass=mass,
                          details={"warning": warn})

    def _check_nonnegative(self, pair: GridPair) -> StepRecord:
        minimum = pair.grid.min_value()
        warn = self._t.below_floor(minimum)
        if warn:
            logger.warning(
                "the target distribution grid in %s has negative values, the lowest "
                "value is: %.6g - You can avoid this problem by using the "
                "SHIFT_TO_ZERO keyword", self.name, minimum)
        return StepRecord(pair.side, PipelineStep.CHECK_NONNEGATIVE,
                          details={"warning": warn, "minimum": minimum})

    # ── restart, marginals, output ──────────────────────────────

    def restart_from(self, source: Union[Grid, str, Path]) -> None:
        """Load stored primary values before the first update.

        Parameters
        ----------
        source : Grid or path
            A grid, or a grid file written by :func:`~ves_targetdist.gridio.write_grid`.

        Raises
        ------
        RestartMismatchError
            If the file is missing or unreadable, or the point count differs.
        UsageError
            If called after the first update or before grid setup.
        """
        self._check_not_destroyed()
        if self.state is EngineState.UNCONFIGURED:
            raise UsageError(f"{self.name}: set up the grids before restarting")
        if self.state is EngineState.UPDATED:
            raise UsageError(
                f"{self.name}: restart loading must happen before the first update")
        if source is None:
            raise RestartMismatchError(
                f"{self.name}: problem with reading previous target distribution "
                "when restarting, no grid given")
        if isinstance(source, Grid):
            restart_grid = source
        else:
            try:
                restart_grid = read_grid(source)
            except FileNotFoundError as e:
                raise RestartMismatchError(
                    f"{self.name}: problem with reading previous target distribution "
                    f"when restarting, cannot find file {source}") from e
            except ValueError as e:
                raise RestartMismatchError(
                    f"{self.name}: problem with reading previous target distribution "
                    f"when restarting from {source}: {e}") from e
        pair = self.grid_pair(GridSide.PRIMARY)
        if restart_grid.size != pair.grid.size:
            raise RestartMismatchError(
                f"{self.name}: problem with reading previous target distribution when "
                f"restarting, the grid is not of the correct size ({restart_grid.size} "
                f"points, expected {pair.grid.size})")
        pair.grid.set_values(restart_grid.values)
        pair.refresh_log()
        logger.info("%s: restarted target distribution from %s", self.name,
                    source if not isinstance(source, Grid) else source.name)

    def marginal(self, arg_names: Sequence[str]) -> Grid:
        """Marginal of the primary grid over *arg_names*."""
        return marginal_distribution(self.targetdist_grid, arg_names)

    def value(self, point: Sequence[float]) -> float:
        """Pointwise value; only for static variants."""
        if self.is_dynamic:
            raise UsageError(
                f"{self.name} is a dynamic target distribution, "
                "its value cannot be evaluated pointwise")
        return self.node.value(point, self.targetdist_grid)

    def write_grids(self, directory: Union[str, Path], prefix: str = "") -> List[Path]:
        """Write every owned grid to ``directory/<prefix><grid name>.data``."""
        directory = Path(directory)
        paths = []
        for pair in self._pairs.values():
            for grid in (pair.grid, pair.log_grid):
                paths.append(write_grid(grid, directory / f"{prefix}{grid.name}.data"))
        return paths

    def write_marginals(self, directory: Union[str, Path], prefix: str = "") -> List[Path]:
        """Write the 1-D marginal of every argument of the primary grid."""
        directory = Path(directory)
        grid = self.targetdist_grid
        if grid.dimension < 2:
            return []
        return [
            write_grid(self.marginal([arg]), directory / f"{prefix}{grid.name}.proj-{arg}.data")
            for arg in grid.arg_names
        ]

    # ── teardown / description ──────────────────────────────────

    def close(self) -> None:
        """Release grids and owned children; collaborator grids are left alone."""
        if self.state is EngineState.DESTROYED:
            return
        self.node.close()
        self._pairs.clear()
        for links in self._links.values():
            links.clear()
        self.context = None
        self.state = EngineState.DESTROYED

    def description(self) -> str:
        parts = [f"Type: {self.name}"]
        for key, val in self.node.describe().items():
            parts.append(f"{key}={val}")
        if self.modifiers:
            parts.append("modifiers=" + ",".join(repr(m) for m in self.modifiers))
        if self.flags.bias_cutoff:
            parts.append(f"bias_cutoff={self.switching.cutoff:g}")
        if self.flags.shift_to_zero:
            parts.append("shift_to_zero")
        if self.flags.force_normalization:
            parts.append("normalize")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (f"TargetDistribution({self.name!r}, state={self.state.value}, "
                f"dimension={self._dimension}, dynamic={self.is_dynamic})")
