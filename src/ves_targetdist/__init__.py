"""ves-targetdist: grid-based target distributions for variationally enhanced sampling.

Builds, updates, normalises and composes a multidimensional target
distribution p(s) over a rectangular grid, together with its
``-log p`` companion grid and an optional mirrored reweight grid.

Variants: ``UNIFORM``, ``GAUSSIAN``, ``LINEAR_COMBINATION``,
``MATHEVAL_DIST`` (analytic expression) and the adaptive
``WELL_TEMPERED``.  Every update runs the fixed pipeline of
:mod:`ves_targetdist.pipeline` and leaves a trace of the executed steps.

>>> from ves_targetdist import create_target_distribution
>>> td = create_target_distribution("GAUSSIAN CENTER=0.0 SIGMA=0.5 NORMALIZE")
>>> td.setup_grids(["s1"], [-3.0], [3.0], [120])
>>> td.update().steps()
"""
from .errors import (
    TargetDistributionError, ConfigurationError, DimensionMismatchError,
    NormalizationFailureError, NegativeValueError, RestartMismatchError,
    UsageError,
)
from .grid import Axis, Grid
from .integration import integration_weights, integrate_grid, normalize_grid
from .tolerances import ToleranceRegistry, DEFAULT_TOLERANCES
from .bias import BiasContext, FermiSwitchingFunction
from .modifiers import Modifier, WellTemperedModifier
from .pipeline import (
    GridSide, PipelineStep, PolicyFlags, CollaboratorLinks, GridPair,
    StepRecord, PipelineTrace, plan_pipeline,
)
from .nodes import DistributionNode, UniformDistribution, GaussianDistribution
from .combination import LinearCombination
from .expression import Expression, ExpressionDistribution
from .welltempered import WellTemperedDistribution
from .engine import EngineState, TargetDistribution, marginal_distribution
from .keywords import KeywordReader, split_words
from .registry import (
    BUILTIN_VARIANTS, TargetDistributionRegister,
    target_distribution_register, create_target_distribution,
)
from .gridio import format_grid, parse_grid, write_grid, read_grid

__version__ = "0.1.0"

__all__ = [
    # errors
    "TargetDistributionError",
    "ConfigurationError",
    "DimensionMismatchError",
    "NormalizationFailureError",
    "NegativeValueError",
    "RestartMismatchError",
    "UsageError",
    # grids
    "Axis",
    "Grid",
    "integration_weights",
    "integrate_grid",
    "normalize_grid",
    # configuration
    "ToleranceRegistry",
    "DEFAULT_TOLERANCES",
    "BiasContext",
    "FermiSwitchingFunction",
    # pipeline
    "Modifier",
    "WellTemperedModifier",
    "GridSide",
    "PipelineStep",
    "PolicyFlags",
    "CollaboratorLinks",
    "GridPair",
    "StepRecord",
    "PipelineTrace",
    "plan_pipeline",
    # variants
    "DistributionNode",
    "UniformDistribution",
    "GaussianDistribution",
    "LinearCombination",
    "Expression",
    "ExpressionDistribution",
    "WellTemperedDistribution",
    # engine
    "EngineState",
    "TargetDistribution",
    "marginal_distribution",
    # construction
    "KeywordReader",
    "split_words",
    "BUILTIN_VARIANTS",
    "TargetDistributionRegister",
    "target_distribution_register",
    "create_target_distribution",
    # files
    "format_grid",
    "parse_grid",
    "write_grid",
    "read_grid",
]
