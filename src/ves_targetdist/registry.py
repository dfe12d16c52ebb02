"""TargetDistributionRegister — name-keyed table of distribution variants.

The set of variants is closed and listed explicitly in
:data:`BUILTIN_VARIANTS`.  A register maps the upper-case type name to
its :class:`~ves_targetdist.nodes.DistributionNode` subclass and builds
complete :class:`~ves_targetdist.engine.TargetDistribution` objects,
either from Python keyword arguments or from construction words::

    >>> reg = target_distribution_register()
    >>> reg.names()
    ['GAUSSIAN', 'LINEAR_COMBINATION', 'MATHEVAL_DIST', 'UNIFORM', 'WELL_TEMPERED']
    >>> td = reg.create("GAUSSIAN", centers=[[0.0]], sigmas=[[0.2]], normalize=True)
    >>> td = reg.create_from_words("GAUSSIAN CENTER=0.0 SIGMA=0.2 NORMALIZE")

Composite variants resolve their children through the same register, so
nesting works to any depth::

    LINEAR_COMBINATION
        DISTRIBUTION1={GAUSSIAN CENTER=-1 SIGMA=0.3}
        DISTRIBUTION2={WELL_TEMPERED BIASFACTOR=5}
        WEIGHTS=2,1
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Type, Union

from .combination import LinearCombination
from .engine import TargetDistribution
from .errors import ConfigurationError
from .expression import ExpressionDistribution
from .keywords import KeywordReader, split_words
from .nodes import DistributionNode, GaussianDistribution, UniformDistribution
from .tolerances import ToleranceRegistry
from .welltempered import WellTemperedDistribution

__all__ = [
    "BUILTIN_VARIANTS",
    "TargetDistributionRegister",
    "target_distribution_register",
    "create_target_distribution",
]

logger = logging.getLogger(__name__)

BUILTIN_VARIANTS: Dict[str, Type[DistributionNode]] = {
    UniformDistribution.name: UniformDistribution,
    GaussianDistribution.name: GaussianDistribution,
    LinearCombination.name: LinearCombination,
    ExpressionDistribution.name: ExpressionDistribution,
    WellTemperedDistribution.name: WellTemperedDistribution,
}


# ═══════════════════════════════════════════════════════════════════
# TargetDistributionRegister
# ═══════════════════════════════════════════════════════════════════

class TargetDistributionRegister:
    """Mapping of type name → node class.

    Parameters
    ----------
    variants : dict, optional
        Initial table.  :data:`BUILTIN_VARIANTS` by default.
    tolerances : ToleranceRegistry, optional
        Passed to every engine this register builds.
    """

    def __init__(
        self,
        variants: Optional[Dict[str, Type[DistributionNode]]] = None,
        tolerances: Optional[ToleranceRegistry] = None,
    ):
        self._variants: Dict[str, Type[DistributionNode]] = dict(
            BUILTIN_VARIANTS if variants is None else variants)
        self.tolerances = tolerances

    def __contains__(self, name: str) -> bool:
        return name in self._variants

    def __len__(self) -> int:
        return len(self._variants)

    def __repr__(self) -> str:
        return f"TargetDistributionRegister({self.names()})"

    def names(self) -> List[str]:
        return sorted(self._variants)

    def add(self, node_class: Type[DistributionNode]) -> None:
        """Register *node_class* under its ``name``.

        Raises
        ------
        ConfigurationError
            If the name is empty or already taken by another class.
        """
        name = node_class.name
        if not name:
            raise ConfigurationError(f"{node_class.__name__} has no type name")
        existing = self._variants.get(name)
        if existing is not None and existing is not node_class:
            raise ConfigurationError(
                f"target distribution {name} is already registered "
                f"({existing.__name__})")
        self._variants[name] = node_class

    def register(self, node_class: Type[DistributionNode]) -> Type[DistributionNode]:
        """Class decorator form of :meth:`add`."""
        self.add(node_class)
        return node_class

    def lookup(self, name: str) -> Type[DistributionNode]:
        try:
            return self._variants[name]
        except KeyError:
            raise ConfigurationError(
                f"unknown target distribution {name!r}; available: "
                + ", ".join(self.names())) from None

    def keywords(self, name: str) -> List[str]:
        """Policy keywords accepted by the variant *name*."""
        return sorted(self.lookup(name).policy_keywords)

    # ── construction ────────────────────────────────────────────

    def create(
        self,
        name: str,
        *,
        bias_cutoff: float = 0.0,
        welltempered_factor: float = 0.0,
        shift_to_zero: bool = False,
        normalize: bool = False,
        **params,
    ) -> TargetDistribution:
        """Build a distribution from Python arguments.

        *params* go to the node class constructor; the policy arguments
        go to the engine.
        """
        node_class = self.lookup(name)
        try:
            node = node_class(**params)
        except TypeError as e:
            raise ConfigurationError(f"{name}: {e}") from e
        return TargetDistribution(
            node,
            bias_cutoff=bias_cutoff,
            welltempered_factor=welltempered_factor,
            shift_to_zero=shift_to_zero,
            normalize=normalize,
            tolerances=self.tolerances,
        )

    def create_from_words(self, words: Union[str, Sequence[str]]) -> TargetDistribution:
        """Build a distribution from construction words.

        The first word is the type name.  Only the policy keywords the
        variant supports are consumed; an unsupported one is reported
        together with every other unread word.
        """
        if isinstance(words, str):
            words = split_words(words)
        if not words:
            raise ConfigurationError("no target distribution type given")
        name, rest = words[0], list(words[1:])
        node_class = self.lookup(name)
        reader = KeywordReader(name, rest)

        accepted = node_class.policy_keywords
        policies = {
            "bias_cutoff": reader.parse("BIAS_CUTOFF", float, optional=True, default=0.0)
            if "BIAS_CUTOFF" in accepted else 0.0,
            "welltempered_factor": reader.parse("WELLTEMPERED_FACTOR", float, optional=True, default=0.0)
            if "WELLTEMPERED_FACTOR" in accepted else 0.0,
            "shift_to_zero": reader.parse_flag("SHIFT_TO_ZERO")
            if "SHIFT_TO_ZERO" in accepted else False,
            "normalize": reader.parse_flag("NORMALIZE")
            if "NORMALIZE" in accepted else False,
        }
        node = node_class.from_keywords(reader, self)
        reader.check_read()
        logger.debug("created %s from %d words", name, len(words))
        return TargetDistribution(node, tolerances=self.tolerances, **policies)


_DEFAULT_REGISTER: Optional[TargetDistributionRegister] = None


def target_distribution_register() -> TargetDistributionRegister:
    """The process-wide register holding the builtin variants."""
    global _DEFAULT_REGISTER
    if _DEFAULT_REGISTER is None:
        _DEFAULT_REGISTER = TargetDistributionRegister()
    return _DEFAULT_REGISTER


def create_target_distribution(
    name_or_words: Union[str, Sequence[str]],
    **kwargs,
) -> TargetDistribution:
    """Build a distribution through the process-wide register.

    A bare type name with keyword arguments goes through
    :meth:`TargetDistributionRegister.create`; a string with more than
    one word (or a word list) goes through
    :meth:`TargetDistributionRegister.create_from_words`.
    """
    register = target_distribution_register()
    if isinstance(name_or_words, str):
        words = split_words(name_or_words)
        if len(words) == 1:
            return register.create(words[0], **kwargs)
    else:
        words = list(name_or_words)
    if kwargs:
        raise ConfigurationError(
            "keyword arguments cannot be combined with construction words")
    return register.create_from_words(words)
