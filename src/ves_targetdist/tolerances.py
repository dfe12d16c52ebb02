"""ToleranceRegistry — the numbers behind the sanity checks and the cutoff.

Four tolerances steer the update pipeline:

==============================  =======  ========================================
Key                             Default  Used by
==============================  =======  ========================================
``normalization.drift``         0.1      CHECK_NORMALIZATION warns if |mass-1| >
``nonnegative.floor``           -0.02    CHECK_NONNEGATIVE warns below this
``bias_cutoff.fermi_lambda``    10.0     steepness of the Fermi switching function
``bias_cutoff.fermi_exp_max``   100.0    clamp on the Fermi exponent
==============================  =======  ========================================

A registry always holds exactly these keys, each validated on
construction, and is immutable; :meth:`ToleranceRegistry.replace`
returns a new one.  The engine asks it the domain questions directly
(:meth:`~ToleranceRegistry.mass_drifted`,
:meth:`~ToleranceRegistry.below_floor`,
:meth:`~ToleranceRegistry.switching_function`).

Usage
-----
>>> strict = DEFAULT_TOLERANCES.replace({"normalization.drift": 0.01}, name="strict")
>>> td = TargetDistribution(node, tolerances=strict)
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, Optional, Tuple

from .bias import FermiSwitchingFunction
from .errors import ConfigurationError

__all__ = [
    "ToleranceRegistry",
    "DEFAULT_TOLERANCES",
]

# key -> (condition, description of the condition)
_RULES: Dict[str, Tuple[Callable[[float], bool], str]] = {
    "normalization.drift": (lambda v: 0.0 < v < 1.0, "between 0 and 1"),
    "nonnegative.floor": (lambda v: v <= 0.0, "zero or negative"),
    "bias_cutoff.fermi_lambda": (lambda v: v > 0.0, "positive"),
    "bias_cutoff.fermi_exp_max": (lambda v: v > 0.0, "positive"),
}


# ═══════════════════════════════════════════════════════════════════
# ToleranceRegistry
# ═══════════════════════════════════════════════════════════════════

class ToleranceRegistry:
    """Validated, immutable set of pipeline tolerances.

    Parameters
    ----------
    data : dict[str, float]
        One value for every key of the table above.
    name : str, optional
        Label shown in ``repr`` (e.g. ``"production"``).

    Raises
    ------
    ConfigurationError
        If a key is missing or unknown, or a value is out of range.
    """

    def __init__(self, data: Dict[str, float], *, name: str = "custom"):
        unknown = sorted(set(data) - set(_RULES))
        if unknown:
            raise ConfigurationError(
                f"unknown tolerance key(s) {unknown}; valid keys: {sorted(_RULES)}")
        missing = sorted(set(_RULES) - set(data))
        if missing:
            raise ConfigurationError(f"tolerance registry {name!r} is missing {missing}")
        self._data: Dict[str, float] = {}
        for key, value in data.items():
            value = float(value)
            ok, expected = _RULES[key]
            if not ok(value):
                raise ConfigurationError(f"tolerance {key} must be {expected}, got {value:g}")
            self._data[key] = value
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def __getitem__(self, key: str) -> float:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ToleranceRegistry):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        values = ", ".join(f"{k}={v:g}" for k, v in self._data.items())
        return f"ToleranceRegistry({self._name!r}, {values})"

    def replace(
        self,
        overrides: Dict[str, float],
        *,
        name: Optional[str] = None,
    ) -> "ToleranceRegistry":
        """Return a new registry with selected tolerances overridden."""
        merged = dict(self._data)
        merged.update(overrides)
        return ToleranceRegistry(merged, name=name or (self._name + "+"))

    # ── questions asked by the pipeline ─────────────────────────

    def mass_drifted(self, mass: float) -> bool:
        """True if *mass* is further from 1 than ``normalization.drift``."""
        drift = self._data["normalization.drift"]
        return mass < 1.0 - drift or mass > 1.0 + drift

    def below_floor(self, minimum: float) -> bool:
        """True if *minimum* is below ``nonnegative.floor``."""
        return minimum < self._data["nonnegative.floor"]

    def switching_function(self, cutoff: float) -> FermiSwitchingFunction:
        """Fermi switching function for *cutoff* with these parameters."""
        return FermiSwitchingFunction(
            cutoff,
            fermi_lambda=self._data["bias_cutoff.fermi_lambda"],
            exp_max=self._data["bias_cutoff.fermi_exp_max"],
        )


# ═══════════════════════════════════════════════════════════════════
# DEFAULT_TOLERANCES
# ═══════════════════════════════════════════════════════════════════

DEFAULT_TOLERANCES: ToleranceRegistry = ToleranceRegistry(
    {
        "normalization.drift": 0.1,
        "nonnegative.floor": -0.02,
        "bias_cutoff.fermi_lambda": 10.0,
        "bias_cutoff.fermi_exp_max": 100.0,
    },
    name="production",
)
"""The production tolerance registry."""
