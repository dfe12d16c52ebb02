"""Exception taxonomy for target-distribution construction and updates.

Every fatal condition raised by the package derives from
:class:`TargetDistributionError`.  Each subclass also derives from the
closest built-in exception so callers that only know about
``ValueError`` / ``RuntimeError`` keep working.

=========================  =================================  ============
Class                      Trigger                            Raised at
=========================  =================================  ============
ConfigurationError         malformed or contradictory input   construction
DimensionMismatchError     child / grid dimension conflict    grid setup
NormalizationFailureError  integrated mass <= 0               update
NegativeValueError         raw cell value < 0                 update
RestartMismatchError       missing or mis-sized restart grid  restart
UsageError                 lifecycle misuse, missing link     first use
=========================  =================================  ============

After any of these the engine's grids must be treated as invalid.
"""

from __future__ import annotations

__all__ = [
    "TargetDistributionError",
    "ConfigurationError",
    "DimensionMismatchError",
    "NormalizationFailureError",
    "NegativeValueError",
    "RestartMismatchError",
    "UsageError",
]


class TargetDistributionError(Exception):
    """Base class for all fatal target-distribution errors."""


class ConfigurationError(TargetDistributionError, ValueError):
    """Construction parameters are malformed or contradict each other."""


class DimensionMismatchError(TargetDistributionError, ValueError):
    """Grids or child distributions disagree on the dimension."""


class NormalizationFailureError(TargetDistributionError, ArithmeticError):
    """Integrating the distribution gave a non-positive mass."""


class NegativeValueError(TargetDistributionError, ValueError):
    """A raw distribution value is negative."""


class RestartMismatchError(TargetDistributionError):
    """The stored grid for a restart is missing or has the wrong size."""


class UsageError(TargetDistributionError, RuntimeError):
    """The engine was driven out of order or a collaborator is missing."""
