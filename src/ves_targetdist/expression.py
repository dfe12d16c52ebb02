"""MATHEVAL_DIST — target distribution from an arithmetic expression.

.. math::

    p(\\mathbf{s}) = \\frac{f(\\mathbf{s})}{\\int d\\mathbf{s}\\, f(\\mathbf{s})}

The expression may use only these variables:

* ``s1``, ``s2``, … — the grid coordinates (an argument that does not
  appear is treated as uniform),
* ``FE`` — the linked free-energy estimate; makes the distribution
  dynamic,
* ``beta`` and ``kBT`` — inverse temperature and thermal energy from
  the linked bias context.

Functions: ``exp log sqrt abs sin cos tan sinh cosh tanh erf erfc min
max pow``; constants ``pi`` and ``e``; ``^`` is accepted as power.
Anything else is rejected when the distribution is constructed.

``exp(-(beta/10.0)*FE)`` reproduces ``WELL_TEMPERED BIASFACTOR=10``.

The expression is parsed with :mod:`ast` and evaluated over the whole
grid at once with numpy; attribute access, subscripts, keyword
arguments and every other Python construct are refused.
"""

from __future__ import annotations

import ast
import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, List, Set, Union

import numpy as np
from scipy.special import erf, erfc

from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    NegativeValueError,
    NormalizationFailureError,
    UsageError,
)
from .nodes import DistributionNode
from .pipeline import GridPair

if TYPE_CHECKING:
    from .engine import TargetDistribution

__all__ = [
    "Expression",
    "ExpressionDistribution",
    "FUNCTIONS",
    "ARITY",
    "CONSTANTS",
]

logger = logging.getLogger(__name__)

Number = Union[float, np.ndarray]

FUNCTIONS: Dict[str, Callable[..., Number]] = {
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "abs": np.abs,
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "sinh": np.sinh,
    "cosh": np.cosh,
    "tanh": np.tanh,
    "erf": erf,
    "erfc": erfc,
    "min": np.minimum,
    "max": np.maximum,
    "pow": np.power,
}

# positional argument count of each function; numpy ufuncs read an
# extra argument as the output buffer
ARITY: Dict[str, int] = {name: 1 for name in FUNCTIONS}
ARITY.update({"min": 2, "max": 2, "pow": 2})

CONSTANTS: Dict[str, float] = {
    "pi": float(np.pi),
    "e": float(np.e),
}

_BIN_OPS: Dict[type, Callable[[Number, Number], Number]] = {
    ast.Add: np.add,
    ast.Sub: np.subtract,
    ast.Mult: np.multiply,
    ast.Div: np.divide,
    ast.Pow: np.power,
}

_UNARY_OPS: Dict[type, Callable[[Number], Number]] = {
    ast.UAdd: np.positive,
    ast.USub: np.negative,
}


# ═══════════════════════════════════════════════════════════════════
# Expression — restricted, vectorised arithmetic
# ═══════════════════════════════════════════════════════════════════

class Expression:
    """A validated arithmetic expression over named variables.

    Parameters
    ----------
    text : str
        The expression, e.g. ``"(s1+20)^2*exp(-(s1+20)^2/(2*10.0^2))"``.

    Raises
    ------
    ConfigurationError
        If the text does not parse or uses a forbidden construct.
    """

    def __init__(self, text: str):
        self.text = text
        try:
            self._tree = ast.parse(text.replace("^", "**").strip(), mode="eval")
        except SyntaxError as e:
            raise ConfigurationError(f"cannot parse expression {text!r}: {e.msg}") from e
        names: Set[str] = set()
        self._check(self._tree.body, names)
        self.variables: FrozenSet[str] = frozenset(names)

    def _check(self, node: ast.AST, names: Set[str]) -> None:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ConfigurationError(
                    f"only numeric constants are allowed in {self.text!r}")
            return
        if isinstance(node, ast.Name):
            if node.id not in CONSTANTS:
                names.add(node.id)
            return
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BIN_OPS:
                raise ConfigurationError(
                    f"operator {type(node.op).__name__} is not allowed in {self.text!r}")
            self._check(node.left, names)
            self._check(node.right, names)
            return
        if isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY_OPS:
                raise ConfigurationError(
                    f"operator {type(node.op).__name__} is not allowed in {self.text!r}")
            self._check(node.operand, names)
            return
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                label = node.func.id if isinstance(node.func, ast.Name) else ast.dump(node.func)
                raise ConfigurationError(f"unknown function {label} in {self.text!r}")
            if node.keywords or any(isinstance(a, ast.Starred) for a in node.args):
                raise ConfigurationError(
                    f"only positional arguments are allowed in {self.text!r}")
            expected = ARITY[node.func.id]
            if len(node.args) != expected:
                raise ConfigurationError(
                    f"function {node.func.id} takes {expected} argument"
                    f"{'' if expected == 1 else 's'}, got {len(node.args)} in {self.text!r}")
            for arg in node.args:
                self._check(arg, names)
            return
        raise ConfigurationError(
            f"unsupported expression element {type(node).__name__} in {self.text!r}")

    def evaluate(self, variables: Dict[str, Number]) -> Number:
        """Evaluate with numpy broadcasting over array-valued variables."""
        missing = self.variables - set(variables)
        if missing:
            raise UsageError(f"no value for {sorted(missing)} in {self.text!r}")
        return self._eval(self._tree.body, variables)

    def _eval(self, node: ast.AST, variables: Dict[str, Number]) -> Number:
        if isinstance(node, ast.Constant):
            return float(node.value)
        if isinstance(node, ast.Name):
            if node.id in CONSTANTS:
                return CONSTANTS[node.id]
            return variables[node.id]
        if isinstance(node, ast.BinOp):
            return _BIN_OPS[type(node.op)](
                self._eval(node.left, variables), self._eval(node.right, variables))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand, variables))
        # only validated calls remain
        args = [self._eval(a, variables) for a in node.args]
        return FUNCTIONS[node.func.id](*args)

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"


# ═══════════════════════════════════════════════════════════════════
# MATHEVAL_DIST
# ═══════════════════════════════════════════════════════════════════

_CV_VARIABLE = re.compile(r"^s([1-9][0-9]*)$")


class ExpressionDistribution(DistributionNode):
    """Target distribution given by an arbitrary non-negative expression.

    Parameters
    ----------
    function : str
        Expression over the whitelisted variables (see module docstring).
    """

    name = "MATHEVAL_DIST"
    policy_keywords = frozenset({"BIAS_CUTOFF", "WELLTEMPERED_FACTOR", "SHIFT_TO_ZERO"})

    FES_VARIABLE = "FE"
    KBT_VARIABLE = "kBT"
    BETA_VARIABLE = "beta"

    def __init__(self, function: str):
        super().__init__()
        self.expression = Expression(function)
        cv_idx: List[int] = []
        self.use_fes = False
        self.use_kbt = False
        self.use_beta = False
        for var in sorted(self.expression.variables):
            m = _CV_VARIABLE.match(var)
            if m:
                cv_idx.append(int(m.group(1)) - 1)
            elif var == self.FES_VARIABLE:
                self.use_fes = True
                self._set_dynamic()
                self._set_fes_grid_needed()
            elif var == self.KBT_VARIABLE:
                self.use_kbt = True
            elif var == self.BETA_VARIABLE:
                self.use_beta = True
            else:
                raise ConfigurationError(
                    f"{self.name}: problem with parsing the function "
                    f"{function!r}, cannot recognise the variable {var}")
        self.cv_indices = sorted(cv_idx)
        logger.debug("%s: parsed %r (variables: %s)", self.name, function,
                     ", ".join(sorted(self.expression.variables)) or "none")

    @classmethod
    def from_keywords(cls, reader, registry):
        return cls(reader.parse("FUNCTION", str))

    def setup_additional_grids(self, engine: "TargetDistribution", pair: GridPair) -> None:
        if self.cv_indices and self.cv_indices[-1] >= engine.dimension:
            raise DimensionMismatchError(
                f"{self.name}: the function uses s{self.cv_indices[-1] + 1} but "
                f"the target distribution has dimension {engine.dimension}")

    def value(self, point, grid):
        raise UsageError(f"pointwise evaluation is not available for {self.name}")

    def update_grid(self, engine: "TargetDistribution", pair: GridPair) -> None:
        shifted = engine.flags.shift_to_zero
        variables: Dict[str, Number] = {}
        points = pair.points
        for k in self.cv_indices:
            variables[f"s{k + 1}"] = points[:, k]
        if self.use_fes:
            variables[self.FES_VARIABLE] = pair.collaborator("fes", self.name).values
        if self.use_kbt:
            variables[self.KBT_VARIABLE] = 1.0 / engine.beta
        if self.use_beta:
            variables[self.BETA_VARIABLE] = engine.beta

        with np.errstate(all="ignore"):
            raw = self.expression.evaluate(variables)
        values = np.broadcast_to(np.asarray(raw, dtype=float), (pair.grid.size,)).copy()

        if not np.all(np.isfinite(values)):
            raise NormalizationFailureError(
                f"{self.name}: the function gives non-finite values on the "
                f"{pair.side.value} grid")
        if not shifted and np.any(values < 0.0):
            raise NegativeValueError(
                f"{self.name}: the function gives negative values on the "
                f"{pair.side.value} grid (minimum {values.min():.6g}). Change the "
                "function or use SHIFT_TO_ZERO")

        pair.grid.set_values(values)
        mass = pair.integrate()
        if mass > 0.0:
            pair.grid.scale(1.0 / mass)
        elif not shifted:
            raise NormalizationFailureError(
                f"{self.name}: the function cannot be normalized, integrating "
                f"over the {pair.side.value} grid gives {mass:.6g}. Change the "
                "function or use SHIFT_TO_ZERO")
        pair.refresh_log()

    def describe(self) -> Dict[str, Any]:
        return {"function": self.expression.text}
