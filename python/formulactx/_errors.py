"""Formula error types that double as propagating error values."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from formulactx._functions import FunctionSpec


class FormulaError(Exception):
    """Base class for name-resolution and argument errors in formulas.

    Instances are raised on the direct-evaluation path.  Inside compiled
    formulas they are also carried around as *values*: a deferred error
    flows through calls and operators until it reaches the artifact
    boundary, where it is raised.
    """

    def __init__(self, name: str, message: str | None = None) -> None:
        self.name = name
        super().__init__(message or name)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FormulaError):
            return type(self) is type(other) and self.name == other.name
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.name))


class VarReferenceError(FormulaError):
    """An identifier matched none of the constant, environment or instance scopes."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"Unrecognized variable: {name}")


class FuncReferenceError(FormulaError):
    """A function name matched none of the built-in, host-math or client scopes."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"Unrecognized function: {name}")


class FuncArgsError(FormulaError):
    """A resolved function was called with an argument count outside its bounds."""

    def __init__(self, name: str, spec: FunctionSpec, bound: str = "min") -> None:
        self.spec = spec
        self.bound = bound
        if spec.max_args is None:
            expected = f"at least {spec.min_args}"
        elif spec.min_args == spec.max_args:
            expected = f"exactly {spec.min_args}"
        else:
            expected = f"{spec.min_args} to {spec.max_args}"
        super().__init__(name, f"{name}() expects {expected} argument(s)")

    @property
    def min_args(self) -> int:
        return self.spec.min_args

    @property
    def max_args(self) -> int | None:
        return self.spec.max_args


def is_error(val: Any) -> bool:
    """Return True if *val* is a FormulaError instance."""
    return isinstance(val, FormulaError)


def first_error(*values: Any) -> FormulaError | None:
    """Return the first FormulaError found in *values*, or None."""
    for v in values:
        if isinstance(v, FormulaError):
            return v
    return None
