"""Compiled formula representation.

Compilation turns an expression tree into a tree of small IR nodes.  Each
node is evaluated with two scopes:

* ``compile_scope`` -- the owning :class:`~formulactx.FormulaContext`,
  which exposes the function libraries, the instance variables and the
  random number generator;
* ``eval_scope`` -- a mapping of environment variables supplied per call.

Nodes never raise for formula errors.  They return a
:class:`~formulactx.FormulaError` instance as their value instead, and the
error propagates through calls and operators up to the
:class:`CompiledFormula` boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Union

from formulactx._errors import FormulaError, FuncReferenceError, VarReferenceError, first_error
from formulactx._functions import FunctionScope, _coerce_string, _host_pow, _to_number, _truthy

if TYPE_CHECKING:
    from formulactx._context import FormulaContext


class VarScope(str, Enum):
    ENVIRONMENT = "environment"
    INSTANCE = "instance"


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _divide(left: float, right: float) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)
    return left / right


def _remainder(left: float, right: float) -> float:
    if right == 0 or math.isinf(left):
        return math.nan
    return math.fmod(left, right)


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic or string binary operation."""
    err = first_error(left, right)
    if err is not None:
        return err
    if op == "&":
        return _coerce_string(left) + _coerce_string(right)
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return _coerce_string(left) + _coerce_string(right)
    lf, rf = _to_number(left), _to_number(right)
    if op == "+":
        return lf + rf
    if op == "-":
        return lf - rf
    if op == "*":
        return lf * rf
    if op == "/":
        return _divide(lf, rf)
    if op == "%":
        return _remainder(lf, rf)
    if op == "^":
        return _host_pow([lf, rf])
    raise ValueError(f"Unknown binary operator: {op!r}")


def _compare(left: Any, right: Any, op: str) -> Any:
    """Evaluate a comparison operation.

    Two strings compare as strings; any other pairing compares numerically.
    """
    err = first_error(left, right)
    if err is not None:
        return err
    if isinstance(left, str) and isinstance(right, str):
        lv: Any = left
        rv: Any = right
    else:
        lv, rv = _to_number(left), _to_number(right)
    if op in ("=", "=="):
        return lv == rv
    if op in ("<>", "!="):
        return lv != rv
    if op == ">":
        return lv > rv
    if op == "<":
        return lv < rv
    if op == ">=":
        return lv >= rv
    if op == "<=":
        return lv <= rv
    raise ValueError(f"Unknown comparison operator: {op!r}")


def _unary_op(op: str, operand: Any) -> Any:
    if isinstance(operand, FormulaError):
        return operand
    if op == "-":
        return -_to_number(operand)
    if op == "+":
        return _to_number(operand)
    if op in ("!", "not"):
        return not _truthy(operand)
    raise ValueError(f"Unknown unary operator: {op!r}")


ARITHMETIC_OPS = frozenset({"+", "-", "*", "/", "%", "^", "&"})
COMPARISON_OPS = frozenset({"=", "==", "<>", "!=", ">", "<", ">=", "<="})
LOGICAL_OPS = frozenset({"and", "&&", "or", "||"})
UNARY_OPS = frozenset({"-", "+", "!", "not"})


def apply_operator(op: str, operands: list[Any]) -> Any:
    """Apply a unary or binary operator to already-evaluated operands."""
    if len(operands) == 1:
        return _unary_op(op, operands[0])
    left, right = operands
    if op in COMPARISON_OPS:
        return _compare(left, right, op)
    if op in LOGICAL_OPS:
        err = first_error(left, right)
        if err is not None:
            return err
        if op in ("and", "&&"):
            return right if _truthy(left) else left
        return left if _truthy(left) else right
    return _binary_op(left, op, right)


# ---------------------------------------------------------------------------
# IR nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Constant:
    value: Any

    def evaluate(self, compile_scope: FormulaContext, eval_scope: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class ScopedRead:
    """Read of a variable bound at compile time, looked up at evaluation time."""

    scope: VarScope
    name: str

    def evaluate(self, compile_scope: FormulaContext, eval_scope: Mapping[str, Any]) -> Any:
        if self.scope is VarScope.ENVIRONMENT:
            table = eval_scope
        else:
            table = compile_scope.vars
        value = table.get(self.name) if table is not None else None
        if value is None:
            return VarReferenceError(self.name)
        return value


@dataclass(frozen=True)
class Call:
    """Call of a function resolved in *scope* at compile time."""

    scope: FunctionScope
    name: str
    args: tuple[IRNode, ...]

    def evaluate(self, compile_scope: FormulaContext, eval_scope: Mapping[str, Any]) -> Any:
        values = [arg.evaluate(compile_scope, eval_scope) for arg in self.args]
        err = first_error(*values)
        if err is not None:
            return err
        fn = compile_scope.library(self.scope).get(self.name)
        if fn is None:
            return FuncReferenceError(self.name)
        if getattr(fn, "_uses_rng", False):
            return fn(values, rng=compile_scope.rng)
        return fn(values)


@dataclass(frozen=True)
class Operation:
    op: str
    operands: tuple[IRNode, ...]

    def evaluate(self, compile_scope: FormulaContext, eval_scope: Mapping[str, Any]) -> Any:
        if self.op in LOGICAL_OPS:
            # Short-circuit: the right operand is only evaluated when needed.
            left = self.operands[0].evaluate(compile_scope, eval_scope)
            if isinstance(left, FormulaError):
                return left
            if _truthy(left) == (self.op in ("or", "||")):
                return left
            return self.operands[1].evaluate(compile_scope, eval_scope)
        values = [operand.evaluate(compile_scope, eval_scope) for operand in self.operands]
        return apply_operator(self.op, values)


@dataclass(frozen=True)
class DeferredError:
    """Placeholder for an unresolved name; yields its error when evaluated."""

    error: FormulaError

    def evaluate(self, compile_scope: FormulaContext, eval_scope: Mapping[str, Any]) -> Any:
        return self.error


IRNode = Union[Constant, ScopedRead, Call, Operation, DeferredError]


# ---------------------------------------------------------------------------
# CompiledFormula: the reusable executable artifact
# ---------------------------------------------------------------------------


class CompiledFormula:
    """Executable unit produced by compiling one expression tree.

    Usage::

        compiled = context.compile(node)
        compiled(context, {"x": 1})
        compiled.evaluate({"x": 2})   # binds the owning context
    """

    __slots__ = ("root", "context")

    def __init__(self, root: IRNode, context: FormulaContext | None = None) -> None:
        self.root = root
        self.context = context

    def result(
        self,
        compile_scope: FormulaContext | None = None,
        eval_scope: Mapping[str, Any] | None = None,
    ) -> Any:
        """Evaluate and return the value, or the FormulaError it produced."""
        scope = compile_scope if compile_scope is not None else self.context
        if scope is None:
            raise RuntimeError("CompiledFormula has no compile scope to evaluate in")
        return self.root.evaluate(scope, eval_scope if eval_scope is not None else {})

    def __call__(
        self,
        compile_scope: FormulaContext | None = None,
        eval_scope: Mapping[str, Any] | None = None,
    ) -> Any:
        value = self.result(compile_scope, eval_scope)
        if isinstance(value, FormulaError):
            raise value.with_traceback(None)
        return value

    def evaluate(self, eval_scope: Mapping[str, Any] | None = None) -> Any:
        return self(None, eval_scope)

    def __repr__(self) -> str:
        return f"CompiledFormula({self.root!r})"
