"""FormulaContext: name binding, compilation and direct evaluation of formulas.

A context resolves identifiers and function names for formula expression
trees.  It offers two parallel strategies sharing the same resolution rules:

* ``compile`` -- produce a :class:`~formulactx.CompiledFormula` that can be
  evaluated many times with different environment variables.  Unresolved
  names compile to deferred errors and only fail if evaluated.
* ``evaluate`` -- interpret the tree immediately.  Unresolved names raise.

Identifier resolution order (first match wins)::

    1. constants      pi, π, e
    2. environment    names declared in ``e_vars`` / values in ``eval_scope``
    3. instance       ``vars``

Function resolution order (first match wins)::

    1. builtin library      (boolean, round, random, ...)
    2. host-math library    (sin, sqrt, pow, ...)
    3. client library       (``fns`` with ``fns_props`` metadata)

While compiling, a stack of :class:`FunctionContext` entries records which
function calls enclose the node being compiled, so that dependencies can be
tagged with the aggregate functions they feed.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from typing import Any, Callable, Collection, Mapping, Sequence

from formulactx._errors import FuncArgsError, FuncReferenceError, VarReferenceError
from formulactx._functions import (
    BUILTIN_LIBRARY,
    HOST_MATH_LIBRARY,
    FunctionLibrary,
    FunctionRegistry,
    FunctionScope,
    FunctionSpec,
    _truthy,
)
from formulactx._ir import (
    ARITHMETIC_OPS,
    COMPARISON_OPS,
    LOGICAL_OPS,
    UNARY_OPS,
    Call,
    CompiledFormula,
    Constant,
    DeferredError,
    IRNode,
    Operation,
    ScopedRead,
    VarScope,
    apply_operator,
)
from formulactx._nodes import BinaryOp, ExprNode, FunctionCall, Identifier, Literal, UnaryOp
from formulactx._protocol import (
    RANDOM_SPEC,
    Dependency,
    DependencyManager,
    DependencySpec,
    DependencyType,
)

logger = logging.getLogger(__name__)

CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "π": math.pi,
    "e": math.e,
}

_MISSING = object()


@dataclass(frozen=True)
class FunctionContext:
    """A function call whose arguments are currently being compiled."""

    name: str
    is_aggregate: bool = False


class FormulaContext:
    """Binds identifiers and functions for formulas and compiles/evaluates them.

    Usage::

        ctx = FormulaContext(vars={"width": 3}, e_vars={"x"})
        compiled = ctx.compile(BinaryOp("*", Identifier("width"), Identifier("x")))
        compiled.evaluate({"x": 2})   # 6.0
        ctx.evaluate(FunctionCall("round", [Literal(2.5)]))   # 3.0

    Derived contexts override :meth:`register_dependency`,
    :meth:`invalidate_dependent`, :meth:`is_aggregate` and the compile
    lifecycle hooks to plug into a dependency/invalidation engine.
    """

    def __init__(
        self,
        vars: Mapping[str, Any] | None = None,
        e_vars: Collection[str] | None = None,
        fns: Mapping[str, Callable[..., Any]] | None = None,
        fns_props: Mapping[str, FunctionSpec] | None = None,
        *,
        owner_spec: DependencySpec | None = None,
        dependency_manager: DependencyManager | None = None,
        registry: FunctionRegistry | None = None,
        rng: random.Random | None = None,
        strict_arity: bool = False,
    ) -> None:
        # Scope tables are owned by the caller and never mutated here.
        self.vars: Mapping[str, Any] = vars if vars is not None else {}
        self.e_vars: Collection[str] = e_vars if e_vars is not None else ()
        self.fns: Mapping[str, Callable[..., Any]] = fns if fns is not None else {}
        self.fns_props: Mapping[str, FunctionSpec] = fns_props if fns_props is not None else {}
        self.owner_spec = owner_spec
        self.dependency_manager = dependency_manager
        self.registry = registry if registry is not None else FunctionRegistry.with_defaults()
        self.rng = rng if rng is not None else random.Random()
        self.strict_arity = strict_arity

        self._function_context_stack: list[FunctionContext] = []
        self.compile_dependencies: list[Dependency] = []
        self.evaluate_dependencies: list[Dependency] = []
        self._pass_dependencies = self.compile_dependencies
        self.has_aggregates = False
        self.namespace_version = 0
        self._namespace_observers: list[Callable[[FormulaContext], None]] = []

    # ------------------------------------------------------------------
    # Function context stack
    # ------------------------------------------------------------------

    def begin_function_context(self, context: FunctionContext) -> None:
        """Push *context* onto the function context stack."""
        self._function_context_stack.append(context)
        if context.is_aggregate:
            self.has_aggregates = True

    def end_function_context(self, context: FunctionContext) -> bool:
        """Pop the top of the stack if it matches *context* by name.

        A mismatch is a bookkeeping bug in the caller: it is logged, the
        stack is left unchanged and False is returned.
        """
        stack = self._function_context_stack
        top_name = stack[-1].name if stack else ""
        end_name = context.name if context is not None else None
        if end_name == top_name and stack:
            stack.pop()
            return True
        logger.error(
            "StackImbalance: attempt to end function context %r while %r is on top",
            end_name,
            top_name or None,
        )
        return False

    def aggregate_function_indices(self) -> list[int]:
        """Stack positions, in push order, of the enclosing aggregate functions."""
        return [i for i, fc in enumerate(self._function_context_stack) if fc.is_aggregate]

    @property
    def function_context_depth(self) -> int:
        return len(self._function_context_stack)

    def is_aggregate(self, name: str) -> bool:
        """True if *name* refers to an aggregate function."""
        spec = self.fns_props.get(name)
        return bool(spec is not None and spec.is_aggregate)

    # ------------------------------------------------------------------
    # Dependency hooks
    # ------------------------------------------------------------------

    def register_dependency(self, dependency: Dependency) -> Dependency:
        """Complete *dependency* with its defaults and report it.

        The completed dependency is kept for the current compile or evaluate
        pass and forwarded to the attached dependency manager, if any.
        """
        if dependency.dependent_spec is None and self.owner_spec is not None:
            dependency = replace(dependency, dependent_spec=self.owner_spec)
        if dependency.agg_fn_indices is None:
            dependency = replace(dependency, agg_fn_indices=tuple(self.aggregate_function_indices()))
        if dependency.dependent_context is None:
            dependency = replace(dependency, dependent_context=self)
        logger.debug(
            "Dependency %s -> %s (aggregates %s)",
            dependency.dependent_spec,
            dependency.independent_spec,
            dependency.agg_fn_indices,
        )
        self._pass_dependencies.append(dependency)
        if self.dependency_manager is not None:
            self.dependency_manager.register_dependency(dependency)
        return dependency

    def invalidate_dependent(
        self,
        result: Any,
        dependent: DependencySpec,
        dependency: Dependency,
        cases: Sequence[Any] | None = None,
        force_aggregate: bool = False,
    ) -> None:
        """Called by the dependency engine when a dependency of this context changed.

        ``cases`` lists the affected cases; None means all of them.  The base
        context caches nothing, so there is nothing to invalidate.
        """

    def invalidate_namespace(self) -> None:
        """Announce that the set of resolvable names changed."""
        self.namespace_version += 1
        logger.debug("Namespace changed (version %d)", self.namespace_version)
        for observer in list(self._namespace_observers):
            observer(self)

    def add_namespace_observer(self, observer: Callable[[FormulaContext], None]) -> None:
        self._namespace_observers.append(observer)

    def remove_namespace_observer(self, observer: Callable[[FormulaContext], None]) -> None:
        self._namespace_observers.remove(observer)

    def invalidate_functions(self, function_indices: Sequence[int]) -> None:
        """Called when dependents change to clear function caches."""

    # ------------------------------------------------------------------
    # Compile lifecycle
    # ------------------------------------------------------------------

    def clear_caches(self) -> None:
        """Clear any cached bindings. Called before compiling."""

    def will_compile(self) -> None:
        """Reset per-pass state before a formula is (re)compiled."""
        self.clear_caches()
        self._function_context_stack = []
        self.compile_dependencies = []
        self._pass_dependencies = self.compile_dependencies
        self.has_aggregates = False
        if self.dependency_manager is not None and self.owner_spec is not None:
            self.dependency_manager.clear_dependent(self.owner_spec)

    def did_compile(self) -> None:
        """Called after a formula has been compiled."""

    # ------------------------------------------------------------------
    # Identifier resolution
    # ------------------------------------------------------------------

    def _compile_constant(self, name: str) -> IRNode | None:
        if name in CONSTANTS:
            return Constant(CONSTANTS[name])
        return None

    def _compile_environment(self, name: str) -> IRNode | None:
        if name in self.e_vars:
            return ScopedRead(VarScope.ENVIRONMENT, name)
        return None

    def _compile_instance(self, name: str) -> IRNode | None:
        if self.vars.get(name) is not None:
            return ScopedRead(VarScope.INSTANCE, name)
        return None

    def compile_variable(self, name: str) -> IRNode:
        """Bind *name* for a compiled formula.

        A name found in no scope is registered as an undefined dependency
        and compiles to a node that fails only when evaluated.
        """
        for strategy in (self._compile_constant, self._compile_environment, self._compile_instance):
            node = strategy(name)
            if node is not None:
                return node
        logger.debug("Unresolved variable %r deferred", name)
        self.register_dependency(
            Dependency(DependencySpec(DependencyType.UNDEFINED, name, name))
        )
        return DeferredError(VarReferenceError(name))

    def _evaluate_constant(self, name: str, eval_scope: Mapping[str, Any]) -> Any:
        return CONSTANTS.get(name, _MISSING)

    def _evaluate_environment(self, name: str, eval_scope: Mapping[str, Any]) -> Any:
        value = eval_scope.get(name)
        return _MISSING if value is None else value

    def _evaluate_instance(self, name: str, eval_scope: Mapping[str, Any]) -> Any:
        value = self.vars.get(name)
        return _MISSING if value is None else value

    def evaluate_variable(self, name: str, eval_scope: Mapping[str, Any] | None = None) -> Any:
        """Look *name* up immediately; raises VarReferenceError if unbound."""
        scope = eval_scope if eval_scope is not None else {}
        for strategy in (self._evaluate_constant, self._evaluate_environment, self._evaluate_instance):
            value = strategy(name, scope)
            if value is not _MISSING:
                return value
        raise VarReferenceError(name)

    # ------------------------------------------------------------------
    # Function resolution
    # ------------------------------------------------------------------

    def library(self, scope: FunctionScope) -> FunctionLibrary:
        """The function library for *scope*."""
        if scope is FunctionScope.BUILTIN:
            return BUILTIN_LIBRARY
        if scope is FunctionScope.HOST_MATH:
            return HOST_MATH_LIBRARY
        return FunctionLibrary(FunctionScope.CLIENT, self.fns, self.fns_props)

    def _resolve_function(self, name: str) -> tuple[FunctionLibrary, Callable[..., Any]] | None:
        for scope in FunctionScope:
            lib = self.library(scope)
            fn = lib.get(name)
            if fn is not None:
                return lib, fn
        return None

    def _check_args_and_random(
        self,
        name: str,
        n_args: int,
        lib: FunctionLibrary,
        agg_fn_indices: Sequence[int] | None,
    ) -> None:
        spec = lib.spec(name)
        if spec is None:
            return
        if n_args < spec.min_args:
            raise FuncArgsError(name, spec, "min")
        if self.strict_arity and spec.max_args is not None and n_args > spec.max_args:
            raise FuncArgsError(name, spec, "max")
        if spec.is_random:
            self.register_dependency(
                Dependency(
                    RANDOM_SPEC,
                    agg_fn_indices=tuple(agg_fn_indices) if agg_fn_indices is not None else None,
                )
            )

    def compile_function(
        self,
        name: str,
        args: Sequence[IRNode],
        agg_fn_indices: Sequence[int] | None = None,
    ) -> IRNode:
        """Bind a call of *name* with compiled *args*.

        ``agg_fn_indices`` tags the random dependency of nondeterministic
        functions; it defaults to the current aggregate function indices.
        Raises FuncArgsError immediately; an unknown name compiles to a
        deferred FuncReferenceError.
        """
        resolved = self._resolve_function(name)
        if resolved is None:
            logger.debug("Unresolved function %r deferred", name)
            return DeferredError(FuncReferenceError(name))
        lib, _ = resolved
        self._check_args_and_random(name, len(args), lib, agg_fn_indices)
        return Call(lib.scope, name, tuple(args))

    def evaluate_function(
        self,
        name: str,
        args: Sequence[Any],
        agg_fn_indices: Sequence[int] | None = None,
    ) -> Any:
        """Call *name* with already-evaluated *args*."""
        resolved = self._resolve_function(name)
        if resolved is None:
            raise FuncReferenceError(name)
        lib, fn = resolved
        self._check_args_and_random(name, len(args), lib, agg_fn_indices)
        if getattr(fn, "_uses_rng", False):
            return fn(list(args), rng=self.rng)
        return fn(list(args))

    # ------------------------------------------------------------------
    # Tree walkers
    # ------------------------------------------------------------------

    def create_context_function(self, root: IRNode) -> CompiledFormula:
        """Wrap a compiled node as an executable formula bound to this context."""
        return CompiledFormula(root, self)

    def compile(self, node: ExprNode) -> CompiledFormula:
        """Compile an expression tree into a reusable CompiledFormula."""
        self.will_compile()
        root = self._compile_node(node)
        self.did_compile()
        return self.create_context_function(root)

    def _compile_node(self, node: ExprNode) -> IRNode:
        if isinstance(node, Literal):
            return Constant(node.value)
        if isinstance(node, Identifier):
            return self.compile_variable(node.name)
        if isinstance(node, FunctionCall):
            fc = FunctionContext(node.name, self.is_aggregate(node.name))
            self.begin_function_context(fc)
            try:
                args = [self._compile_node(arg) for arg in node.args]
            finally:
                self.end_function_context(fc)
            return self.compile_function(node.name, args)
        if isinstance(node, UnaryOp):
            _check_operator(node.op, UNARY_OPS)
            return Operation(node.op, (self._compile_node(node.operand),))
        if isinstance(node, BinaryOp):
            _check_operator(node.op, _BINARY_OPS)
            return Operation(node.op, (self._compile_node(node.left), self._compile_node(node.right)))
        raise TypeError(f"Cannot compile node of type {type(node).__name__}")

    def evaluate(self, node: ExprNode, eval_scope: Mapping[str, Any] | None = None) -> Any:
        """Evaluate an expression tree directly, without compiling it.

        Dependencies found while evaluating are collected in
        ``evaluate_dependencies``, which is reset on every call.  The compile
        pass state (``compile_dependencies``, ``has_aggregates``) is untouched.
        """
        saved = (self._pass_dependencies, self.has_aggregates)
        self.evaluate_dependencies = []
        self._pass_dependencies = self.evaluate_dependencies
        try:
            return self._eval_node(node, eval_scope if eval_scope is not None else {})
        finally:
            self._pass_dependencies, self.has_aggregates = saved

    def _eval_node(self, node: ExprNode, eval_scope: Mapping[str, Any]) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Identifier):
            return self.evaluate_variable(node.name, eval_scope)
        if isinstance(node, FunctionCall):
            fc = FunctionContext(node.name, self.is_aggregate(node.name))
            self.begin_function_context(fc)
            try:
                args = [self._eval_node(arg, eval_scope) for arg in node.args]
            finally:
                self.end_function_context(fc)
            return self.evaluate_function(node.name, args)
        if isinstance(node, UnaryOp):
            _check_operator(node.op, UNARY_OPS)
            return apply_operator(node.op, [self._eval_node(node.operand, eval_scope)])
        if isinstance(node, BinaryOp):
            _check_operator(node.op, _BINARY_OPS)
            left = self._eval_node(node.left, eval_scope)
            if node.op in LOGICAL_OPS and _truthy(left) == (node.op in ("or", "||")):
                return left
            right = self._eval_node(node.right, eval_scope)
            return apply_operator(node.op, [left, right])
        raise TypeError(f"Cannot evaluate node of type {type(node).__name__}")


_BINARY_OPS = ARITHMETIC_OPS | COMPARISON_OPS | LOGICAL_OPS


def _check_operator(op: str, allowed: frozenset[str]) -> None:
    if op not in allowed:
        raise ValueError(f"Unsupported operator: {op!r}")
