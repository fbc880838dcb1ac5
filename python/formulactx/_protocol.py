"""Dependency dataclasses and the DependencyManager protocol."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from formulactx._context import FormulaContext


class DependencyType(str, Enum):
    UNDEFINED = "undefined"  # name that resolved nowhere
    SPECIAL = "special"  # implicit sources, e.g. "random"
    ATTRIBUTE = "attribute"
    GLOBAL = "global"


@dataclass(frozen=True)
class DependencySpec:
    """One endpoint (dependent or independent) of a dependency edge."""

    type: DependencyType
    id: str
    name: str


RANDOM_SPEC = DependencySpec(DependencyType.SPECIAL, "random", "random")


@dataclass(frozen=True)
class Dependency:
    """A dependency edge discovered while compiling or evaluating a formula.

    Only ``independent_spec`` is required.  When a context registers the
    dependency the remaining fields default to:

    * ``dependent_spec`` -- the context's ``owner_spec``
    * ``agg_fn_indices`` -- the aggregate functions on the function context
      stack at the moment the reference was bound
    * ``dependent_context`` -- the registering context
    """

    independent_spec: DependencySpec
    dependent_spec: DependencySpec | None = None
    agg_fn_indices: tuple[int, ...] | None = None
    dependent_context: FormulaContext | None = None

    def __post_init__(self) -> None:
        if self.agg_fn_indices is not None and not isinstance(self.agg_fn_indices, tuple):
            object.__setattr__(self, "agg_fn_indices", tuple(self.agg_fn_indices))


@runtime_checkable
class DependencyManager(Protocol):
    """Protocol for the external recompute/invalidation engine."""

    def register_dependency(self, dependency: Dependency) -> None:
        """Record an edge reported by a formula context."""
        ...

    def clear_dependent(self, dependent: DependencySpec) -> None:
        """Drop every edge from *dependent* before its formula is recompiled."""
        ...


@runtime_checkable
class Invalidatable(Protocol):
    """Hooks a dependency engine calls back into a formula context."""

    def invalidate_dependent(
        self,
        result: Any,
        dependent: DependencySpec,
        dependency: Dependency,
        cases: Sequence[Any] | None = None,
        force_aggregate: bool = False,
    ) -> None:
        """Tell the context one of its dependencies changed."""
        ...

    def invalidate_namespace(self) -> None:
        """Tell the context the set of resolvable names changed."""
        ...
