"""In-memory dependency recorder for formula contexts."""

from __future__ import annotations

import logging

from formulactx._protocol import Dependency, DependencySpec

logger = logging.getLogger(__name__)


class DependencyRecorder:
    """Stores dependency edges reported by formula contexts.

    Satisfies the :class:`~formulactx.DependencyManager` protocol.  Edges are
    indexed both ways; walking or invalidating them is left to the caller.
    """

    __slots__ = ("dependencies", "dependents")

    def __init__(self) -> None:
        # dependent spec -> dependencies it reads from, in registration order
        self.dependencies: dict[DependencySpec | None, list[Dependency]] = {}
        # independent spec -> dependent specs that read from it (reverse edges)
        self.dependents: dict[DependencySpec, set[DependencySpec | None]] = {}

    def register_dependency(self, dependency: Dependency) -> None:
        """Record one edge; an edge already held for the same aggregates is ignored."""
        dependent = dependency.dependent_spec
        independent = dependency.independent_spec
        edges = self.dependencies.setdefault(dependent, [])
        for existing in edges:
            if (
                existing.independent_spec == independent
                and existing.agg_fn_indices == dependency.agg_fn_indices
            ):
                return
        edges.append(dependency)
        self.dependents.setdefault(independent, set()).add(dependent)
        logger.debug("Recorded dependency %s -> %s", dependent, independent)

    def dependencies_of(self, dependent: DependencySpec | None) -> list[Dependency]:
        return list(self.dependencies.get(dependent, []))

    def independents_of(self, dependent: DependencySpec | None) -> set[DependencySpec]:
        return {d.independent_spec for d in self.dependencies.get(dependent, [])}

    def dependents_of(self, independent: DependencySpec) -> set[DependencySpec | None]:
        return set(self.dependents.get(independent, set()))

    def clear_dependent(self, dependent: DependencySpec | None) -> None:
        """Drop every edge from *dependent*, e.g. before its formula is recompiled."""
        for dependency in self.dependencies.pop(dependent, []):
            readers = self.dependents.get(dependency.independent_spec)
            if readers is None:
                continue
            readers.discard(dependent)
            if not readers:
                del self.dependents[dependency.independent_spec]

    def __len__(self) -> int:
        return sum(len(deps) for deps in self.dependencies.values())
