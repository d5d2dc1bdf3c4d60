"""Capability-based dependency resolver.

Validates a module selection and computes its execution order:

1. Index capabilities by name (:class:`CapabilityGraph`).
2. Check module identity (``DUPLICATE_MODULE``) and direct ``depends_on``
   references (``MISSING_MODULE``).
3. Check every requirement has a satisfying provider (``MISSING_CAPABILITY``).
4. Check providers of the same capability agree (``CONFLICTING_PROVIDERS``).
5. Build provider -> requirer edges, plus foundation -> everything edges, and
   sort with Kahn's algorithm; cycles become ``CIRCULAR_DEPENDENCY`` issues.

The resolver is a pure function of its input: no I/O, no randomness, and the
same declaration order always yields the same execution order.
"""

from __future__ import annotations

import difflib
from collections.abc import Iterable, Sequence

from stackweave import errors
from stackweave.resolver.graph import CapabilityGraph, DependencyGraph
from stackweave.resolver.models import (
    CapabilityRequirement,
    Module,
    ResolutionIssue,
    ResolutionResult,
    Severity,
)
from stackweave.resolver.versions import compatible, satisfies


class DependencyResolver:
    """Orders modules by their capability graph.

    Args:
        allow_conflicts: Report ``CONFLICTING_PROVIDERS`` as a warning
            instead of an error.
        multi_provider: Capability names that may legitimately have several
            providers (never conflicting, never duplicate warnings).
        foundation_capability: Providers of this capability run before every
            other module.
    """

    def __init__(
        self,
        allow_conflicts: bool = False,
        multi_provider: Iterable[str] = (),
        foundation_capability: str = "foundation",
    ) -> None:
        self.allow_conflicts = allow_conflicts
        self.multi_provider = frozenset(multi_provider)
        self.foundation_capability = foundation_capability

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, modules: Sequence[Module]) -> ResolutionResult:
        """Validate *modules* and compute their execution order.

        Returns:
            A :class:`ResolutionResult`. ``execution_order`` is empty whenever
            ``errors`` is non-empty.
        """
        modules = list(modules)
        issues: list[ResolutionIssue] = []

        issues.extend(self._check_identity(modules))
        graph = CapabilityGraph(modules)
        index_by_id = {module.id: i for i, module in reversed(list(enumerate(modules)))}

        issues.extend(self._check_depends_on(modules, index_by_id))
        issues.extend(self._check_requirements(modules, graph))
        issues.extend(self._check_providers(graph))

        dependency_graph = self._build_graph(modules, graph, index_by_id)
        order = dependency_graph.topological_order()
        if order is None:
            for cycle in dependency_graph.cycles():
                path = [modules[i].id for i in cycle]
                issues.append(
                    ResolutionIssue(
                        code=errors.CIRCULAR_DEPENDENCY,
                        message="Circular dependency: " + " -> ".join(path),
                        modules=sorted(set(path), key=path.index),
                        path=path,
                        suggestions=["Remove one of the requirements along the cycle"],
                    )
                )

        found_errors = tuple(i for i in issues if i.severity == Severity.ERROR)
        warnings = tuple(i for i in issues if i.severity == Severity.WARNING)
        execution_order: tuple[Module, ...] = ()
        if not found_errors and order is not None:
            execution_order = tuple(modules[i] for i in order)

        return ResolutionResult(
            execution_order=execution_order,
            errors=found_errors,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Validation passes
    # ------------------------------------------------------------------

    @staticmethod
    def _check_identity(modules: list[Module]) -> list[ResolutionIssue]:
        issues = []
        seen: set[str] = set()
        reported: set[str] = set()
        for module in modules:
            if module.id in seen and module.id not in reported:
                reported.add(module.id)
                issues.append(
                    ResolutionIssue(
                        code=errors.DUPLICATE_MODULE,
                        message=f"Module '{module.id}' is declared more than once",
                        modules=[module.id],
                    )
                )
            seen.add(module.id)
        return issues

    @staticmethod
    def _check_depends_on(modules: list[Module], index_by_id: dict[str, int]) -> list[ResolutionIssue]:
        issues = []
        known = list(index_by_id)
        for module in modules:
            for dep in module.depends_on:
                if dep in index_by_id:
                    continue
                issues.append(
                    ResolutionIssue(
                        code=errors.MISSING_MODULE,
                        message=f"Module '{module.id}' depends on unknown module '{dep}'",
                        modules=[module.id],
                        suggestions=difflib.get_close_matches(dep, known, n=3, cutoff=0.6),
                    )
                )
        return issues

    def _check_requirements(self, modules: list[Module], graph: CapabilityGraph) -> list[ResolutionIssue]:
        issues = []
        for module in modules:
            for requirement in module.requires:
                if self._satisfying_providers(requirement, graph, exclude=module.id):
                    continue
                issues.append(
                    ResolutionIssue(
                        code=errors.MISSING_CAPABILITY,
                        message=(
                            f"Module '{module.id}' requires capability '{requirement}' "
                            "but no selected module provides it"
                        ),
                        modules=[module.id],
                        capability=requirement.name,
                        suggestions=self._suggest_providers(requirement, graph, module.id),
                    )
                )
        return issues

    def _check_providers(self, graph: CapabilityGraph) -> list[ResolutionIssue]:
        issues = []
        for name in graph.names():
            if name in self.multi_provider or name == self.foundation_capability:
                continue
            providers = graph.providers(name)
            if len(providers) < 2:
                continue
            versions = [graph.provided_version(p, name) for p in providers]
            ids = [p.id for p in providers]
            clash = any(
                not compatible(versions[i], versions[j])
                for i in range(len(versions))
                for j in range(i + 1, len(versions))
            )
            described = ", ".join(
                f"{pid}@{ver}" if ver else pid for pid, ver in zip(ids, versions)
            )
            if clash:
                issues.append(
                    ResolutionIssue(
                        code=errors.CONFLICTING_PROVIDERS,
                        severity=Severity.WARNING if self.allow_conflicts else Severity.ERROR,
                        message=f"Capability '{name}' has incompatible providers: {described}",
                        modules=ids,
                        capability=name,
                        suggestions=[f"Select only one of: {', '.join(ids)}"],
                    )
                )
            else:
                issues.append(
                    ResolutionIssue(
                        code=errors.DUPLICATE_PROVIDER,
                        severity=Severity.WARNING,
                        message=f"Capability '{name}' is provided by several modules: {described}",
                        modules=ids,
                        capability=name,
                    )
                )
        return issues

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def _build_graph(
        self,
        modules: list[Module],
        graph: CapabilityGraph,
        index_by_id: dict[str, int],
    ) -> DependencyGraph:
        dependency_graph = DependencyGraph(len(modules))

        for position, module in enumerate(modules):
            for requirement in module.requires:
                for provider in self._satisfying_providers(requirement, graph, exclude=module.id):
                    dependency_graph.add_edge(index_by_id[provider.id], position)
            for dep in module.depends_on:
                if dep in index_by_id:
                    dependency_graph.add_edge(index_by_id[dep], position)

        foundation = [
            i for i, module in enumerate(modules)
            if module.provides_capability(self.foundation_capability)
        ]
        foundation_set = set(foundation)
        for f in foundation:
            for position in range(len(modules)):
                if position not in foundation_set:
                    dependency_graph.add_edge(f, position)

        return dependency_graph

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _satisfying_providers(
        requirement: CapabilityRequirement,
        graph: CapabilityGraph,
        exclude: str,
    ) -> list[Module]:
        return [
            provider
            for provider in graph.providers(requirement.name)
            if provider.id != exclude
            and satisfies(graph.provided_version(provider, requirement.name), requirement.version_range)
        ]

    @staticmethod
    def _suggest_providers(
        requirement: CapabilityRequirement,
        graph: CapabilityGraph,
        requester: str,
    ) -> list[str]:
        """Modules providing the capability at a different version, or a similar name."""
        suggestions: list[str] = []
        for provider in graph.providers(requirement.name):
            if provider.id == requester:
                continue
            version = graph.provided_version(provider, requirement.name)
            suggestions.append(
                f"{provider.id} provides {requirement.name}@{version or '?'}, "
                f"outside '{requirement.version_range}'"
            )
        for name in difflib.get_close_matches(requirement.name, graph.names(), n=3, cutoff=0.6):
            if name == requirement.name:
                continue
            for provider in graph.providers(name):
                if provider.id != requester:
                    suggestions.append(f"{provider.id} provides similarly named capability '{name}'")
        return suggestions
