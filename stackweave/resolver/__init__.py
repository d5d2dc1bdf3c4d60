"""Capability-based module resolution.

Usage::

    from stackweave.resolver import DependencyResolver, Module

    result = DependencyResolver().resolve([
        Module(id="framework", provides=["foundation"]),
        Module(id="orm", requires=["foundation"], provides=["database@1.0"]),
    ])
    print(result.order_ids)
"""

from stackweave.resolver.graph import CapabilityGraph, DependencyGraph
from stackweave.resolver.models import (
    Capability,
    CapabilityRequirement,
    Module,
    ResolutionIssue,
    ResolutionResult,
    Severity,
)
from stackweave.resolver.resolver import DependencyResolver
from stackweave.resolver.versions import compatible, satisfies

__all__ = [
    "DependencyResolver",
    "CapabilityGraph",
    "DependencyGraph",
    "Capability",
    "CapabilityRequirement",
    "Module",
    "ResolutionIssue",
    "ResolutionResult",
    "Severity",
    "compatible",
    "satisfies",
]
