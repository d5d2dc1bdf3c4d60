"""Structural file modifiers.

Usage::

    from stackweave.modifiers import ModifierContext, create_default_registry

    registry = create_default_registry()
    registry.execute("package-json-merger", "package.json",
                     {"dependencies": {"zod": "^3.23.0"}}, ModifierContext(vfs))
"""

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.registry import ModifierRegistry, create_default_registry
from stackweave.modifiers.syntax import ImportSpec, SourceEditor, SourceSyntaxError

__all__ = [
    "ModifierRegistry",
    "ModifierDefinition",
    "ModifierContext",
    "create_default_registry",
    "ImportSpec",
    "SourceEditor",
    "SourceSyntaxError",
]
