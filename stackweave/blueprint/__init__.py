"""Blueprint models, loaders and the action interpreter.

Usage::

    from stackweave.blueprint import Blueprint, BlueprintInterpreter

    blueprint = Blueprint.model_validate(data)
    result = await BlueprintInterpreter(registry).execute(blueprint, context, vfs)
"""

from stackweave.blueprint.actions import BlueprintAction, ImportDefinition, parse_action
from stackweave.blueprint.interpreter import BlueprintInterpreter
from stackweave.blueprint.loaders import BlueprintLoader, FileBlueprintLoader, StaticBlueprintLoader
from stackweave.blueprint.models import Blueprint, ExecutionResult
from stackweave.blueprint.templates import TemplateRenderer

__all__ = [
    "Blueprint",
    "BlueprintAction",
    "BlueprintInterpreter",
    "BlueprintLoader",
    "ExecutionResult",
    "FileBlueprintLoader",
    "ImportDefinition",
    "StaticBlueprintLoader",
    "TemplateRenderer",
    "parse_action",
]
