"""Stackweave: blueprint execution engine.

Resolves a selection of modules by the capabilities they provide and require,
then executes each module's blueprint against a staging virtual file system
and flushes the result to disk.

Usage::

    import asyncio
    from stackweave import BlueprintEngine, EngineConfig, Module, StaticBlueprintLoader

    engine = BlueprintEngine(EngineConfig(project_root="./my-app"), loader=StaticBlueprintLoader(blueprints))
    result = asyncio.run(engine.run([Module(id="framework/nextjs", provides=["foundation"])]))
"""

from stackweave.blueprint import (
    Blueprint,
    BlueprintInterpreter,
    ExecutionResult,
    FileBlueprintLoader,
    StaticBlueprintLoader,
    TemplateRenderer,
)
from stackweave.config import EngineConfig
from stackweave.engine import BlueprintEngine, ModuleExecutionResult, RunResult
from stackweave.errors import EngineError
from stackweave.modifiers import ModifierDefinition, ModifierRegistry, create_default_registry
from stackweave.resolver import DependencyResolver, Module, ResolutionResult
from stackweave.vfs import ConflictPolicy, VirtualFileSystem

__version__ = "0.1.0"

__all__ = [
    "Blueprint",
    "BlueprintEngine",
    "BlueprintInterpreter",
    "ConflictPolicy",
    "DependencyResolver",
    "EngineConfig",
    "EngineError",
    "ExecutionResult",
    "FileBlueprintLoader",
    "ModifierDefinition",
    "ModifierRegistry",
    "Module",
    "ModuleExecutionResult",
    "ResolutionResult",
    "RunResult",
    "StaticBlueprintLoader",
    "TemplateRenderer",
    "VirtualFileSystem",
    "create_default_registry",
]
