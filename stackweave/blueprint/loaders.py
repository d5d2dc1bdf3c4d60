"""Blueprint loaders.

The engine asks a loader for the blueprint of each resolved module.  Two
implementations ship: an in-memory map and a directory of
``<module id>.json`` files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Protocol

from pydantic import ValidationError

from stackweave.blueprint.models import Blueprint
from stackweave.errors import BlueprintLoadError
from stackweave.resolver.models import Module
from stackweave.utils import load_json


class BlueprintLoader(Protocol):
    def load(self, module: Module) -> Blueprint:
        """Return the blueprint for *module* or raise :class:`BlueprintLoadError`."""
        ...


class StaticBlueprintLoader:
    """Serve blueprints from memory, keyed by module id."""

    def __init__(self, blueprints: dict[str, Blueprint] | Iterable[Blueprint] | None = None) -> None:
        if isinstance(blueprints, dict):
            self._blueprints = dict(blueprints)
        else:
            self._blueprints = {bp.id: bp for bp in blueprints or ()}

    def add(self, module_id: str, blueprint: Blueprint) -> None:
        self._blueprints[module_id] = blueprint

    def load(self, module: Module) -> Blueprint:
        blueprint = self._blueprints.get(module.id)
        if blueprint is None:
            raise BlueprintLoadError(f"No blueprint registered for module '{module.id}'")
        return blueprint


class FileBlueprintLoader:
    """Read ``<root>/<module id>.json``.

    Module ids containing ``/`` map onto sub-directories, so
    ``framework/nextjs`` loads ``<root>/framework/nextjs.json``.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, module_id: str) -> Path:
        return self.root / f"{module_id}.json"

    def load(self, module: Module) -> Blueprint:
        path = self.path_for(module.id)
        if not path.is_file():
            raise BlueprintLoadError(f"Blueprint file not found for module '{module.id}': {path}")
        try:
            data: dict[str, Any] = load_json(path)
        except (OSError, ValueError) as exc:
            raise BlueprintLoadError(f"Could not read blueprint {path}: {exc}") from exc
        try:
            return Blueprint.from_dict(data, default_id=module.id)
        except ValidationError as exc:
            raise BlueprintLoadError(f"Invalid blueprint {path}: {exc}") from exc
