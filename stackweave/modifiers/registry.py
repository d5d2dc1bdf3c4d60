"""Modifier registry.

The registry is an ordinary object: build one with
:func:`create_default_registry` (or register your own definitions) and pass it
to the interpreter. There is no process-wide instance.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

from stackweave.errors import EngineError, FileNotFound, ModifierError, ModifierNotFound, ParameterValidationError
from stackweave.modifiers.base import ModifierContext, ModifierDefinition


class ModifierRegistry:
    """Name -> :class:`ModifierDefinition` map with validated execution."""

    def __init__(self) -> None:
        self._modifiers: dict[str, ModifierDefinition] = {}
        self._validators: dict[str, Draft7Validator] = {}

    # -- Registration ------------------------------------------------------

    def register(self, name: str, definition: ModifierDefinition) -> None:
        """Register *definition* under *name*.

        Raises:
            ValueError: If the name is taken or the schema is not valid JSON Schema.
        """
        if name in self._modifiers:
            raise ValueError(f"Modifier '{name}' is already registered")
        Draft7Validator.check_schema(definition.params_schema)
        self._modifiers[name] = definition
        self._validators[name] = Draft7Validator(definition.params_schema)

    def get(self, name: str) -> ModifierDefinition | None:
        return self._modifiers.get(name)

    def require(self, name: str) -> ModifierDefinition:
        definition = self._modifiers.get(name)
        if definition is None:
            raise ModifierNotFound(name, self.names())
        return definition

    def names(self) -> list[str]:
        return sorted(self._modifiers)

    def __contains__(self, name: object) -> bool:
        return name in self._modifiers

    def __len__(self) -> int:
        return len(self._modifiers)

    # -- Validation --------------------------------------------------------

    def validate(self, name: str, params: dict[str, Any]) -> None:
        """Check *params* against the modifier's schema.

        Raises:
            ModifierNotFound: Unknown modifier.
            ParameterValidationError: Naming every offending field.
        """
        self.require(name)
        problems: dict[str, str] = {}
        for error in self._validators[name].iter_errors(params):
            location = ".".join(str(p) for p in error.path)
            if error.validator == "required" and isinstance(error.instance, dict):
                for missing in error.validator_value:
                    if missing not in error.instance:
                        key = f"{location}.{missing}" if location else missing
                        problems.setdefault(key, "is required")
                continue
            problems.setdefault(location or "<root>", error.message)
        if problems:
            raise ParameterValidationError(name, problems)

    # -- Execution ---------------------------------------------------------

    def execute(
        self,
        name: str,
        path: str,
        params: dict[str, Any],
        context: ModifierContext,
    ) -> bool:
        """Validate, transform and stage the result of one modifier run.

        Returns:
            True if the file content changed.

        Raises:
            ModifierNotFound: Unknown modifier.
            ParameterValidationError: Invalid params; nothing is read.
            FileNotFound: Target is neither staged nor on disk.
            ModifierError: Unsupported file type, or the transform failed.
        """
        definition = self.require(name)
        self.validate(name, params)
        if not definition.supports(path):
            raise ModifierError(
                name,
                path,
                f"unsupported file type (expected one of: {', '.join(definition.supported_file_types)})",
            )
        if not context.vfs.exists(path):
            raise FileNotFound(context.vfs.normalize(path))

        before = context.read(path)
        try:
            after = definition.transform(path, params, context)
        except EngineError:
            raise
        except Exception as exc:
            raise ModifierError(name, path, str(exc) or type(exc).__name__) from exc

        if after == before:
            return False
        context.vfs.overwrite_file(path, after)
        return True


def create_default_registry() -> ModifierRegistry:
    """A registry holding every built-in modifier."""
    from stackweave.modifiers.config_merger import JS_CONFIG_MERGER
    from stackweave.modifiers.config_wrapper import CONFIG_WRAPPER
    from stackweave.modifiers.export_wrapper import JS_EXPORT_WRAPPER
    from stackweave.modifiers.json_mergers import JSON_OBJECT_MERGER, PACKAGE_JSON_MERGER, TSCONFIG_ENHANCER
    from stackweave.modifiers.jsx_wrapper import JSX_WRAPPER
    from stackweave.modifiers.schema_extender import SCHEMA_EXTENDER
    from stackweave.modifiers.ts_module_enhancer import TS_MODULE_ENHANCER

    registry = ModifierRegistry()
    for definition in (
        PACKAGE_JSON_MERGER,
        TSCONFIG_ENHANCER,
        JSON_OBJECT_MERGER,
        TS_MODULE_ENHANCER,
        JS_EXPORT_WRAPPER,
        JSX_WRAPPER,
        JS_CONFIG_MERGER,
        CONFIG_WRAPPER,
        SCHEMA_EXTENDER,
    ):
        registry.register(definition.name, definition)
    return registry
