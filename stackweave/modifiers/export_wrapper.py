"""Export wrapper: rewrite an export as ``wrapper(original, options)``.

The wrapper's import is injected when absent. When the export is already a
call to the wrapper the expression is left alone, which makes the modifier
idempotent.
"""

from __future__ import annotations

from typing import Any

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.syntax import (
    SOURCE_FILE_TYPES,
    ImportSpec,
    SourceEditor,
    add_imports,
    call_function_name,
    commonjs_export_value,
    export_value,
    to_js_literal,
)

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["wrapperFunction"],
    "properties": {
        "exportToWrap": {"type": "string", "minLength": 1},
        "wrapperFunction": {
            "type": "object",
            "required": ["name", "importFrom"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "importFrom": {"type": "string", "minLength": 1},
                "importDefault": {"type": "boolean"},
            },
        },
        "wrapperOptions": {"type": "object"},
    },
    "additionalProperties": False,
}

_EXPRESSION_DECLARATIONS = {"function_declaration", "class_declaration", "generator_function_declaration"}


def wrapper_call(name: str, expression: str, options: dict[str, Any] | None, indent: str = "") -> str:
    """``name(expression)`` or ``name(expression, {options})``."""
    if not options:
        return f"{name}({expression})"
    return f"{name}({expression}, {to_js_literal(options, indent)})"


def wrap_export(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    editor = SourceEditor(context.read(path), path)
    export_name = params.get("exportToWrap", "default")
    wrapper = params["wrapperFunction"]
    name = wrapper["name"]

    value = export_value(editor.root, export_name)
    if value is None and export_name == "default":
        value = commonjs_export_value(editor.root)
    if value is None:
        label = "default export" if export_name == "default" else f"named export '{export_name}'"
        raise ValueError(f"No {label} found to wrap")
    if value.type in _EXPRESSION_DECLARATIONS:
        raise ValueError("Export is a declaration; only exported expressions can be wrapped")

    if call_function_name(value) != name:
        editor.replace(
            value,
            wrapper_call(name, editor.text(value), params.get("wrapperOptions"), editor.indent_of(value)),
        )

    if wrapper.get("importDefault"):
        spec = ImportSpec(source=wrapper["importFrom"], default=name)
    else:
        spec = ImportSpec(source=wrapper["importFrom"], named=[name])
    add_imports(editor, [spec])
    return editor.apply()


JS_EXPORT_WRAPPER = ModifierDefinition(
    name="js-export-wrapper",
    description="Wraps a default or named export in a function call and imports the wrapper",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=SOURCE_FILE_TYPES,
    transform=wrap_export,
)
