"""JS/TS config merger: merge keys into an exported object literal.

Targets ``export default {...}``, ``export const name = {...}``,
``module.exports = {...}``, an identifier bound to such a literal, or the first
argument of an already-wrapped config (``withX({...})``). Existing keys are
edited in place; new keys are appended to the literal.
"""

from __future__ import annotations

from typing import Any

from tree_sitter import Node

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.syntax import (
    SOURCE_FILE_TYPES,
    SourceEditor,
    commonjs_export_value,
    export_value,
    find_pair,
    insert_properties,
    js_key,
    resolve_object,
    to_js_literal,
    unwrap_expression,
)

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["propertiesToMerge"],
    "properties": {
        "exportName": {"type": "string", "minLength": 1},
        "propertiesToMerge": {"type": "object"},
        "mergeStrategy": {"type": "string", "enum": ["deep", "shallow", "replace"]},
    },
    "additionalProperties": False,
}


def find_config_object(editor: SourceEditor, export_name: str = "default") -> Node | None:
    """Object literal behind *export_name* (CommonJS ``module.exports`` counts as default)."""
    value = export_value(editor.root, export_name)
    if value is None and export_name == "default":
        value = commonjs_export_value(editor.root)
    return resolve_object(editor.root, value)


def merge_object_literal(
    editor: SourceEditor,
    obj: Node,
    properties: dict[str, Any],
    strategy: str = "deep",
) -> None:
    """Queue edits merging *properties* into the object literal *obj*."""
    if strategy == "replace":
        editor.replace(obj, to_js_literal(properties, editor.indent_of(obj)))
        return

    additions: dict[str, Any] = {}
    for key, value in properties.items():
        pair = find_pair(obj, key)
        if pair is None:
            additions[key] = value
            continue
        indent = editor.indent_of(pair)
        if pair.type == "shorthand_property_identifier":
            editor.replace(pair, f"{js_key(key)}: {to_js_literal(value, indent)}")
            continue
        current = unwrap_expression(pair.child_by_field_name("value"))
        if strategy == "deep" and isinstance(value, dict) and current is not None and current.type == "object":
            merge_object_literal(editor, current, value, strategy)
            continue
        if current is not None:
            editor.replace(current, to_js_literal(value, indent))
    insert_properties(editor, obj, additions)


def merge_config(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    editor = SourceEditor(context.read(path), path)
    export_name = params.get("exportName", "default")
    obj = find_config_object(editor, export_name)
    if obj is None:
        raise ValueError(f"Export '{export_name}' is not an object literal (or a reference to one)")
    merge_object_literal(editor, obj, params["propertiesToMerge"], params.get("mergeStrategy", "deep"))
    return editor.apply()


JS_CONFIG_MERGER = ModifierDefinition(
    name="js-config-merger",
    description="Deep-merges properties into an exported configuration object literal",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=SOURCE_FILE_TYPES,
    transform=merge_config,
)
