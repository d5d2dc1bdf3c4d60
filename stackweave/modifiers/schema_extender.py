"""Schema extender: append table definitions to a schema module.

A table whose name is already declared at the top level of the schema file is
skipped, so extending twice with the same tables is a no-op. Imports the new
definitions need are merged into the file's existing imports.
"""

from __future__ import annotations

from typing import Any

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.syntax import (
    IMPORT_SPEC_SCHEMA,
    SOURCE_FILE_TYPES,
    ImportSpec,
    SourceEditor,
    add_imports,
    declared_names,
    normalize_statement,
    parse_source,
    top_level_names,
)

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["tables"],
    "properties": {
        "tables": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "definition"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "definition": {"type": "string", "minLength": 1},
                },
            },
        },
        "imports": {"type": "array", "items": IMPORT_SPEC_SCHEMA},
    },
    "additionalProperties": False,
}


def extend_schema(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    editor = SourceEditor(context.read(path), path)
    declared = top_level_names(editor.root)
    present = {normalize_statement(editor.text(node)) for node in editor.root.named_children}

    for table in params["tables"]:
        name = table["name"]
        if name in declared or normalize_statement(table["definition"]) in present:
            continue
        snippet = parse_source(table["definition"], path)
        snippet_names = [n for node in snippet.root_node.named_children for n in declared_names(node)]
        if name not in snippet_names:
            context.warn(f"{path}: definition for table '{name}' does not declare '{name}'")
        editor.append(table["definition"])
        declared.update(snippet_names or [name])

    add_imports(editor, [ImportSpec.from_params(spec) for spec in params.get("imports", [])])
    return editor.apply()


SCHEMA_EXTENDER = ModifierDefinition(
    name="schema-extender",
    description="Appends table definitions to a schema module, skipping tables already declared",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=SOURCE_FILE_TYPES,
    transform=extend_schema,
)
