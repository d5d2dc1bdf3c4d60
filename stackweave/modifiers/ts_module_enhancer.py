"""TypeScript/JavaScript module enhancer.

Adds import declarations (deduplicated by module specifier), appends
top-level statements and adds exports. A statement is skipped when the file
already contains the same statement or already declares one of the names it
declares, so re-running the modifier leaves the file unchanged.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.syntax import (
    IMPORT_SPEC_SCHEMA,
    SOURCE_FILE_TYPES,
    ImportSpec,
    SourceEditor,
    add_imports,
    declared_names,
    import_specs_from_source,
    normalize_statement,
    parse_source,
    top_level_names,
)

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "importsToAdd": {"type": "array", "items": IMPORT_SPEC_SCHEMA},
        "statementsToAppend": {
            "type": "array",
            "items": {
                "anyOf": [
                    {"type": "string", "minLength": 1},
                    {
                        "type": "object",
                        "required": ["content"],
                        "properties": {"content": {"type": "string", "minLength": 1}},
                    },
                ]
            },
        },
        "exportsToAdd": {"type": "array", "items": {"type": "string", "minLength": 1}},
    },
    "additionalProperties": False,
}


def _statement_text(item: Any) -> str:
    return item["content"] if isinstance(item, dict) else item


def _export_text(content: str) -> str:
    body = content.strip()
    if not body.startswith("export "):
        body = "export " + body
    if not body.endswith((";", "}")):
        body += ";"
    return body


def append_statements(
    editor: SourceEditor,
    statements: list[str],
    warn: Callable[[str], None] | None = None,
) -> int:
    """Queue *statements* for appending, skipping ones already present.

    Returns the number of statements queued.
    """
    existing_text = {
        normalize_statement(editor.text(node))
        for node in editor.root.named_children
        if node.type not in ("comment", "import_statement")
    }
    names = top_level_names(editor.root)
    queued = 0
    for statement in statements:
        key = normalize_statement(statement)
        if not key or key in existing_text:
            continue
        snippet = parse_source(statement, editor.path)
        new_names = [n for node in snippet.root_node.named_children for n in declared_names(node)]
        clashes = [n for n in new_names if n in names]
        if clashes:
            if warn is not None:
                warn(f"{editor.path} already declares {', '.join(clashes)}; statement skipped")
            continue
        editor.append(statement)
        existing_text.add(key)
        names.update(new_names)
        queued += 1
    return queued


def enhance_module(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    """Add imports, statements and exports to a module."""
    editor = SourceEditor(context.read(path), path)
    add_imports(editor, [ImportSpec.from_params(spec) for spec in params.get("importsToAdd", [])])
    statements = [_statement_text(item) for item in params.get("statementsToAppend", [])]
    statements += [_export_text(item) for item in params.get("exportsToAdd", [])]
    append_statements(editor, statements, context.warn)
    return editor.apply()


def merge_module_sources(path: str, existing: str, incoming: str) -> str:
    """Fold one module's source into another (the ``js`` conflict merge).

    Imports of *incoming* are merged into *existing*; its other top-level
    statements are appended unless already present.
    """
    addition = SourceEditor(incoming, path)
    editor = SourceEditor(existing, path)
    add_imports(editor, import_specs_from_source(addition))
    statements = [
        addition.text(node)
        for node in addition.root.named_children
        if node.type not in ("import_statement", "comment")
    ]
    append_statements(editor, statements)
    return editor.apply()


TS_MODULE_ENHANCER = ModifierDefinition(
    name="ts-module-enhancer",
    description="Adds imports, statements and exports to a TypeScript or JavaScript module",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=SOURCE_FILE_TYPES,
    transform=enhance_module,
)
