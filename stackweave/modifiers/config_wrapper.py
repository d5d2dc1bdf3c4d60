"""Config wrapper: wrap a config file's export with merged options and env.

Works on ``export default <config>`` (ESM) and ``module.exports = <config>``
(CommonJS). Two passes over the syntax tree:

1. ``env`` injection: merge ``env: { KEY: process.env.VAR }`` into the
   config object literal.
2. Wrapping: replace the exported expression with
   ``wrapper(<config>, {options})`` unless it already calls ``wrapper``, and
   make the wrapper importable (``import`` or ``require`` to match the file).
"""

from __future__ import annotations

from typing import Any

from tree_sitter import Node

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.config_merger import find_config_object, merge_object_literal
from stackweave.modifiers.export_wrapper import wrapper_call
from stackweave.modifiers.syntax import (
    SOURCE_FILE_TYPES,
    ImportSpec,
    SourceEditor,
    add_imports,
    call_function_name,
    commonjs_export_value,
    default_export_value,
    prologue_end,
    string_value,
)

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["wrapper"],
    "properties": {
        "wrapper": {"type": "string", "minLength": 1},
        "importFrom": {"type": "string", "minLength": 1},
        "importDefault": {"type": "boolean"},
        "imports": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "options": {"type": "object"},
        "env": {"type": "object", "additionalProperties": {"type": "string"}},
        "moduleSystem": {"type": "string", "enum": ["auto", "esm", "commonjs"]},
    },
    "additionalProperties": False,
}


def _env_expression(value: str) -> str:
    return value if value.startswith("process.env.") else f"process.env.{value}"


def inject_env(path: str, source: str, env: dict[str, str]) -> str:
    """Merge an ``env`` block into the exported config object."""
    if not env:
        return source
    editor = SourceEditor(source, path)
    obj = find_config_object(editor, "default")
    if obj is None:
        raise ValueError("Cannot inject env: the exported config is not an object literal")
    merge_object_literal(editor, obj, {"env": {k: _env_expression(v) for k, v in env.items()}})
    return editor.apply()


def _require_source(node: Node) -> str | None:
    """``'x'`` for a ``require('x')`` call node."""
    if node.type != "call_expression":
        return None
    function = node.child_by_field_name("function")
    arguments = node.child_by_field_name("arguments")
    if function is None or function.text != b"require" or arguments is None:
        return None
    first = arguments.named_children[0] if arguments.named_children else None
    if first is None or first.type != "string":
        return None
    return string_value(first)


def add_require(editor: SourceEditor, source: str, names: list[str], default: bool = False) -> None:
    """Make *names* available through ``require(source)``.

    Missing names are added to an existing ``const { ... } = require(source)``
    pattern; otherwise a new declaration is inserted at the top of the file.
    """
    last_require: Node | None = None
    for statement in editor.root.named_children:
        if statement.type not in ("lexical_declaration", "variable_declaration"):
            continue
        for declarator in statement.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            if value is None or _require_source(value) is None:
                continue
            last_require = statement
            if _require_source(value) != source:
                continue
            pattern = declarator.child_by_field_name("name")
            if pattern is None:
                continue
            if default:
                if pattern.type == "identifier":
                    return
                continue
            if pattern.type != "object_pattern":
                continue
            present = [editor.text(child) for child in pattern.named_children]
            missing = [n for n in names if n not in present]
            if missing:
                editor.replace(pattern, "{ " + ", ".join(present + missing) + " }")
            return

    binding = names[0] if default else "{ " + ", ".join(names) + " }"
    declaration = f"const {binding} = require('{source}');"
    anchor = last_require or prologue_end(editor.root)
    if anchor is not None:
        editor.insert_after(anchor, "\n" + declaration)
    else:
        editor.insert(0, declaration + "\n")


def wrap_config(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    source = inject_env(path, context.read(path), params.get("env") or {})

    editor = SourceEditor(source, path)
    wrapper = params["wrapper"]
    value = default_export_value(editor.root)
    commonjs = False
    if value is None:
        value = commonjs_export_value(editor.root)
        commonjs = value is not None
    if value is None:
        raise ValueError("Could not find a default export or module.exports in the config file")

    if call_function_name(value) != wrapper:
        editor.replace(
            value,
            wrapper_call(wrapper, editor.text(value), params.get("options"), editor.indent_of(value)),
        )

    import_from = params.get("importFrom")
    if import_from:
        system = params.get("moduleSystem", "auto")
        use_require = system == "commonjs" or (system == "auto" and commonjs)
        default = bool(params.get("importDefault"))
        extra = [n for n in params.get("imports", []) if n != wrapper]
        if use_require:
            if default:
                add_require(editor, import_from, [wrapper], default=True)
                if extra:
                    add_require(editor, import_from, extra)
            else:
                add_require(editor, import_from, [wrapper] + extra)
        elif default:
            add_imports(editor, [ImportSpec(source=import_from, default=wrapper, named=extra)])
        else:
            add_imports(editor, [ImportSpec(source=import_from, named=[wrapper] + extra)])
    else:
        context.warn(f"{path}: no importFrom given for {wrapper}; assuming it is already in scope")

    return editor.apply()


CONFIG_WRAPPER = ModifierDefinition(
    name="config-wrapper",
    description="Wraps a config file's export with a wrapper call, merged options and env injection",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=("js", "mjs", "cjs", "ts", "mts", "cts"),
    transform=wrap_config,
)
