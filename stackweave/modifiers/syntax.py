"""Tree-sitter helpers shared by the source-code modifiers.

Every source modifier follows the same parse/edit/print cycle:

1. Parse the current file with the TypeScript (or TSX) grammar.
2. Locate the nodes to change and queue byte-range edits on a
   :class:`SourceEditor`.
3. Apply the edits and re-parse the result. Output that no longer parses is
   rejected with :class:`SourceSyntaxError`.

Untouched bytes are copied verbatim, so formatting and comments outside the
edited ranges survive.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

import tree_sitter_typescript
from tree_sitter import Language, Node, Parser, Tree

TYPESCRIPT = Language(tree_sitter_typescript.language_typescript())
TSX = Language(tree_sitter_typescript.language_tsx())

SOURCE_FILE_TYPES = ("ts", "tsx", "js", "jsx", "mjs", "cjs", "mts", "cts")

_PLAIN_TS_SUFFIXES = {".ts", ".mts", ".cts"}
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_WS_RE = re.compile(r"\s+")

_DECLARATION_TYPES = {
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "interface_declaration",
    "type_alias_declaration",
    "enum_declaration",
}


class SourceSyntaxError(ValueError):
    """Raised when a JS/TS source cannot be parsed, before or after an edit."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: {detail}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def language_for(path: str) -> Language:
    """TSX for JSX-capable extensions, plain TypeScript for ``.ts`` files.

    The TSX grammar is a superset that also accepts plain JavaScript. Plain
    ``.ts`` files use the TypeScript grammar so ``<T>expr`` casts parse.
    """
    if PurePosixPath(path).suffix.lower() in _PLAIN_TS_SUFFIXES:
        return TYPESCRIPT
    return TSX


def parse_source(source: str, path: str) -> Tree:
    """Parse *source* and fail on any syntax error."""
    parser = Parser(language_for(path))
    tree = parser.parse(source.encode("utf-8"))
    if tree.root_node.has_error:
        raise SourceSyntaxError(path, f"cannot parse source (error near line {_first_error_line(tree.root_node)})")
    return tree


def _first_error_line(node: Node) -> int:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current.start_point[0] + 1
        stack.extend(reversed(current.children))
    return node.start_point[0] + 1


# ---------------------------------------------------------------------------
# SourceEditor
# ---------------------------------------------------------------------------


@dataclass(order=True)
class _Edit:
    start: int
    end: int
    seq: int
    text: str = field(compare=False)


class SourceEditor:
    """Queues byte-range edits against a parsed source and prints the result."""

    def __init__(self, source: str, path: str) -> None:
        self.path = path
        self.source = source
        self.data = source.encode("utf-8")
        self.tree = parse_source(source, path)
        self._edits: list[_Edit] = []
        self._appended = 0

    @property
    def root(self) -> Node:
        return self.tree.root_node

    @property
    def changed(self) -> bool:
        return bool(self._edits)

    def text(self, node: Node) -> str:
        return self.data[node.start_byte : node.end_byte].decode("utf-8")

    def indent_of(self, node: Node) -> str:
        """Leading whitespace of the line *node* starts on."""
        line_start = self.data.rfind(b"\n", 0, node.start_byte) + 1
        line = self.data[line_start : node.start_byte].decode("utf-8")
        return line[: len(line) - len(line.lstrip())]

    def replace(self, node: Node, text: str) -> None:
        self._queue(node.start_byte, node.end_byte, text)

    def replace_range(self, start: int, end: int, text: str) -> None:
        """Replace the bytes ``[start, end)``, for edits spanning sibling nodes."""
        self._queue(start, end, text)

    def insert(self, offset: int, text: str) -> None:
        self._queue(offset, offset, text)

    def insert_after(self, node: Node, text: str) -> None:
        self._queue(node.end_byte, node.end_byte, text)

    def append(self, text: str) -> None:
        """Append *text* at the end of the file, separated by a blank line."""
        body_end = len(self.data.rstrip())
        lead = "\n\n" if body_end or self._appended else ""
        self._appended += 1
        self._queue(body_end, body_end, lead + text.strip("\n"))

    def apply(self) -> str:
        """Apply queued edits (in reverse offset order) and validate the result."""
        if not self._edits:
            return self.source
        ordered = sorted(self._edits)
        for before, after in zip(ordered, ordered[1:]):
            if after.start < before.end:
                raise SourceSyntaxError(self.path, "overlapping edits")

        data = self.data
        for edit in reversed(ordered):
            data = data[: edit.start] + edit.text.encode("utf-8") + data[edit.end :]
        output = data.decode("utf-8")
        if self._appended and not output.endswith("\n"):
            output += "\n"
        try:
            parse_source(output, self.path)
        except SourceSyntaxError as exc:
            raise SourceSyntaxError(self.path, f"edit produced invalid source: {exc.detail}") from exc
        return output

    def _queue(self, start: int, end: int, text: str) -> None:
        self._edits.append(_Edit(start, end, len(self._edits), text))


# ---------------------------------------------------------------------------
# Tree queries
# ---------------------------------------------------------------------------


def string_value(node: Node) -> str:
    """Unquoted value of a ``string`` node."""
    raw = node.text.decode("utf-8")
    if len(raw) >= 2 and raw[0] in "'\"`" and raw[-1] == raw[0]:
        return raw[1:-1]
    return raw


def unwrap_expression(node: Node | None) -> Node | None:
    """Strip parentheses and ``satisfies``/``as`` wrappers around an expression."""
    while node is not None and node.type in ("parenthesized_expression", "satisfies_expression", "as_expression"):
        inner = node.named_children[0] if node.named_children else None
        if inner is None:
            break
        node = inner
    return node


def has_child_token(node: Node, token: str) -> bool:
    return any(child.type == token for child in node.children)


def default_export_value(root: Node) -> Node | None:
    """Expression of ``export default <expr>``, if any."""
    for statement in root.named_children:
        if statement.type != "export_statement" or not has_child_token(statement, "default"):
            continue
        value = statement.child_by_field_name("value")
        if value is not None:
            return value
        declaration = statement.child_by_field_name("declaration")
        if declaration is not None:
            return declaration
    return None


def commonjs_export_value(root: Node) -> Node | None:
    """Right-hand side of a top-level ``module.exports = <expr>``."""
    for statement in root.named_children:
        if statement.type != "expression_statement" or not statement.named_children:
            continue
        expression = statement.named_children[0]
        if expression.type != "assignment_expression":
            continue
        left = expression.child_by_field_name("left")
        if left is not None and _WS_RE.sub("", left.text.decode("utf-8")) == "module.exports":
            return expression.child_by_field_name("right")
    return None


def variable_declarator(root: Node, name: str, exported_only: bool = False) -> Node | None:
    """Top-level ``const|let|var <name> = ...`` declarator, exported or not."""
    for statement in root.named_children:
        declaration = statement
        if statement.type == "export_statement":
            declaration = statement.child_by_field_name("declaration")
            if declaration is None:
                continue
        elif exported_only:
            continue
        if declaration.type not in ("lexical_declaration", "variable_declaration"):
            continue
        for declarator in declaration.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = declarator.child_by_field_name("name")
            if name_node is not None and name_node.text.decode("utf-8") == name:
                return declarator
    return None


def export_value(root: Node, export_name: str) -> Node | None:
    """Expression exported under *export_name* (``"default"`` for the default export)."""
    if export_name == "default":
        return default_export_value(root)
    declarator = variable_declarator(root, export_name, exported_only=True)
    if declarator is None:
        return None
    return declarator.child_by_field_name("value")


def resolve_object(root: Node, expression: Node | None) -> Node | None:
    """Follow an exported expression to the object literal it denotes.

    Handles a literal, an identifier bound to a top-level literal, and a call
    whose first argument resolves to a literal (an already-wrapped config).
    """
    seen: set[int] = set()
    node = unwrap_expression(expression)
    while node is not None and node.start_byte not in seen:
        seen.add(node.start_byte)
        if node.type == "object":
            return node
        if node.type == "identifier":
            declarator = variable_declarator(root, node.text.decode("utf-8"))
            node = unwrap_expression(declarator.child_by_field_name("value")) if declarator else None
            continue
        if node.type == "call_expression":
            arguments = node.child_by_field_name("arguments")
            first = arguments.named_children[0] if arguments and arguments.named_children else None
            node = unwrap_expression(first)
            continue
        return None
    return None


def call_function_name(node: Node | None) -> str | None:
    """Callee text of a call expression, e.g. ``withSentryConfig``."""
    node = unwrap_expression(node)
    if node is None or node.type != "call_expression":
        return None
    function = node.child_by_field_name("function")
    return function.text.decode("utf-8") if function is not None else None


def declared_names(statement: Node) -> list[str]:
    """Names a top-level statement declares (functions, classes, types, variables)."""
    target = statement
    if statement.type == "export_statement":
        target = statement.child_by_field_name("declaration")
        if target is None:
            return []
    if target.type in _DECLARATION_TYPES:
        name = target.child_by_field_name("name")
        return [name.text.decode("utf-8")] if name is not None else []
    if target.type in ("lexical_declaration", "variable_declaration"):
        names = []
        for declarator in target.named_children:
            if declarator.type != "variable_declarator":
                continue
            name = declarator.child_by_field_name("name")
            if name is not None and name.type == "identifier":
                names.append(name.text.decode("utf-8"))
        return names
    return []


def top_level_names(root: Node) -> set[str]:
    names: set[str] = set()
    for statement in root.named_children:
        names.update(declared_names(statement))
    return names


def normalize_statement(text: str) -> str:
    """Whitespace- and semicolon-insensitive key used to detect duplicates."""
    return _WS_RE.sub(" ", text.strip()).rstrip(";").strip()


def object_key(pair: Node) -> str | None:
    """Key text of an object ``pair`` (identifier, string or number)."""
    if pair.type == "shorthand_property_identifier":
        return pair.text.decode("utf-8")
    if pair.type != "pair":
        return None
    key = pair.child_by_field_name("key")
    if key is None:
        return None
    if key.type == "string":
        return string_value(key)
    return key.text.decode("utf-8")


def find_pair(obj: Node, key: str) -> Node | None:
    for child in obj.named_children:
        if object_key(child) == key:
            return child
    return None


# ---------------------------------------------------------------------------
# JS literal printing
# ---------------------------------------------------------------------------


def js_key(key: str) -> str:
    return key if _IDENTIFIER_RE.match(key) else json.dumps(key)


def to_js_literal(value: Any, indent: str = "", step: str = "  ") -> str:
    """Print a JSON-compatible value as a JS expression.

    Strings beginning with ``process.env.`` are emitted as raw expressions
    so configuration can reference environment variables.
    """
    if isinstance(value, dict):
        if not value:
            return "{}"
        inner = indent + step
        items = [f"{inner}{js_key(str(k))}: {to_js_literal(v, inner, step)}" for k, v in value.items()]
        return "{\n" + ",\n".join(items) + "\n" + indent + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_js_literal(v, indent, step) for v in value) + "]"
    if isinstance(value, str) and value.startswith("process.env."):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return json.dumps(value, ensure_ascii=False)


def insert_properties(editor: SourceEditor, obj: Node, properties: dict[str, Any]) -> None:
    """Queue insertion of new ``key: value`` pairs at the end of *obj*."""
    if not properties:
        return
    members = obj.named_children
    if not members:
        base = editor.indent_of(obj)
        inner = base + "  "
        body = ",\n".join(f"{inner}{js_key(k)}: {to_js_literal(v, inner)}" for k, v in properties.items())
        editor.replace(obj, "{\n" + body + "\n" + base + "}")
        return

    last = members[-1]
    inner = editor.indent_of(last)
    multiline = editor.data.find(b"\n", obj.start_byte, obj.end_byte) != -1
    separator = f"\n{inner}" if multiline else " "
    rendered = [f"{js_key(k)}: {to_js_literal(v, inner)}" for k, v in properties.items()]

    trailing = last.next_sibling
    if trailing is not None and trailing.type == ",":
        text = "".join(f"{separator}{item}," for item in rendered)
        editor.insert_after(trailing, text)
    else:
        text = "".join(f",{separator}{item}" for item in rendered)
        editor.insert_after(last, text)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@dataclass
class ImportSpec:
    """One import requirement: ``import def, { a, b } from 'source'``."""

    source: str
    default: str | None = None
    namespace: str | None = None
    named: list[str] = field(default_factory=list)
    type_only: bool = False

    @classmethod
    def from_params(cls, data: dict[str, Any]) -> "ImportSpec":
        """Build from the blueprint shape ``{moduleSpecifier, namedImports, defaultImport, namespaceImport, typeOnly}``."""
        named = data.get("namedImports") or []
        if isinstance(named, str):
            named = [named]
        return cls(
            source=data["moduleSpecifier"],
            default=data.get("defaultImport") or None,
            namespace=data.get("namespaceImport") or None,
            named=[n.strip() for n in named if n and n.strip()],
            type_only=bool(data.get("typeOnly", False)),
        )

    @property
    def side_effect_only(self) -> bool:
        return not (self.default or self.namespace or self.named)


IMPORT_SPEC_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["moduleSpecifier"],
    "properties": {
        "moduleSpecifier": {"type": "string", "minLength": 1},
        "namedImports": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "defaultImport": {"type": "string", "minLength": 1},
        "namespaceImport": {"type": "string", "minLength": 1},
        "typeOnly": {"type": "boolean"},
    },
}


@dataclass
class _ParsedImport:
    node: Node
    source: str
    default: str | None
    namespace: str | None
    named: list[str]
    type_only: bool
    semicolon: bool
    quote: str


def _parse_import(node: Node) -> _ParsedImport | None:
    source_node = node.child_by_field_name("source")
    if source_node is None:
        return None
    default = namespace = None
    named: list[str] = []
    for child in node.named_children:
        if child.type == "import_require_clause":
            return None
        if child.type != "import_clause":
            continue
        for part in child.named_children:
            if part.type == "identifier":
                default = part.text.decode("utf-8")
            elif part.type == "namespace_import":
                ident = [c for c in part.named_children if c.type == "identifier"]
                namespace = ident[0].text.decode("utf-8") if ident else None
            elif part.type == "named_imports":
                for spec in part.named_children:
                    if spec.type == "import_specifier":
                        named.append(_WS_RE.sub(" ", spec.text.decode("utf-8")).strip())
    raw_source = source_node.text.decode("utf-8")
    return _ParsedImport(
        node=node,
        source=string_value(source_node),
        default=default,
        namespace=namespace,
        named=named,
        type_only=has_child_token(node, "type"),
        semicolon=node.text.decode("utf-8").rstrip().endswith(";"),
        quote=raw_source[0] if raw_source and raw_source[0] in "'\"" else "'",
    )


def render_import(spec: ImportSpec, quote: str = "'", semicolon: bool = True) -> str:
    parts: list[str] = []
    if spec.default:
        parts.append(spec.default)
    if spec.namespace:
        parts.append(f"* as {spec.namespace}")
    elif spec.named:
        parts.append("{ " + ", ".join(spec.named) + " }")
    end = ";" if semicolon else ""
    if not parts:
        return f"import {quote}{spec.source}{quote}{end}"
    keyword = "import type" if spec.type_only else "import"
    return f"{keyword} {', '.join(parts)} from {quote}{spec.source}{quote}{end}"


def _local_name(specifier: str) -> str:
    """``"a as b"`` -> ``"b"``; ``"type X"`` -> ``"X"``."""
    text = specifier.replace("type ", "", 1) if specifier.startswith("type ") else specifier
    if " as " in text:
        return text.split(" as ", 1)[1].strip()
    return text.strip()


def _merge_into(existing: _ParsedImport, wanted: ImportSpec) -> tuple[ImportSpec | None, ImportSpec | None]:
    """Combine *wanted* with an existing import of the same source.

    Returns ``(rewritten, extra)``: the replacement for the existing statement
    (``None`` when unchanged) and an import that could not be merged and must
    be added as its own statement (``None`` when everything fit).
    """
    merged = ImportSpec(
        source=existing.source,
        default=existing.default,
        namespace=existing.namespace,
        named=list(existing.named),
        type_only=existing.type_only,
    )
    extra = ImportSpec(source=wanted.source, type_only=wanted.type_only)
    local_names = {_local_name(n) for n in merged.named}

    if wanted.default and wanted.default != merged.default:
        if merged.default is None:
            merged.default = wanted.default
        else:
            extra.default = wanted.default
    if wanted.namespace and wanted.namespace != merged.namespace:
        if merged.namespace is None and not merged.named:
            merged.namespace = wanted.namespace
        else:
            extra.namespace = wanted.namespace
    missing = [n for n in wanted.named if _local_name(n) not in local_names]
    if missing:
        if merged.namespace is None:
            merged.named.extend(missing)
        else:
            extra.named.extend(missing)

    changed = (
        merged.default != existing.default
        or merged.namespace != existing.namespace
        or merged.named != existing.named
    )
    return (merged if changed else None), (None if extra.side_effect_only else extra)


def add_imports(editor: SourceEditor, specs: list[ImportSpec]) -> None:
    """Queue edits that make every spec in *specs* importable.

    Imports are deduplicated by module specifier: names are merged into an
    existing declaration of the same source (and same ``type`` modifier);
    otherwise a new declaration is inserted after the last import.
    """
    if not specs:
        return
    existing = [p for p in (_parse_import(n) for n in editor.root.named_children if n.type == "import_statement") if p]
    quote = existing[0].quote if existing else "'"
    semicolon = existing[-1].semicolon if existing else True

    rewrites: dict[int, ImportSpec] = {}
    by_node: dict[int, _ParsedImport] = {}
    additions: list[ImportSpec] = []

    for wanted in _coalesce(specs):
        target = next(
            (p for p in existing if p.source == wanted.source and p.type_only == wanted.type_only),
            None,
        )
        if target is None:
            if wanted.side_effect_only and any(p.source == wanted.source for p in existing):
                continue
            additions.append(wanted)
            continue
        key = target.node.start_byte
        current = target
        if key in rewrites:
            planned = rewrites[key]
            current = _ParsedImport(
                target.node, planned.source, planned.default, planned.namespace,
                list(planned.named), planned.type_only, target.semicolon, target.quote,
            )
        rewritten, extra = _merge_into(current, wanted)
        if rewritten is not None:
            rewrites[key] = rewritten
            by_node[key] = target
        if extra is not None:
            additions.append(extra)

    for key, spec in rewrites.items():
        parsed = by_node[key]
        editor.replace(parsed.node, render_import(spec, parsed.quote, parsed.semicolon))

    if not additions:
        return
    text = "\n".join(render_import(spec, quote, semicolon) for spec in additions)
    anchor = existing[-1].node if existing else prologue_end(editor.root)
    if anchor is not None:
        editor.insert_after(anchor, "\n" + text)
    else:
        editor.insert(0, text + ("\n\n" if editor.data.strip() else "\n"))


def _coalesce(specs: list[ImportSpec]) -> list[ImportSpec]:
    """Fold several specs for the same source into one, keeping first-seen order."""
    folded: dict[tuple[str, bool], ImportSpec] = {}
    result: list[ImportSpec] = []
    for spec in specs:
        key = (spec.source, spec.type_only)
        current = folded.get(key)
        if current is None:
            copy = ImportSpec(spec.source, spec.default, spec.namespace, list(spec.named), spec.type_only)
            folded[key] = copy
            result.append(copy)
            continue
        current.default = current.default or spec.default
        current.namespace = current.namespace or spec.namespace
        for name in spec.named:
            if name not in current.named:
                current.named.append(name)
    return result


def prologue_end(root: Node) -> Node | None:
    """Last statement of a directive prologue such as ``'use client'``."""
    last = None
    for statement in root.named_children:
        if statement.type == "comment":
            continue
        if (
            statement.type == "expression_statement"
            and statement.named_children
            and statement.named_children[0].type == "string"
        ):
            last = statement
            continue
        break
    return last


def import_specs_from_source(editor: SourceEditor) -> list[ImportSpec]:
    """Import declarations of a parsed source, as specs."""
    specs = []
    for node in editor.root.named_children:
        if node.type != "import_statement":
            continue
        parsed = _parse_import(node)
        if parsed is None:
            continue
        specs.append(ImportSpec(parsed.source, parsed.default, parsed.namespace, parsed.named, parsed.type_only))
    return specs
