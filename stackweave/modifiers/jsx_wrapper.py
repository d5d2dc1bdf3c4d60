"""JSX wrapper: enclose a JSX element, or its children, in another component.

``provider`` puts the wrapper inside the target around its children, the
shape a context provider takes inside a layout's ``<body>``. ``wrapper`` and
``hoc`` put it around the target element itself. A target the wrapper already
encloses is left alone, which makes the modifier idempotent.
"""

from __future__ import annotations

from typing import Any

from tree_sitter import Node

from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.modifiers.syntax import ImportSpec, SourceEditor, add_imports, to_js_literal

PARAMS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["targetComponent", "wrapperComponent"],
    "properties": {
        "targetComponent": {"type": "string", "minLength": 1},
        "wrapperComponent": {
            "type": "object",
            "required": ["name", "importFrom"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "importFrom": {"type": "string", "minLength": 1},
                "importDefault": {"type": "boolean"},
                "props": {"type": "object"},
            },
        },
        "wrapStrategy": {"enum": ["provider", "hoc", "wrapper"]},
    },
    "additionalProperties": False,
}

JSX_FILE_TYPES = ("tsx", "jsx", "js")

_ELEMENT_TYPES = {"jsx_element", "jsx_self_closing_element"}
_STEP = "  "


def element_name(node: Node) -> str | None:
    """Tag name of a JSX element (``Sentry.Provider``), None for fragments."""
    tag = node.children[0] if node.type == "jsx_element" and node.children else node
    name = tag.child_by_field_name("name")
    if name is None:
        return None
    return "".join(name.text.decode("utf-8").split())


def find_elements(root: Node, name: str) -> list[Node]:
    """Outermost elements named *name*, in document order."""
    found: list[Node] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type in _ELEMENT_TYPES and element_name(node) == name:
            found.append(node)
            continue
        stack.extend(reversed(node.children))
    return found


def jsx_props(props: dict[str, Any], indent: str = "") -> str:
    """Attribute text: strings as ``key="v"``, anything else as ``key={literal}``."""
    parts = []
    for key, value in props.items():
        if isinstance(value, str) and '"' not in value and not value.startswith("process.env."):
            parts.append(f' {key}="{value}"')
        else:
            parts.append(f" {key}={{{to_js_literal(value, indent)}}}")
    return "".join(parts)


def _enclosed_by(node: Node, name: str) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.type == "jsx_element" and element_name(parent) == name:
            return True
        parent = parent.parent
    return False


def _content(node: Node) -> list[Node]:
    # Children between the opening and closing tags, minus blank text.
    return [child for child in node.children[1:-1] if child.type != "jsx_text" or child.text.strip()]


def _block(opening: str, closing: str, body: str, indent: str) -> str:
    lines = body.split("\n")
    shifted = [lines[0]] + [_STEP + line if line.strip() else line for line in lines[1:]]
    return f"{opening}\n{indent}{_STEP}" + "\n".join(shifted) + f"\n{indent}{closing}"


def wrap_jsx(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    editor = SourceEditor(context.read(path), path)
    target = params["targetComponent"]
    wrapper = params["wrapperComponent"]
    name = wrapper["name"]
    strategy = params.get("wrapStrategy", "wrapper")

    elements = find_elements(editor.root, target)
    if not elements:
        raise ValueError(f"No <{target}> element found to wrap")

    closing = f"</{name}>"
    for element in elements:
        if _enclosed_by(element, name):
            continue
        content = _content(element) if strategy == "provider" and element.type == "jsx_element" else []
        if any(child.type in _ELEMENT_TYPES and element_name(child) == name for child in content):
            continue
        if content:
            first, last = content[0], content[-1]
            indent = editor.indent_of(first)
            body = editor.data[first.start_byte : last.end_byte].decode("utf-8")
            opening = f"<{name}{jsx_props(wrapper.get('props') or {}, indent)}>"
            editor.replace_range(first.start_byte, last.end_byte, _block(opening, closing, body, indent))
        else:
            indent = editor.indent_of(element)
            opening = f"<{name}{jsx_props(wrapper.get('props') or {}, indent)}>"
            editor.replace(element, _block(opening, closing, editor.text(element), indent))

    # Member tags such as Sentry.Provider import their namespace object.
    local = name.split(".", 1)[0]
    if wrapper.get("importDefault"):
        spec = ImportSpec(source=wrapper["importFrom"], default=local)
    else:
        spec = ImportSpec(source=wrapper["importFrom"], named=[local])
    add_imports(editor, [spec])
    return editor.apply()


JSX_WRAPPER = ModifierDefinition(
    name="jsx-wrapper",
    description="Wraps a JSX element or its children in a component and imports the component",
    params_schema=PARAMS_SCHEMA,
    supported_file_types=JSX_FILE_TYPES,
    transform=wrap_jsx,
)
