"""Jinja2 rendering for blueprint actions.

Provides the TemplateRenderer class which renders templated action fields,
evaluates action conditions and loads template files from an optional
template directory.  Undefined variables are always an error: a reference to
a context value that does not exist raises instead of rendering as an empty
string.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateSyntaxError,
    Undefined,
    meta,
)

from stackweave.errors import ConditionEvaluationError, TemplateRenderError

# A string that is exactly one ``{{ expression }}`` and nothing else.
_SINGLE_EXPRESSION = re.compile(r"^\s*\{\{(?P<expr>(?:(?!\{\{|\}\}).)+)\}\}\s*$", re.DOTALL)

# Every ``{{ ... }}`` span, for telling template references from literal
# braces such as JSX ``style={{ color: "red" }}``.
_DOUBLE_BRACES = re.compile(r"\{\{(?P<body>(?:(?!\{\{|\}\}).)*)\}\}", re.DOTALL)
_RAW_BLOCK = re.compile(r"\{%-?\s*raw\s*-?%\}")
_BOUND_NAMES = re.compile(r"\{%-?\s*(?:for\s+(?P<loop>[\w\s,()]+?)\s+in\s|set\s+(?P<set>\w+))")

_FALSY_STRINGS = {"", "false", "0", "no", "none", "null", "off"}


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders templated blueprint content with a context dictionary.

    The context typically holds ``project``, ``module`` and ``paths``
    namespaces, plus ``item`` and ``index`` while a ``forEach`` action is
    being replayed.

    Args:
        template_dir: Directory that ``CREATE_FILE`` actions may load
            ``template`` files from.  ``None`` disables file templates.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        self.template_dir = Path(template_dir) if template_dir is not None else None
        loader: BaseLoader | None = None
        if self.template_dir is not None:
            loader = FileSystemLoader(str(self.template_dir))
        self.env = Environment(
            loader=loader,
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        # Register custom filters
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter
        self.env.filters["snake_case"] = _snake_case_filter
        self.env.filters["camel_case"] = _camel_case_filter

    # -- Rendering ---------------------------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a template file from the template directory.

        Raises:
            TemplateRenderError: No template directory is configured, the
                template is missing, or rendering failed.
        """
        if self.template_dir is None:
            raise TemplateRenderError(
                f"Cannot load template '{template_path}': no template directory configured"
            )
        try:
            return self.env.get_template(template_path).render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Template '{template_path}' failed to render: {exc}") from exc

    def render_string(self, template_string: str, context: dict[str, Any]) -> str:
        """Render an inline template string.

        Strings without template markup are returned unchanged, and so are
        ``{{ ... }}`` spans that are not template expressions (JSX object
        literals such as ``style={{ color: 'red' }}``).
        """
        if not _has_markup(template_string):
            return template_string
        source = self._shield_literals(template_string, context)
        try:
            return self.env.from_string(source).render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Could not render {template_string!r}: {exc}") from exc

    def is_expression(self, body: str, known: set[str]) -> bool:
        """True if ``{{ body }}`` should be rendered rather than kept as text.

        The body must parse as a Jinja expression.  A bare name counts only
        when it is one of *known*; attribute access, filters, calls and
        subscripts always count, so ``{{ projct.name }}`` still fails loudly.
        """
        try:
            ast = self.env.parse("{{" + body + "}}")
        except TemplateSyntaxError:
            return False
        if meta.find_undeclared_variables(ast) <= known:
            return True
        return any(token in body for token in ".|([")

    def _shield_literals(self, text: str, context: dict[str, Any]) -> str:
        """Wrap non-expression ``{{ ... }}`` spans in ``{% raw %}`` blocks."""
        if "{{" not in text or _RAW_BLOCK.search(text):
            return text
        known = set(context) | _bound_names(text)

        def shield(match: re.Match[str]) -> str:
            if self.is_expression(match.group("body"), known):
                return match.group(0)
            return "{% raw %}" + match.group(0) + "{% endraw %}"

        return _DOUBLE_BRACES.sub(shield, text)

    def evaluate(self, expression: str, context: dict[str, Any]) -> Any:
        """Evaluate a bare Jinja expression (no braces) to its native value."""
        try:
            value = self.env.compile_expression(expression, undefined_to_none=False)(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Could not evaluate {expression.strip()!r}: {exc}") from exc
        if isinstance(value, Undefined):
            raise TemplateRenderError(f"Could not evaluate {expression.strip()!r}: undefined value")
        return value

    def render_value(self, value: Any, context: dict[str, Any], native: bool = False) -> Any:
        """Render every string inside *value*, recursing into lists and dicts.

        With *native* set, a string consisting of a single ``{{ expr }}``
        becomes the expression's value (a list stays a list).  Nested
        containers are always rendered natively; only the top-level call
        decides.
        """
        if isinstance(value, str):
            if native:
                match = _SINGLE_EXPRESSION.match(value)
                if match and self.is_expression(match.group("expr"), set(context)):
                    return self.evaluate(match.group("expr"), context)
            return self.render_string(value, context)
        if isinstance(value, list):
            return [self.render_value(v, context, native=True) for v in value]
        if isinstance(value, dict):
            return {
                self.render_string(k, context) if isinstance(k, str) else k: self.render_value(v, context, native=True)
                for k, v in value.items()
            }
        return value

    # -- Conditions --------------------------------------------------------

    def evaluate_condition(self, condition: str, context: dict[str, Any]) -> bool:
        """Evaluate an action condition to a boolean.

        ``{{ module.parameters.auth }}`` is evaluated as an expression; any
        other text is rendered and the result coerced, where ``""``,
        ``false``, ``0``, ``no``, ``none``, ``null`` and ``off`` are false.

        Raises:
            ConditionEvaluationError: The condition references an undefined
                value or is not valid template syntax.
        """
        try:
            match = _SINGLE_EXPRESSION.match(condition)
            if match:
                value = self.evaluate(match.group("expr"), context)
            else:
                value = self.render_string(condition, context)
        except TemplateRenderError as exc:
            raise ConditionEvaluationError(f"Condition {condition!r} could not be evaluated: {exc.message}") from exc
        return coerce_bool(value)

    # -- Utility -----------------------------------------------------------

    def list_templates(self) -> list[str]:
        """Sorted template paths relative to the template directory."""
        if self.template_dir is None or not self.template_dir.is_dir():
            return []
        return sorted(
            p.relative_to(self.template_dir).as_posix()
            for p in self.template_dir.rglob("*")
            if p.is_file()
        )


def coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    return bool(value)


def lookup_path(context: dict[str, Any], dotted: str) -> Any:
    """Resolve ``module.parameters.pages`` against *context*.

    The path may be wrapped in ``{{ }}``.  Numeric segments index into lists.

    Raises:
        KeyError: Some segment does not exist.
    """
    match = _SINGLE_EXPRESSION.match(dotted)
    path = (match.group("expr") if match else dotted).strip()
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise KeyError(path)
    return current


def _has_markup(text: str) -> bool:
    return "{{" in text or "{%" in text or "{#" in text


def _bound_names(text: str) -> set[str]:
    """Names bound by ``{% for %}`` and ``{% set %}`` tags inside *text*."""
    names: set[str] = set()
    for match in _BOUND_NAMES.finditer(text):
        if match.group("set"):
            names.add(match.group("set"))
        else:
            names.update(re.findall(r"\w+", match.group("loop")))
    return names


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", value)
    return "".join(word[:1].upper() + word[1:] for word in parts if word)


def _snake_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def _camel_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""
