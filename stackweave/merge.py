"""Structured content combinators.

Pure functions shared by the manifest modifiers, the ``MERGE_JSON`` action and
the conflict resolver: JSON deep merge with a configurable array policy, and
CSS rule-block concatenation.
"""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Literal

ArrayPolicy = Literal["concat", "replace", "unique"]

ARRAY_POLICIES: tuple[str, ...] = ("concat", "replace", "unique")


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def deep_merge(
    base: dict[str, Any],
    incoming: dict[str, Any],
    array_policy: ArrayPolicy = "concat",
) -> dict[str, Any]:
    """Recursively merge *incoming* into a copy of *base*.

    Nested objects are merged key by key; scalars from *incoming* win. Arrays
    follow *array_policy*:

    * ``concat``: base items followed by incoming items.
    * ``replace``: incoming array replaces the base array.
    * ``unique``: concatenation without repeating items already present.

    Neither argument is mutated.
    """
    result = copy.deepcopy(base)
    for key, value in incoming.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value, array_policy)
        elif isinstance(current, list) and isinstance(value, list):
            result[key] = merge_arrays(current, value, array_policy)
        else:
            result[key] = copy.deepcopy(value)
    return result


def shallow_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Top-level key merge: every key in *incoming* replaces the base value."""
    result = copy.deepcopy(base)
    result.update(copy.deepcopy(incoming))
    return result


def merge_arrays(base: list[Any], incoming: list[Any], policy: ArrayPolicy) -> list[Any]:
    if policy == "replace":
        return copy.deepcopy(incoming)
    if policy == "unique":
        merged = copy.deepcopy(base)
        for item in incoming:
            if item not in merged:
                merged.append(copy.deepcopy(item))
        return merged
    return copy.deepcopy(base) + copy.deepcopy(incoming)


def parse_json_object(text: str, source: str = "<content>") -> dict[str, Any]:
    """Parse *text* as a JSON object; blank text is an empty object.

    Raises:
        ValueError: If the text is not JSON or not an object.
    """
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{source} is not valid JSON: {exc.msg} (line {exc.lineno})") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{source} must contain a JSON object, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# CSS
# ---------------------------------------------------------------------------

_WS_RE = re.compile(r"\s+")


def split_css_blocks(text: str) -> list[str]:
    """Split a stylesheet into top-level chunks (rules, at-rules, statements).

    Braces are tracked so nested at-rule bodies stay in one chunk. Comments
    are attached to the chunk that follows them.
    """
    blocks: list[str] = []
    depth = 0
    start = 0
    i = 0
    length = len(text)
    while i < length:
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = length if end == -1 else end + 2
            continue
        ch = text[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(depth - 1, 0)
            if depth == 0:
                blocks.append(text[start : i + 1].strip())
                start = i + 1
        elif ch == ";" and depth == 0:
            blocks.append(text[start : i + 1].strip())
            start = i + 1
        i += 1
    tail = text[start:].strip()
    if tail:
        blocks.append(tail)
    return [block for block in blocks if block]


def merge_css(existing: str, incoming: str) -> str:
    """Concatenate rule blocks, skipping incoming blocks already present."""
    seen = {_WS_RE.sub(" ", block) for block in split_css_blocks(existing)}
    additions = []
    for block in split_css_blocks(incoming):
        key = _WS_RE.sub(" ", block)
        if key in seen:
            continue
        seen.add(key)
        additions.append(block)
    if not additions:
        return existing
    head = existing.rstrip("\n")
    separator = "\n\n" if head else ""
    return head + separator + "\n\n".join(additions) + "\n"
