"""Manifest mergers: ``package.json``, ``tsconfig.json`` and generic JSON.

All three parse the current document, merge key by key, and print it back with
two-space indentation. Unrelated keys are preserved. Array handling follows the
``arrayPolicy`` parameter (``concat``, ``replace`` or ``unique``; ``unique`` by
default so repeated runs do not duplicate entries).
"""

from __future__ import annotations

from typing import Any

from stackweave.merge import ARRAY_POLICIES, deep_merge, parse_json_object, shallow_merge
from stackweave.modifiers.base import ModifierContext, ModifierDefinition
from stackweave.utils import dump_json

_STRING_MAP = {"type": "object", "additionalProperties": {"type": "string"}}
_ARRAY_POLICY = {"type": "string", "enum": list(ARRAY_POLICIES)}

PACKAGE_SECTIONS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
    "scripts",
    "engines",
)


# ---------------------------------------------------------------------------
# package.json
# ---------------------------------------------------------------------------

PACKAGE_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        **{section: _STRING_MAP for section in PACKAGE_SECTIONS},
        "browserslist": {"type": "array", "items": {"type": "string"}},
        "fields": {"type": "object", "description": "Any other top-level keys, deep-merged"},
        "mergeStrategy": {"type": "string", "enum": ["merge", "replace"]},
        "arrayPolicy": _ARRAY_POLICY,
    },
    "additionalProperties": False,
}


def merge_package_json(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    """Merge dependency maps, scripts and other fields into ``package.json``."""
    document = parse_json_object(context.read(path), path)
    replace = params.get("mergeStrategy", "merge") == "replace"
    array_policy = params.get("arrayPolicy", "unique")

    for section in PACKAGE_SECTIONS:
        incoming = params.get(section)
        if incoming is None:
            continue
        current = document.get(section) if isinstance(document.get(section), dict) else {}
        document[section] = dict(incoming) if replace else {**current, **incoming}

    if "browserslist" in params:
        current_list = document.get("browserslist") if isinstance(document.get("browserslist"), list) else []
        merged = deep_merge(
            {"browserslist": current_list},
            {"browserslist": params["browserslist"]},
            "replace" if replace else array_policy,
        )
        document["browserslist"] = merged["browserslist"]

    if params.get("fields"):
        document = deep_merge(document, params["fields"], array_policy)

    return dump_json(document)


# ---------------------------------------------------------------------------
# tsconfig.json
# ---------------------------------------------------------------------------

TSCONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "compilerOptions": {"type": "object"},
        "paths": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": {"type": "string"}},
        },
        "include": {"type": "array", "items": {"type": "string"}},
        "exclude": {"type": "array", "items": {"type": "string"}},
        "extends": {"type": "string"},
        "arrayPolicy": _ARRAY_POLICY,
    },
    "additionalProperties": False,
}


def enhance_tsconfig(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    """Merge compiler options, path aliases and include/exclude globs."""
    document = parse_json_object(context.read(path), path)
    array_policy = params.get("arrayPolicy", "unique")

    incoming: dict[str, Any] = {}
    if params.get("compilerOptions"):
        incoming["compilerOptions"] = dict(params["compilerOptions"])
    if params.get("paths"):
        incoming.setdefault("compilerOptions", {})
        incoming["compilerOptions"]["paths"] = params["paths"]
    for key in ("include", "exclude"):
        if key in params:
            incoming[key] = params[key]
    if "extends" in params:
        incoming["extends"] = params["extends"]

    return dump_json(deep_merge(document, incoming, array_policy))


# ---------------------------------------------------------------------------
# Generic JSON
# ---------------------------------------------------------------------------

JSON_OBJECT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["propertiesToMerge"],
    "properties": {
        "targetPath": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "propertiesToMerge": {"type": "object"},
        "mergeStrategy": {"type": "string", "enum": ["deep", "shallow", "replace"]},
        "arrayPolicy": _ARRAY_POLICY,
    },
    "additionalProperties": False,
}


def merge_json_object(path: str, params: dict[str, Any], context: ModifierContext) -> str:
    """Merge ``propertiesToMerge`` into the object found at ``targetPath``.

    Intermediate objects along ``targetPath`` are created when missing; a
    non-object value in the way is an error.
    """
    document = parse_json_object(context.read(path), path)
    target_path = list(params.get("targetPath", []))
    strategy = params.get("mergeStrategy", "deep")
    array_policy = params.get("arrayPolicy", "unique")
    incoming = params["propertiesToMerge"]

    def merge_at(node: dict[str, Any], remaining: list[str]) -> dict[str, Any]:
        if not remaining:
            if strategy == "replace":
                return dict(incoming)
            if strategy == "shallow":
                return shallow_merge(node, incoming)
            return deep_merge(node, incoming, array_policy)
        head, rest = remaining[0], remaining[1:]
        child = node.get(head, {})
        if not isinstance(child, dict):
            raise ValueError(f"'{head}' in {path} is not an object")
        updated = dict(node)
        updated[head] = merge_at(child, rest)
        return updated

    return dump_json(merge_at(document, target_path))


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

PACKAGE_JSON_MERGER = ModifierDefinition(
    name="package-json-merger",
    description="Merges dependencies, scripts and other properties into package.json",
    params_schema=PACKAGE_JSON_SCHEMA,
    supported_file_types=("json",),
    transform=merge_package_json,
    initial_content="{}\n",
)

TSCONFIG_ENHANCER = ModifierDefinition(
    name="tsconfig-enhancer",
    description="Adds compiler options, path aliases and include/exclude globs to tsconfig.json",
    params_schema=TSCONFIG_SCHEMA,
    supported_file_types=("json",),
    transform=enhance_tsconfig,
    initial_content="{}\n",
)

JSON_OBJECT_MERGER = ModifierDefinition(
    name="json-object-merger",
    description="Merges properties into any JSON document at a target path",
    params_schema=JSON_OBJECT_SCHEMA,
    supported_file_types=("json",),
    transform=merge_json_object,
    initial_content="{}\n",
)
