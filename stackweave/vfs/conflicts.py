"""Per-file conflict resolution.

Decides what happens when a create-style write targets a path that already
has content (staged by an earlier action or module, or present on disk).

Strategies:
    error    fail the action with :class:`FileConflict`
    skip     keep the existing content, record one warning
    replace  discard the existing content
    merge    combine both through a merge strategy (json, css, js, append)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stackweave.errors import FileConflict
from stackweave.merge import deep_merge, merge_css, parse_json_object
from stackweave.utils import dump_json

Strategy = Literal["error", "skip", "replace", "merge"]
MergeStrategy = Literal["json", "css", "js", "append"]

JsMerger = Callable[[str, str, str], str]

_JS_SUFFIXES = {".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".mts", ".cts"}


class ConflictPolicy(BaseModel):
    """Conflict policy attached to a file-producing action."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    strategy: Strategy = Field(default="error")
    merge_strategy: Optional[MergeStrategy] = Field(
        default=None,
        alias="mergeStrategy",
        description="Combinator for the merge strategy; inferred from the file type when omitted",
    )

    @model_validator(mode="after")
    def _merge_strategy_only_for_merge(self) -> "ConflictPolicy":
        if self.merge_strategy is not None and self.strategy != "merge":
            raise ValueError("merge_strategy is only valid with strategy 'merge'")
        return self

    @classmethod
    def of(cls, strategy: Strategy, merge_strategy: MergeStrategy | None = None) -> "ConflictPolicy":
        return cls(strategy=strategy, merge_strategy=merge_strategy)


@dataclass(frozen=True)
class ConflictOutcome:
    """Result of combining existing and incoming content."""

    content: str
    skipped: bool = False
    warning: str | None = None


def infer_merge_strategy(path: str) -> MergeStrategy:
    """Pick a merge combinator from the file extension."""
    suffix = PurePosixPath(path).suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix in (".css", ".scss"):
        return "css"
    if suffix in _JS_SUFFIXES:
        return "js"
    return "append"


class ConflictResolver:
    """Combines an existing file body with an incoming write.

    Args:
        js_merger: ``(path, existing, incoming) -> content`` used by the ``js``
            merge strategy. Defaults to the module enhancer's merge.
    """

    def __init__(self, js_merger: JsMerger | None = None) -> None:
        self._js_merger = js_merger

    def resolve(
        self,
        path: str,
        existing: str,
        incoming: str,
        policy: ConflictPolicy,
        origin: str | None = None,
    ) -> ConflictOutcome:
        """Apply *policy* to a write of *incoming* over *existing* at *path*.

        Raises:
            FileConflict: For the ``error`` strategy, or when a merge
                combinator cannot parse either side.
        """
        if policy.strategy == "error":
            raise FileConflict(path, origin)
        if policy.strategy == "skip":
            return ConflictOutcome(
                content=existing,
                skipped=True,
                warning=f"Skipped write to {path}: file already exists (conflict policy 'skip')",
            )
        if policy.strategy == "replace":
            return ConflictOutcome(content=incoming)

        strategy = policy.merge_strategy or infer_merge_strategy(path)
        try:
            merged = self._merge(strategy, path, existing, incoming)
        except ValueError as exc:
            raise FileConflict(path, origin, detail=f"{strategy} merge failed: {exc}") from exc
        return ConflictOutcome(content=merged)

    # ------------------------------------------------------------------

    def _merge(self, strategy: MergeStrategy, path: str, existing: str, incoming: str) -> str:
        if strategy == "json":
            base = parse_json_object(existing, path)
            extra = parse_json_object(incoming, "incoming content")
            return dump_json(deep_merge(base, extra, array_policy="concat"))
        if strategy == "css":
            return merge_css(existing, incoming)
        if strategy == "js":
            return self._merge_js(path, existing, incoming)
        return existing + incoming

    def _merge_js(self, path: str, existing: str, incoming: str) -> str:
        merger = self._js_merger
        if merger is None:
            from stackweave.modifiers.ts_module_enhancer import merge_module_sources

            merger = merge_module_sources
        return merger(path, existing, incoming)

