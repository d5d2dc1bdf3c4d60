"""Modifier definition and invocation context."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from stackweave.vfs import VirtualFileSystem


@dataclass
class ModifierContext:
    """What a modifier may touch while it runs.

    Modifiers read and write exclusively through :attr:`vfs`; they never open
    project files directly.
    """

    vfs: VirtualFileSystem
    variables: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def read(self, path: str) -> str:
        return self.vfs.read_file(path)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


Transform = Callable[[str, dict[str, Any], ModifierContext], str]


@dataclass(frozen=True)
class ModifierDefinition:
    """A named structural editor.

    Attributes:
        name: Registry key, e.g. ``"ts-module-enhancer"``.
        description: One-line summary.
        params_schema: JSON Schema the parameters must satisfy.
        supported_file_types: File extensions without the dot; empty means any.
        transform: ``(path, params, context) -> new content``. Must be
            stateless across invocations.
        initial_content: Body used when an ``ENHANCE_FILE`` action asks for the
            ``create`` fallback on a missing file.
    """

    name: str
    description: str
    params_schema: dict[str, Any]
    supported_file_types: tuple[str, ...]
    transform: Transform
    initial_content: str = ""

    def supports(self, path: str) -> bool:
        if not self.supported_file_types:
            return True
        return PurePosixPath(path).suffix.lower().lstrip(".") in self.supported_file_types
