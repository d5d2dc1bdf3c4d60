"""Pydantic v2 models for blueprints and their execution results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stackweave.blueprint.actions import BlueprintAction
from stackweave.errors import EngineError


class Blueprint(BaseModel):
    """An ordered list of actions attached to one module."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Blueprint identifier, usually the module id")
    name: str = Field(default="", description="Human-readable name")
    description: str = Field(default="")
    version: str = Field(default="1.0.0")
    actions: list[BlueprintAction] = Field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_id: str | None = None) -> "Blueprint":
        """Validate a blueprint dictionary, filling ``id`` from *default_id* when absent."""
        if "id" not in data and default_id is not None:
            data = {**data, "id": default_id}
        return cls.model_validate(data)


class ExecutionResult(BaseModel):
    """Outcome of interpreting one blueprint.

    ``files`` lists the paths the blueprint staged, in first-touched order.
    ``errors`` and ``error_codes`` are parallel lists.
    """

    blueprint_id: str = Field(default="")
    success: bool = Field(default=True)
    files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error_codes: list[str] = Field(default_factory=list)
    actions_run: int = Field(default=0, description="Action invocations that completed")
    actions_skipped: int = Field(default=0, description="Invocations skipped by a false condition")

    def add_file(self, path: str) -> None:
        if path not in self.files:
            self.files.append(path)

    def add_error(self, error: EngineError, label: str | None = None) -> None:
        prefix = f"{label}: " if label else ""
        self.errors.append(f"{prefix}{error}")
        self.error_codes.append(error.code)
        self.success = False

    def add_warnings(self, warnings: list[str]) -> None:
        self.warnings.extend(warnings)
