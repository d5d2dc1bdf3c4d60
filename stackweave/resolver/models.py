"""Pydantic v2 models for module resolution.

Defines modules and the capabilities they provide or require, plus the
structured issues and result returned by the dependency resolver.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stackweave.errors import ResolutionError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """How a resolution issue affects the run."""
    ERROR = "error"
    WARNING = "warning"


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

def _split_name_version(raw: str) -> tuple[str, str]:
    """Split ``"database@1.0"`` into ``("database", "1.0")``."""
    name, sep, version = raw.strip().partition("@")
    return name.strip(), version.strip() if sep else ""


class Capability(BaseModel):
    """A named, versioned fact a module provides, e.g. ``database@1.0``."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Capability name")
    version: str = Field(default="", description="Provided version; empty means unversioned")

    @classmethod
    def parse(cls, raw: str) -> "Capability":
        name, version = _split_name_version(raw)
        return cls(name=name, version=version)

    def __str__(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name


class CapabilityRequirement(BaseModel):
    """A constraint a module needs some provider to satisfy."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Required capability name")
    version_range: str = Field(default="*", description="Accepted provider versions")

    @classmethod
    def parse(cls, raw: str) -> "CapabilityRequirement":
        name, version_range = _split_name_version(raw)
        return cls(name=name, version_range=version_range or "*")

    def __str__(self) -> str:
        if self.version_range in ("", "*"):
            return self.name
        return f"{self.name}@{self.version_range}"


# ---------------------------------------------------------------------------
# Module
# ---------------------------------------------------------------------------

class Module(BaseModel):
    """A unit of functionality contributing one blueprint.

    ``provides`` and ``requires`` accept either full objects or the
    ``"name@version"`` shorthand.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique module identifier, e.g. 'framework/nextjs'")
    category: str = Field(default="", description="Module family: framework, database, ui, ...")
    version: str = Field(default="", description="Module version")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Per-module template parameters")
    provides: tuple[Capability, ...] = Field(default=(), description="Capabilities this module provides")
    requires: tuple[CapabilityRequirement, ...] = Field(
        default=(), description="Capabilities this module needs from other modules"
    )
    depends_on: tuple[str, ...] = Field(default=(), description="Module ids this module directly needs")
    paths: dict[str, str] = Field(
        default_factory=dict, description="Path aliases exposed to templates as paths.*"
    )

    @field_validator("provides", mode="before")
    @classmethod
    def _parse_provides(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(Capability.parse(v) if isinstance(v, str) else v for v in value)
        return value

    @field_validator("requires", mode="before")
    @classmethod
    def _parse_requires(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(CapabilityRequirement.parse(v) if isinstance(v, str) else v for v in value)
        return value

    def provides_capability(self, name: str) -> bool:
        return any(cap.name == name for cap in self.provides)

    def __hash__(self) -> int:
        return hash(self.id)


# ---------------------------------------------------------------------------
# Resolution output
# ---------------------------------------------------------------------------

class ResolutionIssue(BaseModel):
    """A structured resolution error or warning."""
    code: str = Field(..., description="Stable error code, e.g. MISSING_CAPABILITY")
    severity: Severity = Field(default=Severity.ERROR)
    message: str = Field(..., description="Human-readable description")
    modules: list[str] = Field(default_factory=list, description="Module ids involved")
    capability: Optional[str] = Field(default=None, description="Capability involved, if any")
    path: list[str] = Field(default_factory=list, description="Cycle path for CIRCULAR_DEPENDENCY")
    suggestions: list[str] = Field(default_factory=list, description="Remediation hints")

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ResolutionResult(BaseModel):
    """Outcome of one resolver run. Computed once, not mutated afterwards."""
    model_config = ConfigDict(frozen=True)

    execution_order: tuple[Module, ...] = Field(default=())
    errors: tuple[ResolutionIssue, ...] = Field(default=())
    warnings: tuple[ResolutionIssue, ...] = Field(default=())

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def order_ids(self) -> list[str]:
        return [module.id for module in self.execution_order]

    def errors_with_code(self, code: str) -> list[ResolutionIssue]:
        return [issue for issue in self.errors if issue.code == code]

    def raise_for_errors(self) -> None:
        """Raise :class:`ResolutionError` when resolution failed."""
        if self.errors:
            raise ResolutionError(self.errors)
