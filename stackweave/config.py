"""Stackweave engine configuration.

Centralised, typed configuration for the blueprint execution engine. All
settings use Pydantic v2 models so they can be validated at construction time
and serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Global engine configuration.

    Instances are typically created once by the caller (or by the CLI entry
    point) and passed to :class:`stackweave.engine.BlueprintEngine`, which
    threads the relevant settings into the resolver, interpreter and VFS.
    """

    project_root: Path = Field(default=Path("."))
    templates_dir: Path | None = Field(
        default=None, description="Directory searched by CREATE_FILE actions that name a template"
    )

    # Resolution
    allow_conflicts: bool = Field(
        default=False, description="Downgrade CONFLICTING_PROVIDERS from error to warning"
    )
    multi_provider_capabilities: list[str] = Field(
        default_factory=list,
        description="Capabilities that may legitimately have several providers",
    )
    foundation_capability: str = Field(default="foundation")

    # Execution
    halt_on_failure: bool = Field(
        default=False, description="Stop the run at the first failing module"
    )
    halt_on_command_failure: bool = Field(
        default=False, description="A failing RUN_COMMAND stops the whole run"
    )
    dry_run: bool = Field(default=False, description="Stage everything, flush nothing")
    vfs_scope: Literal["module", "run"] = Field(
        default="module",
        description="One VFS per module (flushed after each module) or one for the whole run",
    )
    atomic_modules: bool = Field(
        default=True, description="Discard a module's staged writes when its blueprint fails"
    )
    command_timeout: int = Field(default=300, ge=1, description="Per-command timeout in seconds")
    module_timeout: float | None = Field(
        default=None, gt=0, description="Per-module timeout in seconds (None = unlimited)"
    )
    quiet: bool = Field(default=False, description="Suppress per-action progress output")

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def resolved_root(self) -> Path:
        """Absolute project root."""
        return self.project_root.expanduser().resolve()

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            STACKWEAVE_PROJECT_ROOT, STACKWEAVE_TEMPLATES_DIR,
            STACKWEAVE_ALLOW_CONFLICTS, STACKWEAVE_MULTI_PROVIDER,
            STACKWEAVE_HALT_ON_FAILURE, STACKWEAVE_DRY_RUN, STACKWEAVE_VFS_SCOPE,
            STACKWEAVE_COMMAND_TIMEOUT, STACKWEAVE_MODULE_TIMEOUT, STACKWEAVE_QUIET.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("STACKWEAVE_PROJECT_ROOT"):
            kwargs["project_root"] = Path(os.environ["STACKWEAVE_PROJECT_ROOT"])
        if os.environ.get("STACKWEAVE_TEMPLATES_DIR"):
            kwargs["templates_dir"] = Path(os.environ["STACKWEAVE_TEMPLATES_DIR"])
        if os.environ.get("STACKWEAVE_MULTI_PROVIDER"):
            kwargs["multi_provider_capabilities"] = [
                name.strip()
                for name in os.environ["STACKWEAVE_MULTI_PROVIDER"].split(",")
                if name.strip()
            ]
        if os.environ.get("STACKWEAVE_VFS_SCOPE"):
            kwargs["vfs_scope"] = os.environ["STACKWEAVE_VFS_SCOPE"]
        if os.environ.get("STACKWEAVE_COMMAND_TIMEOUT"):
            kwargs["command_timeout"] = int(os.environ["STACKWEAVE_COMMAND_TIMEOUT"])
        if os.environ.get("STACKWEAVE_MODULE_TIMEOUT"):
            kwargs["module_timeout"] = float(os.environ["STACKWEAVE_MODULE_TIMEOUT"])

        for flag, field_name in (
            ("STACKWEAVE_ALLOW_CONFLICTS", "allow_conflicts"),
            ("STACKWEAVE_HALT_ON_FAILURE", "halt_on_failure"),
            ("STACKWEAVE_DRY_RUN", "dry_run"),
            ("STACKWEAVE_QUIET", "quiet"),
        ):
            if os.environ.get(flag):
                kwargs[field_name] = _env_flag(os.environ[flag])

        return cls(**kwargs)


def _env_flag(raw: str) -> bool:
    """Interpret an environment variable as a boolean flag."""
    return raw.strip().lower() in {"1", "true", "yes", "on"}
