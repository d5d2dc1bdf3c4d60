"""Shared pytest fixtures for the Stackweave test suite.

Provides reusable fixtures for:
- Temporary project directories
- Staging file systems bound to those directories
- The default modifier registry and a quiet interpreter
- A realistic module selection (framework, database, ORM, auth, UI)
- Mock subprocess helpers
"""

from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from stackweave.blueprint.interpreter import BlueprintInterpreter
from stackweave.blueprint.templates import TemplateRenderer
from stackweave.config import EngineConfig
from stackweave.modifiers.base import ModifierContext
from stackweave.modifiers.registry import ModifierRegistry, create_default_registry
from stackweave.resolver.models import Module
from stackweave.vfs import VirtualFileSystem


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary directory for generated projects (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture
def write_project_file(tmp_project_dir: Path):
    """Factory writing a file (relative path, dedented text) into the project dir."""
    def factory(relative: str, content: str) -> Path:
        target = tmp_project_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(textwrap.dedent(content), encoding="utf-8")
        return target

    return factory


# ---------------------------------------------------------------------------
# Engine building blocks
# ---------------------------------------------------------------------------

@pytest.fixture
def vfs(tmp_project_dir: Path) -> VirtualFileSystem:
    """Staging file system rooted at the temporary project directory."""
    return VirtualFileSystem(tmp_project_dir, owner="test-module")


@pytest.fixture
def registry() -> ModifierRegistry:
    """Registry holding every built-in modifier."""
    return create_default_registry()


@pytest.fixture
def modifier_context(vfs: VirtualFileSystem) -> ModifierContext:
    return ModifierContext(vfs=vfs)


@pytest.fixture
def engine_config(tmp_project_dir: Path) -> EngineConfig:
    """Quiet configuration pointed at the temporary project directory."""
    return EngineConfig(project_root=tmp_project_dir, quiet=True)


@pytest.fixture
def interpreter(registry: ModifierRegistry, engine_config: EngineConfig) -> BlueprintInterpreter:
    return BlueprintInterpreter(registry, TemplateRenderer(), engine_config)


@pytest.fixture
def template_context() -> dict[str, Any]:
    """A context shaped like the one the engine builds for a module."""
    return {
        "project": {"name": "acme-shop", "root": "/tmp/acme-shop"},
        "module": {
            "id": "ui/shadcn",
            "category": "ui",
            "version": "1.0.0",
            "parameters": {
                "components": ["button", "card", "dialog"],
                "darkMode": True,
                "port": 3000,
            },
        },
        "paths": {"components": "src/components", "lib": "src/lib"},
    }


# ---------------------------------------------------------------------------
# Module selections
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_modules() -> list[Module]:
    """A small, valid stack given in a deliberately scrambled order."""
    return [
        Module(
            id="auth/better-auth",
            category="auth",
            requires=["database@^1.0", "orm"],
            provides=["auth@1.0"],
        ),
        Module(
            id="ui/shadcn",
            category="ui",
            parameters={"components": ["button", "card"]},
        ),
        Module(
            id="database/drizzle",
            category="database",
            requires=["postgres"],
            provides=["database@1.2.0", "orm@0.30.0"],
        ),
        Module(
            id="framework/nextjs",
            category="framework",
            version="15.0.0",
            provides=["foundation", "react@19.0.0"],
            paths={"components": "src/components", "lib": "src/lib"},
        ),
        Module(
            id="database/postgres",
            category="database",
            provides=["postgres@16.0.0"],
        ),
    ]


@pytest.fixture
def package_json_text() -> str:
    return json.dumps(
        {
            "name": "acme-shop",
            "version": "0.1.0",
            "scripts": {"dev": "next dev"},
            "dependencies": {"next": "15.0.0"},
        },
        indent=2,
    ) + "\n"


# ---------------------------------------------------------------------------
# Mock Subprocess (generic)
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_shell", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory
