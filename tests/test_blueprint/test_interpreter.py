"""Tests for the BlueprintInterpreter.

Covers:
- Sequencing, fail-fast and cancellation
- Conditions and forEach expansion
- Field rendering (string and native values)
- Every action kind against a real VirtualFileSystem
- RUN_COMMAND through a mocked subprocess
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from stackweave.blueprint import Blueprint, BlueprintInterpreter, parse_action
from stackweave.blueprint.interpreter import parse_package_spec, upsert_env_var
from stackweave.config import EngineConfig
from stackweave.vfs import VirtualFileSystem

pytestmark = pytest.mark.unit


def _blueprint(*actions: dict[str, Any]) -> Blueprint:
    return Blueprint.from_dict({"id": "test-module", "actions": list(actions)})


def _json(vfs: VirtualFileSystem, path: str) -> dict[str, Any]:
    return json.loads(vfs.read_file(path))


# ---------------------------------------------------------------------------
# Sequencing
# ---------------------------------------------------------------------------


class TestSequencing:
    async def test_create_then_append(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "a.txt", "content": "hello"},
            {"type": "APPEND_TO_FILE", "path": "a.txt", "content": " world"},
        )
        result = await interpreter.execute(blueprint, {}, vfs)

        assert result.success
        assert result.blueprint_id == "test-module"
        assert result.files == ["a.txt"]
        assert result.actions_run == 2
        assert vfs.read_file("a.txt") == "hello world"

    async def test_prepend(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "app.css", "content": "body {}\n"},
            {"type": "PREPEND_TO_FILE", "path": "app.css", "content": "@import 'tailwindcss';\n"},
        )
        await interpreter.execute(blueprint, {}, vfs)
        assert vfs.read_file("app.css") == "@import 'tailwindcss';\nbody {}\n"

    async def test_fail_fast_keeps_earlier_staging(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "a.txt", "content": "one"},
            {"type": "APPEND_TO_FILE", "path": "a.txt", "content": "+"},
            {"type": "CREATE_FILE", "path": "a.txt", "content": "two"},
            {"type": "CREATE_FILE", "path": "b.txt", "content": "never"},
        )
        result = await interpreter.execute(blueprint, {}, vfs)

        assert not result.success
        assert result.error_codes == ["FILE_ALREADY_EXISTS"]
        assert result.errors[0].startswith("Action 3/4 (CREATE_FILE): FILE_ALREADY_EXISTS")
        assert result.actions_run == 2
        assert result.files == ["a.txt"]
        assert vfs.read_file("a.txt") == "one+"
        assert not vfs.exists("b.txt")

    async def test_cancellation_before_first_action(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        cancel = asyncio.Event()
        cancel.set()
        result = await interpreter.execute(
            _blueprint({"type": "CREATE_FILE", "path": "a.txt", "content": "x"}), {}, vfs, cancel_event=cancel
        )
        assert result.error_codes == ["EXECUTION_CANCELLED"]
        assert result.actions_run == 0
        assert len(vfs) == 0

    async def test_unexpected_exception_is_internal_error(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem
    ):
        with patch.object(interpreter, "_create_file", side_effect=RuntimeError("boom")):
            result = await interpreter.execute(
                _blueprint({"type": "CREATE_FILE", "path": "a.txt", "content": "x"}), {}, vfs
            )
        assert result.error_codes == ["INTERNAL_ERROR"]
        assert "RuntimeError: boom" in result.errors[0]

    async def test_empty_blueprint(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        result = await interpreter.execute(_blueprint(), {}, vfs)
        assert result.success
        assert result.files == []


# ---------------------------------------------------------------------------
# Conditions, forEach and rendering
# ---------------------------------------------------------------------------


class TestControlFlow:
    async def test_false_condition_skips(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint(
            {
                "type": "CREATE_FILE",
                "path": "auth.ts",
                "content": "",
                "condition": "{{ module.parameters.auth | default(false) }}",
            },
            {
                "type": "CREATE_FILE",
                "path": "theme.ts",
                "content": "",
                "condition": "{{ module.parameters.darkMode }}",
            },
        )
        result = await interpreter.execute(blueprint, template_context, vfs)

        assert result.success
        assert result.actions_skipped == 1
        assert result.actions_run == 1
        assert vfs.staged_paths() == ["theme.ts"]

    async def test_undefined_condition_fails(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "a.ts", "content": "", "condition": "{{ module.parameters.auth }}"},
            {"type": "CREATE_FILE", "path": "b.ts", "content": ""},
        )
        result = await interpreter.execute(blueprint, template_context, vfs)

        assert result.error_codes == ["CONDITION_EVALUATION"]
        assert len(vfs) == 0

    async def test_for_each_runs_once_per_item(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint(
            {
                "type": "CREATE_FILE",
                "forEach": "module.parameters.components",
                "path": "{{ paths.components }}/ui/{{ item }}.tsx",
                "content": "// {{ index }}: {{ item | pascal_case }}\n",
            }
        )
        result = await interpreter.execute(blueprint, template_context, vfs)

        assert result.success
        assert result.actions_run == 3
        assert result.files == [
            "src/components/ui/button.tsx",
            "src/components/ui/card.tsx",
            "src/components/ui/dialog.tsx",
        ]
        assert vfs.read_file("src/components/ui/card.tsx") == "// 1: Card\n"

    async def test_for_each_with_condition_per_item(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint(
            {
                "type": "CREATE_FILE",
                "forEach": "{{ module.parameters.components }}",
                "condition": "{{ item != 'card' }}",
                "path": "{{ item }}.txt",
                "content": "{{ item }}",
            }
        )
        result = await interpreter.execute(blueprint, template_context, vfs)

        assert result.actions_run == 2
        assert result.actions_skipped == 1
        assert vfs.staged_paths() == ["button.txt", "dialog.txt"]

    @pytest.mark.parametrize("target", ["module.parameters.pages", "module.parameters.port"])
    async def test_for_each_needs_a_list(
        self,
        interpreter: BlueprintInterpreter,
        vfs: VirtualFileSystem,
        template_context: dict[str, Any],
        target: str,
    ):
        blueprint = _blueprint({"type": "CREATE_FILE", "forEach": target, "path": "x.txt", "content": ""})
        result = await interpreter.execute(blueprint, template_context, vfs)
        assert result.error_codes == ["ACTION_CONFIGURATION"]

    async def test_render_error_in_field(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint({"type": "CREATE_FILE", "path": "{{ paths.missing }}/a.ts", "content": ""})
        result = await interpreter.execute(blueprint, template_context, vfs)
        assert result.error_codes == ["TEMPLATE_ERROR"]

    def test_render_action_leaves_original_untouched(
        self, interpreter: BlueprintInterpreter, template_context: dict[str, Any]
    ):
        action = parse_action(
            {"type": "MERGE_JSON", "path": "components.json", "content": {"items": "{{ module.parameters.components }}"}}
        )
        rendered = interpreter.render_action(action, template_context)

        assert rendered.content == {"items": ["button", "card", "dialog"]}
        assert action.content == {"items": "{{ module.parameters.components }}"}
        assert rendered.array_policy == "unique"


# ---------------------------------------------------------------------------
# CREATE_FILE conflict handling
# ---------------------------------------------------------------------------


class TestCreateFile:
    async def test_jsx_content_keeps_object_literals(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        content = (
            "export function Panel() {\n"
            "  return <div style={{ color: 'red' }}>{{ project.name }}</div>;\n"
            "}\n"
        )
        result = await interpreter.execute(
            _blueprint({"type": "CREATE_FILE", "path": "src/Panel.tsx", "content": content}), template_context, vfs
        )

        assert result.success, result.errors
        assert vfs.read_file("src/Panel.tsx") == (
            "export function Panel() {\n"
            "  return <div style={{ color: 'red' }}>acme-shop</div>;\n"
            "}\n"
        )

    async def test_skip_policy_warns_exactly_once(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "README.md", "content": "first"},
            {"type": "CREATE_FILE", "path": "README.md", "content": "second", "conflictResolution": {"strategy": "skip"}},
        )
        result = await interpreter.execute(blueprint, {}, vfs)

        assert result.success
        assert len(result.warnings) == 1
        assert "README.md" in result.warnings[0]
        assert vfs.read_file("README.md") == "first"

    async def test_overwrite(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, tmp_project_dir: Path):
        (tmp_project_dir / "next.config.mjs").write_text("old", encoding="utf-8")
        result = await interpreter.execute(
            _blueprint({"type": "CREATE_FILE", "path": "next.config.mjs", "content": "new", "overwrite": True}), {}, vfs
        )
        assert result.success
        assert vfs.read_file("next.config.mjs") == "new"

    async def test_merge_policy_css(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {"type": "CREATE_FILE", "path": "globals.css", "content": ".a { color: red; }\n"},
            {
                "type": "CREATE_FILE",
                "path": "globals.css",
                "content": ".b { color: blue; }\n",
                "conflictResolution": {"strategy": "merge"},
            },
        )
        await interpreter.execute(blueprint, {}, vfs)
        assert vfs.read_file("globals.css") == ".a { color: red; }\n\n.b { color: blue; }\n"

    async def test_from_template_file(self, registry, engine_config: EngineConfig, vfs: VirtualFileSystem, tmp_path: Path):
        templates = tmp_path / "templates"
        templates.mkdir()
        (templates / "page.tsx.j2").write_text("export const title = '{{ project.name }}';\n", encoding="utf-8")
        interpreter = BlueprintInterpreter(registry, config=engine_config.model_copy(update={"templates_dir": templates}))

        result = await interpreter.execute(
            _blueprint({"type": "CREATE_FILE", "path": "app/page.tsx", "template": "page.tsx.j2"}),
            {"project": {"name": "acme-shop"}},
            vfs,
        )
        assert result.success
        assert vfs.read_file("app/page.tsx") == "export const title = 'acme-shop';\n"


# ---------------------------------------------------------------------------
# Manifest actions
# ---------------------------------------------------------------------------


class TestManifestActions:
    async def test_install_packages_creates_package_json(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        blueprint = _blueprint(
            {"type": "INSTALL_PACKAGES", "packages": ["react@^19.0.0", "@tanstack/react-query@5", "zod"]},
            {"type": "ADD_DEV_DEPENDENCY", "packages": ["vitest@^2.0.0"]},
            {"type": "ADD_SCRIPT", "name": "test", "command": "vitest"},
        )
        result = await interpreter.execute(blueprint, template_context, vfs)
        data = _json(vfs, "package.json")

        assert result.success
        assert result.files == ["package.json"]
        assert data["name"] == "acme-shop"
        assert data["private"] is True
        assert data["dependencies"] == {"react": "^19.0.0", "@tanstack/react-query": "5", "zod": "latest"}
        assert data["devDependencies"] == {"vitest": "^2.0.0"}
        assert data["scripts"] == {"test": "vitest"}

    async def test_install_merges_into_existing_manifest(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, write_project_file, package_json_text: str
    ):
        write_project_file("package.json", package_json_text)
        await interpreter.execute(_blueprint({"type": "ADD_DEPENDENCY", "packages": ["drizzle-orm@^0.30.0"]}), {}, vfs)
        assert _json(vfs, "package.json")["dependencies"] == {"next": "15.0.0", "drizzle-orm": "^0.30.0"}

    async def test_env_var_added_once(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        blueprint = _blueprint(
            {
                "type": "ADD_ENV_VAR",
                "key": "DATABASE_URL",
                "value": "postgres://localhost/db",
                "description": "Database connection",
            },
            {"type": "ADD_ENV_VAR", "key": "DATABASE_URL", "value": "changed"},
            {"type": "ADD_ENV_VAR", "key": "APP_NAME", "value": "Acme Shop"},
        )
        result = await interpreter.execute(blueprint, {}, vfs)

        assert result.success
        assert vfs.read_file(".env.example") == (
            "# Database connection\nDATABASE_URL=postgres://localhost/db\nAPP_NAME=\"Acme Shop\"\n"
        )

    async def test_merge_json_is_idempotent(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, template_context: dict[str, Any]
    ):
        action = {
            "type": "MERGE_JSON",
            "path": "components.json",
            "content": {"project": "{{ project.name }}", "items": "{{ module.parameters.components }}"},
        }
        first = await interpreter.execute(_blueprint(action), template_context, vfs)
        content = vfs.read_file("components.json")
        second = await interpreter.execute(_blueprint(action), template_context, vfs)

        assert first.files == ["components.json"]
        assert second.files == []
        assert vfs.read_file("components.json") == content
        assert _json(vfs, "components.json") == {"project": "acme-shop", "items": ["button", "card", "dialog"]}

    async def test_merge_json_shallow(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("a.json", '{"x": {"a": 1}, "y": 1}')
        await interpreter.execute(
            _blueprint({"type": "MERGE_JSON", "path": "a.json", "content": {"x": {"b": 2}}, "strategy": "shallow"}),
            {},
            vfs,
        )
        assert _json(vfs, "a.json") == {"x": {"b": 2}, "y": 1}


# ---------------------------------------------------------------------------
# RUN_COMMAND
# ---------------------------------------------------------------------------


class TestRunCommand:
    async def test_success_runs_in_working_dir(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, mock_subprocess
    ):
        proc = mock_subprocess(stdout="ok", returncode=0)
        with patch("asyncio.create_subprocess_shell", return_value=proc) as spawn:
            result = await interpreter.execute(
                _blueprint({"type": "RUN_COMMAND", "command": "pnpm install", "workingDir": "apps/web"}), {}, vfs
            )

        assert result.success
        assert spawn.call_args.args[0] == "pnpm install"
        assert spawn.call_args.kwargs["cwd"] == str(vfs.project_root / "apps" / "web")

    async def test_failure_stops_blueprint(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, mock_subprocess
    ):
        proc = mock_subprocess(stderr="ERR_PNPM", returncode=1)
        blueprint = _blueprint(
            {"type": "RUN_COMMAND", "command": "pnpm install"},
            {"type": "CREATE_FILE", "path": "after.txt", "content": ""},
        )
        with patch("asyncio.create_subprocess_shell", return_value=proc):
            result = await interpreter.execute(blueprint, {}, vfs)

        assert result.error_codes == ["COMMAND_FAILED"]
        assert "ERR_PNPM" in result.errors[0]
        assert not vfs.exists("after.txt")

    async def test_allow_failure_downgrades_to_warning(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, mock_subprocess
    ):
        proc = mock_subprocess(returncode=2)
        with patch("asyncio.create_subprocess_shell", return_value=proc):
            result = await interpreter.execute(
                _blueprint({"type": "RUN_COMMAND", "command": "npx prettier --check .", "allowFailure": True}), {}, vfs
            )
        assert result.success
        assert len(result.warnings) == 1
        assert "exit 2" in result.warnings[0]

    async def test_dry_run_does_not_execute(self, registry, engine_config: EngineConfig, vfs: VirtualFileSystem):
        interpreter = BlueprintInterpreter(registry, config=engine_config.model_copy(update={"dry_run": True}))
        with patch("asyncio.create_subprocess_shell") as spawn:
            result = await interpreter.execute(_blueprint({"type": "RUN_COMMAND", "command": "rm -rf build"}), {}, vfs)

        spawn.assert_not_called()
        assert result.success
        assert result.warnings == ["Dry run: not executing 'rm -rf build'"]


# ---------------------------------------------------------------------------
# Structural actions
# ---------------------------------------------------------------------------


class TestStructuralActions:
    async def test_add_import(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("src/index.ts", "export const a = 1;\n")
        result = await interpreter.execute(
            _blueprint(
                {
                    "type": "ADD_IMPORT",
                    "path": "src/index.ts",
                    "imports": [{"moduleSpecifier": "zod", "namedImports": ["z"]}],
                }
            ),
            {},
            vfs,
        )
        assert result.success
        assert vfs.read_file("src/index.ts") == "import { z } from 'zod';\n\nexport const a = 1;\n"

    async def test_enhance_file_unknown_modifier(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("a.ts", "")
        result = await interpreter.execute(
            _blueprint({"type": "ENHANCE_FILE", "path": "a.ts", "modifier": "ts-module-enhancr"}), {}, vfs
        )
        assert result.error_codes == ["MODIFIER_NOT_FOUND"]

    async def test_enhance_file_invalid_params(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("package.json", "{}")
        result = await interpreter.execute(
            _blueprint(
                {"type": "ENHANCE_FILE", "path": "package.json", "modifier": "package-json-merger",
                 "params": {"dependencies": ["zod"]}}
            ),
            {},
            vfs,
        )
        assert result.error_codes == ["PARAMETER_VALIDATION"]
        assert vfs.read_file("package.json") == "{}"

    @pytest.mark.parametrize("fallback, code", [("error", "FILE_NOT_FOUND"), ("skip", None)])
    async def test_enhance_missing_file(
        self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem, fallback: str, code: str | None
    ):
        result = await interpreter.execute(
            _blueprint(
                {"type": "ENHANCE_FILE", "path": "tsconfig.json", "modifier": "tsconfig-enhancer",
                 "params": {"include": ["src"]}, "fallback": fallback}
            ),
            {},
            vfs,
        )
        if code is None:
            assert result.success
            assert len(result.warnings) == 1
        else:
            assert result.error_codes == [code]
        assert not vfs.exists("tsconfig.json")

    async def test_enhance_missing_file_create(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        result = await interpreter.execute(
            _blueprint(
                {"type": "ENHANCE_FILE", "path": "tsconfig.json", "modifier": "tsconfig-enhancer",
                 "params": {"include": ["src"]}, "fallback": "create"}
            ),
            {},
            vfs,
        )
        assert result.success
        assert result.files == ["tsconfig.json"]
        assert _json(vfs, "tsconfig.json") == {"include": ["src"]}

    async def test_merge_config_js_and_json(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("next.config.mjs", "export default { reactStrictMode: true };\n")
        vfs.write_file("components.json", '{"style": "default"}')
        result = await interpreter.execute(
            _blueprint(
                {"type": "MERGE_CONFIG", "path": "next.config.mjs", "config": {"output": "standalone"}},
                {"type": "MERGE_CONFIG", "path": "components.json", "config": {"rsc": True}},
            ),
            {},
            vfs,
        )
        assert result.success
        assert vfs.read_file("next.config.mjs") == 'export default { reactStrictMode: true, output: "standalone" };\n'
        assert _json(vfs, "components.json") == {"style": "default", "rsc": True}

    async def test_wrap_config(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("next.config.mjs", "const nextConfig = {};\n\nexport default nextConfig;\n")
        result = await interpreter.execute(
            _blueprint(
                {"type": "WRAP_CONFIG", "path": "next.config.mjs", "wrapper": "withSentryConfig",
                 "importFrom": "@sentry/nextjs", "options": {"silent": True}}
            ),
            {},
            vfs,
        )
        content = vfs.read_file("next.config.mjs")
        assert result.success
        assert "import { withSentryConfig } from '@sentry/nextjs';" in content
        assert "export default withSentryConfig(nextConfig, {\n  silent: true\n});" in content

    async def test_extend_schema(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("src/db/schema.ts", "import { pgTable } from 'drizzle-orm/pg-core';\n")
        result = await interpreter.execute(
            _blueprint(
                {
                    "type": "EXTEND_SCHEMA",
                    "path": "src/db/schema.ts",
                    "tables": [{"name": "users", "definition": "export const users = pgTable('users', { id: text('id') });"}],
                    "additionalImports": ["text"],
                    "importsFrom": "drizzle-orm/pg-core",
                }
            ),
            {},
            vfs,
        )
        assert result.success
        assert vfs.read_file("src/db/schema.ts") == (
            "import { pgTable, text } from 'drizzle-orm/pg-core';\n\n"
            "export const users = pgTable('users', { id: text('id') });\n"
        )

    async def test_extend_schema_needs_import_source(self, interpreter: BlueprintInterpreter, vfs: VirtualFileSystem):
        vfs.write_file("schema.ts", "")
        result = await interpreter.execute(
            _blueprint(
                {"type": "EXTEND_SCHEMA", "path": "schema.ts", "additionalImports": ["text"],
                 "tables": [{"name": "t", "definition": "export const t = 1;"}]}
            ),
            {},
            vfs,
        )
        assert result.error_codes == ["ACTION_CONFIGURATION"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "spec, expected",
    [
        ("react", ("react", "latest")),
        ("react@^19.0.0", ("react", "^19.0.0")),
        ("@types/node", ("@types/node", "latest")),
        ("@types/node@20", ("@types/node", "20")),
        ("next@", ("next", "latest")),
    ],
)
def test_parse_package_spec(spec: str, expected: tuple[str, str]):
    assert parse_package_spec(spec) == expected


class TestUpsertEnvVar:
    def test_existing_assignment_is_kept(self):
        text = "export API_URL=http://prod\n"
        assert upsert_env_var(text, "API_URL", "http://localhost") == text

    def test_similar_key_does_not_match(self):
        assert upsert_env_var("API_URL_V2=x\n", "API_URL", "y") == "API_URL_V2=x\nAPI_URL=y\n"

    def test_missing_trailing_newline(self):
        assert upsert_env_var("A=1", "B", "2") == "A=1\nB=2\n"

    def test_values_needing_quotes(self):
        assert upsert_env_var("", "SECRET", "a#b") == 'SECRET="a#b"\n'
        assert upsert_env_var("", "QUOTED", "'as is'") == "QUOTED='as is'\n"
