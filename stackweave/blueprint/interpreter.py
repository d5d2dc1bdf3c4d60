"""Blueprint interpreter.

Executes the actions of one blueprint, in order, against a virtual file
system.  Every action is awaited before the next one starts, and the first
failing action stops the blueprint (fail-fast).  The result carries the files
staged so far together with the errors and warnings collected.

Action flow::

    cancelled?  ->  forEach expansion  ->  condition  ->  render fields  ->  handler
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

from stackweave.blueprint.actions import (
    AddEnvVar,
    AddImport,
    AddScript,
    AppendToFile,
    BlueprintAction,
    CreateFile,
    EnhanceFile,
    ExtendSchema,
    InstallPackages,
    MergeConfig,
    MergeJson,
    PrependToFile,
    RunCommand,
    WrapConfig,
)
from stackweave.blueprint.models import Blueprint, ExecutionResult
from stackweave.blueprint.templates import TemplateRenderer, lookup_path
from stackweave.config import EngineConfig
from stackweave.errors import (
    INTERNAL_ERROR,
    ActionConfigurationError,
    CommandExecutionError,
    EngineError,
    ExecutionCancelled,
    FileNotFound,
)
from stackweave.merge import deep_merge, parse_json_object, shallow_merge
from stackweave.modifiers.base import ModifierContext
from stackweave.modifiers.registry import ModifierRegistry
from stackweave.utils import console, dump_json, run_command
from stackweave.vfs import VirtualFileSystem

_CONFIG_STRATEGIES = {"deep-merge": "deep", "shallow-merge": "shallow", "replace": "replace"}

# Fields handled before rendering; never template-rendered.
_CONTROL_FIELDS = {"type", "condition", "for_each"}


class BlueprintInterpreter:
    """Runs blueprint actions through the VFS and the modifier registry.

    Attributes:
        registry: Modifiers available to structural actions.
        renderer: Template renderer for conditions and action fields.
        config: Engine settings (timeouts, dry-run, output).
    """

    _ACTION_METHODS: dict[str, str] = {
        "INSTALL_PACKAGES": "_install_packages",
        "ADD_DEPENDENCY": "_install_packages",
        "ADD_DEV_DEPENDENCY": "_install_packages",
        "ADD_SCRIPT": "_add_script",
        "ADD_ENV_VAR": "_add_env_var",
        "CREATE_FILE": "_create_file",
        "APPEND_TO_FILE": "_append_to_file",
        "PREPEND_TO_FILE": "_prepend_to_file",
        "RUN_COMMAND": "_run_command",
        "MERGE_JSON": "_merge_json",
        "ADD_IMPORT": "_add_import",
        "ADD_TS_IMPORT": "_add_import",
        "ENHANCE_FILE": "_enhance_file",
        "MERGE_CONFIG": "_merge_config",
        "WRAP_CONFIG": "_wrap_config",
        "EXTEND_SCHEMA": "_extend_schema",
    }

    def __init__(
        self,
        registry: ModifierRegistry,
        renderer: TemplateRenderer | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or EngineConfig()
        self.renderer = renderer or TemplateRenderer(self.config.templates_dir)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(
        self,
        blueprint: Blueprint,
        context: dict[str, Any],
        vfs: VirtualFileSystem,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionResult:
        """Execute *blueprint* against *vfs*.

        Args:
            blueprint: The blueprint to run.
            context: Template context (``project``, ``module``, ``paths``...).
            vfs: The :class:`~stackweave.vfs.VirtualFileSystem` to stage into.
            cancel_event: Checked before every action; once set, execution
                stops with an ``EXECUTION_CANCELLED`` error.

        Returns:
            The :class:`ExecutionResult`.  Errors are recorded, not raised.
        """
        result = ExecutionResult(blueprint_id=blueprint.id)
        total = len(blueprint.actions)

        for index, action in enumerate(blueprint.actions, start=1):
            label = f"Action {index}/{total} ({action.type})"
            if cancel_event is not None and cancel_event.is_set():
                result.add_error(ExecutionCancelled(f"Cancelled before {label}"))
                break

            try:
                await self._run_action(action, context, vfs, result)
            except EngineError as exc:
                result.add_error(exc, label)
                break
            except Exception as exc:
                result.add_error(EngineError(f"{type(exc).__name__}: {exc}", code=INTERNAL_ERROR), label)
                break

        return result

    # ------------------------------------------------------------------
    # Expansion and rendering
    # ------------------------------------------------------------------

    async def _run_action(
        self,
        action: BlueprintAction,
        context: dict[str, Any],
        vfs: VirtualFileSystem,
        result: ExecutionResult,
    ) -> None:
        for scope in self._scopes(action, context):
            if action.condition is not None and not self.renderer.evaluate_condition(action.condition, scope):
                result.actions_skipped += 1
                continue
            rendered = self.render_action(action, scope)
            if not self.config.quiet:
                console.print(f"    [dim]-[/dim] {rendered.describe()}")
            handler = getattr(self, self._ACTION_METHODS[rendered.type])
            await handler(rendered, scope, vfs, result)
            result.actions_run += 1

    def _scopes(self, action: BlueprintAction, context: dict[str, Any]) -> list[dict[str, Any]]:
        """One context per invocation: the context itself, or one per ``forEach`` item."""
        if action.for_each is None:
            return [context]
        try:
            items = lookup_path(context, action.for_each)
        except KeyError as exc:
            raise ActionConfigurationError(
                f"forEach target '{action.for_each}' does not exist in the context"
            ) from exc
        if not isinstance(items, (list, tuple)):
            raise ActionConfigurationError(
                f"forEach target '{action.for_each}' is a {type(items).__name__}, not a list"
            )
        return [{**context, "item": item, "index": i} for i, item in enumerate(items)]

    def render_action(self, action: BlueprintAction, context: dict[str, Any]) -> BlueprintAction:
        """Return a copy of *action* with every templated field rendered.

        Plain string fields render to strings.  Inside dict and list
        payloads, a lone ``{{ expr }}`` keeps the native value.
        """
        data = action.model_dump(exclude=_CONTROL_FIELDS, exclude_unset=True)
        rendered = {key: self.renderer.render_value(value, context) for key, value in data.items()}
        return type(action).model_validate(
            {**rendered, "type": action.type, "condition": action.condition, "for_each": action.for_each}
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _origin(self, vfs: VirtualFileSystem) -> str | None:
        return vfs.owner

    def _modify(
        self,
        modifier: str,
        path: str,
        params: dict[str, Any],
        scope: dict[str, Any],
        vfs: VirtualFileSystem,
        result: ExecutionResult,
    ) -> None:
        context = ModifierContext(vfs=vfs, variables=scope)
        changed = self.registry.execute(modifier, path, params, context)
        result.add_warnings(context.warnings)
        if changed:
            result.add_file(vfs.normalize(path))

    def _ensure_package_json(
        self, path: str, scope: dict[str, Any], vfs: VirtualFileSystem, result: ExecutionResult
    ) -> None:
        if vfs.exists(path):
            return
        project = scope.get("project") or {}
        name = project.get("name") if isinstance(project, dict) else None
        skeleton = {"name": _package_name(name or "app"), "version": "0.1.0", "private": True}
        vfs.overwrite_file(path, dump_json(skeleton), origin=self._origin(vfs))
        result.add_file(vfs.normalize(path))

    # ------------------------------------------------------------------
    # Manifest actions
    # ------------------------------------------------------------------

    async def _install_packages(self, action: InstallPackages, scope, vfs, result) -> None:
        self._ensure_package_json(action.path, scope, vfs, result)
        section = "devDependencies" if action.dev else "dependencies"
        packages = dict(parse_package_spec(spec) for spec in action.packages)
        self._modify("package-json-merger", action.path, {section: packages}, scope, vfs, result)

    async def _add_script(self, action: AddScript, scope, vfs, result) -> None:
        self._ensure_package_json(action.path, scope, vfs, result)
        self._modify("package-json-merger", action.path, {"scripts": {action.name: action.command}}, scope, vfs, result)

    async def _add_env_var(self, action: AddEnvVar, scope, vfs, result) -> None:
        existing = vfs.read_file(action.path) if vfs.exists(action.path) else None
        updated = upsert_env_var(existing or "", action.key, action.value, action.description)
        if updated != existing:
            vfs.overwrite_file(action.path, updated, origin=self._origin(vfs))
            result.add_file(vfs.normalize(action.path))

    # ------------------------------------------------------------------
    # File actions
    # ------------------------------------------------------------------

    async def _create_file(self, action: CreateFile, scope, vfs, result) -> None:
        if action.template is not None:
            content = self.renderer.render(action.template, scope)
        else:
            content = action.content or ""
        outcome = vfs.write_file(action.path, content, policy=action.policy, origin=self._origin(vfs))
        if outcome.warning:
            result.warnings.append(outcome.warning)
        if not outcome.skipped:
            result.add_file(vfs.normalize(action.path))

    async def _append_to_file(self, action: AppendToFile, scope, vfs, result) -> None:
        vfs.append_file(action.path, action.content, origin=self._origin(vfs))
        result.add_file(vfs.normalize(action.path))

    async def _prepend_to_file(self, action: PrependToFile, scope, vfs, result) -> None:
        vfs.prepend_file(action.path, action.content, origin=self._origin(vfs))
        result.add_file(vfs.normalize(action.path))

    async def _merge_json(self, action: MergeJson, scope, vfs, result) -> None:
        path = vfs.normalize(action.path)
        current = parse_json_object(vfs.read_file(path), path) if vfs.exists(path) else {}
        if action.strategy == "shallow":
            merged = shallow_merge(current, action.content)
        else:
            merged = deep_merge(current, action.content, action.array_policy)
        if merged != current or not vfs.exists(path):
            vfs.overwrite_file(path, dump_json(merged), origin=self._origin(vfs))
            result.add_file(path)

    async def _run_command(self, action: RunCommand, scope, vfs, result) -> None:
        if self.config.dry_run:
            result.warnings.append(f"Dry run: not executing '{action.command}'")
            return
        root = vfs.project_root
        cwd = root / vfs.normalize(action.working_dir) if action.working_dir not in (None, "", ".") else root
        timeout = action.timeout or self.config.command_timeout
        returncode, _stdout, stderr = await run_command(action.command, cwd=cwd, timeout=timeout)
        if returncode == 0:
            return
        error = CommandExecutionError(action.command, returncode, stderr)
        if action.allow_failure:
            result.warnings.append(str(error))
            return
        raise error

    # ------------------------------------------------------------------
    # Structural actions
    # ------------------------------------------------------------------

    async def _add_import(self, action: AddImport, scope, vfs, result) -> None:
        params = {"importsToAdd": [imp.to_params() for imp in action.imports]}
        self._modify("ts-module-enhancer", action.path, params, scope, vfs, result)

    async def _enhance_file(self, action: EnhanceFile, scope, vfs, result) -> None:
        definition = self.registry.require(action.modifier)
        if not vfs.exists(action.path):
            if action.fallback == "error":
                raise FileNotFound(vfs.normalize(action.path))
            if action.fallback == "skip":
                result.warnings.append(
                    f"Skipped {action.modifier} on {vfs.normalize(action.path)}: file does not exist"
                )
                return
            vfs.overwrite_file(action.path, definition.initial_content, origin=self._origin(vfs))
            result.add_file(vfs.normalize(action.path))
        self._modify(action.modifier, action.path, action.params, scope, vfs, result)

    async def _merge_config(self, action: MergeConfig, scope, vfs, result) -> None:
        strategy = _CONFIG_STRATEGIES[action.strategy]
        if action.path.lower().endswith(".json"):
            params = {"propertiesToMerge": action.config, "mergeStrategy": strategy}
            self._modify("json-object-merger", action.path, params, scope, vfs, result)
            return
        params = {
            "propertiesToMerge": action.config,
            "mergeStrategy": strategy,
            "exportName": action.export_name,
        }
        self._modify("js-config-merger", action.path, params, scope, vfs, result)

    async def _wrap_config(self, action: WrapConfig, scope, vfs, result) -> None:
        params: dict[str, Any] = {"wrapper": action.wrapper}
        if action.import_from:
            params["importFrom"] = action.import_from
            params["importDefault"] = action.import_default
        if action.imports:
            params["imports"] = list(action.imports)
        if action.options:
            params["options"] = action.options
        if action.env:
            params["env"] = action.env
        self._modify("config-wrapper", action.path, params, scope, vfs, result)

    async def _extend_schema(self, action: ExtendSchema, scope, vfs, result) -> None:
        imports = [imp.to_params() for imp in action.imports]
        if action.additional_imports:
            if not action.imports_from:
                raise ActionConfigurationError(
                    "EXTEND_SCHEMA lists additionalImports but no importsFrom module"
                )
            imports.append({"moduleSpecifier": action.imports_from, "namedImports": list(action.additional_imports)})
        params = {
            "tables": [table.model_dump() for table in action.tables],
            "imports": imports,
        }
        self._modify("schema-extender", action.path, params, scope, vfs, result)


# ---------------------------------------------------------------------------
# Package and env helpers
# ---------------------------------------------------------------------------


def parse_package_spec(spec: str) -> tuple[str, str]:
    """Split ``react@^19``/``@scope/pkg@1.2`` into ``(name, range)``; no range means ``latest``."""
    spec = spec.strip()
    at = spec.rfind("@")
    if at > 0:
        name, version = spec[:at], spec[at + 1:]
        return name, version or "latest"
    return spec, "latest"


def _package_name(name: str) -> str:
    slug = re.sub(r"[^a-z0-9._~-]+", "-", name.lower()).strip("-")
    return slug or "app"


def upsert_env_var(text: str, key: str, value: str, description: str | None = None) -> str:
    """Add ``KEY=value`` to a dotenv body unless *key* is already assigned.

    An existing assignment (``KEY=...`` or ``export KEY=...``) is left as is,
    so user-edited values survive and repeated runs change nothing.
    """
    pattern = re.compile(rf"^\s*(?:export\s+)?{re.escape(key)}\s*=", re.MULTILINE)
    if pattern.search(text):
        return text

    if value and re.search(r"[\s#\"']", value) and not (value[0] == value[-1] and value[0] in "\"'"):
        value = '"' + value.replace('"', '\\"') + '"'

    lines = []
    if description:
        lines.append(f"# {description}")
    lines.append(f"{key}={value}")
    block = "\n".join(lines) + "\n"

    if text and not text.endswith("\n"):
        text += "\n"
    return text + block
