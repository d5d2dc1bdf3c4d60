"""Stackweave orchestration loop.

Runs a set of modules end to end:

1. RESOLVE  -- order the modules by capability and reject broken selections.
2. EXECUTE  -- for each module, load its blueprint and interpret it against a
               staging VFS (atomic per module: a failure restores the snapshot).
3. FLUSH    -- write the staged files of each successful module to disk.

Usage::

    python -m stackweave.engine genome.json --root ./my-app
    python -m stackweave.engine genome.json --root ./my-app --dry-run
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from stackweave.blueprint.interpreter import BlueprintInterpreter
from stackweave.blueprint.loaders import BlueprintLoader, FileBlueprintLoader, StaticBlueprintLoader
from stackweave.blueprint.models import Blueprint, ExecutionResult
from stackweave.blueprint.templates import TemplateRenderer
from stackweave.config import EngineConfig
from stackweave.errors import (
    COMMAND_FAILED,
    EXECUTION_CANCELLED,
    FLUSH_FAILED,
    BlueprintLoadError,
    EngineError,
    ExecutionCancelled,
    ExecutionTimeout,
)
from stackweave.modifiers.registry import ModifierRegistry, create_default_registry
from stackweave.resolver.models import Module, ResolutionResult
from stackweave.resolver.resolver import DependencyResolver
from stackweave.utils import (
    console,
    format_duration,
    load_json,
    print_error,
    print_module_header,
    print_run_header,
    print_success,
    print_summary_table,
    print_warning,
)
from stackweave.vfs import ConflictResolver, VirtualFileSystem

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ModuleExecutionResult:
    """What happened to one module during a run."""

    module_id: str
    result: ExecutionResult
    written: list[str] = field(default_factory=list)
    rolled_back: bool = False
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.result.success


@dataclass
class RunResult:
    """Outcome of :meth:`BlueprintEngine.run`."""

    success: bool
    resolution: ResolutionResult
    modules: list[ModuleExecutionResult] = field(default_factory=list)
    halted: bool = False
    duration: float = 0.0

    @property
    def written(self) -> list[str]:
        return [path for module in self.modules for path in module.written]

    def module(self, module_id: str) -> ModuleExecutionResult | None:
        return next((m for m in self.modules if m.module_id == module_id), None)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class BlueprintEngine:
    """Resolves modules and executes their blueprints in order.

    Attributes:
        config: Engine configuration.
        registry: Modifier registry injected into the interpreter.
        loader: Source of one blueprint per module.
        resolver: Capability resolver built from the configuration.
        interpreter: Action interpreter shared by every module.
    """

    def __init__(
        self,
        config: EngineConfig,
        registry: ModifierRegistry | None = None,
        loader: BlueprintLoader | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or create_default_registry()
        self.loader: BlueprintLoader = loader or StaticBlueprintLoader()
        self.resolver = DependencyResolver(
            allow_conflicts=config.allow_conflicts,
            multi_provider=config.multi_provider_capabilities,
            foundation_capability=config.foundation_capability,
        )
        self.interpreter = BlueprintInterpreter(
            self.registry,
            renderer or TemplateRenderer(config.templates_dir),
            config,
        )
        self.conflicts = ConflictResolver()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        modules: Sequence[Module],
        project: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Resolve *modules* and execute their blueprints.

        Args:
            modules: The selected modules, in any order.
            project: Project-level template variables (``project.*``).
            cancel_event: Stops the run at the next action boundary once set.

        Returns:
            A :class:`RunResult`.  Resolution errors abort the run before
            any blueprint executes, leaving the disk untouched.
        """
        run_start = time.monotonic()
        project = dict(project or {})
        project.setdefault("name", self.config.resolved_root.name)
        project.setdefault("root", str(self.config.resolved_root))

        resolution = self.resolver.resolve(modules)
        if not self.config.quiet:
            print_run_header(project["name"], len(modules))
        for issue in resolution.warnings:
            print_warning(f"  {issue}")
        if not resolution.success:
            for issue in resolution.errors:
                print_error(f"  {issue}")
                for suggestion in issue.suggestions:
                    console.print(f"    [dim]suggestion:[/dim] {suggestion}")
            return RunResult(
                success=False,
                resolution=resolution,
                duration=time.monotonic() - run_start,
            )

        order = list(resolution.execution_order)
        paths = self._collect_paths(order)

        # Without a disk flush between modules, later modules still need to
        # see earlier output, so dry runs always share one staging area.
        shared_scope = self.config.vfs_scope == "run" or self.config.dry_run
        shared_vfs = self._new_vfs() if shared_scope else None

        results: list[ModuleExecutionResult] = []
        halted = False
        for index, module in enumerate(order, start=1):
            if not self.config.quiet:
                print_module_header(index, len(order), module.id)
            vfs = shared_vfs if shared_vfs is not None else self._new_vfs()
            vfs.owner = module.id

            outcome = await self._run_module(
                module, project, paths, vfs, cancel_event, shared=shared_vfs is not None
            )
            if outcome.success and shared_vfs is None:
                await self._flush(vfs, outcome)
            results.append(outcome)
            self._report_module(outcome)

            if not outcome.success and self._should_halt(outcome):
                halted = index < len(order)
                break

        if shared_vfs is not None and not self.config.dry_run:
            await self._flush_shared(shared_vfs, results)

        run_result = RunResult(
            success=all(m.success for m in results) and len(results) == len(order),
            resolution=resolution,
            modules=results,
            halted=halted,
            duration=time.monotonic() - run_start,
        )
        if not self.config.quiet:
            self._print_summary(run_result)
        return run_result

    # ------------------------------------------------------------------
    # Per-module execution
    # ------------------------------------------------------------------

    async def _run_module(
        self,
        module: Module,
        project: dict[str, Any],
        paths: dict[str, str],
        vfs: VirtualFileSystem,
        cancel_event: asyncio.Event | None,
        shared: bool = False,
    ) -> ModuleExecutionResult:
        module_start = time.monotonic()
        # A shared staging area is flushed as a whole, so a failed module must
        # be rolled back there even when modules are not atomic.
        snapshot = vfs.snapshot() if self.config.atomic_modules or shared else None

        if cancel_event is not None and cancel_event.is_set():
            result = ExecutionResult(blueprint_id=module.id)
            result.add_error(ExecutionCancelled(f"Cancelled before module '{module.id}'"))
        else:
            result = await self._execute_blueprint(module, project, paths, vfs, cancel_event)

        rolled_back = False
        if not result.success and snapshot is not None:
            vfs.restore(snapshot)
            rolled_back = True

        return ModuleExecutionResult(
            module_id=module.id,
            result=result,
            rolled_back=rolled_back,
            duration=time.monotonic() - module_start,
        )

    async def _execute_blueprint(
        self,
        module: Module,
        project: dict[str, Any],
        paths: dict[str, str],
        vfs: VirtualFileSystem,
        cancel_event: asyncio.Event | None,
    ) -> ExecutionResult:
        try:
            blueprint = self.loader.load(module)
        except BlueprintLoadError as exc:
            result = ExecutionResult(blueprint_id=module.id)
            result.add_error(exc)
            return result

        context = build_context(project, module, paths)
        try:
            return await asyncio.wait_for(
                self.interpreter.execute(blueprint, context, vfs, cancel_event),
                timeout=self.config.module_timeout,
            )
        except asyncio.TimeoutError:
            result = ExecutionResult(blueprint_id=blueprint.id, files=_owned_paths(vfs, module.id))
            result.add_error(
                ExecutionTimeout(
                    f"Module '{module.id}' exceeded its timeout of {self.config.module_timeout}s"
                )
            )
            return result

    def _should_halt(self, outcome: ModuleExecutionResult) -> bool:
        if self.config.halt_on_failure:
            return True
        if EXECUTION_CANCELLED in outcome.result.error_codes:
            return True
        return self.config.halt_on_command_failure and COMMAND_FAILED in outcome.result.error_codes

    # ------------------------------------------------------------------
    # VFS plumbing
    # ------------------------------------------------------------------

    def _new_vfs(self) -> VirtualFileSystem:
        return VirtualFileSystem(self.config.resolved_root, conflict_resolver=self.conflicts)

    async def _flush(self, vfs: VirtualFileSystem, outcome: ModuleExecutionResult) -> None:
        flushed = await vfs.flush_to_disk()
        outcome.written.extend(flushed.written)
        for path, reason in flushed.failed.items():
            outcome.result.add_error(EngineError(f"Could not write {path}: {reason}", code=FLUSH_FAILED))

    async def _flush_shared(self, vfs: VirtualFileSystem, results: list[ModuleExecutionResult]) -> None:
        """Flush a run-scoped VFS once, crediting each path to the module that last wrote it."""
        owners = {path: entry.origin for path in vfs.staged_paths() if (entry := vfs.entry(path)) is not None}
        flushed = await vfs.flush_to_disk()
        by_module = {m.module_id: m for m in results}
        for path in flushed.written:
            owner = by_module.get(owners.get(path) or "")
            if owner is not None:
                owner.written.append(path)
        for path, reason in flushed.failed.items():
            owner = by_module.get(owners.get(path) or "") or (results[-1] if results else None)
            if owner is not None:
                owner.result.add_error(EngineError(f"Could not write {path}: {reason}", code=FLUSH_FAILED))

    @staticmethod
    def _collect_paths(order: list[Module]) -> dict[str, str]:
        """Merge the ``paths`` aliases of every module, earlier modules first."""
        paths: dict[str, str] = {}
        for module in order:
            for alias, value in module.paths.items():
                paths.setdefault(alias, value)
        return paths

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _report_module(self, outcome: ModuleExecutionResult) -> None:
        for warning in outcome.result.warnings:
            print_warning(f"  {warning}")
        if outcome.success:
            if not self.config.quiet:
                print_success(
                    f"  {outcome.module_id} completed in {format_duration(outcome.duration)} "
                    f"({len(outcome.result.files)} files)"
                )
            return
        for error in outcome.result.errors:
            print_error(f"  {error}")
        if outcome.rolled_back:
            console.print(f"  [dim]Changes staged by {outcome.module_id} were rolled back[/dim]")

    def _print_summary(self, run: RunResult) -> None:
        rows = [
            (
                m.module_id,
                "[green]ok[/green]" if m.success else "[red]failed[/red]",
                str(len(m.result.files)),
                str(len(m.result.warnings)),
                format_duration(m.duration),
            )
            for m in run.modules
        ]
        print_summary_table(rows, ["Module", "Status", "Files", "Warnings", "Duration"], title="Run Summary")
        if run.halted:
            print_warning("Run halted after a failing module.")
        console.print(f"  Total time: {format_duration(run.duration)}")


def _owned_paths(vfs: VirtualFileSystem, module_id: str) -> list[str]:
    return [path for path in vfs.staged_paths() if (entry := vfs.entry(path)) is not None and entry.origin == module_id]


def build_context(project: dict[str, Any], module: Module, paths: dict[str, str]) -> dict[str, Any]:
    """Template context for *module*: ``project.*``, ``module.*`` and ``paths.*``."""
    return {
        "project": dict(project),
        "module": {
            "id": module.id,
            "category": module.category,
            "version": module.version,
            "parameters": dict(module.parameters),
        },
        "paths": dict(paths),
    }


# ---------------------------------------------------------------------------
# Genome files
# ---------------------------------------------------------------------------


def load_genome(path: str | Path) -> tuple[dict[str, Any], list[Module], dict[str, Blueprint]]:
    """Read a genome file: ``{project, modules, blueprints}``.

    ``blueprints`` maps module ids to inline blueprint objects and may be
    omitted when blueprints come from a directory.

    Raises:
        BlueprintLoadError: The file or one of its blueprints is invalid.
    """
    try:
        data = load_json(path)
    except (OSError, ValueError) as exc:
        raise BlueprintLoadError(f"Could not read genome {path}: {exc}") from exc
    try:
        modules = [Module.model_validate(m) for m in data.get("modules", [])]
        blueprints = {
            module_id: Blueprint.from_dict(bp, default_id=module_id)
            for module_id, bp in (data.get("blueprints") or {}).items()
        }
    except ValueError as exc:
        raise BlueprintLoadError(f"Invalid genome {path}: {exc}") from exc
    return dict(data.get("project") or {}), modules, blueprints


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """CLI entry point for ``python -m stackweave.engine``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Stackweave -- resolve modules and execute their blueprints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m stackweave.engine genome.json --root ./my-app\n"
            "  python -m stackweave.engine genome.json --blueprints ./blueprints --dry-run\n"
        ),
    )

    parser.add_argument("genome", help="Path to the genome JSON file (project, modules, blueprints)")
    parser.add_argument("--root", "-r", default=None, help="Project root to generate into")
    parser.add_argument("--blueprints", "-b", default=None, help="Directory of <module id>.json blueprints")
    parser.add_argument("--templates", "-t", default=None, help="Template directory for CREATE_FILE templates")
    parser.add_argument("--dry-run", action="store_true", help="Stage everything, write nothing")
    parser.add_argument("--allow-conflicts", action="store_true", help="Downgrade provider conflicts to warnings")
    parser.add_argument("--halt-on-failure", action="store_true", help="Stop after the first failing module")
    parser.add_argument("--module-timeout", type=float, default=None, help="Per-module timeout in seconds")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only print warnings, errors and the summary")

    args = parser.parse_args()

    genome_path = Path(args.genome)
    if not genome_path.exists():
        console.print(f"[bold red]Error:[/bold red] Genome file not found: {genome_path}")
        sys.exit(1)

    try:
        project, modules, blueprints = load_genome(genome_path)
    except BlueprintLoadError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc.message}")
        sys.exit(1)

    config = EngineConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.root:
        overrides["project_root"] = Path(args.root)
    if args.templates:
        overrides["templates_dir"] = Path(args.templates)
    if args.dry_run:
        overrides["dry_run"] = True
    if args.allow_conflicts:
        overrides["allow_conflicts"] = True
    if args.halt_on_failure:
        overrides["halt_on_failure"] = True
    if args.module_timeout is not None:
        overrides["module_timeout"] = args.module_timeout
    if args.quiet:
        overrides["quiet"] = True
    config = config.model_copy(update=overrides)

    loader: BlueprintLoader
    if args.blueprints:
        loader = FileBlueprintLoader(args.blueprints)
    else:
        loader = StaticBlueprintLoader(blueprints)

    engine = BlueprintEngine(config, loader=loader)
    result = asyncio.run(engine.run(modules, project))

    if result.success:
        console.print("[bold green]All blueprints executed successfully![/bold green]")
    else:
        console.print("[bold red]Run failed.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
