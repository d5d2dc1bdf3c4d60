"""Blueprint action models.

Actions form a closed union discriminated on ``type``.  Each kind declares its
own required fields, so a blueprint with an unknown action kind or a missing
field fails when it is constructed, not when it runs.  Field names are
snake_case in Python and camelCase on the wire (``forEach``, ``isDev``,
``workingDir``...); both spellings are accepted on input.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from stackweave.merge import ArrayPolicy
from stackweave.vfs.conflicts import ConflictPolicy


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    condition: Optional[str] = Field(
        default=None,
        description="Template evaluated against the context; the action is skipped when false",
    )
    for_each: Optional[str] = Field(
        default=None,
        alias="forEach",
        description="Dotted context path to a list; the action runs once per element",
    )

    def describe(self) -> str:
        """Short label used in progress output and error messages."""
        target = getattr(self, "path", None) or getattr(self, "command", None) or getattr(self, "name", None)
        return f"{self.type} {target}" if target else self.type


class ImportDefinition(BaseModel):
    """``import defaultImport, { namedImports } from 'moduleSpecifier'``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    module_specifier: str = Field(alias="moduleSpecifier", min_length=1)
    named_imports: list[str] = Field(default_factory=list, alias="namedImports")
    default_import: Optional[str] = Field(default=None, alias="defaultImport")
    namespace_import: Optional[str] = Field(default=None, alias="namespaceImport")
    type_only: bool = Field(default=False, alias="typeOnly")

    def to_params(self) -> dict[str, Any]:
        """Modifier parameter shape (camelCase, unset keys dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SchemaTable(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    definition: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Manifest actions
# ---------------------------------------------------------------------------


class InstallPackages(_ActionBase):
    """Add packages to ``package.json``.

    Entries are ``name`` or ``name@range`` (scoped names included).
    ``ADD_DEPENDENCY`` and ``ADD_DEV_DEPENDENCY`` are accepted as aliases.
    """

    type: Literal["INSTALL_PACKAGES", "ADD_DEPENDENCY", "ADD_DEV_DEPENDENCY"] = "INSTALL_PACKAGES"
    packages: list[str] = Field(min_length=1)
    is_dev: bool = Field(default=False, alias="isDev")
    path: str = Field(default="package.json")

    @property
    def dev(self) -> bool:
        return self.is_dev or self.type == "ADD_DEV_DEPENDENCY"


class AddScript(_ActionBase):
    type: Literal["ADD_SCRIPT"] = "ADD_SCRIPT"
    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    path: str = Field(default="package.json")


class AddEnvVar(_ActionBase):
    type: Literal["ADD_ENV_VAR"] = "ADD_ENV_VAR"
    key: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    value: str = Field(default="")
    path: str = Field(default=".env.example")
    description: Optional[str] = Field(default=None, description="Written as a comment above the variable")


# ---------------------------------------------------------------------------
# File actions
# ---------------------------------------------------------------------------


class CreateFile(_ActionBase):
    """Create a file from inline ``content`` or a ``template`` file."""

    type: Literal["CREATE_FILE"] = "CREATE_FILE"
    path: str = Field(min_length=1)
    content: Optional[str] = None
    template: Optional[str] = None
    overwrite: bool = Field(default=False, description="Shorthand for conflict strategy 'replace'")
    conflict: Optional[ConflictPolicy] = Field(default=None, alias="conflictResolution")

    @model_validator(mode="after")
    def _content_or_template(self) -> "CreateFile":
        if self.content is not None and self.template is not None:
            raise ValueError("CREATE_FILE takes either content or template, not both")
        if self.overwrite and self.conflict is not None:
            raise ValueError("CREATE_FILE takes either overwrite or conflictResolution, not both")
        return self

    @property
    def policy(self) -> ConflictPolicy | None:
        if self.overwrite:
            return ConflictPolicy.of("replace")
        return self.conflict


class AppendToFile(_ActionBase):
    type: Literal["APPEND_TO_FILE"] = "APPEND_TO_FILE"
    path: str = Field(min_length=1)
    content: str


class PrependToFile(_ActionBase):
    type: Literal["PREPEND_TO_FILE"] = "PREPEND_TO_FILE"
    path: str = Field(min_length=1)
    content: str


class RunCommand(_ActionBase):
    type: Literal["RUN_COMMAND"] = "RUN_COMMAND"
    command: str = Field(min_length=1)
    working_dir: Optional[str] = Field(default=None, alias="workingDir")
    allow_failure: bool = Field(default=False, alias="allowFailure")
    timeout: Optional[int] = Field(default=None, ge=1, description="Seconds; defaults to the engine setting")


class MergeJson(_ActionBase):
    type: Literal["MERGE_JSON"] = "MERGE_JSON"
    path: str = Field(min_length=1)
    content: dict[str, Any]
    strategy: Literal["deep", "shallow"] = "deep"
    array_policy: ArrayPolicy = Field(default="unique", alias="arrayPolicy")


# ---------------------------------------------------------------------------
# Structural actions
# ---------------------------------------------------------------------------


class AddImport(_ActionBase):
    type: Literal["ADD_IMPORT", "ADD_TS_IMPORT"] = "ADD_IMPORT"
    path: str = Field(min_length=1)
    imports: list[ImportDefinition] = Field(min_length=1)


class EnhanceFile(_ActionBase):
    """Run a named modifier on ``path``.

    ``fallback`` decides what happens when the file does not exist: fail,
    skip the action with a warning, or create it from the modifier's initial
    content first.
    """

    type: Literal["ENHANCE_FILE"] = "ENHANCE_FILE"
    path: str = Field(min_length=1)
    modifier: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    fallback: Literal["error", "skip", "create"] = "error"


class MergeConfig(_ActionBase):
    type: Literal["MERGE_CONFIG"] = "MERGE_CONFIG"
    path: str = Field(min_length=1)
    config: dict[str, Any]
    strategy: Literal["deep-merge", "shallow-merge", "replace"] = "deep-merge"
    export_name: str = Field(default="default", alias="exportName")


class WrapConfig(_ActionBase):
    type: Literal["WRAP_CONFIG"] = "WRAP_CONFIG"
    path: str = Field(min_length=1)
    wrapper: str = Field(min_length=1)
    import_from: Optional[str] = Field(default=None, alias="importFrom")
    import_default: bool = Field(default=False, alias="importDefault")
    imports: list[str] = Field(default_factory=list)
    options: dict[str, Any] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)


class ExtendSchema(_ActionBase):
    """Append table definitions to a schema module.

    ``additionalImports`` are named imports from ``importsFrom``; ``imports``
    takes full import definitions.
    """

    type: Literal["EXTEND_SCHEMA"] = "EXTEND_SCHEMA"
    path: str = Field(min_length=1)
    tables: list[SchemaTable] = Field(min_length=1)
    additional_imports: list[str] = Field(default_factory=list, alias="additionalImports")
    imports_from: Optional[str] = Field(default=None, alias="importsFrom")
    imports: list[ImportDefinition] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Union
# ---------------------------------------------------------------------------

BlueprintAction = Annotated[
    Union[
        InstallPackages,
        AddScript,
        AddEnvVar,
        CreateFile,
        AppendToFile,
        PrependToFile,
        RunCommand,
        MergeJson,
        AddImport,
        EnhanceFile,
        MergeConfig,
        WrapConfig,
        ExtendSchema,
    ],
    Field(discriminator="type"),
]

_ACTION_ADAPTER: TypeAdapter[BlueprintAction] = TypeAdapter(BlueprintAction)


def parse_action(data: dict[str, Any]) -> BlueprintAction:
    """Validate one action dictionary into its typed model.

    Raises:
        pydantic.ValidationError: Unknown ``type`` or invalid fields.
    """
    return _ACTION_ADAPTER.validate_python(data)
