"""Error taxonomy for the blueprint execution engine.

Every error raised by the engine carries a stable ``code`` string so callers
can branch on it without parsing messages, a human-readable message, and an
optional list of remediation ``suggestions``.

Resolution problems are reported as structured ``ResolutionIssue`` records
(see :mod:`stackweave.resolver.models`) rather than raised; ``ResolutionError``
exists for callers that want to turn a failed resolution into an exception.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


# ---------------------------------------------------------------------------
# Stable error codes
# ---------------------------------------------------------------------------

# Resolution
MISSING_CAPABILITY = "MISSING_CAPABILITY"
CONFLICTING_PROVIDERS = "CONFLICTING_PROVIDERS"
CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
MISSING_MODULE = "MISSING_MODULE"
DUPLICATE_MODULE = "DUPLICATE_MODULE"
DUPLICATE_PROVIDER = "DUPLICATE_PROVIDER"

# Interpretation
PARAMETER_VALIDATION = "PARAMETER_VALIDATION"
FILE_NOT_FOUND = "FILE_NOT_FOUND"
FILE_ALREADY_EXISTS = "FILE_ALREADY_EXISTS"
FILE_CONFLICT = "FILE_CONFLICT"
INVALID_PATH = "INVALID_PATH"
CONDITION_EVALUATION = "CONDITION_EVALUATION"
TEMPLATE_ERROR = "TEMPLATE_ERROR"
ACTION_CONFIGURATION = "ACTION_CONFIGURATION"
BLUEPRINT_LOAD = "BLUEPRINT_LOAD"

# Execution
MODIFIER_NOT_FOUND = "MODIFIER_NOT_FOUND"
MODIFIER_FAILED = "MODIFIER_FAILED"
COMMAND_FAILED = "COMMAND_FAILED"
EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
EXECUTION_CANCELLED = "EXECUTION_CANCELLED"
FLUSH_FAILED = "FLUSH_FAILED"
INTERNAL_ERROR = "INTERNAL_ERROR"


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class EngineError(Exception):
    """Base class for every error the engine reports.

    Attributes:
        code: Stable machine-readable error code.
        message: Human-readable description.
        suggestions: Optional remediation hints.
    """

    code: str = INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        suggestions: Iterable[str] | None = None,
    ) -> None:
        if code is not None:
            self.code = code
        self.message = message
        self.suggestions: list[str] = list(suggestions or [])
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionError(EngineError):
    """Raised when module resolution fails and the caller asked for an exception."""

    code = MISSING_CAPABILITY

    def __init__(self, issues: Sequence[object]) -> None:
        self.issues = list(issues)
        first_code = getattr(self.issues[0], "code", MISSING_CAPABILITY) if self.issues else self.code
        lines = [str(getattr(issue, "message", issue)) for issue in self.issues]
        suggestions: list[str] = []
        for issue in self.issues:
            suggestions.extend(getattr(issue, "suggestions", []) or [])
        super().__init__(
            f"Module resolution failed with {len(self.issues)} error(s): " + "; ".join(lines),
            code=first_code,
            suggestions=suggestions,
        )


# ---------------------------------------------------------------------------
# Interpretation
# ---------------------------------------------------------------------------


class ParameterValidationError(EngineError):
    """Raised when modifier or action parameters do not match their schema."""

    code = PARAMETER_VALIDATION

    def __init__(self, subject: str, problems: dict[str, str]) -> None:
        self.subject = subject
        self.problems = dict(problems)
        self.fields = sorted(self.problems)
        details = ", ".join(f"{name}: {reason}" for name, reason in self.problems.items())
        super().__init__(f"Invalid parameters for {subject}: {details}")


class FileNotFound(EngineError):
    """Raised when a path is neither staged nor present on disk."""

    code = FILE_NOT_FOUND

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"File not found: {path}")


class FileAlreadyExists(EngineError):
    """Raised when a file is created twice without a conflict policy."""

    code = FILE_ALREADY_EXISTS

    def __init__(self, path: str, origin: str | None = None) -> None:
        self.path = path
        self.origin = origin
        owner = f" (written by {origin})" if origin else ""
        super().__init__(
            f"File already exists: {path}{owner}",
            suggestions=["Set overwrite: true or declare a conflict policy on the action"],
        )


class FileConflict(EngineError):
    """Raised by the ``error`` conflict strategy."""

    code = FILE_CONFLICT

    def __init__(self, path: str, origin: str | None = None, detail: str = "") -> None:
        self.path = path
        self.origin = origin
        owner = f" already written by {origin}" if origin else " already has content"
        suffix = f": {detail}" if detail else ""
        super().__init__(f"Conflicting write to {path};{owner}{suffix}")


class InvalidPath(EngineError):
    """Raised when a path escapes the project root."""

    code = INVALID_PATH

    def __init__(self, path: str, reason: str = "path escapes the project root") -> None:
        self.path = path
        super().__init__(f"Invalid path {path!r}: {reason}")


class ConditionEvaluationError(EngineError):
    """Raised when an action condition cannot be evaluated."""

    code = CONDITION_EVALUATION


class TemplateRenderError(EngineError):
    """Raised when a templated action field cannot be rendered."""

    code = TEMPLATE_ERROR


class ActionConfigurationError(EngineError):
    """Raised when an action is well-formed but cannot run in this context."""

    code = ACTION_CONFIGURATION


class BlueprintLoadError(EngineError):
    """Raised when a module's blueprint cannot be located or parsed."""

    code = BLUEPRINT_LOAD


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ModifierNotFound(EngineError):
    """Raised when an action names a modifier that is not registered."""

    code = MODIFIER_NOT_FOUND

    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        self.name = name
        super().__init__(
            f"Modifier '{name}' is not registered",
            suggestions=sorted(available),
        )


class ModifierError(EngineError):
    """Wraps any failure raised while a modifier transforms a file."""

    code = MODIFIER_FAILED

    def __init__(self, modifier: str, path: str, reason: str) -> None:
        self.modifier = modifier
        self.path = path
        self.reason = reason
        super().__init__(f"Modifier '{modifier}' failed on {path}: {reason}")


class CommandExecutionError(EngineError):
    """Raised when an external command exits with a non-zero status."""

    code = COMMAND_FAILED

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr[:500]}" if stderr else ""
        super().__init__(f"Command failed (exit {returncode}): {command}{detail}")


class ExecutionTimeout(EngineError):
    """Raised when a module or command exceeds its caller-supplied timeout."""

    code = EXECUTION_TIMEOUT


class ExecutionCancelled(EngineError):
    """Raised when cancellation is observed at an action boundary."""

    code = EXECUTION_CANCELLED
