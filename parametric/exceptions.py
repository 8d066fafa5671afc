"""Exception hierarchy for parametric.

Splits failures into three categories so the dispatch layer can decide
what to show the caller and what to treat as a bug:

    RECOVERABLE    command-level failures (bad argument, denied, not found)
    FATAL          the adapter could not run the handler at all
    CONFIGURATION  a handler definition is malformed at registration time

Handlers may raise any ``Exception``; those propagate unchanged. A
``ParametricError`` raised with ``category=ErrorCategory.FATAL`` is the
explicit way for a handler to ask the adapter to wrap it instead.
"""

from enum import Enum
from typing import Any, Iterable, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for wrap-vs-propagate decisions."""
    RECOVERABLE = "recoverable"      # Reported to the caller as a command failure
    FATAL = "fatal"                  # Wrapped in InvocationFailure
    CONFIGURATION = "configuration"  # Aborts registration of one handler


class ParametricError(Exception):
    """Base exception for all parametric errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification.
        module: Originating module name (e.g. "builder").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_recoverable(self) -> bool:
        """Whether the dispatch layer should report this as a command failure."""
        return self.category == ErrorCategory.RECOVERABLE

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Registration-time exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(ParametricError):
    """A handler definition cannot be turned into a command unit."""

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.CONFIGURATION,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, category=category, module=module or "builder", **context
        )


class IllegalParameterError(ConfigurationError):
    """A declared parameter type has no converter in the binding engine.

    Attributes:
        parameter: Name of the offending parameter (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        parameter: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.CONFIGURATION,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.parameter = parameter
        super().__init__(
            message, category=category, module=module or "binding", **context
        )


# ---------------------------------------------------------------------------
# Invocation-time exceptions
# ---------------------------------------------------------------------------

class InvocationFailure(ParametricError):
    """The adapter could not run a handler, or the handler died fatally.

    The original error is kept on ``cause`` and chained as ``__cause__``.

    Attributes:
        handler: Display name of the handler that failed.
        cause: The underlying exception.
        adapter_fault: True when the fault is in the adapter itself
            rather than in the handler call.
    """

    def __init__(
        self,
        message: str = "",
        cause: Optional[BaseException] = None,
        *,
        handler: Optional[str] = None,
        adapter_fault: bool = False,
        category: ErrorCategory = ErrorCategory.FATAL,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.handler = handler
        self.cause = cause
        self.adapter_fault = adapter_fault
        super().__init__(
            message, category=category, module=module or "invoke", **context
        )
        if cause is not None:
            self.__cause__ = cause


class CommandError(ParametricError):
    """Base for recoverable, command-level failures."""

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, category=category, module=module or "command", **context
        )


class ArgumentError(CommandError):
    """Raw arguments could not be bound to the handler's parameters.

    Attributes:
        parameter: Name of the parameter being bound (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        parameter: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.parameter = parameter
        super().__init__(
            message, category=category, module=module or "binding", **context
        )


class UnusedFlagError(ArgumentError):
    """Flags were given that the command neither declares nor consumes.

    Attributes:
        flags: The rejected flag characters, sorted.
    """

    def __init__(
        self,
        flags: Iterable[str],
        *,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.flags = tuple(sorted(flags))
        shown = ", ".join(f"-{f}" for f in self.flags)
        super().__init__(
            f"Unknown flags: {shown}",
            category=category,
            module=module,
            **context,
        )


class AuthorizationError(CommandError):
    """The caller lacks every permission the command declares.

    Attributes:
        command: Name of the command that was refused.
    """

    def __init__(
        self,
        message: str = "",
        *,
        command: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        super().__init__(
            message or "Permission denied",
            category=category,
            module=module or "security",
            **context,
        )


class CommandNotFoundError(CommandError):
    """No command unit is registered under the requested name."""

    def __init__(
        self,
        message: str = "",
        *,
        command: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        super().__init__(
            message or f"Unknown command: {command}",
            category=category,
            module=module or "registry",
            **context,
        )
