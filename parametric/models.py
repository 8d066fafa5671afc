"""Declaration models for command handlers.

A handler is declared by attaching a ``CommandSpec`` to a plain
function, either with the ``@command`` decorator or by building a
``HandlerDefinition`` by hand. Per-parameter metadata rides on
``typing.Annotated``::

    class Greeter:
        @command("greet", desc="greets the caller", perms=("greet.use",))
        def greet(self, name: str, loud: Annotated[bool, Switch("l")] = False):
            ...

Key classes:
    CommandSpec: Validated, frozen command declaration.
    DeclaredParameter: One positional parameter of a handler.
    HandlerDefinition: Receiver + handler + parameters + spec.
    FlagPolicy: Which flag characters a command tolerates.
"""

import inspect
import typing
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import ConfigurationError, IllegalParameterError

# Attribute the @command decorator stores the spec under
SPEC_ATTRIBUTE = "__command_spec__"


class CommandSpec(BaseModel):
    """Declaration of a single command.

    Empty strings mean "not declared" for ``desc``, ``help`` and
    ``usage``; the builder turns them into ``None`` in the description.
    """

    model_config = ConfigDict(frozen=True)

    aliases: Tuple[str, ...] = Field(..., min_length=1, description="First alias is the primary name")
    desc: str = ""
    help: str = ""
    usage: str = ""
    perms: Tuple[str, ...] = ()
    flags: str = Field("", description="Declared single-character flags, e.g. 'fv'")
    any_flags: bool = False
    metadata: Tuple[Any, ...] = ()

    @field_validator("aliases")
    @classmethod
    def _check_aliases(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for alias in value:
            if not alias or any(ch.isspace() for ch in alias):
                raise ValueError(f"invalid command alias: {alias!r}")
        return value

    @field_validator("perms")
    @classmethod
    def _check_perms(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        if any(not perm for perm in value):
            raise ValueError("permission strings must not be empty")
        return value

    @field_validator("flags")
    @classmethod
    def _check_flags(cls, value: str) -> str:
        if len(set(value)) != len(value):
            raise ValueError(f"duplicate flag characters in {value!r}")
        if any(ch.isspace() or ch == "-" for ch in value):
            raise ValueError(f"invalid flag characters in {value!r}")
        return value

    @field_validator("metadata")
    @classmethod
    def _check_metadata(cls, value: Tuple[Any, ...]) -> Tuple[Any, ...]:
        for marker in value:
            try:
                hash(marker)
            except TypeError:
                raise ValueError(f"metadata marker is not hashable: {marker!r}") from None
        return value

    @property
    def name(self) -> str:
        return self.aliases[0]


def command(
    *aliases: str,
    desc: str = "",
    help: str = "",
    usage: str = "",
    perms: Tuple[str, ...] = (),
    flags: str = "",
    any_flags: bool = False,
    metadata: Tuple[Any, ...] = (),
) -> Callable[[Callable], Callable]:
    """Mark a method as a command handler.

    Without aliases, the function name is used as the command name.
    """
    def decorator(func: Callable) -> Callable:
        spec = CommandSpec(
            aliases=aliases or (func.__name__,),
            desc=desc,
            help=help,
            usage=usage,
            perms=tuple(perms),
            flags=flags,
            any_flags=any_flags,
            metadata=tuple(metadata),
        )
        setattr(func, SPEC_ATTRIBUTE, spec)
        return func

    return decorator


def get_command_spec(func: Callable) -> Optional[CommandSpec]:
    """Return the spec attached by ``@command``, or None."""
    func = getattr(func, "__func__", func)
    return getattr(func, SPEC_ATTRIBUTE, None)


# Marker for "no default declared"
_EMPTY = inspect.Parameter.empty


@dataclass(frozen=True)
class DeclaredParameter:
    """A positional handler parameter as written in the signature."""

    name: str
    type: Any
    metadata: Tuple[Any, ...] = ()
    default: Any = _EMPTY

    @property
    def has_default(self) -> bool:
        return self.default is not _EMPTY


@dataclass(frozen=True)
class HandlerDefinition:
    """Everything needed to build a command unit for one handler.

    ``handler`` is called as ``handler(receiver, *args)``.
    """

    receiver: Any
    handler: Callable
    parameters: Tuple[DeclaredParameter, ...]
    spec: Optional[CommandSpec]

    @property
    def handler_name(self) -> str:
        """Display name used in log events and failure messages."""
        qualname = getattr(self.handler, "__qualname__", None) or repr(self.handler)
        module = getattr(self.handler, "__module__", None)
        return f"{module}.{qualname}" if module else qualname

    @classmethod
    def from_method(
        cls, receiver: Any, func: Callable, spec: Optional[CommandSpec] = None
    ) -> "HandlerDefinition":
        """Introspect ``func`` once and record its positional parameters.

        ``func`` may be a bound method of ``receiver`` or the plain
        function; the first parameter (``self``) is skipped either way.

        Raises:
            ConfigurationError: Type hints cannot be resolved.
            IllegalParameterError: The signature uses ``*args``,
                ``**kwargs`` or keyword-only parameters.
        """
        func = getattr(func, "__func__", func)
        if spec is None:
            spec = get_command_spec(func)
        try:
            hints = typing.get_type_hints(func, include_extras=True)
        except (NameError, TypeError) as e:
            raise ConfigurationError(
                f"Cannot resolve type hints of '{func.__qualname__}'",
                handler=func.__qualname__,
                error=str(e),
            ) from e

        params = list(inspect.signature(func).parameters.values())[1:]
        declared = []
        for param in params:
            if param.kind not in (
                inspect.Parameter.POSITIONAL_ONLY,
                inspect.Parameter.POSITIONAL_OR_KEYWORD,
            ):
                raise IllegalParameterError(
                    f"Parameter '{param.name}' of '{func.__qualname__}' must be positional",
                    parameter=param.name,
                )
            hint = hints.get(param.name, str)
            metadata: Tuple[Any, ...] = ()
            if typing.get_origin(hint) is typing.Annotated:
                metadata = tuple(hint.__metadata__)
                hint = typing.get_args(hint)[0]
            declared.append(
                DeclaredParameter(
                    name=param.name, type=hint, metadata=metadata, default=param.default
                )
            )
        return cls(receiver=receiver, handler=func, parameters=tuple(declared), spec=spec)


@dataclass(frozen=True)
class FlagPolicy:
    """Rule for flag characters that no parameter consumed.

    If ``ignore_unused_flags`` is False, any leftover flag character not
    in ``declared_flags`` is rejected at resolution time.
    """

    ignore_unused_flags: bool = False
    declared_flags: FrozenSet[str] = frozenset()

    @classmethod
    def from_spec(cls, spec: CommandSpec) -> "FlagPolicy":
        return cls(
            ignore_unused_flags=spec.any_flags,
            declared_flags=frozenset(spec.flags),
        )

    def rejects(self, flag: str) -> bool:
        return not self.ignore_unused_flags and flag not in self.declared_flags
