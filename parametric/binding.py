"""Argument binding: compiling parameters and resolving raw arguments.

The builder asks a ``BindingEngine`` to compile every declared handler
parameter into a ``ParameterDescriptor``. At call time the resulting
``BindingPlan`` turns a raw argument string (or token list) plus the
caller's namespace into the positional argument list for the handler.

``ArgumentBinder`` is the default engine. Per-parameter metadata is
given with ``typing.Annotated``:

    Switch("f")           boolean ``-f`` switch, or value flag ``-f <v>``
    Default(value)        value used when the argument is absent
    Text()                joins all remaining positional tokens
    FromNamespace("key")  injected from the namespace, hidden from help

Parameters typed ``Namespace`` receive the caller's namespace itself.
"""

import enum
import re
import shlex
import types
import typing
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from .exceptions import ArgumentError, IllegalParameterError, UnusedFlagError
from .models import FlagPolicy
from .namespace import Namespace

# Values accepted for bool parameters (lower-cased before lookup)
_TRUE_WORDS = frozenset({"true", "yes", "on", "1", "y"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0", "n"})

# "-5" and "-1.5" are values, not flag clusters
_NUMBER_PATTERN = re.compile(r"^-\d+(\.\d+)?$")

_MISSING = object()

# typing.Optional[X] and PEP 604 X | None
_UNION_ORIGINS = (Union, getattr(types, "UnionType", Union))


# ---------------------------------------------------------------------------
# Metadata markers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Switch:
    """Bind the parameter to the flag ``-<char>``."""
    char: str

    def __post_init__(self):
        if len(self.char) != 1 or self.char.isspace() or self.char == "-":
            raise ValueError(f"flag must be a single character, got {self.char!r}")


@dataclass(frozen=True)
class Default:
    """Value used when the argument is not given."""
    value: Any


@dataclass(frozen=True)
class Text:
    """Consume the rest of the positional tokens, joined by spaces."""


@dataclass(frozen=True)
class FromNamespace:
    """Inject ``namespace.get(key)`` instead of reading an argument."""
    key: str


# ---------------------------------------------------------------------------
# Descriptors and plans
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParameterDescriptor:
    """How to produce the value of one handler parameter.

    Attributes:
        name: Parameter name as written in the handler signature.
        type: Target type after unwrapping ``Optional``/``Annotated``.
        converter: ``str -> value`` function (None for injected values).
        flag: Flag character, or None for positional parameters.
        default: Default value, or the module's missing sentinel.
        optional: Whether the argument may be omitted.
        variadic: Whether the parameter consumes the rest of the line.
        user_facing: Whether it appears in the command's usage.
        namespace_key: Key to inject from, for ``FromNamespace``.
    """

    name: str
    type: Any
    converter: Optional[Callable[[str], Any]] = field(default=None, compare=False, repr=False)
    flag: Optional[str] = None
    default: Any = _MISSING
    optional: bool = False
    variadic: bool = False
    user_facing: bool = True
    namespace_key: Optional[str] = None

    @property
    def is_switch(self) -> bool:
        return self.flag is not None and self.type is bool

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING

    @property
    def injected(self) -> bool:
        return not self.user_facing


class BindingEngine(Protocol):
    """Compiles parameters at build time and resolves them per call."""

    def compile(self, type_: Any, metadata: Sequence[Any], name: str) -> ParameterDescriptor:
        ...

    def resolve(
        self,
        plan: "BindingPlan",
        raw_args: Union[str, Sequence[str]],
        namespace: Namespace,
        policy: FlagPolicy,
    ) -> List[Any]:
        ...


@dataclass(frozen=True)
class BindingPlan:
    """Ordered parameter descriptors plus the engine that resolves them.

    Order matches the handler's positional signature.
    """

    descriptors: Tuple[ParameterDescriptor, ...]
    engine: BindingEngine = field(compare=False, repr=False)

    def __post_init__(self):
        seen_flags: Dict[str, str] = {}
        variadic_seen = None
        for desc in self.descriptors:
            if desc.flag is not None:
                if desc.flag in seen_flags:
                    raise IllegalParameterError(
                        f"Flag -{desc.flag} is bound to both "
                        f"'{seen_flags[desc.flag]}' and '{desc.name}'",
                        parameter=desc.name,
                    )
                seen_flags[desc.flag] = desc.name
            elif desc.user_facing:
                if variadic_seen is not None:
                    raise IllegalParameterError(
                        f"Parameter '{desc.name}' follows text parameter '{variadic_seen}'",
                        parameter=desc.name,
                    )
                if desc.variadic:
                    variadic_seen = desc.name

    @property
    def user_parameters(self) -> Tuple[ParameterDescriptor, ...]:
        """Descriptors shown to users (injected ones are hidden)."""
        return tuple(d for d in self.descriptors if d.user_facing)

    @property
    def flag_chars(self) -> frozenset:
        return frozenset(d.flag for d in self.descriptors if d.flag is not None)

    def resolve(
        self,
        raw_args: Union[str, Sequence[str]],
        namespace: Namespace,
        policy: FlagPolicy,
    ) -> List[Any]:
        return self.engine.resolve(self, raw_args, namespace, policy)


# ---------------------------------------------------------------------------
# Default engine
# ---------------------------------------------------------------------------

def parse_bool(value: str) -> bool:
    """Parse yes/no style words into a bool."""
    lowered = value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    raise ValueError(f"not a boolean: {value!r}")


class _EnumConverter:
    """Converts a member name (case-insensitive) or value to an enum member."""

    def __init__(self, enum_type: type):
        self.enum_type = enum_type

    def __call__(self, value: str) -> Any:
        for member in self.enum_type:
            if member.name.lower() == value.lower() or str(member.value) == value:
                return member
        choices = "|".join(m.name.lower() for m in self.enum_type)
        raise ValueError(f"expected one of {choices}")


def _unwrap_optional(type_: Any) -> Tuple[Any, bool]:
    """``Optional[X]`` or ``X | None`` -> (X, True); anything else -> (type_, False)."""
    if typing.get_origin(type_) in _UNION_ORIGINS:
        args = [a for a in typing.get_args(type_) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(type_)) == 2:
            return args[0], True
    return type_, False


class ArgumentBinder:
    """Default binding engine with converters for common Python types."""

    def __init__(self):
        self._converters: Dict[Any, Callable[[str], Any]] = {
            str: str,
            int: int,
            float: float,
            bool: parse_bool,
        }

    def register_converter(self, type_: Any, converter: Callable[[str], Any]) -> None:
        """Teach the binder to convert raw tokens into ``type_``."""
        self._converters[type_] = converter

    def _converter_for(self, type_: Any, name: str) -> Callable[[str], Any]:
        if type_ in self._converters:
            return self._converters[type_]
        if isinstance(type_, type) and issubclass(type_, enum.Enum):
            return _EnumConverter(type_)
        raise IllegalParameterError(
            f"No converter for parameter '{name}' of type {getattr(type_, '__name__', type_)!r}",
            parameter=name,
        )

    def compile(self, type_: Any, metadata: Sequence[Any], name: str) -> ParameterDescriptor:
        """Compile one parameter.

        Raises:
            IllegalParameterError: The type has no converter or the
                metadata combination makes no sense.
        """
        inner, optional = _unwrap_optional(type_)
        flag = None
        default = None if optional else _MISSING
        variadic = False
        namespace_key = None

        for marker in metadata:
            if isinstance(marker, Switch):
                flag = marker.char
            elif isinstance(marker, Default):
                default = marker.value
            elif isinstance(marker, Text):
                variadic = True
            elif isinstance(marker, FromNamespace):
                namespace_key = marker.key

        if inner is Namespace or namespace_key is not None:
            return ParameterDescriptor(
                name=name,
                type=inner,
                flag=None,
                default=default,
                optional=default is not _MISSING,
                user_facing=False,
                namespace_key=namespace_key,
            )

        if variadic and flag is not None:
            raise IllegalParameterError(
                f"Parameter '{name}' cannot be both a flag and text", parameter=name
            )
        if variadic and inner is not str:
            raise IllegalParameterError(
                f"Text parameter '{name}' must be typed str", parameter=name
            )
        if flag is not None and inner is bool and default is _MISSING:
            default = False

        return ParameterDescriptor(
            name=name,
            type=inner,
            converter=self._converter_for(inner, name),
            flag=flag,
            default=default,
            optional=default is not _MISSING,
            variadic=variadic,
        )

    def resolve(
        self,
        plan: BindingPlan,
        raw_args: Union[str, Sequence[str]],
        namespace: Namespace,
        policy: FlagPolicy,
    ) -> List[Any]:
        """Bind raw arguments to the plan's descriptors, in order.

        Raises:
            ArgumentError: Missing, extra or unconvertible arguments.
            UnusedFlagError: Flags that are neither consumed nor allowed.
        """
        tokens = self._tokenize(raw_args)
        flag_params = {d.flag: d for d in plan.descriptors if d.flag is not None}
        positional, flag_values, rejected = self._split_flags(tokens, flag_params, policy)
        if rejected:
            raise UnusedFlagError(rejected)

        values: List[Any] = []
        cursor = 0
        for desc in plan.descriptors:
            if desc.injected:
                values.append(self._inject(desc, namespace))
            elif desc.flag is not None:
                if desc.flag in flag_values:
                    raw = flag_values[desc.flag]
                    values.append(True if raw is True else self._convert(desc, raw))
                else:
                    values.append(desc.default if desc.has_default else None)
            elif desc.variadic:
                rest = positional[cursor:]
                cursor = len(positional)
                if rest:
                    values.append(" ".join(rest))
                elif desc.has_default:
                    values.append(desc.default)
                else:
                    raise ArgumentError(f"Missing argument '{desc.name}'", parameter=desc.name)
            elif cursor < len(positional):
                values.append(self._convert(desc, positional[cursor]))
                cursor += 1
            elif desc.has_default:
                values.append(desc.default)
            else:
                raise ArgumentError(f"Missing argument '{desc.name}'", parameter=desc.name)

        if cursor < len(positional):
            extra = " ".join(positional[cursor:])
            raise ArgumentError(f"Too many arguments: {extra}", extra=extra)
        return values

    @staticmethod
    def _tokenize(raw_args: Union[str, Sequence[str]]) -> List[str]:
        if isinstance(raw_args, str):
            try:
                return shlex.split(raw_args)
            except ValueError as e:
                raise ArgumentError(f"Cannot parse arguments: {e}") from e
        return list(raw_args)

    @staticmethod
    def _split_flags(
        tokens: List[str],
        flag_params: Dict[str, ParameterDescriptor],
        policy: FlagPolicy,
    ) -> Tuple[List[str], Dict[str, Any], set]:
        """Separate flag clusters from positional tokens.

        Returns (positional, {flag: True | raw value}, rejected flags).
        """
        positional: List[str] = []
        flag_values: Dict[str, Any] = {}
        rejected: set = set()
        parsing_flags = True
        i = 0
        while i < len(tokens):
            token = tokens[i]
            i += 1
            if parsing_flags and token == "--":
                parsing_flags = False
                continue
            if (
                not parsing_flags
                or len(token) < 2
                or not token.startswith("-")
                or _NUMBER_PATTERN.match(token)
            ):
                positional.append(token)
                continue

            chars = token[1:]
            for pos, char in enumerate(chars):
                desc = flag_params.get(char)
                if desc is None:
                    if policy.rejects(char):
                        rejected.add(char)
                    continue
                if desc.is_switch:
                    flag_values[char] = True
                    continue
                # Value flag: rest of the cluster, else the next token
                remainder = chars[pos + 1:]
                if remainder:
                    flag_values[char] = remainder
                elif i < len(tokens):
                    flag_values[char] = tokens[i]
                    i += 1
                else:
                    raise ArgumentError(
                        f"Flag -{char} requires a value for '{desc.name}'",
                        parameter=desc.name,
                    )
                break
        return positional, flag_values, rejected

    @staticmethod
    def _convert(desc: ParameterDescriptor, raw: str) -> Any:
        try:
            return desc.converter(raw)
        except (ValueError, TypeError) as e:
            raise ArgumentError(
                f"Invalid value for '{desc.name}': {raw!r} ({e})",
                parameter=desc.name,
            ) from e

    @staticmethod
    def _inject(desc: ParameterDescriptor, namespace: Namespace) -> Any:
        if desc.namespace_key is None:
            return namespace
        if desc.namespace_key in namespace:
            return namespace[desc.namespace_key]
        if desc.has_default:
            return desc.default
        raise ArgumentError(
            f"Missing '{desc.namespace_key}' in namespace for '{desc.name}'",
            parameter=desc.name,
        )
