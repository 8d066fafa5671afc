"""User-facing description of a command unit."""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from .binding import ParameterDescriptor


@dataclass(frozen=True)
class Description:
    """Immutable help/usage/permission data for one command.

    Listeners return modified copies via ``evolve``; the command unit
    keeps the final one and hands out the same object on every call.
    """

    parameters: Tuple["ParameterDescriptor", ...] = ()
    short_description: Optional[str] = None
    help: Optional[str] = None
    usage_override: Optional[str] = None
    permissions: Tuple[str, ...] = ()

    @property
    def usage(self) -> str:
        """Usage override if declared, else generated from parameters.

        ``-f`` for switches, ``-f <name>`` for value flags, ``<name>``
        for required, ``[name]`` for optional and ``<name...>`` for
        text that consumes the rest of the line.
        """
        if self.usage_override is not None:
            return self.usage_override

        parts = []
        for param in self.parameters:
            if param.flag is not None:
                if param.is_switch:
                    parts.append(f"[-{param.flag}]")
                else:
                    parts.append(f"[-{param.flag} <{param.name}>]")
            elif param.variadic:
                parts.append(f"[{param.name}...]" if param.optional else f"<{param.name}...>")
            elif param.optional:
                parts.append(f"[{param.name}]")
            else:
                parts.append(f"<{param.name}>")
        return " ".join(parts)

    def evolve(self, **changes) -> "Description":
        """Return a copy with ``changes`` applied."""
        if "permissions" in changes:
            changes["permissions"] = tuple(changes["permissions"])
        if "parameters" in changes:
            changes["parameters"] = tuple(changes["parameters"])
        return replace(self, **changes)

    def with_help_lines(self, *lines: str) -> "Description":
        """Return a copy with ``lines`` appended to the help text."""
        if not lines:
            return self
        body = "\n".join(lines)
        current = self.help or self.short_description
        return replace(self, help=f"{current}\n\n{body}" if current else body)
