"""Flat name -> command unit registry with authorization gating.

Each unit is registered under its primary name only; aliases declared
on a command are not resolved here. ``dispatch`` looks the unit up,
asks it to authorize the caller and then invokes it; permission denial
becomes an ``AuthorizationError`` here, not in the unit.
"""

from typing import Any, Dict, Optional, Sequence, Union

import structlog

from .command_unit import CommandUnit
from .exceptions import ArgumentError, AuthorizationError, CommandNotFoundError
from .namespace import Namespace
from .security import PRINCIPAL_KEY, mask_principal

logger = structlog.get_logger("parametric.registry")


class CommandRegistry:
    """Maps command names to command units.

    The first unit registered under a name keeps it; later conflicts
    are logged and ignored.
    """

    def __init__(self):
        self._units: Dict[str, CommandUnit] = {}

    def register(self, unit: CommandUnit) -> None:
        """Register ``unit`` under its primary name."""
        existing = self._units.get(unit.name)
        if existing is not None and existing is not unit:
            logger.warning(
                "command_handler_conflict",
                command=unit.name,
                handler=unit.handler_name,
                existing=existing.handler_name,
            )
            return
        self._units[unit.name] = unit

    def register_object(self, builder, receiver: Any) -> Dict[str, CommandUnit]:
        """Build and register every ``@command`` method of ``receiver``.

        Args:
            builder: ``ParametricBuilder`` used to build the units.
            receiver: Object whose decorated methods become commands.

        Returns:
            The units that were built, by primary name.
        """
        units = builder.register(receiver)
        for unit in units.values():
            self.register(unit)
        return units

    def get(self, command: str) -> Optional[CommandUnit]:
        return self._units.get(command)

    @property
    def command_names(self) -> frozenset:
        return frozenset(self._units.keys())

    def dispatch(
        self,
        command: str,
        raw_args: Union[str, Sequence[str]],
        namespace: Optional[Namespace] = None,
    ) -> Any:
        """Authorize and invoke the unit registered as ``command``.

        Raises:
            CommandNotFoundError: Nothing is registered under ``command``.
            AuthorizationError: The caller holds none of its permissions.
            ArgumentError: The arguments do not fit (logged with the raw
                arguments, secrets scrubbed by the logging setup).
        """
        namespace = namespace if namespace is not None else Namespace()
        unit = self._authorized_unit(command, namespace)
        try:
            return unit.invoke(raw_args, namespace)
        except ArgumentError as e:
            _log_rejected(command, raw_args, e)
            raise

    async def dispatch_async(
        self,
        command: str,
        raw_args: Union[str, Sequence[str]],
        namespace: Optional[Namespace] = None,
    ) -> Any:
        """Async variant of ``dispatch`` for coroutine handlers."""
        namespace = namespace if namespace is not None else Namespace()
        unit = self._authorized_unit(command, namespace)
        try:
            return await unit.invoke_async(raw_args, namespace)
        except ArgumentError as e:
            _log_rejected(command, raw_args, e)
            raise

    def _authorized_unit(self, command: str, namespace: Namespace) -> CommandUnit:
        unit = self.get(command)
        if unit is None:
            raise CommandNotFoundError(command=command)
        if not unit.authorize(namespace):
            principal = namespace.get(PRINCIPAL_KEY)
            logger.warning(
                "unauthorized_command_attempt",
                command=command,
                sender=mask_principal(str(principal)) if principal is not None else "anonymous",
            )
            raise AuthorizationError(command=command)
        return unit

    def help_text(self, namespace: Optional[Namespace] = None) -> str:
        """One line per unit: ``name usage - short description``.

        With a namespace, only commands the caller may run are listed.
        """
        lines = []
        for name in sorted(self._units):
            unit = self._units[name]
            if namespace is not None and not unit.authorize(namespace):
                continue
            description = unit.describe()
            line = f"{name} {description.usage}".rstrip()
            if description.short_description:
                line += f" - {description.short_description}"
            lines.append(line)
        return "\n".join(lines)


def _log_rejected(command: str, raw_args: Union[str, Sequence[str]], error: ArgumentError) -> None:
    logger.info(
        "command_arguments_rejected",
        command=command,
        raw_args=raw_args if isinstance(raw_args, str) else " ".join(raw_args),
        error=error.message,
    )
