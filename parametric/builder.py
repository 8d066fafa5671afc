"""Builds command units from handler definitions.

The builder is the registration context: it owns the binding engine,
the authorizer handed to every unit, and the ordered list of
description listeners. Building happens once per handler, at
registration time; nothing is invoked while building.

Key classes:
    ParametricBuilder: Compiles HandlerDefinitions into CommandUnits.
"""

import inspect
from typing import Any, Dict, Iterable, List, Optional

import structlog

from .binding import ArgumentBinder, BindingEngine, BindingPlan, Default
from .command_unit import CommandUnit
from .config import Config, get_config
from .description import Description
from .exceptions import ConfigurationError
from .listeners import InvokeListener
from .logging_config import init_logging
from .models import FlagPolicy, HandlerDefinition, get_command_spec
from .security import AllowAll, Authorizer, ConfigAuthorizer

logger = structlog.get_logger("parametric.builder")


class ParametricBuilder:
    """Compiles handler definitions into immutable command units.

    Args:
        engine: Binding engine (default ``ArgumentBinder``).
        authorizer: Permission backend given to every unit (default
            ``AllowAll``).
        listeners: Description listeners, applied in order.
    """

    def __init__(
        self,
        engine: Optional[BindingEngine] = None,
        authorizer: Optional[Authorizer] = None,
        listeners: Iterable[InvokeListener] = (),
    ):
        self.engine = engine if engine is not None else ArgumentBinder()
        self.authorizer = authorizer if authorizer is not None else AllowAll()
        self._listeners: List[InvokeListener] = list(listeners)

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        *,
        configure_logging: bool = True,
        **kwargs: Any,
    ) -> "ParametricBuilder":
        """Builder wired from config: ``ConfigAuthorizer`` grants and logging.

        Logging is set up once per process with ``init_logging``; pass
        ``configure_logging=False`` when the host application owns it.
        """
        config = config or get_config()
        if configure_logging:
            init_logging(config)
        kwargs.setdefault("authorizer", ConfigAuthorizer.from_config(config))
        return cls(**kwargs)

    @property
    def listeners(self) -> List[InvokeListener]:
        return list(self._listeners)

    def add_listener(self, listener: InvokeListener) -> None:
        """Append a listener; it affects units built afterwards only."""
        self._listeners.append(listener)

    def build(self, receiver: Any, definition: HandlerDefinition) -> CommandUnit:
        """Compile one handler definition.

        Raises:
            ConfigurationError: Missing receiver/definition/spec, or a
                listener returned something other than a Description.
            IllegalParameterError: A parameter cannot be compiled.
        """
        if receiver is None:
            raise ConfigurationError("Command receiver must not be None")
        if definition is None:
            raise ConfigurationError("Handler definition must not be None")

        spec = definition.spec
        if spec is None:
            raise ConfigurationError(
                f"Handler '{definition.handler_name}' lacks a command declaration",
                handler=definition.handler_name,
            )

        metadata = frozenset(spec.metadata) | {spec}

        flag_policy = FlagPolicy.from_spec(spec)

        descriptors = []
        try:
            for param in definition.parameters:
                param_metadata = param.metadata
                if param.has_default:
                    param_metadata = param_metadata + (Default(param.default),)
                descriptors.append(self.engine.compile(param.type, param_metadata, param.name))
            plan = BindingPlan(tuple(descriptors), self.engine)
        except ConfigurationError as e:
            logger.error(
                "command_build_failed",
                command=spec.name,
                handler=definition.handler_name,
                error=str(e),
            )
            raise

        short_desc = spec.desc or None
        description = Description(
            parameters=plan.user_parameters,
            short_description=short_desc,
            help=spec.help or short_desc,
            usage_override=spec.usage or None,
            permissions=tuple(spec.perms),
        )

        for listener in self._listeners:
            description = listener.update_description(metadata, plan, description)
            if not isinstance(description, Description):
                raise ConfigurationError(
                    f"Listener {type(listener).__name__} did not return a Description",
                    handler=definition.handler_name,
                )

        unit = CommandUnit(
            definition=definition,
            plan=plan,
            description=description,
            flag_policy=flag_policy,
            metadata=metadata,
            authorizer=self.authorizer,
        )
        logger.debug(
            "command_unit_built",
            command=unit.name,
            handler=definition.handler_name,
            parameters=len(descriptors),
            permissions=list(description.permissions),
        )
        return unit

    def register(self, receiver: Any) -> Dict[str, CommandUnit]:
        """Build a unit for every ``@command`` method of ``receiver``.

        Methods are visited in name order, so the result is stable.

        Returns:
            Mapping of primary command name -> unit.

        Raises:
            ConfigurationError: Two methods declare the same name, or a
                definition fails to build.
        """
        if receiver is None:
            raise ConfigurationError("Command receiver must not be None")

        units: Dict[str, CommandUnit] = {}
        for attr_name, func in inspect.getmembers(type(receiver), callable):
            spec = get_command_spec(func)
            if spec is None:
                continue
            definition = HandlerDefinition.from_method(receiver, func, spec)
            unit = self.build(receiver, definition)
            if unit.name in units:
                raise ConfigurationError(
                    f"Command '{unit.name}' declared twice on {type(receiver).__name__}",
                    command=unit.name,
                )
            units[unit.name] = unit

        logger.info(
            "commands_registered",
            receiver=type(receiver).__name__,
            commands=sorted(units),
        )
        return units
