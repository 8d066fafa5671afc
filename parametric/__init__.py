"""Parametric command units.

Turns declared handler methods into immutable, describable,
permission-checked command units for a command-dispatch framework.
"""

from .binding import ArgumentBinder, BindingPlan, Default, FromNamespace, ParameterDescriptor, Switch, Text
from .builder import ParametricBuilder
from .command_unit import CommandUnit
from .description import Description
from .exceptions import (
    ArgumentError,
    AuthorizationError,
    CommandError,
    CommandNotFoundError,
    ConfigurationError,
    ErrorCategory,
    IllegalParameterError,
    InvocationFailure,
    ParametricError,
    UnusedFlagError,
)
from .listeners import HelpLine, HelpLinesListener
from .logging_config import init_logging, setup_logging
from .models import CommandSpec, FlagPolicy, HandlerDefinition, command
from .namespace import Namespace
from .registry import CommandRegistry
from .security import AllowAll, ConfigAuthorizer

__version__ = "0.1.0"

__all__ = [
    "AllowAll",
    "ArgumentBinder",
    "ArgumentError",
    "AuthorizationError",
    "BindingPlan",
    "CommandError",
    "CommandNotFoundError",
    "CommandRegistry",
    "CommandSpec",
    "CommandUnit",
    "ConfigAuthorizer",
    "ConfigurationError",
    "Default",
    "Description",
    "ErrorCategory",
    "FlagPolicy",
    "FromNamespace",
    "HandlerDefinition",
    "HelpLine",
    "HelpLinesListener",
    "IllegalParameterError",
    "InvocationFailure",
    "Namespace",
    "ParameterDescriptor",
    "ParametricBuilder",
    "ParametricError",
    "Switch",
    "Text",
    "UnusedFlagError",
    "command",
    "init_logging",
    "setup_logging",
]
