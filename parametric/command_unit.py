"""The command unit: an immutable, invocable wrapper around one handler.

Units are produced by ``ParametricBuilder.build`` and never change
afterwards, so one unit can serve any number of concurrent callers.
Failure translation on invoke:

    handler raises Exception          -> re-raised unchanged (same object)
    handler raises FATAL-tagged error -> InvocationFailure(cause)
    handler raises other BaseException-> InvocationFailure(cause)
    handler cannot take the arguments -> InvocationFailure(cause)
    adapter produced bad arguments    -> InvocationFailure(adapter_fault=True)

KeyboardInterrupt, SystemExit, GeneratorExit and asyncio.CancelledError
always pass through.
"""

import asyncio
import inspect
from typing import Any, FrozenSet, List, Optional, Sequence, Tuple, Union

import structlog

from .binding import BindingPlan
from .description import Description
from .exceptions import ErrorCategory, InvocationFailure, ParametricError
from .models import FlagPolicy, HandlerDefinition
from .namespace import Namespace
from .security import Authorizer

logger = structlog.get_logger("parametric.invoke")

_PASS_THROUGH = (KeyboardInterrupt, SystemExit, GeneratorExit, asyncio.CancelledError)


class CommandUnit:
    """A built command: description, binding plan, flag policy, handler.

    Use ``ParametricBuilder.build`` rather than constructing directly.
    """

    __slots__ = (
        "_definition",
        "_plan",
        "_description",
        "_flag_policy",
        "_metadata",
        "_authorizer",
        "_signature",
    )

    def __init__(
        self,
        definition: HandlerDefinition,
        plan: BindingPlan,
        description: Description,
        flag_policy: FlagPolicy,
        metadata: FrozenSet[Any],
        authorizer: Authorizer,
    ):
        object.__setattr__(self, "_definition", definition)
        object.__setattr__(self, "_plan", plan)
        object.__setattr__(self, "_description", description)
        object.__setattr__(self, "_flag_policy", flag_policy)
        object.__setattr__(self, "_metadata", metadata)
        object.__setattr__(self, "_authorizer", authorizer)
        try:
            signature = inspect.signature(definition.handler)
        except (TypeError, ValueError):
            signature = None  # builtins without introspectable signatures
        object.__setattr__(self, "_signature", signature)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CommandUnit):
            return NotImplemented
        return (
            self._definition == other._definition
            and self._plan == other._plan
            and self._description == other._description
            and self._flag_policy == other._flag_policy
        )

    def __hash__(self) -> int:
        return hash((self._definition.handler, self.name, self._description.permissions))

    def __repr__(self) -> str:
        return f"CommandUnit(name={self.name!r}, handler={self.handler_name!r})"

    # --- Read-only accessors ---

    @property
    def name(self) -> str:
        spec = self._definition.spec
        return spec.name if spec is not None else self._definition.handler.__name__

    @property
    def aliases(self) -> Tuple[str, ...]:
        spec = self._definition.spec
        return spec.aliases if spec is not None else (self.name,)

    @property
    def handler_name(self) -> str:
        return self._definition.handler_name

    @property
    def definition(self) -> HandlerDefinition:
        return self._definition

    @property
    def plan(self) -> BindingPlan:
        return self._plan

    @property
    def flag_policy(self) -> FlagPolicy:
        return self._flag_policy

    @property
    def metadata(self) -> FrozenSet[Any]:
        return self._metadata

    # --- Operations ---

    def describe(self) -> Description:
        """Return the description built at registration time."""
        return self._description

    def authorize(self, namespace: Namespace) -> bool:
        """Whether the caller holds at least one declared permission.

        Commands without permissions are open to every caller.
        """
        permissions = self._description.permissions
        if not permissions:
            return True
        for perm in permissions:
            if self._authorizer.test_permission(namespace, perm):
                return True
        logger.debug("command_not_authorized", command=self.name, permissions=list(permissions))
        return False

    def invoke(self, raw_args: Union[str, Sequence[str]], namespace: Namespace) -> Any:
        """Bind ``raw_args`` and run the handler.

        Returns whatever the handler returns.

        Raises:
            ArgumentError: The arguments do not fit the parameters.
            InvocationFailure: See the module docstring.
            Exception: Anything the handler raised, unchanged.
        """
        if inspect.iscoroutinefunction(self._definition.handler):
            raise InvocationFailure(
                f"Handler '{self.handler_name}' is a coroutine function; use invoke_async",
                handler=self.handler_name,
                adapter_fault=True,
            )
        args = self._resolve(raw_args, namespace)
        try:
            return self._definition.handler(self._definition.receiver, *args)
        except _PASS_THROUGH:
            raise
        except BaseException as e:
            raise self._translate(e)

    async def invoke_async(self, raw_args: Union[str, Sequence[str]], namespace: Namespace) -> Any:
        """Like ``invoke`` but awaits coroutine handlers.

        Synchronous handlers are called directly.
        """
        args = self._resolve(raw_args, namespace)
        try:
            result = self._definition.handler(self._definition.receiver, *args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except _PASS_THROUGH:
            raise
        except BaseException as e:
            raise self._translate(e)

    # --- Internals ---

    def _resolve(self, raw_args: Union[str, Sequence[str]], namespace: Namespace) -> List[Any]:
        args = self._plan.resolve(raw_args, namespace, self._flag_policy)
        expected = len(self._plan.descriptors)
        if not isinstance(args, list) or len(args) != expected:
            got = len(args) if isinstance(args, (list, tuple)) else type(args).__name__
            logger.error(
                "binding_plan_mismatch",
                handler=self.handler_name,
                expected=expected,
                got=got,
            )
            raise InvocationFailure(
                f"Binding plan produced {got} arguments for {expected} "
                f"parameters of '{self.handler_name}'",
                handler=self.handler_name,
                adapter_fault=True,
            )
        self._check_access(args)
        return args

    def _check_access(self, args: List[Any]) -> None:
        """Fail before the call if the handler cannot accept ``args``."""
        handler = self._definition.handler
        if not callable(handler):
            cause: Optional[BaseException] = TypeError(f"{handler!r} is not callable")
        elif self._signature is None:
            return
        else:
            try:
                self._signature.bind(self._definition.receiver, *args)
                return
            except TypeError as e:
                cause = e
        logger.error("handler_not_accessible", handler=self.handler_name, error=str(cause))
        raise InvocationFailure(
            f"Could not invoke handler '{self.handler_name}'",
            cause,
            handler=self.handler_name,
        )

    def _translate(self, error: BaseException) -> BaseException:
        """Return the exception the caller should see for ``error``."""
        if isinstance(error, InvocationFailure):
            return error
        if isinstance(error, Exception) and not (
            isinstance(error, ParametricError) and error.category == ErrorCategory.FATAL
        ):
            return error
        logger.error(
            "handler_failed_fatally",
            handler=self.handler_name,
            error=str(error),
            error_type=type(error).__name__,
        )
        return InvocationFailure(
            f"Could not invoke handler '{self.handler_name}'",
            error,
            handler=self.handler_name,
        )
