"""Tests for CommandUnit invoke, describe and authorize."""

import asyncio
from typing import Annotated
from unittest.mock import MagicMock

import pytest

from parametric.binding import FromNamespace, Switch
from parametric.builder import ParametricBuilder
from parametric.exceptions import (
    ArgumentError,
    ErrorCategory,
    InvocationFailure,
    ParametricError,
)
from parametric.models import CommandSpec, DeclaredParameter, HandlerDefinition, command
from parametric.namespace import Namespace


class Fatal(BaseException):
    """Something outside the recoverable Exception hierarchy."""


class Handlers:
    def __init__(self):
        self.calls = []

    @command("echo", desc="echoes")
    def echo(self, text: str, times: int = 1):
        self.calls.append((text, times))
        return " ".join([text] * times)

    @command("fail")
    def fail(self, reason: str):
        raise LookupError(reason)

    @command("die")
    def die(self):
        raise Fatal("boom")

    @command("fatal")
    def fatal(self):
        raise ParametricError("disk gone", category=ErrorCategory.FATAL)

    @command("whoami")
    def whoami(self, sender: Annotated[str, FromNamespace("sender")]):
        return sender

    @command("ctx")
    def ctx(self, namespace: Namespace, verbose: Annotated[bool, Switch("v")] = False):
        return namespace, verbose

    @command("secure", perms=("a", "b"))
    def secure(self):
        return "ok"

    @command("open")
    def open_command(self):
        return "ok"

    @command("later")
    async def later(self, value: int):
        await asyncio.sleep(0)
        return value * 2

    @command("later_fail")
    async def later_fail(self):
        raise KeyError("missing")

    @command("later_die")
    async def later_die(self):
        raise Fatal("async boom")

    @command("slow")
    async def slow(self):
        await asyncio.sleep(10)


def _unit(name, authorizer=None, receiver=None):
    receiver = receiver or Handlers()
    units = ParametricBuilder(authorizer=authorizer).register(receiver)
    return units[name]


# --- describe ---

def test_describe_returns_same_object():
    unit = _unit("echo")
    assert unit.describe() is unit.describe()


def test_unit_is_immutable():
    unit = _unit("echo")
    with pytest.raises(AttributeError):
        unit.name = "other"
    with pytest.raises(AttributeError):
        unit._description = None


# --- invoke ---

def test_invoke_binds_and_calls_handler():
    receiver = Handlers()
    unit = _unit("echo", receiver=receiver)
    assert unit.invoke("hi 3", Namespace()) == "hi hi hi"
    assert receiver.calls == [("hi", 3)]


def test_invoke_accepts_token_list():
    unit = _unit("echo")
    assert unit.invoke(["two words", "2"], Namespace()) == "two words two words"


def test_invoke_uses_defaults():
    unit = _unit("echo")
    assert unit.invoke("hi", Namespace()) == "hi"


def test_invoke_propagates_argument_errors():
    unit = _unit("echo")
    with pytest.raises(ArgumentError, match="times"):
        unit.invoke("hi lots", Namespace())


def test_recoverable_handler_error_is_same_instance():
    """Handler exceptions reach the caller unwrapped."""
    raised = LookupError("not found")

    class Raiser:
        @command("raise")
        def do_raise(self):
            raise raised

    unit = _unit("raise", receiver=Raiser())
    with pytest.raises(LookupError) as exc_info:
        unit.invoke("", Namespace())
    assert exc_info.value is raised


def test_recoverable_error_is_not_wrapped():
    unit = _unit("fail")
    with pytest.raises(LookupError, match="gone"):
        unit.invoke("gone", Namespace())


def test_non_exception_failure_is_wrapped():
    unit = _unit("die")
    with pytest.raises(InvocationFailure) as exc_info:
        unit.invoke("", Namespace())
    failure = exc_info.value
    assert isinstance(failure.cause, Fatal)
    assert failure.__cause__ is failure.cause
    assert "Could not invoke handler" in failure.message
    assert "Handlers.die" in failure.message
    assert failure.adapter_fault is False


def test_fatal_tagged_error_is_wrapped():
    unit = _unit("fatal")
    with pytest.raises(InvocationFailure) as exc_info:
        unit.invoke("", Namespace())
    assert isinstance(exc_info.value.cause, ParametricError)
    assert exc_info.value.cause.message == "disk gone"


def test_keyboard_interrupt_passes_through():
    class Interrupted:
        @command("stop")
        def stop(self):
            raise KeyboardInterrupt

    unit = _unit("stop", receiver=Interrupted())
    with pytest.raises(KeyboardInterrupt):
        unit.invoke("", Namespace())


def test_inaccessible_handler_is_wrapped():
    """A handler that cannot take the bound arguments fails as InvocationFailure."""

    def narrow(self):
        return "never"

    definition = HandlerDefinition(
        receiver=object(),
        handler=narrow,
        parameters=(DeclaredParameter(name="extra", type=str),),
        spec=CommandSpec(aliases=("narrow",)),
    )
    unit = ParametricBuilder().build(definition.receiver, definition)

    with pytest.raises(InvocationFailure) as exc_info:
        unit.invoke("value", Namespace())
    failure = exc_info.value
    assert isinstance(failure.cause, TypeError)
    assert "narrow" in failure.message
    assert failure.handler == definition.handler_name


def test_non_callable_handler_is_wrapped():
    definition = HandlerDefinition(
        receiver=object(),
        handler="not callable",
        parameters=(),
        spec=CommandSpec(aliases=("text",)),
    )
    unit = ParametricBuilder().build(definition.receiver, definition)
    with pytest.raises(InvocationFailure) as exc_info:
        unit.invoke("", Namespace())
    assert isinstance(exc_info.value.cause, TypeError)


def test_bad_binding_plan_is_adapter_fault():
    engine = MagicMock()
    engine.compile.side_effect = lambda type_, metadata, name: MagicMock(
        flag=None, user_facing=True, variadic=False, name=name
    )
    engine.resolve.return_value = []

    unit = ParametricBuilder(engine=engine).register(Handlers())["echo"]

    with pytest.raises(InvocationFailure) as exc_info:
        unit.invoke("hi", Namespace())
    assert exc_info.value.adapter_fault is True
    assert exc_info.value.cause is None


def test_namespace_injection():
    unit = _unit("whoami")
    assert unit.invoke("", Namespace(sender="+15550001234")) == "+15550001234"
    assert unit.describe().parameters == ()


def test_namespace_parameter_receives_namespace():
    unit = _unit("ctx")
    namespace = Namespace()
    result_ns, verbose = unit.invoke("-v", namespace)
    assert result_ns is namespace
    assert verbose is True


def test_invoke_rejects_coroutine_handler():
    unit = _unit("later")
    with pytest.raises(InvocationFailure, match="invoke_async") as exc_info:
        unit.invoke("2", Namespace())
    assert exc_info.value.adapter_fault is True


@pytest.mark.asyncio
async def test_invoke_async_awaits_coroutine_handler():
    unit = _unit("later")
    assert await unit.invoke_async("21", Namespace()) == 42


@pytest.mark.asyncio
async def test_invoke_async_calls_sync_handler():
    unit = _unit("echo")
    assert await unit.invoke_async("yo 2", Namespace()) == "yo yo"


@pytest.mark.asyncio
async def test_invoke_async_propagates_recoverable_errors():
    unit = _unit("later_fail")
    with pytest.raises(KeyError):
        await unit.invoke_async("", Namespace())


@pytest.mark.asyncio
async def test_invoke_async_wraps_non_exception_failure():
    unit = _unit("later_die")
    with pytest.raises(InvocationFailure) as exc_info:
        await unit.invoke_async("", Namespace())
    assert isinstance(exc_info.value.cause, Fatal)
    assert "Handlers.later_die" in exc_info.value.message


@pytest.mark.asyncio
async def test_invoke_async_task_can_be_cancelled():
    unit = _unit("slow")
    task = asyncio.ensure_future(unit.invoke_async("", Namespace()))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


@pytest.mark.asyncio
async def test_invoke_async_timeout_is_not_wrapped():
    unit = _unit("slow")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(unit.invoke_async("", Namespace()), 0.01)


# --- authorize ---

def test_no_permissions_open_to_everyone():
    authorizer = MagicMock()
    authorizer.test_permission.return_value = False
    unit = _unit("open", authorizer=authorizer)

    assert unit.authorize(Namespace()) is True
    assert unit.authorize(Namespace(sender="+15550001111")) is True
    authorizer.test_permission.assert_not_called()


@pytest.mark.parametrize(
    "granted, expected",
    [
        (set(), False),
        ({"a"}, True),
        ({"b"}, True),
        ({"a", "b"}, True),
    ],
)
def test_permissions_are_or_combined(granted, expected):
    authorizer = MagicMock()
    authorizer.test_permission.side_effect = lambda ns, perm: perm in granted
    unit = _unit("secure", authorizer=authorizer)
    assert unit.authorize(Namespace()) is expected


def test_authorize_short_circuits_on_first_grant():
    authorizer = MagicMock()
    authorizer.test_permission.return_value = True
    unit = _unit("secure", authorizer=authorizer)
    namespace = Namespace()

    assert unit.authorize(namespace) is True
    authorizer.test_permission.assert_called_once_with(namespace, "a")


def test_authorize_checks_permissions_in_order():
    authorizer = MagicMock()
    authorizer.test_permission.return_value = False
    unit = _unit("secure", authorizer=authorizer)
    namespace = Namespace()

    assert unit.authorize(namespace) is False
    assert [c.args[1] for c in authorizer.test_permission.call_args_list] == ["a", "b"]
