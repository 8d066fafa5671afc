"""Tests for ParametricBuilder."""

from typing import Annotated, Optional
from unittest.mock import MagicMock, patch

import pytest

from parametric.binding import ArgumentBinder, Switch, Text
from parametric.builder import ParametricBuilder
from parametric.command_unit import CommandUnit
from parametric.description import Description
from parametric.exceptions import ConfigurationError, IllegalParameterError, UnusedFlagError
from parametric.listeners import HelpLine, HelpLinesListener
from parametric.models import CommandSpec, DeclaredParameter, HandlerDefinition, command
from parametric.namespace import Namespace
from parametric.security import ConfigAuthorizer


class Greeter:
    @command("greet", "hi", desc="greets the caller", perms=("greet.use", "admin"))
    def greet(self, name: str, loud: Annotated[bool, Switch("l")] = False):
        text = f"hello {name}"
        return text.upper() if loud else text

    @command(desc="counts", help="Counts up to a number.", usage="<n>", flags="fv")
    def count(self, n: int, step: Optional[int] = None):
        return list(range(0, n, step or 1))

    @command("say", metadata=(HelpLine("Quotes are preserved."),))
    def say(self, message: Annotated[str, Text()]):
        return message

    def not_a_command(self):
        return None


class Opaque:
    pass


class Broken:
    @command("broken")
    def broken(self, thing: Opaque):
        return thing


def _definition(receiver, func):
    return HandlerDefinition.from_method(receiver, func)


def test_build_returns_command_unit():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.greet))
    assert isinstance(unit, CommandUnit)
    assert unit.name == "greet"
    assert unit.aliases == ("greet", "hi")


def test_description_permissions_match_declaration_order():
    """Permissions are copied exactly, in declared order."""
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.greet))
    assert unit.describe().permissions == ("greet.use", "admin")


def test_help_falls_back_to_short_description():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.greet))
    description = unit.describe()
    assert description.short_description == "greets the caller"
    assert description.help == "greets the caller"
    assert description.usage_override is None


def test_explicit_help_and_usage_are_kept():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.count))
    description = unit.describe()
    assert description.help == "Counts up to a number."
    assert description.usage_override == "<n>"
    assert description.usage == "<n>"


def test_empty_desc_becomes_none():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.say))
    assert unit.describe().short_description is None
    assert unit.describe().help is None


def test_description_parameters_follow_signature_order():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.greet))
    names = [p.name for p in unit.describe().parameters]
    assert names == ["name", "loud"]
    assert unit.describe().usage == "<name> [-l]"


def test_flag_policy_from_spec():
    greeter = Greeter()
    unit = ParametricBuilder().build(greeter, _definition(greeter, Greeter.count))
    assert unit.flag_policy.ignore_unused_flags is False
    assert unit.flag_policy.declared_flags == frozenset({"f", "v"})


def test_undeclared_flag_is_rejected_by_binding():
    """any_flags=False with flags {'f'}: an unconsumed -z fails resolution."""
    spec = CommandSpec(aliases=("run",), flags="f")

    def run(self, target: str):
        return target

    definition = HandlerDefinition(
        receiver=Opaque(),
        handler=run,
        parameters=(DeclaredParameter(name="target", type=str),),
        spec=spec,
    )
    unit = ParametricBuilder().build(definition.receiver, definition)

    assert unit.invoke("-f home", Namespace()) == "home"
    with pytest.raises(UnusedFlagError) as exc_info:
        unit.invoke("-z home", Namespace())
    assert exc_info.value.flags == ("z",)


def test_missing_command_declaration_fails():
    greeter = Greeter()
    definition = _definition(greeter, Greeter.not_a_command)
    with pytest.raises(ConfigurationError, match="lacks a command declaration"):
        ParametricBuilder().build(greeter, definition)


def test_none_receiver_fails():
    greeter = Greeter()
    with pytest.raises(ConfigurationError, match="receiver"):
        ParametricBuilder().build(None, _definition(greeter, Greeter.greet))


def test_none_definition_fails():
    with pytest.raises(ConfigurationError, match="definition"):
        ParametricBuilder().build(Greeter(), None)


def test_unbindable_parameter_type_fails():
    broken = Broken()
    with pytest.raises(IllegalParameterError) as exc_info:
        ParametricBuilder().build(broken, _definition(broken, Broken.broken))
    assert exc_info.value.parameter == "thing"
    assert isinstance(exc_info.value, ConfigurationError)


def test_custom_converter_makes_type_bindable():
    engine = ArgumentBinder()
    engine.register_converter(Opaque, lambda raw: Opaque())
    broken = Broken()
    unit = ParametricBuilder(engine=engine).build(broken, _definition(broken, Broken.broken))
    assert isinstance(unit.invoke("anything", Namespace()), Opaque)


def test_build_is_deterministic():
    """Two builds from the same inputs are structurally equal."""
    greeter = Greeter()
    builder = ParametricBuilder(listeners=[HelpLinesListener(show_permissions=True)])
    first = builder.build(greeter, _definition(greeter, Greeter.greet))
    second = builder.build(greeter, _definition(greeter, Greeter.greet))
    assert first is not second
    assert first.describe() == second.describe()
    assert first == second


def test_listeners_run_in_registration_order():
    calls = []

    class Recorder:
        def __init__(self, tag):
            self.tag = tag

        def update_description(self, metadata, plan, description):
            calls.append(self.tag)
            return description.with_help_lines(self.tag)

    greeter = Greeter()
    builder = ParametricBuilder(listeners=[Recorder("first"), Recorder("second")])
    unit = builder.build(greeter, _definition(greeter, Greeter.greet))

    assert calls == ["first", "second"]
    assert unit.describe().help == "greets the caller\n\nfirst\n\nsecond"


def test_listener_receives_metadata_and_plan():
    listener = MagicMock()
    listener.update_description.side_effect = lambda metadata, plan, description: description

    greeter = Greeter()
    unit = ParametricBuilder(listeners=[listener]).build(greeter, _definition(greeter, Greeter.say))

    metadata, plan, description = listener.update_description.call_args.args
    assert HelpLine("Quotes are preserved.") in metadata
    assert greeter.say.__command_spec__ in metadata
    assert plan is unit.plan
    assert isinstance(description, Description)


def test_help_lines_listener_appends_markers():
    greeter = Greeter()
    builder = ParametricBuilder(listeners=[HelpLinesListener()])
    unit = builder.build(greeter, _definition(greeter, Greeter.say))
    assert unit.describe().help == "Quotes are preserved."


def test_listener_must_return_description():
    class BadListener:
        def update_description(self, metadata, plan, description):
            return None

    greeter = Greeter()
    with pytest.raises(ConfigurationError, match="did not return a Description"):
        ParametricBuilder(listeners=[BadListener()]).build(
            greeter, _definition(greeter, Greeter.greet)
        )


def test_add_listener_affects_later_builds_only():
    greeter = Greeter()
    builder = ParametricBuilder()
    before = builder.build(greeter, _definition(greeter, Greeter.greet))
    builder.add_listener(HelpLinesListener(show_permissions=True))
    after = builder.build(greeter, _definition(greeter, Greeter.greet))

    assert before.describe().help == "greets the caller"
    assert "Requires one of: greet.use, admin" in after.describe().help


def test_register_builds_every_decorated_method():
    greeter = Greeter()
    units = ParametricBuilder().register(greeter)
    assert sorted(units) == ["count", "greet", "say"]
    assert units["greet"].invoke("bob -l", Namespace()) == "HELLO BOB"


def test_register_rejects_duplicate_names():
    class Twice:
        @command("same")
        def one(self):
            return 1

        @command("same")
        def two(self):
            return 2

    with pytest.raises(ConfigurationError, match="declared twice"):
        ParametricBuilder().register(Twice())


def test_from_config_uses_config_authorizer():
    config = MagicMock()
    config.permission_grants = {"+15550001111": ["greet.*"]}

    with patch("parametric.builder.init_logging") as init_logging:
        builder = ParametricBuilder.from_config(config)

    init_logging.assert_called_once_with(config)
    assert isinstance(builder.authorizer, ConfigAuthorizer)
    greeter = Greeter()
    unit = builder.build(greeter, _definition(greeter, Greeter.greet))
    assert unit.authorize(Namespace(sender="+15550001111")) is True
    assert unit.authorize(Namespace(sender="+15559999999")) is False


def test_from_config_can_leave_logging_alone():
    config = MagicMock()
    config.permission_grants = {}

    with patch("parametric.builder.init_logging") as init_logging:
        ParametricBuilder.from_config(config, configure_logging=False)

    init_logging.assert_not_called()


def test_from_config_keeps_declared_flag_policy():
    config = MagicMock()
    config.permission_grants = {}
    builder = ParametricBuilder.from_config(config, configure_logging=False)

    greeter = Greeter()
    unit = builder.build(greeter, _definition(greeter, Greeter.count))

    assert unit.flag_policy.ignore_unused_flags is False
    with pytest.raises(UnusedFlagError):
        unit.invoke("4 -z", Namespace())
