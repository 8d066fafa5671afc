"""Description listeners applied by the builder before sealing a unit.

A listener receives the command's metadata set, its binding plan and
the description assembled so far, and returns the description to use
next. Listeners run in registration order; each sees the previous
one's result.
"""

from dataclasses import dataclass
from typing import Any, FrozenSet, Protocol

from .binding import BindingPlan
from .description import Description


class InvokeListener(Protocol):
    def update_description(
        self, metadata: FrozenSet[Any], plan: BindingPlan, description: Description
    ) -> Description:
        ...


@dataclass(frozen=True)
class HelpLine:
    """Metadata marker: extra line appended to the command's help."""
    text: str


class HelpLinesListener:
    """Appends ``HelpLine`` markers and a permissions note to help text."""

    def __init__(self, show_permissions: bool = False):
        self.show_permissions = show_permissions

    def update_description(
        self, metadata: FrozenSet[Any], plan: BindingPlan, description: Description
    ) -> Description:
        # frozenset has no order; sort for a stable help text
        lines = sorted(m.text for m in metadata if isinstance(m, HelpLine))
        if self.show_permissions and description.permissions:
            lines.append("Requires one of: " + ", ".join(description.permissions))
        return description.with_help_lines(*lines)
