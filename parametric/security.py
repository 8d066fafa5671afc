"""Authorization backends for command units.

A command unit asks its authorizer one question per declared
permission: may the caller in this namespace use ``permission``?

Key classes:
    Authorizer: Protocol every backend implements.
    AllowAll: Grants everything (the builder default).
    ConfigAuthorizer: Grants from a principal -> patterns table.
"""

from fnmatch import fnmatchcase
from typing import Dict, Iterable, List, Optional, Protocol

import structlog

from .namespace import Namespace

logger = structlog.get_logger("parametric.security")

# Namespace key holding the caller identity
PRINCIPAL_KEY = "sender"


class Authorizer(Protocol):
    def test_permission(self, namespace: Namespace, permission: str) -> bool:
        ...


def mask_principal(principal: str) -> str:
    """Mask an identity for logs, keeping the last 4 characters."""
    return "..." + principal[-4:]


class AllowAll:
    """Authorizer that grants every permission."""

    def test_permission(self, namespace: Namespace, permission: str) -> bool:
        return True


class ConfigAuthorizer:
    """Authorizer backed by a static grants table.

    Patterns use shell-style wildcards, so ``"admin.*"`` grants
    ``"admin.kick"`` and ``"*"`` grants everything. The principal is
    read from ``namespace[PRINCIPAL_KEY]``; an anonymous namespace only
    gets the grants listed under ``"*"``.

    Args:
        grants: Mapping of principal -> permission patterns.
    """

    def __init__(self, grants: Optional[Dict[str, Iterable[str]]] = None):
        self._grants: Dict[str, List[str]] = {
            principal: list(patterns) for principal, patterns in (grants or {}).items()
        }

    @classmethod
    def from_config(cls, config) -> "ConfigAuthorizer":
        """Build from ``config.permission_grants``."""
        return cls(config.permission_grants)

    def _patterns_for(self, principal: Optional[str]) -> List[str]:
        patterns = list(self._grants.get("*", []))
        if principal is not None:
            patterns.extend(self._grants.get(principal, []))
        return patterns

    def test_permission(self, namespace: Namespace, permission: str) -> bool:
        principal = namespace.get(PRINCIPAL_KEY)
        if principal is not None:
            principal = str(principal)
        for pattern in self._patterns_for(principal):
            if fnmatchcase(permission, pattern):
                return True
        logger.debug(
            "permission_not_granted",
            principal=mask_principal(principal) if principal else "anonymous",
            permission=permission,
        )
        return False
