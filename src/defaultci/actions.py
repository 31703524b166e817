# actions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .model import ContainerConfig
from .policy import DEFAULT_POLICY
from .ports import Permission, PermissionChecker


@dataclass(frozen=True)
class Action:
    """An auxiliary container action a UI may render."""
    url_name: str
    display_name: str


PIPELINE_SYNTAX = Action(url_name="pipeline-syntax", display_name="Pipeline Syntax")


class StaticPermissions:
    """
    Permission table built from configuration.

    "*" grants a permission to every caller, including anonymous ones.
    """

    def __init__(self, grants: Optional[Dict[Permission, Iterable[str]]] = None):
        self._grants: Dict[Permission, Set[str]] = {
            perm: set(callers) for perm, callers in (grants or {}).items()
        }

    @classmethod
    def readers(cls, callers: Iterable[str]) -> StaticPermissions:
        return cls({Permission.READ: callers})

    def has_permission(self, caller: str | None, permission: Permission) -> bool:
        allowed = self._grants.get(permission, set())
        if "*" in allowed:
            return True
        return caller is not None and caller in allowed


def actions_for(
    config: ContainerConfig,
    caller: str | None,
    permissions: PermissionChecker,
) -> List[Action]:
    """Extra actions for a container: only under the defaults factory, only for readers."""
    if config.factory_kind != DEFAULT_POLICY.kind:
        return []
    if not permissions.has_permission(caller, Permission.READ):
        return []
    return [PIPELINE_SYNTAX]
