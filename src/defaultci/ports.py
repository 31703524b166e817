# ports.py
# Interfaces of the collaborators the engine talks to but does not own:
# the scanner, the script registry, the execution engine and permissions.
from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from .model import BranchDescriptor, Job, ScriptEntry


@runtime_checkable
class Probe(Protocol):
    """Opaque handle onto one branch's files at scan time."""

    def exists(self, path: str) -> bool: ...


class ScriptRegistry(Protocol):
    def lookup(self, script_id: str) -> ScriptEntry:
        """Return the entry or raise RegistryLookupFailure."""
        ...


class Scanner(Protocol):
    def scan(self, container: str) -> Sequence[BranchDescriptor]: ...


class ExecutionEngine(Protocol):
    def bind_source(
        self,
        job: Job,
        script_id: str,
        use_sandbox: bool,
        attributes: Mapping[str, Any] | None = None,
    ) -> None: ...


class Permission(str, Enum):
    READ = "read"
    CONFIGURE = "configure"


class PermissionChecker(Protocol):
    def has_permission(self, caller: str | None, permission: Permission) -> bool: ...
