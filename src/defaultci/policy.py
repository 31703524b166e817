# policy.py
"""
Branch qualification and script resolution, plus the registry of factory kinds.

A policy answers two questions per branch:
  - is_head(probe): should this branch become a job at all?
  - resolve(configured, registry, caller): which script and which trust mode
    govern the job?

Policies are stateless singletons compared by kind tag, so the policy handed
out on one pass compares equal to the one from the next and the scan cache in
front of us never sees a spurious change.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, List, Optional, TYPE_CHECKING

from .errors import InvalidConfiguration
from .model import DEFAULT_SCRIPT, ContainerConfig, ScriptBinding

if TYPE_CHECKING:
    from .factory import ProjectFactory
    from .ports import Probe, ScriptRegistry


class ResolutionPolicy:
    """Base class for policies. Equality is by kind tag only."""

    kind: ClassVar[str] = "abstract"

    def is_head(self, probe: "Probe") -> bool:
        raise NotImplementedError

    def resolve(
        self,
        configured: ScriptBinding,
        registry: "ScriptRegistry",
        caller: str | None = None,
    ) -> ScriptBinding:
        raise NotImplementedError

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ResolutionPolicy) and other.kind == self.kind

    def __hash__(self) -> int:
        return hash(("policy", self.kind))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r})"


class DefaultResolutionPolicy(ResolutionPolicy):
    """
    Every discovered branch is a head; the probe is never inspected.

    The governing script is always the centrally registered one the factory
    is configured with. A sandboxed binding additionally requires the caller
    to be able to read the registry entry.
    """

    kind = "defaults"

    def is_head(self, probe: "Probe") -> bool:
        return True

    def resolve(
        self,
        configured: ScriptBinding,
        registry: "ScriptRegistry",
        caller: str | None = None,
    ) -> ScriptBinding:
        entry = registry.lookup(configured.script_id)
        if configured.use_sandbox and not entry.readable_by(caller):
            raise InvalidConfiguration(
                f"caller may not read script '{entry.script_id}' for a sandboxed job",
                script_id=entry.script_id,
                caller=caller,
            )
        return configured


class RepositoryFilePolicy(ResolutionPolicy):
    """
    A branch is a head only if it carries its own pipeline file, and that
    file is what runs. Repository files are untrusted, so they are always
    sandboxed and never looked up in the registry.
    """

    kind = "repository-file"
    script_path = DEFAULT_SCRIPT

    def is_head(self, probe: "Probe") -> bool:
        return bool(probe.exists(self.script_path))

    def resolve(
        self,
        configured: ScriptBinding,
        registry: "ScriptRegistry",
        caller: str | None = None,
    ) -> ScriptBinding:
        return ScriptBinding(script_id=self.script_path, use_sandbox=True)


DEFAULT_POLICY = DefaultResolutionPolicy()
REPOSITORY_FILE_POLICY = RepositoryFilePolicy()


# ---------------------------------------------------------------------
# Factory kinds
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class FactoryKind:
    """A selectable kind of project factory, constructed on demand."""
    name: str
    display_name: str
    policy: ResolutionPolicy
    new_instance: Callable[[ContainerConfig], "ProjectFactory"]


_KINDS: Dict[str, FactoryKind] = {}


def register_kind(kind: FactoryKind) -> FactoryKind:
    existing = _KINDS.get(kind.name)
    if existing is not None and existing != kind:
        raise ValueError(f"Factory kind already registered: {kind.name}")
    _KINDS[kind.name] = kind
    return kind


def get_kind(name: str) -> FactoryKind:
    try:
        return _KINDS[name]
    except KeyError:
        known = ", ".join(sorted(_KINDS)) or "(none)"
        raise KeyError(f"Unknown factory kind '{name}'. Known kinds: {known}") from None


def find_kind(name: str) -> Optional[FactoryKind]:
    return _KINDS.get(name)


def list_kinds() -> List[FactoryKind]:
    return [_KINDS[n] for n in sorted(_KINDS)]
