# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .ports import Probe

DEFAULT_SCRIPT = "Jenkinsfile"
PIPELINE_JOB = "pipeline"


def normalize_script_id(script_id: str | None) -> str:
    """Blank or missing ids fall back to DEFAULT_SCRIPT."""
    if script_id is None or not str(script_id).strip():
        return DEFAULT_SCRIPT
    return script_id


@dataclass(frozen=True)
class BranchDescriptor:
    """One branch (or pull request) reported by a source-control scan."""
    name: str
    probe: "Probe"
    # passed through untouched to the execution engine
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class ScriptBinding:
    """
    The (script_id, use_sandbox) pair that decides how a job's pipeline is
    sourced and executed. Frozen, so every job holds its own value copy.
    """
    script_id: str = DEFAULT_SCRIPT
    use_sandbox: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "script_id", normalize_script_id(self.script_id))

    @classmethod
    def of(cls, script_id: str | None, use_sandbox: bool = False) -> ScriptBinding:
        return cls(script_id=normalize_script_id(script_id), use_sandbox=bool(use_sandbox))


@dataclass(frozen=True)
class ScriptEntry:
    """A registry entry. readers=None means anybody may read it."""
    script_id: str
    content: str
    readers: Optional[frozenset[str]] = None

    def readable_by(self, caller: str | None) -> bool:
        if self.readers is None:
            return True
        return caller is not None and caller in self.readers


@dataclass(frozen=True)
class ScriptSourceProvider:
    """
    The pipeline-definition provider installed on a job.

    A job only ever points at one provider; replacing the binding means
    building a new provider and swapping the reference.
    """
    binding: ScriptBinding
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def script_id(self) -> str:
        return self.binding.script_id

    @property
    def use_sandbox(self) -> bool:
        return self.binding.use_sandbox


@dataclass
class Job:
    """A buildable job for one branch of a multi-branch container."""
    branch_name: str
    container: str
    kind: str = PIPELINE_JOB
    provider: Optional[ScriptSourceProvider] = None
    last_materialized_at: int = 0
    missed_passes: int = 0
    disabled: bool = False
    last_error: str | None = None

    @property
    def binding(self) -> Optional[ScriptBinding]:
        provider = self.provider  # single read, never torn
        return provider.binding if provider is not None else None

    def to_dict(self) -> Dict[str, Any]:
        binding = self.binding
        return {
            "branch_name": self.branch_name,
            "container": self.container,
            "kind": self.kind,
            "script_id": binding.script_id if binding else None,
            "use_sandbox": binding.use_sandbox if binding else None,
            "last_materialized_at": self.last_materialized_at,
            "missed_passes": self.missed_passes,
            "disabled": self.disabled,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Job:
        provider = None
        if data.get("script_id") is not None:
            provider = ScriptSourceProvider(
                ScriptBinding.of(data["script_id"], bool(data.get("use_sandbox", False)))
            )
        return cls(
            branch_name=data["branch_name"],
            container=data["container"],
            kind=data.get("kind", PIPELINE_JOB),
            provider=provider,
            last_materialized_at=int(data.get("last_materialized_at", 0)),
            missed_passes=int(data.get("missed_passes", 0)),
            disabled=bool(data.get("disabled", False)),
            last_error=data.get("last_error"),
        )


@dataclass
class ContainerConfig:
    """
    Persisted per-container configuration.

    Created together with the container and only changed by explicit
    administrator edits.
    """
    name: str
    script_id: str = DEFAULT_SCRIPT
    use_sandbox: bool = False
    orphan_grace_passes: int = 1
    factory_kind: str = "defaults"

    def __post_init__(self) -> None:
        self.script_id = normalize_script_id(self.script_id)
        if self.orphan_grace_passes < 0:
            raise ValueError(f"orphan_grace_passes must be >= 0, got {self.orphan_grace_passes}")

    @property
    def binding(self) -> ScriptBinding:
        return ScriptBinding.of(self.script_id, self.use_sandbox)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "script_id": self.script_id,
            "use_sandbox": self.use_sandbox,
            "orphan_grace_passes": self.orphan_grace_passes,
            "factory_kind": self.factory_kind,
        }


@dataclass(frozen=True)
class MaterializationFailure:
    """Why a single branch could not be created or updated in a pass."""
    branch_name: str
    kind: str
    message: str


@dataclass
class PassResult:
    """Outcome of one reconciliation pass over a container."""
    container: str
    seq: int
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    failures: Dict[str, MaterializationFailure] = field(default_factory=dict)
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.superseded

    def statuses(self) -> Dict[str, str]:
        """branch -> status, in the shape the console prints."""
        out: Dict[str, str] = {}
        for name in self.created:
            out[name] = "created"
        for name in self.updated:
            out[name] = "updated"
        for name in self.skipped:
            out[name] = "skipped"
        for name in self.disabled:
            out[name] = "disabled"
        for name in self.failures:
            out[name] = "failed"
        return out
