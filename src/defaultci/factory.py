# factory.py
from __future__ import annotations

from typing import Any, Mapping, Optional

from .model import (
    DEFAULT_SCRIPT,
    PIPELINE_JOB,
    ContainerConfig,
    Job,
    ScriptBinding,
    ScriptSourceProvider,
    normalize_script_id,
)
from .policy import (
    DEFAULT_POLICY,
    REPOSITORY_FILE_POLICY,
    FactoryKind,
    ResolutionPolicy,
    get_kind,
    register_kind,
)
from .ports import ExecutionEngine


def apply_binding(
    job: Job,
    binding: ScriptBinding,
    engine: Optional[ExecutionEngine] = None,
    attributes: Optional[Mapping[str, Any]] = None,
) -> Job:
    """
    Install a fresh provider for `binding` as the job's only provider.

    The engine is told first; if it refuses, the job keeps its old provider.
    Readers of job.provider see either the old or the new provider, never a
    mix of the two.
    """
    attrs = dict(attributes or {})
    provider = ScriptSourceProvider(binding=binding, attributes=attrs)
    if engine is not None:
        engine.bind_source(job, binding.script_id, binding.use_sandbox, attrs)
    job.provider = provider
    return job


class ProjectFactory:
    """
    Materializes one pipeline job per branch of a multi-branch container.

    Owns the container's (script_id, use_sandbox) pair. Every job it creates
    or updates gets a value copy of the pair as it stands at that moment.
    """

    def __init__(
        self,
        script_id: str | None = DEFAULT_SCRIPT,
        use_sandbox: bool = False,
        *,
        kind: str = "defaults",
        engine: Optional[ExecutionEngine] = None,
    ):
        self._script_id = normalize_script_id(script_id)
        self._use_sandbox = use_sandbox
        self.kind = kind
        self.engine = engine

    # ---- administrative surface ----

    @property
    def script_id(self) -> str:
        return self._script_id

    @script_id.setter
    def script_id(self, value: str | None) -> None:
        self._script_id = normalize_script_id(value)

    @property
    def use_sandbox(self) -> bool:
        return self._use_sandbox

    @use_sandbox.setter
    def use_sandbox(self, value: bool) -> None:
        self._use_sandbox = value

    def set_script_id(self, value: str | None) -> None:
        self.script_id = value

    def set_use_sandbox(self, value: bool) -> None:
        self.use_sandbox = value

    @property
    def binding(self) -> ScriptBinding:
        return ScriptBinding.of(self._script_id, self._use_sandbox)

    @property
    def policy(self) -> ResolutionPolicy:
        return get_kind(self.kind).policy

    def criteria(self, source: Any = None) -> ResolutionPolicy:
        """The head criteria for a source; identical for every source of a kind."""
        return self.policy

    # ---- job materialization ----

    def create_project(
        self,
        container: str,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        *,
        binding: Optional[ScriptBinding] = None,
    ) -> Job:
        job = Job(branch_name=name, container=container, kind=PIPELINE_JOB)
        return apply_binding(job, binding or self.binding, self.engine, attributes)

    def is_compatible(self, job: Job) -> bool:
        return job.kind == PIPELINE_JOB

    def update_existing_project(
        self,
        job: Job,
        attributes: Optional[Mapping[str, Any]] = None,
        *,
        binding: Optional[ScriptBinding] = None,
    ) -> bool:
        """Re-apply the current binding. Returns False for incompatible jobs."""
        if not self.is_compatible(job):
            return False
        apply_binding(job, binding or self.binding, self.engine, attributes)
        return True

    # ---- config round-trip ----

    @classmethod
    def from_config(
        cls, config: ContainerConfig, engine: Optional[ExecutionEngine] = None
    ) -> ProjectFactory:
        return cls(
            config.script_id,
            config.use_sandbox,
            kind=config.factory_kind,
            engine=engine,
        )

    def to_config(self, name: str, orphan_grace_passes: int = 1) -> ContainerConfig:
        return ContainerConfig(
            name=name,
            script_id=self._script_id,
            use_sandbox=self._use_sandbox,
            orphan_grace_passes=orphan_grace_passes,
            factory_kind=self.kind,
        )

    def __repr__(self) -> str:
        return (
            f"ProjectFactory(kind={self.kind!r}, script_id={self._script_id!r}, "
            f"use_sandbox={self._use_sandbox!r})"
        )


register_kind(FactoryKind(
    name=DEFAULT_POLICY.kind,
    display_name=f"by default {DEFAULT_SCRIPT}",
    policy=DEFAULT_POLICY,
    new_instance=ProjectFactory.from_config,
))

register_kind(FactoryKind(
    name=REPOSITORY_FILE_POLICY.kind,
    display_name=f"by {REPOSITORY_FILE_POLICY.script_path}",
    policy=REPOSITORY_FILE_POLICY,
    new_instance=ProjectFactory.from_config,
))
