from __future__ import annotations

import pytest

from defaultci.factory import ProjectFactory, apply_binding
from defaultci.model import DEFAULT_SCRIPT, ContainerConfig, Job, ScriptBinding


@pytest.mark.parametrize("blank", ["", None, "   "])
def test_blank_script_id_falls_back_to_default(blank) -> None:
    factory = ProjectFactory()
    factory.script_id = "something-else"

    factory.set_script_id(blank)

    assert factory.script_id == DEFAULT_SCRIPT


@pytest.mark.parametrize("script_id", ["Jenkinsfile", "shared-lib.groovy", "ci/build.groovy", "x"])
def test_non_empty_script_id_is_kept_verbatim(script_id: str) -> None:
    factory = ProjectFactory()
    factory.set_script_id(script_id)
    assert factory.script_id == script_id


def test_defaults() -> None:
    factory = ProjectFactory()
    assert factory.script_id == "Jenkinsfile"
    assert factory.use_sandbox is False
    assert factory.binding == ScriptBinding("Jenkinsfile", False)


def test_constructor_normalizes_blank_script_id() -> None:
    assert ProjectFactory(script_id="").script_id == DEFAULT_SCRIPT
    assert ContainerConfig(name="web", script_id=None).script_id == DEFAULT_SCRIPT


def test_use_sandbox_is_stored_verbatim() -> None:
    factory = ProjectFactory()
    factory.set_use_sandbox(True)
    assert factory.use_sandbox is True
    factory.use_sandbox = False
    assert factory.use_sandbox is False


def test_create_project_binds_current_configuration(engine) -> None:
    factory = ProjectFactory("shared-lib.groovy", True, engine=engine)

    job = factory.create_project("web", "main", {"sha": "abc"})

    assert job.branch_name == "main"
    assert job.container == "web"
    assert job.binding == ScriptBinding("shared-lib.groovy", True)
    bound = engine.source_for("web", "main")
    assert bound is not None
    assert (bound.script_id, bound.use_sandbox) == ("shared-lib.groovy", True)
    assert bound.attributes == {"sha": "abc"}


def test_update_twice_is_same_as_once(engine) -> None:
    factory = ProjectFactory("shared-lib.groovy", engine=engine)
    job = factory.create_project("web", "main")

    assert factory.update_existing_project(job)
    once = job.binding
    assert factory.update_existing_project(job)

    assert job.binding == once
    assert engine.source_for("web", "main").script_id == "shared-lib.groovy"


def test_update_is_last_write_wins_not_merge(engine) -> None:
    factory = ProjectFactory("a.groovy", True, engine=engine)
    job = factory.create_project("web", "main")

    factory.script_id = "b.groovy"
    factory.use_sandbox = False
    factory.update_existing_project(job)

    assert job.binding == ScriptBinding("b.groovy", False)


def test_jobs_hold_value_copies_of_the_binding() -> None:
    factory = ProjectFactory("a.groovy")
    job = factory.create_project("web", "main")

    factory.script_id = "b.groovy"

    assert job.binding.script_id == "a.groovy"


def test_update_ignores_incompatible_jobs() -> None:
    factory = ProjectFactory("a.groovy")
    job = Job(branch_name="main", container="web", kind="freestyle")

    assert factory.update_existing_project(job) is False
    assert job.provider is None


class _RefusingEngine:
    def bind_source(self, job, script_id, use_sandbox, attributes=None):
        raise RuntimeError("engine offline")


def test_engine_failure_keeps_previous_provider() -> None:
    job = Job(branch_name="main", container="web")
    apply_binding(job, ScriptBinding("a.groovy"))
    before = job.provider

    with pytest.raises(RuntimeError):
        apply_binding(job, ScriptBinding("b.groovy", True), _RefusingEngine())

    assert job.provider is before


def test_apply_binding_swaps_provider_reference() -> None:
    job = Job(branch_name="main", container="web")
    apply_binding(job, ScriptBinding("a.groovy"))
    first = job.provider

    apply_binding(job, ScriptBinding("a.groovy"))

    assert job.provider is not first
    assert job.provider == first


def test_config_round_trip() -> None:
    config = ContainerConfig(name="web", script_id="x.groovy", use_sandbox=True, orphan_grace_passes=4)
    factory = ProjectFactory.from_config(config)
    assert factory.to_config("web", 4) == config
