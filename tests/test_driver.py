from __future__ import annotations

import threading
import time

import pytest
from helpers import branches

from defaultci.driver import ReconciliationDriver
from defaultci.errors import ConcurrentPassConflict, RegistryLookupFailure
from defaultci.model import BranchDescriptor, ScriptBinding
from defaultci.registry import InMemoryScriptRegistry
from defaultci.scanner import FileSetProbe


def _bindings(container) -> dict[str, ScriptBinding | None]:
    return {name: job.binding for name, job in container.jobs.items()}


def test_first_pass_creates_one_job_per_branch(driver, make_container, engine) -> None:
    container = make_container(script_id="Jenkinsfile", use_sandbox=False)

    result = driver.reconcile(container, branches("main", "feature-1"))

    assert sorted(result.created) == ["feature-1", "main"]
    assert result.ok
    assert _bindings(container) == {
        "main": ScriptBinding("Jenkinsfile", False),
        "feature-1": ScriptBinding("Jenkinsfile", False),
    }
    assert engine.source_for("web", "main").script_id == "Jenkinsfile"


def test_reconfigured_factory_rebinds_on_next_pass(driver, make_container) -> None:
    container = make_container()
    driver.reconcile(container, branches("main", "feature-1"))

    container.configure(script_id="shared-lib.groovy")
    result = driver.reconcile(container, branches("main", "feature-1"))

    assert sorted(result.updated) == ["feature-1", "main"]
    assert result.created == []
    assert sorted(container.jobs) == ["feature-1", "main"]
    for binding in _bindings(container).values():
        assert binding == ScriptBinding("shared-lib.groovy", False)


def test_config_change_does_not_touch_jobs_until_next_pass(driver, make_container) -> None:
    container = make_container()
    driver.reconcile(container, branches("main"))

    container.configure(script_id="shared-lib.groovy", use_sandbox=True)

    assert container.jobs["main"].binding == ScriptBinding("Jenkinsfile", False)


def test_vanished_branch_is_disabled_only_after_grace(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=2)
    driver.reconcile(container, branches("main", "feature-1"))

    # within the grace window: still there, still enabled
    for missed in (1, 2):
        result = driver.reconcile(container, branches("main"))
        job = container.jobs["feature-1"]
        assert job.missed_passes == missed
        assert job.disabled is False
        assert result.disabled == []

    result = driver.reconcile(container, branches("main"))

    assert result.disabled == ["feature-1"]
    assert container.jobs["feature-1"].disabled is True
    # disabled, never deleted
    assert "feature-1" in container.jobs


def test_zero_grace_disables_on_first_miss(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=0)
    driver.reconcile(container, branches("main", "feature-1"))

    result = driver.reconcile(container, branches("main"))

    assert result.disabled == ["feature-1"]


def test_returning_branch_is_re_enabled(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=0)
    driver.reconcile(container, branches("main", "feature-1"))
    driver.reconcile(container, branches("main"))
    assert container.jobs["feature-1"].disabled

    result = driver.reconcile(container, branches("main", "feature-1"))

    job = container.jobs["feature-1"]
    assert "feature-1" in result.updated
    assert job.disabled is False
    assert job.missed_passes == 0


def test_returning_branch_that_fails_to_bind_survives_prune(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=0)
    driver.reconcile(container, branches("main", "feature-1"))
    driver.reconcile(container, branches("main"))
    assert container.jobs["feature-1"].disabled

    container.configure(script_id="missing.groovy")
    result = driver.reconcile(container, branches("main", "feature-1"))

    job = container.jobs["feature-1"]
    assert "feature-1" in result.failures
    assert job.disabled is False
    assert job.missed_passes == 0
    assert job.binding == ScriptBinding("Jenkinsfile", False)

    assert driver.prune(container) == []
    assert "feature-1" in container.jobs


def test_duplicate_names_in_one_scan_give_one_job(driver, make_container) -> None:
    container = make_container()

    result = driver.reconcile(container, branches("main", "main", "dev", "main"))

    assert sorted(container.jobs) == ["dev", "main"]
    assert sorted(result.created) == ["dev", "main"]


def test_uniqueness_over_many_passes(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=1)
    scans = [
        ["main", "a", "b"],
        ["main", "b"],
        ["main", "a", "c"],
        [],
        ["main", "a", "b", "c", "a"],
    ]
    for names in scans:
        driver.reconcile(container, branches(*names))
        keys = list(container.jobs)
        assert len(keys) == len(set(keys))
        assert all(name == job.branch_name for name, job in container.jobs.items())

    assert sorted(container.jobs) == ["a", "b", "c", "main"]


def test_last_materialized_at_tracks_pass_sequence(driver, make_container) -> None:
    container = make_container()
    first = driver.reconcile(container, branches("main"))
    second = driver.reconcile(container, branches("main"))

    assert second.seq == first.seq + 1
    assert container.jobs["main"].last_materialized_at == second.seq
    assert container.last_pass_seq == second.seq


class _FlakyRegistry:
    """Fails the n-th lookup, whichever branch it belongs to."""

    def __init__(self, inner, fail_on: int):
        self.inner = inner
        self.fail_on = fail_on
        self.calls = 0
        self._lock = threading.Lock()

    def lookup(self, script_id):
        with self._lock:
            self.calls += 1
            n = self.calls
        if n == self.fail_on:
            raise RegistryLookupFailure(script_id, reason="unreadable (disk error)")
        return self.inner.lookup(script_id)


def test_one_failing_lookup_does_not_stop_the_others(registry, make_container) -> None:
    driver = ReconciliationDriver(_FlakyRegistry(registry, fail_on=2), max_workers=1)
    container = make_container()

    result = driver.reconcile(container, branches("a", "b", "c"))

    assert len(result.failures) == 1
    assert len(result.created) == 2
    failed = next(iter(result.failures))
    assert result.failures[failed].kind == "RegistryLookupFailure"
    bound = [n for n, j in container.jobs.items() if j.binding is not None]
    assert sorted(bound) == sorted(set("abc") - {failed})


def test_failed_new_branch_gets_an_unbound_job(make_container) -> None:
    driver = ReconciliationDriver(InMemoryScriptRegistry(), max_workers=2)
    container = make_container(script_id="missing.groovy")

    result = driver.reconcile(container, branches("main"))

    job = container.jobs["main"]
    assert job.binding is None
    assert "RegistryLookupFailure" in job.last_error
    assert "main" in result.failures
    assert not result.ok


def test_failure_on_existing_job_keeps_old_binding(registry, make_container) -> None:
    driver = ReconciliationDriver(registry, max_workers=2)
    container = make_container()
    driver.reconcile(container, branches("main"))

    container.configure(script_id="missing.groovy")
    result = driver.reconcile(container, branches("main"))

    job = container.jobs["main"]
    assert job.binding == ScriptBinding("Jenkinsfile", False)
    assert job.last_error.startswith("RegistryLookupFailure")
    assert job.missed_passes == 0
    assert "main" in result.failures

    # once the script exists, the next pass binds it and clears the error
    registry.put("missing.groovy", "pipeline {}")
    driver.reconcile(container, branches("main"))
    assert job.binding == ScriptBinding("missing.groovy", False)
    assert job.last_error is None


class _PickyEngine:
    def bind_source(self, job, script_id, use_sandbox, attributes=None):
        if job.branch_name == "broken":
            raise RuntimeError("cannot bind")


def test_engine_failure_is_isolated_to_its_branch(driver, make_container) -> None:
    container = make_container()
    container.factory.engine = _PickyEngine()

    result = driver.reconcile(container, branches("main", "broken", "dev"))

    assert sorted(result.created) == ["dev", "main"]
    assert result.failures["broken"].kind == "RuntimeError"
    assert container.jobs["broken"].binding is None


def test_sandboxed_restricted_script_leaves_job_unbound(make_container) -> None:
    registry = InMemoryScriptRegistry()
    registry.put("secret.groovy", "...", readers=["alice"])
    driver = ReconciliationDriver(registry, max_workers=2)
    container = make_container(script_id="secret.groovy", use_sandbox=True)

    denied = driver.reconcile(container, branches("main"), caller="bob")
    assert denied.failures["main"].kind == "InvalidConfiguration"
    assert container.jobs["main"].binding is None

    allowed = driver.reconcile(container, branches("main"), caller="alice")
    assert allowed.ok
    assert container.jobs["main"].binding == ScriptBinding("secret.groovy", True)


def test_repository_file_kind_skips_branches_without_file(driver, make_container) -> None:
    container = make_container(factory_kind="repository-file")
    scan = [
        BranchDescriptor("main", FileSetProbe.of(["Jenkinsfile"])),
        BranchDescriptor("docs", FileSetProbe.of(["README.md"])),
    ]

    result = driver.reconcile(container, scan)

    assert result.created == ["main"]
    assert result.skipped == ["docs"]
    assert container.jobs["main"].binding == ScriptBinding("Jenkinsfile", True)


def test_branch_that_stops_qualifying_ages_like_an_orphan(driver, make_container) -> None:
    container = make_container(factory_kind="repository-file", orphan_grace_passes=0)
    driver.reconcile(container, [BranchDescriptor("main", FileSetProbe.of(["Jenkinsfile"]))])

    result = driver.reconcile(container, [BranchDescriptor("main", FileSetProbe.of([]))])

    assert result.skipped == ["main"]
    assert result.disabled == ["main"]


def test_prune_only_removes_disabled_jobs(driver, make_container) -> None:
    container = make_container(orphan_grace_passes=0)
    driver.reconcile(container, branches("main", "old"))
    driver.reconcile(container, branches("main"))

    assert driver.prune(container) == ["old"]
    assert sorted(container.jobs) == ["main"]
    assert driver.prune(container) == []


class _GatedRegistry:
    """Blocks lookups until released, so a pass can be held mid-flight."""

    def __init__(self, inner):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    def lookup(self, script_id):
        self.entered.set()
        assert self.release.wait(5), "gate never opened"
        return self.inner.lookup(script_id)


def _wait_for(predicate, timeout=5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


def test_newer_scan_supersedes_pass_in_flight(registry, make_container) -> None:
    gated = _GatedRegistry(registry)
    driver = ReconciliationDriver(gated, max_workers=2)
    container = make_container()
    results = {}

    first = threading.Thread(
        target=lambda: results.setdefault("old", driver.reconcile(container, branches("main", "stale"))),
    )
    first.start()
    assert gated.entered.wait(5)

    second = threading.Thread(
        target=lambda: results.setdefault("new", driver.reconcile(container, branches("main", "fresh"))),
    )
    second.start()
    _wait_for(lambda: driver.latest_request("web") == 2)

    gated.release.set()
    first.join(5)
    second.join(5)

    assert results["old"].superseded is True
    assert results["new"].superseded is False
    assert sorted(container.jobs) == ["fresh", "main"]
    assert container.last_pass_seq == results["new"].seq


def test_try_reconcile_refuses_while_a_pass_runs(registry, make_container) -> None:
    gated = _GatedRegistry(registry)
    driver = ReconciliationDriver(gated, max_workers=1)
    container = make_container()

    worker = threading.Thread(target=driver.reconcile, args=(container, branches("main")))
    worker.start()
    assert gated.entered.wait(5)

    with pytest.raises(ConcurrentPassConflict):
        driver.try_reconcile(container, branches("other"))

    gated.release.set()
    worker.join(5)
    # the refused call did not make the running pass stale
    assert sorted(container.jobs) == ["main"]


def test_concurrent_passes_never_duplicate_jobs(driver, make_container) -> None:
    container = make_container()
    scans = [branches("main", "a", "b"), branches("main", "b", "c"), branches("main", "a")]
    threads = [
        threading.Thread(target=driver.reconcile, args=(container, scans[i % len(scans)]))
        for i in range(12)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    keys = list(container.jobs)
    assert len(keys) == len(set(keys))
    assert "main" in container.jobs


class _GateOneScript(_GatedRegistry):
    def __init__(self, inner, script_id):
        super().__init__(inner)
        self.script_id = script_id

    def lookup(self, script_id):
        if script_id != self.script_id:
            return self.inner.lookup(script_id)
        return super().lookup(script_id)


def test_different_containers_do_not_block_each_other(registry, make_container) -> None:
    gated = _GateOneScript(registry, "shared-lib.groovy")
    driver = ReconciliationDriver(gated, max_workers=1)
    slow = make_container("slow", script_id="shared-lib.groovy")
    fast = make_container("fast")

    worker = threading.Thread(target=driver.reconcile, args=(slow, branches("main")))
    worker.start()
    assert gated.entered.wait(5)

    # "slow" holds its own lock only
    result = driver.try_reconcile(fast, branches("main"))
    assert result.created == ["main"]

    gated.release.set()
    worker.join(5)
    assert slow.jobs["main"].binding == ScriptBinding("shared-lib.groovy", False)
