# driver.py
"""
Reconciliation of a multi-branch container against a scan.

One pass:
  1. plan   - decide per branch whether it qualifies and which binding it
              gets (registry lookups run on a thread pool)
  2. commit - create / update jobs, then age out jobs whose branch vanished

Passes on the same container are serialized; passes on different containers
run in parallel. A pass that is no longer the newest request for its
container when it gets the lock, or when it is about to commit, is dropped
without touching any job.
"""
from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ConcurrentPassConflict, DefaultCIError
from .factory import ProjectFactory
from .model import (
    BranchDescriptor,
    ContainerConfig,
    Job,
    MaterializationFailure,
    PassResult,
    ScriptBinding,
)
from .policy import get_kind
from .ports import ExecutionEngine, ScriptRegistry
from .ui.console import Console, get_console


@dataclass
class MultiBranchContainer:
    """A container owning one job per qualifying branch, keyed by branch name."""
    name: str
    factory: ProjectFactory
    orphan_grace_passes: int = 1
    jobs: Dict[str, Job] = field(default_factory=dict)
    last_pass_seq: int = 0

    @classmethod
    def from_config(
        cls,
        config: ContainerConfig,
        *,
        engine: Optional[ExecutionEngine] = None,
        jobs: Optional[Iterable[Job]] = None,
        last_pass_seq: int = 0,
    ) -> MultiBranchContainer:
        factory = get_kind(config.factory_kind).new_instance(config)
        factory.engine = engine
        return cls(
            name=config.name,
            factory=factory,
            orphan_grace_passes=config.orphan_grace_passes,
            jobs={j.branch_name: j for j in (jobs or [])},
            last_pass_seq=last_pass_seq,
        )

    @property
    def config(self) -> ContainerConfig:
        return self.factory.to_config(self.name, self.orphan_grace_passes)

    def configure(
        self,
        *,
        script_id: Any = ...,
        use_sandbox: Any = ...,
        orphan_grace_passes: Any = ...,
    ) -> ContainerConfig:
        """Administrator edit. Jobs pick the change up on their next pass."""
        if script_id is not ...:
            self.factory.script_id = script_id
        if use_sandbox is not ...:
            self.factory.use_sandbox = use_sandbox
        if orphan_grace_passes is not ...:
            if orphan_grace_passes < 0:
                raise ValueError(f"orphan_grace_passes must be >= 0, got {orphan_grace_passes}")
            self.orphan_grace_passes = orphan_grace_passes
        return self.config

    def active_jobs(self) -> List[Job]:
        return [j for j in self.jobs.values() if not j.disabled]


@dataclass
class _Planned:
    descriptor: BranchDescriptor
    binding: Optional[ScriptBinding] = None
    error: Optional[BaseException] = None


def _failure(name: str, err: BaseException) -> MaterializationFailure:
    if isinstance(err, DefaultCIError):
        return MaterializationFailure(branch_name=name, kind=err.kind, message=err.message)
    return MaterializationFailure(branch_name=name, kind=type(err).__name__, message=str(err))


class ReconciliationDriver:
    def __init__(
        self,
        registry: ScriptRegistry,
        *,
        max_workers: int | None = None,
        console: Optional[Console] = None,
    ):
        self.registry = registry
        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(1, c - 1)
        self.max_workers = max_workers
        self._console = console
        self._meta = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._requested: Dict[str, int] = {}

    @property
    def console(self) -> Console:
        return self._console or get_console()

    # ------------------------------------------------------------------
    # Sequencing
    # ------------------------------------------------------------------

    def _lock_for(self, name: str) -> threading.Lock:
        with self._meta:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def _request_seq(self, container: MultiBranchContainer) -> int:
        with self._meta:
            seq = max(self._requested.get(container.name, 0), container.last_pass_seq) + 1
            self._requested[container.name] = seq
            return seq

    def _is_stale(self, name: str, seq: int) -> bool:
        with self._meta:
            return self._requested.get(name, seq) != seq

    def latest_request(self, name: str) -> int:
        """Sequence number of the newest pass requested for a container (0 if none)."""
        with self._meta:
            return self._requested.get(name, 0)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(
        self,
        container: MultiBranchContainer,
        branches: Iterable[BranchDescriptor],
        *,
        caller: str | None = None,
    ) -> PassResult:
        """
        Run one pass, waiting for any pass already running on the container.

        While this call waits, a newer call for the same container makes this
        one stale; it then returns a superseded result and the newer call
        applies its own scan instead.
        """
        branches = list(branches)
        seq = self._request_seq(container)
        lock = self._lock_for(container.name)
        with lock:
            return self._run_pass(container, branches, seq, caller)

    def try_reconcile(
        self,
        container: MultiBranchContainer,
        branches: Iterable[BranchDescriptor],
        *,
        caller: str | None = None,
    ) -> PassResult:
        """Like reconcile(), but raise ConcurrentPassConflict instead of waiting."""
        branches = list(branches)
        lock = self._lock_for(container.name)
        if not lock.acquire(blocking=False):
            raise ConcurrentPassConflict(container.name)
        try:
            seq = self._request_seq(container)
            return self._run_pass(container, branches, seq, caller)
        finally:
            lock.release()

    def prune(self, container: MultiBranchContainer) -> List[str]:
        """Delete disabled jobs. Only ever done on explicit request."""
        with self._lock_for(container.name):
            removed = sorted(n for n, j in container.jobs.items() if j.disabled)
            for name in removed:
                del container.jobs[name]
                self.console.print_debug(f"[{container.name}] pruned {name}")
            return removed

    # ------------------------------------------------------------------
    # Pass internals (container lock held)
    # ------------------------------------------------------------------

    def _superseded(self, container: MultiBranchContainer, seq: int) -> PassResult:
        self.console.print_debug(f"[{container.name}] pass #{seq} superseded by a newer scan")
        return PassResult(container=container.name, seq=seq, superseded=True)

    def _run_pass(
        self,
        container: MultiBranchContainer,
        branches: List[BranchDescriptor],
        seq: int,
        caller: str | None,
    ) -> PassResult:
        if self._is_stale(container.name, seq):
            return self._superseded(container, seq)

        result = PassResult(container=container.name, seq=seq)
        plan = self._plan(container, branches, caller, result)

        if self._is_stale(container.name, seq):
            return self._superseded(container, seq)

        self._commit(container, plan, seq, result)
        container.last_pass_seq = seq
        return result

    def _plan(
        self,
        container: MultiBranchContainer,
        branches: List[BranchDescriptor],
        caller: str | None,
        result: PassResult,
    ) -> List[_Planned]:
        factory = container.factory
        policy = factory.policy
        # one snapshot for the whole pass, even if an admin edits mid-pass
        configured = factory.binding

        seen: set[str] = set()
        heads: List[_Planned] = []
        for d in branches:
            if d.name in seen:
                self.console.print_debug(f"[{container.name}] duplicate branch {d.name} ignored")
                continue
            seen.add(d.name)
            try:
                qualifies = policy.is_head(d.probe)
            except Exception as e:
                heads.append(_Planned(d, error=e))
                continue
            if qualifies:
                heads.append(_Planned(d))
            else:
                result.skipped.append(d.name)

        pending = [p for p in heads if p.error is None]
        if not pending:
            return heads

        # one lookup per branch, so a failed read is charged to that branch only
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(pending))) as pool:
            futures = {
                pool.submit(policy.resolve, configured, self.registry, caller): p
                for p in pending
            }
            for fut in as_completed(futures):
                p = futures[fut]
                try:
                    p.binding = fut.result()
                except Exception as e:
                    p.error = e

        return heads

    def _commit(
        self,
        container: MultiBranchContainer,
        plan: List[_Planned],
        seq: int,
        result: PassResult,
    ) -> None:
        factory = container.factory
        matched: set[str] = set()

        for p in plan:
            name = p.descriptor.name
            attrs: Mapping[str, Any] = p.descriptor.attributes
            matched.add(name)
            existing = container.jobs.get(name)

            if p.error is not None:
                self._record_failure(container, existing, name, p.error, result)
                continue

            try:
                if existing is None:
                    job = factory.create_project(container.name, name, attrs, binding=p.binding)
                    job.last_materialized_at = seq
                    container.jobs[name] = job
                    result.created.append(name)
                    self.console.print_debug(
                        f"[{container.name}] created {name} -> {p.binding.script_id} "
                        f"(sandbox={p.binding.use_sandbox})"
                    )
                elif factory.update_existing_project(existing, attrs, binding=p.binding):
                    existing.last_materialized_at = seq
                    existing.missed_passes = 0
                    existing.disabled = False
                    existing.last_error = None
                    result.updated.append(name)
                    self.console.print_debug(
                        f"[{container.name}] updated {name} -> {p.binding.script_id} "
                        f"(sandbox={p.binding.use_sandbox})"
                    )
                else:
                    result.skipped.append(name)
                    self.console.print_debug(
                        f"[{container.name}] {name} is a {existing.kind} job, left as is"
                    )
            except Exception as e:
                self._record_failure(container, existing, name, e, result)

        self._age_orphans(container, matched, result)

    def _record_failure(
        self,
        container: MultiBranchContainer,
        existing: Optional[Job],
        name: str,
        err: BaseException,
        result: PassResult,
    ) -> None:
        failure = _failure(name, err)
        result.failures[name] = failure
        message = f"{failure.kind}: {failure.message}"
        if existing is None:
            # the branch is real, so it still gets its one job; it stays unbound
            container.jobs[name] = Job(
                branch_name=name,
                container=container.name,
                last_materialized_at=result.seq,
                last_error=message,
            )
        else:
            # the branch is present, so the job is no orphan even if binding failed
            existing.last_error = message
            existing.missed_passes = 0
            existing.disabled = False
        self.console.print_failure(name, str(err), is_job=True)

    def _age_orphans(
        self,
        container: MultiBranchContainer,
        matched: set[str],
        result: PassResult,
    ) -> None:
        for name in sorted(container.jobs):
            if name in matched:
                continue
            job = container.jobs[name]
            job.missed_passes += 1
            if not job.disabled and job.missed_passes > container.orphan_grace_passes:
                job.disabled = True
                result.disabled.append(name)
                self.console.print_debug(
                    f"[{container.name}] disabled {name} after {job.missed_passes} missed pass(es)"
                )
