from __future__ import annotations

import asyncio
from typing import Any

import sqlalchemy as sa
from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from defaultci.actions import StaticPermissions, actions_for
from defaultci.driver import MultiBranchContainer, ReconciliationDriver
from defaultci.engine import InMemoryExecutionEngine
from defaultci.errors import RegistryLookupFailure
from defaultci.model import BranchDescriptor, ContainerConfig, Job, PassResult
from defaultci.policy import find_kind
from defaultci.registry import InMemoryScriptRegistry
from defaultci.scanner import FileSetProbe

from .db import SessionLocal, engine
from .models import Base, BranchJob, Container
from .redisq import get_script, put_script, scans
from .settings import READERS

app = FastAPI(title="defaultci Control Plane")
permissions = StaticPermissions.readers(READERS)

# -------------------- Schemas --------------------

class ContainerCreate(BaseModel):
    name: str = Field(min_length=1)
    script_id: str | None = None
    use_sandbox: bool = False
    orphan_grace_passes: int = Field(default=1, ge=0)
    factory_kind: str = "defaults"

class ContainerConfigOut(BaseModel):
    name: str
    script_id: str
    use_sandbox: bool
    orphan_grace_passes: int
    factory_kind: str

class ConfigUpdate(BaseModel):
    script_id: str | None = None
    use_sandbox: bool | None = None
    orphan_grace_passes: int | None = Field(default=None, ge=0)

class ScriptIn(BaseModel):
    content: str
    readers: list[str] | None = None

class ScriptOut(BaseModel):
    script_id: str
    content: str
    readers: list[str] | None

class ScanBranch(BaseModel):
    name: str = Field(min_length=1)
    files: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)

class ScanRequest(BaseModel):
    branches: list[ScanBranch]

class FailureOut(BaseModel):
    kind: str
    message: str

class ScanResponse(BaseModel):
    status: str  # applied|queued|superseded
    seq: int | None = None
    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)
    failures: dict[str, FailureOut] = Field(default_factory=dict)

class JobOut(BaseModel):
    branch_name: str
    kind: str
    script_id: str | None
    use_sandbox: bool | None
    last_materialized_at: int
    missed_passes: int
    disabled: bool
    last_error: str | None

class ActionOut(BaseModel):
    url_name: str
    display_name: str

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    # Creates tables if they don't exist (gen_random_uuid needs Postgres 13+).
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# -------------------- Helpers --------------------

def _config_of(row: Container) -> ContainerConfig:
    return ContainerConfig(
        name=row.name,
        script_id=row.script_id,
        use_sandbox=row.use_sandbox,
        orphan_grace_passes=row.orphan_grace_passes,
        factory_kind=row.factory_kind,
    )

def _config_out(row: Container) -> ContainerConfigOut:
    return ContainerConfigOut(**_config_of(row).to_dict())

def _job_of(row: BranchJob) -> Job:
    return Job.from_dict({
        "branch_name": row.branch_name,
        "container": row.container_name,
        "kind": row.kind,
        "script_id": row.script_id,
        "use_sandbox": row.use_sandbox,
        "last_materialized_at": row.last_materialized_at,
        "missed_passes": row.missed_passes,
        "disabled": row.disabled,
        "last_error": row.last_error,
    })

def _copy_job(job: Job, row: BranchJob) -> None:
    data = job.to_dict()
    row.kind = data["kind"]
    row.script_id = data["script_id"]
    row.use_sandbox = data["use_sandbox"]
    row.last_materialized_at = data["last_materialized_at"]
    row.missed_passes = data["missed_passes"]
    row.disabled = data["disabled"]
    row.last_error = data["last_error"]

def _parse_readers(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    return [x for x in raw.split(",") if x]

async def _registry_snapshot(script_id: str) -> InMemoryScriptRegistry:
    """Only the container's script is needed for a pass; read it once."""
    registry = InMemoryScriptRegistry()
    content, raw_readers = await get_script(script_id)
    if content is not None:
        registry.put(script_id, content, _parse_readers(raw_readers))
    return registry

def _scan_response(result: PassResult) -> ScanResponse:
    return ScanResponse(
        status="superseded" if result.superseded else "applied",
        seq=result.seq,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        disabled=result.disabled,
        failures={
            name: FailureOut(kind=f.kind, message=f.message)
            for name, f in result.failures.items()
        },
    )

async def _load_container(s, name: str, *, for_update: bool = False) -> Container:
    row = await s.get(Container, name, with_for_update=for_update)
    if not row:
        raise HTTPException(status_code=404, detail="Container not found")
    return row

async def _run_pass(name: str, branches: list[ScanBranch], caller: str | None) -> PassResult:
    async with SessionLocal() as s:
        async with s.begin():
            row = await _load_container(s, name, for_update=True)
            config = _config_of(row)

            q = sa.select(BranchJob).where(BranchJob.container_name == name)
            job_rows = {j.branch_name: j for j in (await s.execute(q)).scalars().all()}

            container = MultiBranchContainer.from_config(
                config,
                engine=InMemoryExecutionEngine(),
                jobs=[_job_of(j) for j in job_rows.values()],
                last_pass_seq=row.last_pass_seq,
            )
            driver = ReconciliationDriver(await _registry_snapshot(config.script_id))
            descriptors = [
                BranchDescriptor(name=b.name, probe=FileSetProbe.of(b.files), attributes=b.attributes)
                for b in branches
            ]
            result = await asyncio.to_thread(driver.reconcile, container, descriptors, caller=caller)

            for branch_name, job in container.jobs.items():
                job_row = job_rows.get(branch_name)
                if job_row is None:
                    job_row = BranchJob(container_name=name, branch_name=branch_name)
                    s.add(job_row)
                _copy_job(job, job_row)
            row.last_pass_seq = container.last_pass_seq

    return result

async def _apply_scan(name: str, scan: dict) -> PassResult:
    branches = [ScanBranch(**b) for b in scan["branches"]]
    return await _run_pass(name, branches, scan.get("caller"))

# -------------------- Endpoints --------------------

@app.post("/containers", response_model=ContainerConfigOut)
async def create_container(req: ContainerCreate):
    if find_kind(req.factory_kind) is None:
        raise HTTPException(status_code=400, detail=f"Unknown factory kind '{req.factory_kind}'")
    config = ContainerConfig(
        name=req.name,
        script_id=req.script_id,
        use_sandbox=req.use_sandbox,
        orphan_grace_passes=req.orphan_grace_passes,
        factory_kind=req.factory_kind,
    )
    async with SessionLocal() as s:
        async with s.begin():
            if await s.get(Container, req.name):
                raise HTTPException(status_code=409, detail="Container already exists")
            row = Container(**config.to_dict(), last_pass_seq=0)
            s.add(row)
    return ContainerConfigOut(**config.to_dict())

@app.get("/containers/{name}/config", response_model=ContainerConfigOut)
async def get_config(name: str):
    async with SessionLocal() as s:
        row = await _load_container(s, name)
        return _config_out(row)

@app.put("/containers/{name}/config", response_model=ContainerConfigOut)
async def update_config(name: str, req: ConfigUpdate):
    async with SessionLocal() as s:
        async with s.begin():
            row = await _load_container(s, name, for_update=True)
            container = MultiBranchContainer.from_config(_config_of(row))
            changes = req.model_dump(exclude_unset=True)
            if "use_sandbox" in changes and changes["use_sandbox"] is None:
                raise HTTPException(status_code=400, detail="use_sandbox must be true or false")
            if "orphan_grace_passes" in changes and changes["orphan_grace_passes"] is None:
                raise HTTPException(status_code=400, detail="orphan_grace_passes must be a number")
            config = container.configure(**changes)
            row.script_id = config.script_id
            row.use_sandbox = config.use_sandbox
            row.orphan_grace_passes = config.orphan_grace_passes
            return ContainerConfigOut(**config.to_dict())

@app.put("/scripts/{script_id}", response_model=ScriptOut)
async def upsert_script(script_id: str, req: ScriptIn):
    await put_script(script_id, req.content, req.readers)
    return ScriptOut(script_id=script_id, content=req.content, readers=req.readers)

@app.get("/scripts/{script_id}", response_model=ScriptOut)
async def read_script(script_id: str):
    content, raw_readers = await get_script(script_id)
    if content is None:
        raise HTTPException(status_code=404, detail=str(RegistryLookupFailure(script_id)))
    return ScriptOut(script_id=script_id, content=content, readers=_parse_readers(raw_readers))

@app.post("/containers/{name}/scans", response_model=ScanResponse)
async def submit_scan(name: str, req: ScanRequest, x_caller: str | None = Header(default=None)):
    scan = {"branches": [b.model_dump() for b in req.branches], "caller": x_caller}
    result = await scans.submit(name, scan, lambda s: _apply_scan(name, s))
    if result is None:
        # a pass was running; the scan is parked and applied by the lease holder
        return ScanResponse(status="queued")
    return _scan_response(result)

@app.get("/containers/{name}/jobs")
async def list_jobs(name: str):
    async with SessionLocal() as s:
        await _load_container(s, name)
        q = sa.select(BranchJob).where(BranchJob.container_name == name).order_by(BranchJob.branch_name)
        rows = (await s.execute(q)).scalars().all()
        jobs = [JobOut(**{k: v for k, v in _job_of(j).to_dict().items() if k != "container"}) for j in rows]
        return {"jobs": [j.model_dump() for j in jobs]}

@app.post("/containers/{name}/prune")
async def prune(name: str):
    async with SessionLocal() as s:
        async with s.begin():
            await _load_container(s, name, for_update=True)
            q = sa.delete(BranchJob).where(
                BranchJob.container_name == name,
                BranchJob.disabled.is_(True),
            ).returning(BranchJob.branch_name)
            removed = sorted((await s.execute(q)).scalars().all())
    return {"removed": removed}

@app.get("/containers/{name}/actions", response_model=list[ActionOut])
async def container_actions(name: str, x_caller: str | None = Header(default=None)):
    async with SessionLocal() as s:
        row = await _load_container(s, name)
        config = _config_of(row)
    return [ActionOut(url_name=a.url_name, display_name=a.display_name) for a in actions_for(config, x_caller, permissions)]
