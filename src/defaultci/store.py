# store.py
from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .driver import MultiBranchContainer
from .model import ContainerConfig, Job
from .ports import ExecutionEngine

# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------
# <root>/state.json
#   {
#     "version": 1,
#     "containers": {
#       "<name>": {
#         "config": {...ContainerConfig...},
#         "last_pass_seq": 3,
#         "jobs": [ {...Job.to_dict()...}, ... ]
#       }
#     }
#   }
#
# Only bindings and orphan bookkeeping live here, never build history.
# ---------------------------------------------------------------------

DEFAULT_STATE_DIR = ".defaultci"
STATE_VERSION = 1


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


class StateStore:
    def __init__(self, root: str | Path = DEFAULT_STATE_DIR):
        self.root = Path(root)
        self.path = self.root / "state.json"
        self._lock = threading.Lock()

    def _read(self) -> Dict:
        if not self.path.exists():
            return {"version": STATE_VERSION, "containers": {}}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if data.get("version") != STATE_VERSION:
            raise ValueError(f"Unsupported state version in {self.path}: {data.get('version')!r}")
        data.setdefault("containers", {})
        return data

    def _write(self, data: Dict) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(_json_dumps_stable(data) + "\n", encoding="utf-8")
        os.replace(tmp, self.path)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._read()["containers"])

    def load(
        self,
        config: ContainerConfig,
        engine: Optional[ExecutionEngine] = None,
    ) -> MultiBranchContainer:
        """
        Rebuild a container from `config` plus whatever jobs were stored.

        The definition file stays authoritative for configuration; stored
        jobs keep the binding they got on their last pass until the next one.
        """
        with self._lock:
            entry = self._read()["containers"].get(config.name)
        if entry is None:
            return MultiBranchContainer.from_config(config, engine=engine)
        jobs = [Job.from_dict(j) for j in entry.get("jobs", [])]
        return MultiBranchContainer.from_config(
            config,
            engine=engine,
            jobs=jobs,
            last_pass_seq=int(entry.get("last_pass_seq", 0)),
        )

    def save(self, container: MultiBranchContainer) -> None:
        with self._lock:
            data = self._read()
            data["containers"][container.name] = {
                "config": container.config.to_dict(),
                "last_pass_seq": container.last_pass_seq,
                "jobs": [container.jobs[n].to_dict() for n in sorted(container.jobs)],
            }
            self._write(data)
