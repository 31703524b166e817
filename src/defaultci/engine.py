# engine.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

from .model import Job


@dataclass(frozen=True)
class BoundSource:
    script_id: str
    use_sandbox: bool
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)


class InMemoryExecutionEngine:
    """Keeps the last source bound to each (container, branch) job."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: Dict[Tuple[str, str], BoundSource] = {}
        self.calls = 0

    def bind_source(
        self,
        job: Job,
        script_id: str,
        use_sandbox: bool,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        src = BoundSource(script_id, use_sandbox, dict(attributes or {}))
        with self._lock:
            self._sources[(job.container, job.branch_name)] = src
            self.calls += 1

    def source_for(self, container: str, branch_name: str) -> BoundSource | None:
        with self._lock:
            return self._sources.get((container, branch_name))
