# scanner.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .git_facts import git
from .model import BranchDescriptor


@dataclass(frozen=True)
class FileSetProbe:
    """Probe over a known set of paths (tests, scans posted over HTTP)."""
    files: frozenset[str] = frozenset()

    @classmethod
    def of(cls, files: Optional[Iterable[str]]) -> FileSetProbe:
        return cls(frozenset(files or ()))

    def exists(self, path: str) -> bool:
        return path in self.files


@dataclass(frozen=True)
class GitProbe:
    """Probe that asks git whether a path exists at a commit."""
    repo: Path
    sha: str

    def exists(self, path: str) -> bool:
        return git.path_exists(self.sha, path, cwd=self.repo)

    def files(self) -> List[str]:
        return git.top_level_files(self.sha, cwd=self.repo)


@dataclass
class StaticScanner:
    """
    Scanner over a fixed mapping of branch -> files, per container.

    Handy for tests and for replaying a scan received over the API.
    """
    branches: Dict[str, Dict[str, Iterable[str]]] = field(default_factory=dict)

    def set_branches(self, container: str, branches: Mapping[str, Iterable[str]]) -> None:
        self.branches[container] = {name: list(files) for name, files in branches.items()}

    def scan(self, container: str) -> List[BranchDescriptor]:
        found = self.branches.get(container, {})
        return [BranchDescriptor(name=n, probe=FileSetProbe.of(files)) for n, files in found.items()]


class GitScanner:
    """Scanner over the local and remote-tracking branches of a git checkout."""

    def __init__(
        self,
        repo: str | Path = ".",
        *,
        remote: Optional[str] = "origin",
        include_local: bool = True,
    ):
        self.repo = Path(repo)
        self.remote = remote
        self.include_local = include_local

    def scan(self, container: str) -> List[BranchDescriptor]:
        root = git.repo_root(self.repo)
        seen: set[str] = set()
        out: List[BranchDescriptor] = []
        for name, sha in git.list_refs(root, remote=self.remote, include_local=self.include_local):
            if name in seen:
                continue
            seen.add(name)
            out.append(BranchDescriptor(name=name, probe=GitProbe(root, sha), attributes={"sha": sha}))
        return out


def describe(branches: Iterable[BranchDescriptor]) -> List[Dict[str, Any]]:
    """
    Serialize a scan for the control plane.

    Git probes are flattened to the branch's top-level files, which is all
    the head criteria look at.
    """
    out: List[Dict[str, Any]] = []
    for b in branches:
        probe = b.probe
        if isinstance(probe, GitProbe):
            files = probe.files()
        elif isinstance(probe, FileSetProbe):
            files = sorted(probe.files)
        else:
            files = []
        out.append({"name": b.name, "files": files, "attributes": dict(b.attributes)})
    return out
