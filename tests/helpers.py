from __future__ import annotations

from defaultci.model import BranchDescriptor
from defaultci.scanner import FileSetProbe


def branches(*names: str, files=()) -> list[BranchDescriptor]:
    return [BranchDescriptor(name=n, probe=FileSetProbe.of(files)) for n in names]


class ExplodingProbe:
    """A probe that fails if anybody looks inside it."""

    def exists(self, path: str) -> bool:
        raise AssertionError(f"probe inspected for {path}")
