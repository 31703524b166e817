# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class DefaultCIError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - recording against a single branch
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class RegistryLookupFailure(DefaultCIError):
    """The script id is missing from the registry or could not be read."""

    def __init__(self, script_id: str, reason: str = "not found"):
        super().__init__(
            kind="RegistryLookupFailure",
            message=f"script '{script_id}' {reason}",
            details={"script_id": script_id},
        )
        self.script_id = script_id


class ConcurrentPassConflict(DefaultCIError):
    """A pass was requested while another pass held the container."""

    def __init__(self, container: str):
        super().__init__(
            kind="ConcurrentPassConflict",
            message=f"container '{container}' is already being reconciled",
            details={"container": container},
        )
        self.container = container


class InvalidConfiguration(DefaultCIError):
    """The binding cannot be applied as configured."""

    def __init__(self, message: str, **details):
        super().__init__(kind="InvalidConfiguration", message=message, details=details)


class ConfigLoadError(DefaultCIError):
    """A container definition file could not be loaded."""

    def __init__(self, path: str, message: str):
        super().__init__(kind="ConfigLoadError", message=message, details={"path": path})
        self.path = path
