# dsl.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import List, Optional

from .errors import ConfigLoadError
from .model import DEFAULT_SCRIPT, ContainerConfig
from .policy import find_kind, list_kinds


# ---------------------------------------------------------------------
# Container helper
# ---------------------------------------------------------------------

def container(
    name: str,
    *,
    script_id: Optional[str] = DEFAULT_SCRIPT,
    use_sandbox: bool = False,
    orphan_grace_passes: int = 1,
    kind: str = "defaults",
) -> ContainerConfig:
    """Declare a multi-branch container.

    Example:
        container("web", script_id="shared-lib.groovy", use_sandbox=True)
    """
    if not name or not name.strip():
        raise ValueError("container() needs a non-empty name")
    if find_kind(kind) is None:
        known = ", ".join(k.name for k in list_kinds())
        raise ValueError(f"container({name!r}): unknown kind {kind!r} (known: {known})")
    return ContainerConfig(
        name=name,
        script_id=script_id,
        use_sandbox=use_sandbox,
        orphan_grace_passes=orphan_grace_passes,
        factory_kind=kind,
    )


def containers(*configs: ContainerConfig) -> List[ContainerConfig]:
    """
    Definition helper, mirrors how users write the file:

        from defaultci import containers, container

        def defaults():
            return containers(
                container("web"),
                container("api", script_id="api.groovy"),
            )

    Or set CONTAINERS directly:
        CONTAINERS = containers(container("web"))
    """
    names = [c.name for c in configs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate container names: {dupes}")
    return list(configs)


# ---------------------------------------------------------------------
# Definition file loading (local file)
# ---------------------------------------------------------------------

def find_container_files(directory: str | Path = ".") -> List[Path]:
    """defaultci_containers.py first, then any other *_containers.py."""
    current_dir = Path(directory)
    files: List[Path] = []

    default_file = current_dir / "defaultci_containers.py"
    if default_file.exists():
        files.append(default_file)

    for path in sorted(current_dir.glob("*_containers.py")):
        if path != default_file:
            files.append(path)

    return files


def load_containers(path: str | Path) -> List[ContainerConfig]:
    """
    Load container definitions from a python file.

    The file must define either:
      - defaults() -> List[ContainerConfig]
      - CONTAINERS = [ContainerConfig, ...]
    """
    cfg_path = Path(path).expanduser().resolve()
    if not cfg_path.exists():
        raise ConfigLoadError(str(cfg_path), "definition file not found")
    if cfg_path.suffix != ".py":
        raise ConfigLoadError(str(cfg_path), f"definition file must be a .py file, got: {cfg_path.name}")

    module_name = f"defaultci_containers_{cfg_path.stem}"
    try:
        globals_dict = runpy.run_path(str(cfg_path), run_name=module_name)
    except Exception as e:
        raise ConfigLoadError(str(cfg_path), f"could not execute definition file: {e}") from e

    configs = None
    if "defaults" in globals_dict and callable(globals_dict["defaults"]):
        configs = globals_dict["defaults"]()
    elif "CONTAINERS" in globals_dict:
        configs = globals_dict["CONTAINERS"]

    if not isinstance(configs, list) or not all(isinstance(c, ContainerConfig) for c in configs):
        raise ConfigLoadError(
            str(cfg_path),
            "definition file must return/define a List[ContainerConfig]. "
            "Define defaults() -> List[ContainerConfig] or CONTAINERS = [...].",
        )

    return configs


def select_container(configs: List[ContainerConfig], name: Optional[str]) -> ContainerConfig:
    """Pick a container by name; with no name, there must be exactly one."""
    if name is None:
        if len(configs) != 1:
            raise KeyError(
                f"{len(configs)} containers defined, pick one with --container: "
                + ", ".join(c.name for c in configs)
            )
        return configs[0]
    for c in configs:
        if c.name == name:
            return c
    raise KeyError(f"No container named '{name}'. Defined: {', '.join(c.name for c in configs)}")
