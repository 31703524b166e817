# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Tuple


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Every other function builds on top of this one, so git is invoked the
    same way everywhere and output is always text.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Absolute path to the root of the repository containing `cwd`."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def list_refs(
    cwd: Optional[str | Path] = None,
    remote: Optional[str] = "origin",
    include_local: bool = True,
) -> List[Tuple[str, str]]:
    """
    Return (branch_name, sha) for local and remote-tracking branches.

    Remote-tracking names are returned without the remote prefix, so
    "origin/feature-1" comes back as "feature-1". Local branches are listed
    first; the symbolic "<remote>/HEAD" ref is dropped.

    Args:
        cwd: Repository to inspect.
        remote: Remote whose tracking branches to include, or None for none.
        include_local: Whether to include refs/heads.
    """
    patterns: list[str] = []
    if include_local:
        patterns.append("refs/heads")
    if remote:
        patterns.append(f"refs/remotes/{remote}")
    if not patterns:
        return []

    out = _git(
        ["for-each-ref", "--format=%(refname) %(objectname)", *patterns],
        cwd=cwd,
    )
    if not out:
        return []

    refs: List[Tuple[str, str]] = []
    remote_prefix = f"refs/remotes/{remote}/" if remote else None
    for line in out.splitlines():
        refname, _, sha = line.partition(" ")
        if refname.startswith("refs/heads/"):
            refs.append((refname[len("refs/heads/"):], sha))
        elif remote_prefix and refname.startswith(remote_prefix):
            name = refname[len(remote_prefix):]
            if name != "HEAD":
                refs.append((name, sha))
    # for-each-ref sorts by refname: refs/heads before refs/remotes
    return refs


def path_exists(ref: str, path: str, cwd: Optional[str | Path] = None) -> bool:
    """True if `path` exists in the tree of `ref`."""
    proc = subprocess.run(
        ["git", "cat-file", "-e", f"{ref}:{path}"],
        cwd=str(cwd) if cwd is not None else None,
        capture_output=True,
        text=True,
    )
    return proc.returncode == 0


def top_level_files(ref: str, cwd: Optional[str | Path] = None) -> List[str]:
    """Names of the entries at the root of `ref`'s tree."""
    out = _git(["ls-tree", "--name-only", ref], cwd=cwd)
    if not out:
        return []
    return out.splitlines()
