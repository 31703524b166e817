# defaultci_containers.py
# Containers for this repository itself.
from __future__ import annotations
from defaultci import containers, container


def defaults():
    return containers(
        # All branches, central Jenkinsfile, trusted
        container("defaultci"),

        # Same branches, shared library script, sandboxed
        container(
            "defaultci-sandboxed",
            script_id="shared-lib.groovy",
            use_sandbox=True,
            orphan_grace_passes=3,
        ),

        # Only branches that carry their own Jenkinsfile
        container("defaultci-own-file", kind="repository-file"),
    )
