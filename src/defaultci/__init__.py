from .dsl import container, containers, load_containers
from .driver import MultiBranchContainer, ReconciliationDriver
from .factory import ProjectFactory, apply_binding
from .model import DEFAULT_SCRIPT, BranchDescriptor, ContainerConfig, Job, PassResult, ScriptBinding
from .policy import DefaultResolutionPolicy, RepositoryFilePolicy, get_kind, list_kinds

__all__ = [
    "container", "containers", "load_containers",
    "MultiBranchContainer", "ReconciliationDriver",
    "ProjectFactory", "apply_binding",
    "DEFAULT_SCRIPT", "BranchDescriptor", "ContainerConfig", "Job", "PassResult", "ScriptBinding",
    "DefaultResolutionPolicy", "RepositoryFilePolicy", "get_kind", "list_kinds",
]
