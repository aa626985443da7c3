"""
Accessors for the custom resources managed by the operator. The resources are
handled as plain manifests (dicts or aconfig.Config) the way they come back
from the deploy manager.
"""

# Standard
from enum import Enum
from typing import List, Optional

# Local
from . import constants
from .utils import nested_get

## Lifecycle ###################################################################


class LifecycleState(Enum):
    """The states the singleton moves through between creation and erasure"""

    # Exists without the primary finalizer
    UNINITIALIZED = "Uninitialized"

    # Primary finalizer present, not being deleted
    ACTIVE = "Active"

    # Being deleted with the primary finalizer still present
    DEPROVISIONING = "Deprovisioning"

    # Being deleted and the primary finalizer is already gone
    GONE = "Gone"


def lifecycle_state(cppc: dict) -> LifecycleState:
    """Classify the singleton by its deletion timestamp and primary finalizer"""
    primary = has_finalizer(cppc, constants.PRIMARY_FINALIZER)
    if is_being_deleted(cppc):
        return LifecycleState.DEPROVISIONING if primary else LifecycleState.GONE
    return LifecycleState.ACTIVE if primary else LifecycleState.UNINITIALIZED


## Metadata ####################################################################


def get_name(manifest: dict) -> Optional[str]:
    return nested_get(manifest, "metadata.name")


def get_namespace(manifest: dict) -> Optional[str]:
    return nested_get(manifest, "metadata.namespace")


def get_uid(manifest: dict) -> Optional[str]:
    return nested_get(manifest, "metadata.uid")


def get_finalizers(manifest: dict) -> List[str]:
    return list(nested_get(manifest, "metadata.finalizers") or [])


def has_finalizer(manifest: dict, finalizer: str) -> bool:
    return finalizer in get_finalizers(manifest)


def is_being_deleted(manifest: Optional[dict]) -> bool:
    """True if the object carries a deletion timestamp"""
    return bool(manifest and nested_get(manifest, "metadata.deletionTimestamp"))


def is_singleton(manifest: dict) -> bool:
    """Only the object named 'cluster' drives the operands"""
    return get_name(manifest) == constants.SINGLETON_NAME


## ClusterPodPlacementConfig ###################################################


def plugin_enabled(manifest: dict, plugin_key: str) -> bool:
    """Check spec.plugins.<plugin_key>.enabled"""
    return bool(nested_get(manifest, f"spec.plugins.{plugin_key}.enabled", False))


def exec_format_error_monitor_enabled(cppc: dict) -> bool:
    return plugin_enabled(cppc, constants.EXEC_FORMAT_ERROR_MONITOR_KEY)


def log_verbosity(cppc: dict) -> str:
    """The configured log verbosity. Unknown values fall back to Normal."""
    verbosity = nested_get(cppc, "spec.logVerbosity") or constants.LOG_VERBOSITY_NORMAL
    if verbosity not in constants.LOG_VERBOSITY_LEVELS:
        return constants.LOG_VERBOSITY_NORMAL
    return verbosity


def log_verbosity_level(cppc: dict) -> int:
    """The numeric verbosity handed to the operands"""
    return constants.LOG_VERBOSITY_LEVELS[log_verbosity(cppc)]


def namespace_selector(cppc: dict) -> dict:
    """The namespace selector. An empty selector matches every namespace."""
    return dict(nested_get(cppc, "spec.namespaceSelector") or {})


## PodPlacementConfig ##########################################################


def priority(ppc: dict) -> int:
    """The priority of a PodPlacementConfig, 0 when unset"""
    value = nested_get(ppc, "spec.priority")
    return 0 if value is None else value


def node_affinity_scoring(manifest: dict) -> Optional[dict]:
    """The nodeAffinityScoring plugin block, if declared"""
    return nested_get(
        manifest, f"spec.plugins.{constants.NODE_AFFINITY_SCORING_KEY}", None
    )


def weighted_platforms(manifest: dict) -> Optional[List[dict]]:
    """The weighted architecture terms of the nodeAffinityScoring plugin, or
    None when the plugin block or its platform list is absent
    """
    plugin = node_affinity_scoring(manifest)
    if plugin is None:
        return None
    platforms = plugin.get("platforms")
    return None if platforms is None else list(platforms)
