"""
Helpers to add and remove finalizers on objects in the cluster
"""

# Standard
import copy

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase, DeployMethod
from .exceptions import assert_cluster

log = alog.use_channel("FINLZ")


def has_finalizer(manifest: dict, finalizer: str) -> bool:
    """Check whether the given manifest currently carries the finalizer"""
    return finalizer in (manifest.get("metadata", {}).get("finalizers") or [])


def add_finalizer(
    deploy_manager: DeployManagerBase,
    manifest: dict,
    finalizer: str,
) -> bool:
    """Add a finalizer to the given object and persist it. The full manifest is
    written back with its resourceVersion so that a concurrent writer surfaces
    as a conflict.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager to write through
        manifest:  dict
            The current state of the object as read from the cluster
        finalizer:  str
            The finalizer token to add

    Returns:
        changed:  bool
            True if the finalizer was added, False if it was already present
    """
    if has_finalizer(manifest, finalizer):
        return False
    updated = copy.deepcopy(dict(manifest))
    metadata = updated.setdefault("metadata", {})
    metadata["finalizers"] = list(metadata.get("finalizers") or []) + [finalizer]
    _write(deploy_manager, updated, "add", finalizer)
    return True


def remove_finalizer(
    deploy_manager: DeployManagerBase,
    manifest: dict,
    finalizer: str,
) -> bool:
    """Remove a finalizer from the given object and persist it

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager to write through
        manifest:  dict
            The current state of the object as read from the cluster
        finalizer:  str
            The finalizer token to remove

    Returns:
        changed:  bool
            True if the finalizer was removed, False if it was not present
    """
    if not has_finalizer(manifest, finalizer):
        return False
    updated = copy.deepcopy(dict(manifest))
    metadata = updated["metadata"]
    metadata["finalizers"] = [
        entry for entry in metadata["finalizers"] if entry != finalizer
    ]
    _write(deploy_manager, updated, "remove", finalizer)
    return True


def _write(deploy_manager: DeployManagerBase, manifest: dict, action: str, finalizer):
    metadata = manifest["metadata"]
    log.debug(
        "Trying to %s finalizer %s on [%s/%s]",
        action,
        finalizer,
        manifest.get("kind"),
        metadata.get("name"),
    )
    success, _ = deploy_manager.deploy(
        [manifest], manage_owner_references=False, method=DeployMethod.REPLACE
    )
    assert_cluster(
        success,
        f"Failed to {action} finalizer {finalizer} on "
        f"{manifest.get('kind')}/{metadata.get('name')}",
    )
