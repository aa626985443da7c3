"""
This module holds common functionality that the controllers use to manage
ownerReferences on the dependent resources
"""

# Standard
from typing import List

# First Party
import alog

# Local
from ..exceptions import OwnerReferenceError, assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OWNRF")


def update_owner_references(
    deploy_manager: DeployManagerBase,
    owner_cr: dict,
    child_obj: dict,
):
    """Fetch current ownerReferences and merge a reference for the owner CR
    into the child object. A cluster scoped owner may own objects in any
    namespace, a namespaced owner only objects in its own namespace.
    """

    # Validate the shape of the owner CR and the child object
    _validate_object_struct(owner_cr)
    _validate_object_struct(child_obj)

    # Fetch the current state of this object
    kind = child_obj["kind"]
    api_version = child_obj["apiVersion"]
    name = child_obj["metadata"]["name"]
    namespace = child_obj["metadata"].get("namespace")

    success, content = deploy_manager.get_object_current_state(
        kind=kind, name=name, api_version=api_version, namespace=namespace
    )
    assert_cluster(
        success, f"Failed to fetch current state of {api_version}.{kind}/{name}"
    )

    # Get the current ownerReferences
    owner_refs = []
    if content is not None:
        owner_refs = list(content.get("metadata", {}).get("ownerReferences") or [])
        log.debug3("Current owner refs: %s", owner_refs)

    owner_uid = owner_cr["metadata"].get("uid")
    owner_namespace = owner_cr["metadata"].get("namespace")
    assert_cluster(owner_uid is not None, f"Owner of {kind}/{name} has no uid")

    if owner_uid == child_obj["metadata"].get("uid"):
        log.debug2("Owner is same as child; Not adding owner ref")
        return

    if owner_namespace is not None and owner_namespace != namespace:
        log.debug2(
            "Owner in namespace %s cannot own %s/%s in %s",
            owner_namespace,
            kind,
            name,
            namespace,
        )
        return

    if owner_uid not in [ref.get("uid") for ref in owner_refs]:
        log.debug2(
            "Adding current CR owner reference for %s.%s/%s",
            api_version,
            kind,
            name,
        )
        owner_refs.append(_make_owner_reference(owner_cr))

    log.debug4("Final owner refs: %s", owner_refs)
    child_obj["metadata"]["ownerReferences"] = owner_refs


def set_owner_references(
    deploy_manager: DeployManagerBase,
    owner_cr: dict,
    child_objs: List[dict],
):
    """Set the owner reference on every child, continuing past failures. All
    failures are raised together once every child has been visited.

    Raises:
        OwnerReferenceError: if any child could not be updated
    """
    errors = []
    for child_obj in child_objs:
        try:
            update_owner_references(deploy_manager, owner_cr, child_obj)
        except Exception as err:  # pylint: disable=broad-except
            metadata = child_obj.get("metadata", {})
            log.debug(
                "Failed to set owner reference on %s/%s: %s",
                child_obj.get("kind"),
                metadata.get("name"),
                err,
            )
            errors.append(err)
    if errors:
        raise OwnerReferenceError(errors)


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.name)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"


def _make_owner_reference(owner_cr: dict) -> dict:
    """Make an owner reference for the given CR instance

    Args:
        owner_cr:  dict
            The full CR manifest for the owning resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        # The owner will not be erased until this object completes its deletion
        "blockOwnerDeletion": True,
    }
