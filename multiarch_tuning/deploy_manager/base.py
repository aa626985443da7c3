"""
The interface every cluster backend implements. The controller, the deletion
stages and the admission validators only talk to the cluster through it.
"""

# Standard
from enum import Enum
from typing import Iterator, List, Optional, Tuple
import abc

# Local
from .kube_event import KubeWatchEvent


class DeployMethod(Enum):
    """How a manifest is written to the cluster"""

    # Server side apply of the given fields
    DEFAULT = "default"

    # Full replacement of the object. The manifest's resourceVersion is sent
    # along so concurrent writers surface as conflicts.
    REPLACE = "replace"


class DeployManagerBase(abc.ABC):
    """Reads and writes against one cluster. Every call reports success
    instead of raising for the ordinary API failures (forbidden, conflict
    after retries), so callers decide whether a failure is a requeue or a
    denial.
    """

    @abc.abstractmethod
    def deploy(
        self,
        resource_definitions: List[dict],
        manage_owner_references: bool = True,
        method: DeployMethod = DeployMethod.DEFAULT,
    ) -> Tuple[bool, bool]:
        """Write the manifests in order, stopping at the first failure

        Args:
            resource_definitions:  list(dict)
                The operand manifests
            manage_owner_references:  bool
                Point each manifest at the ClusterPodPlacementConfig so the
                garbage collector removes it with the singleton
            method:  DeployMethod
                Apply the fields or replace the whole object

        Returns:
            success:  bool
                Whether every manifest was written
            changed:  bool
                Whether any object in the cluster changed
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete the objects named by the manifests. Objects (or kinds) that
        are already gone count as deleted.

        Returns:
            success:  bool
            changed:  bool
                Whether a delete was actually issued
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, dict]:
        """Read one object. A missing object is a successful read of None,
        which the status and barrier checks rely on.

        Returns:
            success:  bool
                False when the read itself failed
            current_state:  dict or None
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream the changes to the objects of a kind until the watch is
        stopped
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind matching the selectors. Without a
        namespace the list spans the whole cluster, which is how the delete
        guard finds PodPlacementConfigs in any namespace.

        Returns:
            success:  bool
            current_state:  List[dict]
                The matching objects, empty when none match
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Replace the status subresource of an object

        Returns:
            success:  bool
            changed:  bool
                False when the stored status was already equal
        """
