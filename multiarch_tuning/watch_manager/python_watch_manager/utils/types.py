"""Standard data types used through the PythonWatchManager"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import Union

# Local
from ....managed_object import ManagedObject

# Forward Declarations
KUBE_EVENT_TYPE_TYPE = "KubeEventType"


@dataclass(eq=True, frozen=True)
class ResourceId:
    """Class containing the information needed to identify a resource"""

    api_version: str
    kind: str
    name: str = None
    namespace: str = None

    # Id properties

    @cached_property
    def global_id(self) -> str:
        """Get the global_id for a resource in the form kind.version.group"""
        group_version = self.api_version.split("/")
        return ".".join([self.kind, *reversed(group_version)])

    @cached_property
    def namespaced_id(self) -> str:
        """Get the namespace specific id for a resource"""
        return f"{self.namespace}.{self.global_id}"

    # Helper Accessor functions
    def get_id(self) -> str:
        """Get the requisite id for a resource"""
        return self.namespaced_id if self.namespace else self.global_id

    def get_named_id(self) -> str:
        """Get a named id for a resource"""
        return f"{self.name}.{self.get_id()}"

    def get_resource(self) -> dict:
        """Get a resource template from this id"""
        metadata = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        return {
            "kind": self.kind,
            "apiVersion": self.api_version,
            "metadata": metadata,
        }

    # Helper Creation Functions
    @classmethod
    def from_resource(cls, resource: Union[ManagedObject, dict]) -> "ResourceId":
        """Create a resource id from an existing resource"""
        metadata = resource.get("metadata", {})
        return cls(
            api_version=resource.get("apiVersion"),
            kind=resource.get("kind"),
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
        )

    @classmethod
    def from_owner_ref(cls, owner_ref: dict, namespace: str = None) -> "ResourceId":
        """Create a resource id from an ownerRef"""
        return cls(
            api_version=owner_ref.get("apiVersion"),
            kind=owner_ref.get("kind"),
            namespace=namespace,
            name=owner_ref.get("name"),
        )


class ReconcileRequestType(Enum):
    """Enum to expand the possible KubeEventTypes to include PythonWatchManager
    specific events"""

    # Used for events that are a requeue of an object
    REQUEUED = "REQUEUED"

    # Used for when an event is a dependent resource of a controller
    DEPENDENT = "DEPENDENT"

    # Used as a sentinel to alert threads to stop
    STOPPED = "STOPPED"


### Reconcile Classes


@dataclass
class ReconcileRequest:
    """Class to represent one request to the ReconcileThread"""

    type: Union[ReconcileRequestType, KUBE_EVENT_TYPE_TYPE]
    resource: ManagedObject
    timestamp: datetime = field(default_factory=datetime.now)

    def key(self) -> str:
        """Requests for the same object share a key no matter the uid, so a
        recreated object never runs alongside its predecessor
        """
        return ResourceId.from_resource(self.resource).get_named_id()


### Timer Data Classes
@dataclass(order=True)
class TimerEvent:
    """Class for keeping track of an item in the timer queue. Time is the
    only comparable field to support the TimerThreads priority queue"""

    time: datetime
    action: callable = field(compare=False)
    args: list = field(default_factory=list, compare=False)
    kwargs: dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Cancel this event. It will not be executed when read from the
        queue"""
        self.stale = True
