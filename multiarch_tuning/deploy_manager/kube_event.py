"""
Change notifications for the objects the operator watches
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

# Local
from ..managed_object import ManagedObject


class KubeEventType(Enum):
    """The watch event types that carry an object change"""

    DELETED = "DELETED"
    MODIFIED = "MODIFIED"
    ADDED = "ADDED"


@dataclass
class KubeWatchEvent:
    """One change to a watched object, stamped with the time it was seen"""

    type: KubeEventType
    resource: ManagedObject
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_watch(cls, raw_event: dict) -> Optional["KubeWatchEvent"]:
        """Convert an event streamed by kubernetes.watch. BOOKMARK and ERROR
        events carry no object change and give None.
        """
        try:
            event_type = KubeEventType(raw_event.get("type"))
        except ValueError:
            return None
        return cls(event_type, ManagedObject(raw_event["object"]))
