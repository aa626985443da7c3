"""
This module holds the base class interface for the various implementations of
WatchManager
"""

# Standard
from typing import List, Optional, Tuple, Type
import abc

# First Party
import alog

# Local
from ..controller import ClusterPodPlacementConfigController
from ..log_format import LogLevelHandle
from ..managed_object import ManagedObject
from ..objects import ObjectSetBuilder

log = alog.use_channel("WATCH")


class WatchManagerBase(abc.ABC):
    """A WatchManager is responsible for linking the ClusterPodPlacementConfig
    and its dependents with the controller that executes the reconciliation
    loop
    """

    # Class-global mapping of all watches managed by this operator
    _ALL_WATCHES = {}

    ## Interface ###############################################################

    def __init__(
        self,
        controller_type: Type[ClusterPodPlacementConfigController],
        builder: Optional[ObjectSetBuilder] = None,
        log_level: Optional[LogLevelHandle] = None,
    ):
        """Construct with the controller type that will be watched

        Args:
            controller_type:  Type[ClusterPodPlacementConfigController]
                The controller class that will manage this group/version/kind
            builder:  Optional[ObjectSetBuilder]
                The object set builder handed to the controller
            log_level:  Optional[LogLevelHandle]
                The handle owning the process log level
        """
        self.controller_type = controller_type
        self.group = controller_type.group
        self.version = controller_type.version
        self.kind = controller_type.kind
        self.builder = builder or ObjectSetBuilder()
        self.log_level = log_level or LogLevelHandle()

        # Register this watch instance
        watch_key = str(self)
        assert (
            watch_key not in self._ALL_WATCHES
        ), "Only a single controller may watch a given group/version/kind"
        self._ALL_WATCHES[watch_key] = self

    @abc.abstractmethod
    def watch(self) -> bool:
        """The watch function is responsible for initializing the persistent
        watch and returning whether or not the watch was started successfully.

        Returns:
            success:  bool
                True if the watch was spawned correctly, False otherwise.
        """

    @abc.abstractmethod
    def wait(self):
        """The wait function is responsible for blocking until the managed watch
        has been terminated.
        """

    @abc.abstractmethod
    def stop(self):
        """Terminate this watch if it is currently running"""

    ## Shared Helpers ##########################################################

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def watched_kinds(self) -> List[Tuple[str, str, Optional[str]]]:
        """All (api_version, kind, namespace) triples whose events trigger a
        reconcile. The owner kind is watched cluster-wide.
        """
        watched = [(self.api_version, self.kind, None)]
        for api_version, kind, namespaced in self.controller_type.dependent_kinds:
            namespace = self.builder.namespace if namespaced else None
            watched.append((api_version, kind, namespace))
        return watched

    def owner_names(self, resource: dict) -> List[str]:
        """The names of the owner kind objects to reconcile for an event on
        the given resource
        """
        resource = ManagedObject(resource)
        if resource.kind == self.kind and resource.api_version == self.api_version:
            return [resource.name]
        return [
            owner_ref.get("name")
            for owner_ref in resource.owner_references
            if owner_ref.get("kind") == self.kind
            and owner_ref.get("apiVersion") == self.api_version
        ]

    ## Utilities ###############################################################

    @classmethod
    def start_all(cls) -> bool:
        """This utility starts all registered watches

        Returns:
            success:  bool
                True if all watches started succssfully, False otherwise
        """
        started_watches = []
        success = True
        for _, watch in sorted(cls._ALL_WATCHES.items()):
            if watch.watch():
                log.debug("Successfully started %s", watch)
                started_watches.append(watch)
            else:
                log.warning("Failed to start %s", watch)
                success = False

                # Shut down all successfully started watches
                for started_watch in started_watches:
                    started_watch.stop()

                # Don't start any of the others
                break

        # Wait on all of them to terminate
        for watch in cls._ALL_WATCHES.values():
            watch.wait()

        return success

    @classmethod
    def stop_all(cls):
        """This utility stops all watches"""
        for watch in cls._ALL_WATCHES.values():
            try:
                watch.stop()
                log.debug2("Waiting for %s to terminate", watch)
                watch.wait()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.error("Failed to stop watch manager %s", exc, exc_info=True)

    ## Implementation Details ##################################################

    def __str__(self):
        """String representation of this watch"""
        return f"Watch[{self.controller_type}]"
