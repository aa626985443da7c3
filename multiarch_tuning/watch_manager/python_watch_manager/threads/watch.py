"""The WatchThread Class is responsible for monitoring the cluster for
resource events
"""
# Standard
from typing import List, Optional
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from .... import config
from ....deploy_manager import DeployManagerBase, KubeWatchEvent
from ....managed_object import ManagedObject
from ..utils import ReconcileRequest, ReconcileRequestType, ResourceId
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")

# Forward declaration of ReconcileThread
RECONCILE_THREAD_TYPE = "ReconcileThread"


class WatchThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """The WatchThread monitors the cluster for changes to a specific
    GroupVersionKind either cluster-wide or for a particular namespace. Events
    for the owner kind request a reconcile of the object itself. Events for any
    other kind request a reconcile of the owner named in their ownerReferences.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        reconcile_thread: RECONCILE_THREAD_TYPE,
        kind: str,
        api_version: str,
        owner_kind: str,
        owner_api_version: str,
        namespace: Optional[str] = None,
        deploy_manager: DeployManagerBase = None,
    ):
        """Initialize a WatchThread by assigning instance variables

        Args:
            reconcile_thread: ReconcileThread
                The reconcile thread to submit requests to
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            owner_kind: str
                The kind reconciled by the controller
            owner_api_version: str
                The api_version reconciled by the controller
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
            deploy_manager: DeployManagerBase = None
                The deploy_manager to watch events
        """
        self.reconcile_thread = reconcile_thread
        self.kind = kind
        self.api_version = api_version
        self.owner_kind = owner_kind
        self.owner_api_version = owner_api_version
        self.namespace = namespace

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, deploy_manager=deploy_manager)

        # Setup kubernetes watch resource
        self.kubernetes_watch = watch.Watch()

        # Variables for tracking retries
        self.attempts_left = config.watch.retry_count
        self.retry_delay = float(config.watch.retry_delay_seconds)

    def run(self):
        """The WatchThread's control loop continuously watches the
        DeployManager for new events and submits a ReconcileRequest for every
        event that maps to an owner object
        """
        list_resource_version = 0
        while True:
            try:
                if self.should_stop():
                    log.debug("Watch thread stopped. Shutting down")
                    return

                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    resource_version=list_resource_version,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        log.debug("Watch thread stopped. Shutting down")
                        return

                    # A session that delivers events is healthy
                    self.attempts_left = config.watch.retry_count
                    for request in self.requests_for_event(event):
                        log.debug(
                            "Requesting reconcile for %s",
                            event.resource,
                            extra={"resource": request.resource},
                        )
                        self.reconcile_thread.push_request(request)

                # Update the resource version to only get new events
                list_resource_version = self.kubernetes_watch.resource_version
                self.attempts_left = config.watch.retry_count
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.watch.retry_count,
                    )
                    os._exit(1)

                if not self.wait_on_precondition(self.retry_delay):
                    log.debug("Watch thread stopped during retry. Shutting down")
                    return
                self.attempts_left = self.attempts_left - 1
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    ## Class Interface ###################################################

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Public Interface ###################################################

    def requests_for_event(self, event: KubeWatchEvent) -> List[ReconcileRequest]:
        """Map a watch event to the reconcile requests it triggers

        Args:
            event: KubeWatchEvent
                The event received from the deploy manager

        Returns:
            requests: List[ReconcileRequest]
                One request for an owner kind event, one per owner for a
                dependent event, none for unrelated events
        """
        resource = event.resource
        if (
            resource.kind == self.owner_kind
            and resource.api_version == self.owner_api_version
        ):
            return [ReconcileRequest(event.type, resource)]

        requests = []
        for owner_ref in resource.owner_references:
            if (
                owner_ref.get("kind") != self.owner_kind
                or owner_ref.get("apiVersion") != self.owner_api_version
            ):
                continue
            owner_id = ResourceId.from_owner_ref(owner_ref)
            requests.append(
                ReconcileRequest(
                    ReconcileRequestType.DEPENDENT,
                    ManagedObject(owner_id.get_resource()),
                )
            )
        if not requests:
            log.debug2("Skipping event for %s without a watched owner", resource)
        return requests
