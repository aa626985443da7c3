"""
The deletion orchestrator tears down the operand of a ClusterPodPlacementConfig
that is being deleted. The teardown is an ordered sequence of stages. The
stages that wait on the cluster raise a BarrierError so the reconcile is
retried later instead of blocking. Every stage is idempotent and objects that
are already gone count as deleted, so each pass simply starts over from the
first stage.
"""

# Standard
from enum import Enum
from typing import Callable, List, Optional

# First Party
import alog

# Local
from . import constants, resources
from .deploy_manager import DeployManagerBase
from .exceptions import BarrierError, assert_cluster
from .finalizers import remove_finalizer
from .objects import ObjectSetBuilder
from .utils import nested_get

log = alog.use_channel("DELET")

## Barrier messages ############################################################

DAEMONSET_TERMINATING_MSG = "enoexec DaemonSet is still terminating"
EVENT_RECORDS_EXIST_MSG = "found existing ENoExecEvent resources"
HOOK_INTERRUPTION_MSG = (
    "re-queueing to ensure the webhook objects deletion interrupt pods gating "
    "before checking the pods gating status"
)
POD_UNGATING_MSG = "waiting for pods with the scheduling gate to be ungated"

## Stages ######################################################################


class DeletionStage(Enum):
    """The stages of the teardown, in order. The AWAITING_* stages are the
    barriers.
    """

    PLUGIN_TEARDOWN = "PluginTeardown"
    AWAITING_DAEMONSET_TERMINATION = "AwaitingDaemonSetTermination"
    AWAITING_EVENT_RECORDS_DRAIN = "AwaitingEventRecordsDrain"
    PLUGIN_RELEASE = "PluginRelease"
    HOOK_TEARDOWN = "HookTeardown"
    AWAITING_HOOK_INTERRUPTION = "AwaitingHookInterruption"
    AWAITING_POD_UNGATING = "AwaitingPodUngating"
    RELEASING_FINALIZERS = "ReleasingFinalizers"
    PRIMARY_CLEANUP = "PrimaryCleanup"
    DONE = "Done"


## Helpers #####################################################################


def has_scheduling_gate(pod: dict) -> bool:
    """Check whether the pod still carries the scheduling gate of the operand"""
    gates = nested_get(pod, "spec.schedulingGates") or []
    return any(gate.get("name") == constants.SCHEDULING_GATE_NAME for gate in gates)


def is_monitoring_available(
    deploy_manager: DeployManagerBase, builder: ObjectSetBuilder
) -> bool:
    """The monitoring objects are only managed when the ServiceMonitor CRD is
    installed in the cluster
    """
    ref = builder.service_monitors_crd_ref()
    success, content = deploy_manager.get_object_current_state(
        kind=ref["kind"],
        name=ref["metadata"]["name"],
        api_version=ref["apiVersion"],
    )
    assert_cluster(success, "Failed to check for the ServiceMonitor CRD")
    return content is not None


## DeletionOrchestrator ########################################################


class DeletionOrchestrator:
    """Runs the ordered teardown of the operand and of the exec format error
    monitor plugin
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        builder: ObjectSetBuilder,
        status_writer: Optional[Callable[[dict], None]] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used for all reads and writes
            builder:  ObjectSetBuilder
                Provides the references of the objects to delete
            status_writer:  Optional[Callable[[dict], None]]
                Called with the ClusterPodPlacementConfig at the start of every
                deprovisioning pass. Failures are logged and ignored.
        """
        self.deploy_manager = deploy_manager
        self.builder = builder
        self.status_writer = status_writer
        self._steps = {
            DeletionStage.PLUGIN_TEARDOWN: self._plugin_teardown,
            DeletionStage.AWAITING_DAEMONSET_TERMINATION: self._await_daemonset,
            DeletionStage.AWAITING_EVENT_RECORDS_DRAIN: self._await_event_records,
            DeletionStage.PLUGIN_RELEASE: self._plugin_release,
            DeletionStage.HOOK_TEARDOWN: self._hook_teardown,
            DeletionStage.AWAITING_HOOK_INTERRUPTION: self._await_hook_interruption,
            DeletionStage.AWAITING_POD_UNGATING: self._await_pod_ungating,
            DeletionStage.RELEASING_FINALIZERS: self._release_finalizers,
            DeletionStage.PRIMARY_CLEANUP: self._primary_cleanup,
        }

    ## Public ##################################################################

    def run(self, cppc: dict) -> DeletionStage:
        """Run a full deprovisioning pass

        Args:
            cppc:  dict
                The ClusterPodPlacementConfig being deleted

        Returns:
            stage:  DeletionStage
                DeletionStage.DONE once every stage passed

        Raises:
            BarrierError: A barrier is not yet satisfied
            ClusterError: A read or write against the cluster failed
        """
        log.info("Deprovisioning [%s]", resources.get_name(cppc))
        self._write_status(cppc)
        return self._run_until(cppc, DeletionStage.DONE)

    def teardown_plugin(self, cppc: dict) -> DeletionStage:
        """Run only the plugin stages. This is used while the
        ClusterPodPlacementConfig is active and the plugin got disabled.

        Returns:
            stage:  DeletionStage
                DeletionStage.DONE once the plugin is gone
        """
        log.info(
            "Tearing down the %s plugin", constants.EXEC_FORMAT_ERROR_MONITOR_PLUGIN
        )
        self._run_until(cppc, DeletionStage.HOOK_TEARDOWN)
        return DeletionStage.DONE

    def step(self, stage: DeletionStage, cppc: dict) -> DeletionStage:
        """Execute a single stage and return the stage to run next"""
        log.debug("Running deletion stage %s", stage.value)
        return self._steps[stage](cppc)

    ## Stages ##################################################################

    def _plugin_teardown(self, cppc: dict) -> DeletionStage:
        cppc = self._current_cppc(cppc)
        if cppc is None or not resources.has_finalizer(
            cppc, constants.PLUGIN_FINALIZER
        ):
            log.debug2("No plugin finalizer. Skipping the plugin teardown")
            return DeletionStage.HOOK_TEARDOWN
        log.info(
            "Deleting the %s daemonset and its RBAC", constants.ENOEXEC_DAEMONSET_NAME
        )
        self._delete(self.builder.plugin_daemonset_refs())
        return DeletionStage.AWAITING_DAEMONSET_TERMINATION

    def _await_daemonset(self, _: dict) -> DeletionStage:
        daemonset = self._get(
            self.builder.daemonset_ref(constants.ENOEXEC_DAEMONSET_NAME)
        )
        if daemonset is not None:
            log.info(
                "Waiting for the %s daemonset to be deleted",
                constants.ENOEXEC_DAEMONSET_NAME,
            )
            raise BarrierError(
                DAEMONSET_TERMINATING_MSG, DeletionStage.AWAITING_DAEMONSET_TERMINATION
            )
        return DeletionStage.AWAITING_EVENT_RECORDS_DRAIN

    def _await_event_records(self, _: dict) -> DeletionStage:
        events = self._list(
            constants.ENOEXEC_EVENT_KIND,
            constants.API_VERSION,
            namespace=self.builder.namespace,
        )
        if events:
            log.info(
                "Found %d existing %s resources",
                len(events),
                constants.ENOEXEC_EVENT_KIND,
            )
            raise BarrierError(
                EVENT_RECORDS_EXIST_MSG, DeletionStage.AWAITING_EVENT_RECORDS_DRAIN
            )
        return DeletionStage.PLUGIN_RELEASE

    def _plugin_release(self, cppc: dict) -> DeletionStage:
        handler = self._get(
            self.builder.deployment_ref(constants.ENOEXEC_CONTROLLER_NAME)
        )
        if handler is not None:
            log.debug(
                "Removing the plugin finalizer from the %s deployment",
                constants.ENOEXEC_CONTROLLER_NAME,
            )
            remove_finalizer(self.deploy_manager, handler, constants.PLUGIN_FINALIZER)

        self._delete(
            self.builder.plugin_remaining_refs(
                is_monitoring_available(self.deploy_manager, self.builder)
            )
        )

        cppc = self._current_cppc(cppc)
        if cppc is not None:
            log.debug(
                "Removing the plugin finalizer from [%s]", resources.get_name(cppc)
            )
            remove_finalizer(self.deploy_manager, cppc, constants.PLUGIN_FINALIZER)
        return DeletionStage.HOOK_TEARDOWN

    def _hook_teardown(self, _: dict) -> DeletionStage:
        log.info("Deleting the mutating webhook configuration and the webhook")
        self._delete(self.builder.hook_refs())
        return DeletionStage.AWAITING_HOOK_INTERRUPTION

    def _await_hook_interruption(self, _: dict) -> DeletionStage:
        ref = self.builder.service_ref(constants.POD_PLACEMENT_WEBHOOK_NAME)
        success, content = self.deploy_manager.get_object_current_state(
            kind=ref["kind"],
            name=ref["metadata"]["name"],
            namespace=ref["metadata"]["namespace"],
            api_version=ref["apiVersion"],
        )
        # Any answer other than a clean "not found" keeps the barrier closed
        if not success or content is not None:
            log.info("The webhook service is still resolvable")
            raise BarrierError(
                HOOK_INTERRUPTION_MSG, DeletionStage.AWAITING_HOOK_INTERRUPTION
            )
        return DeletionStage.AWAITING_POD_UNGATING

    def _await_pod_ungating(self, _: dict) -> DeletionStage:
        pods = self._list(
            constants.POD_KIND,
            constants.CORE_API_VERSION,
            field_selector=constants.PENDING_PODS_FIELD_SELECTOR,
        )
        gated = [pod for pod in pods if has_scheduling_gate(pod)]
        if gated:
            log.info("Waiting for %d gated pods to be ungated", len(gated))
            log.debug3(
                "Gated pods: %s",
                [
                    f"{resources.get_namespace(pod)}/{resources.get_name(pod)}"
                    for pod in gated
                ],
            )
            raise BarrierError(POD_UNGATING_MSG, DeletionStage.AWAITING_POD_UNGATING)
        return DeletionStage.RELEASING_FINALIZERS

    def _release_finalizers(self, cppc: dict) -> DeletionStage:
        controller = self._get(
            self.builder.deployment_ref(constants.POD_PLACEMENT_CONTROLLER_NAME)
        )
        if controller is not None:
            log.debug("Removing the primary finalizer from the controller deployment")
            remove_finalizer(
                self.deploy_manager, controller, constants.PRIMARY_FINALIZER
            )

        cppc = self._current_cppc(cppc)
        if cppc is not None:
            log.info(
                "Removing the primary finalizer from [%s]", resources.get_name(cppc)
            )
            remove_finalizer(self.deploy_manager, cppc, constants.PRIMARY_FINALIZER)
        return DeletionStage.PRIMARY_CLEANUP

    def _primary_cleanup(self, _: dict) -> DeletionStage:
        log.info("Deleting the remaining pod placement controller objects")
        self._delete(
            self.builder.primary_remaining_refs(
                is_monitoring_available(self.deploy_manager, self.builder)
            )
        )
        return DeletionStage.DONE

    ## Implementation Details ##################################################

    def _run_until(self, cppc: dict, last: DeletionStage) -> DeletionStage:
        stage = DeletionStage.PLUGIN_TEARDOWN
        while stage is not last:
            stage = self.step(stage, cppc)
        return stage

    def _write_status(self, cppc: dict):
        if self.status_writer is None:
            return
        try:
            self.status_writer(cppc)
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Failed to update the status while deprovisioning: %s", err)

    def _current_cppc(self, cppc: dict) -> Optional[dict]:
        """Re-read the ClusterPodPlacementConfig so finalizer edits carry the
        latest resourceVersion
        """
        success, content = self.deploy_manager.get_object_current_state(
            kind=cppc.get("kind", constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND),
            name=resources.get_name(cppc),
            api_version=cppc.get("apiVersion", constants.API_VERSION),
        )
        assert_cluster(success, f"Failed to fetch [{resources.get_name(cppc)}]")
        return content

    def _get(self, ref: dict) -> Optional[dict]:
        metadata = ref["metadata"]
        success, content = self.deploy_manager.get_object_current_state(
            kind=ref["kind"],
            name=metadata["name"],
            namespace=metadata.get("namespace"),
            api_version=ref["apiVersion"],
        )
        assert_cluster(
            success,
            f"Failed to fetch the current state of {ref['kind']}/{metadata['name']}",
        )
        return content

    def _list(
        self,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[dict]:
        success, content = self.deploy_manager.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            field_selector=field_selector,
        )
        assert_cluster(success, f"Failed to list {kind} resources")
        return content

    def _delete(self, refs: List[dict]):
        log.debug2(
            "Deleting %s",
            [f"{ref['kind']}/{ref['metadata']['name']}" for ref in refs],
        )
        success, _ = self.deploy_manager.disable(refs)
        assert_cluster(success, "Failed to delete the dependent resources")
