"""
The controller drives the singleton ClusterPodPlacementConfig through its
lifecycle:

1. Uninitialized: the primary finalizer is added and the reconcile is requeued
    before anything else is created.
2. Active: the operand objects are applied, the status of the dependents is
    folded into the conditions and the mutating webhook configuration is
    installed only once the operand can serve it.
3. Deprovisioning: the DeletionOrchestrator tears the operand down.
4. Gone: nothing is left to do.

Each finalizer edit ends the pass with an immediate requeue so the edit is
committed before any object relying on it is created.
"""

# Standard
from typing import List, Optional
import copy

# First Party
import alog

# Local
from . import constants, resources, status
from .deletion import DeletionOrchestrator, is_monitoring_available
from .deploy_manager import DeployManagerBase, DeployMethod
from .deploy_manager.owner_references import set_owner_references
from .exceptions import assert_cluster, assert_precondition
from .finalizers import add_finalizer, remove_finalizer
from .log_format import LogLevelHandle
from .objects import ObjectSetBuilder

## Globals #####################################################################

log = alog.use_channel("CTRLR")

NOT_READY_MSG = "cluster pod placement config is not ready yet. re-queueing"

## Controller ##################################################################


class ClusterPodPlacementConfigController:
    """Reconciles the ClusterPodPlacementConfig named 'cluster' against the
    current state of the cluster
    """

    group = constants.GROUP
    version = constants.VERSION
    kind = constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND

    # The kinds of the dependents whose events trigger a reconcile of their
    # owner. The flag tells whether they live in the operator namespace.
    dependent_kinds = [
        (constants.APPS_API_VERSION, constants.DEPLOYMENT_KIND, True),
        (constants.APPS_API_VERSION, constants.DAEMONSET_KIND, True),
        (constants.CORE_API_VERSION, constants.SERVICE_KIND, True),
        (constants.CORE_API_VERSION, constants.SERVICE_ACCOUNT_KIND, True),
        (constants.RBAC_API_VERSION, constants.ROLE_KIND, True),
        (constants.RBAC_API_VERSION, constants.ROLE_BINDING_KIND, True),
        (constants.RBAC_API_VERSION, constants.CLUSTER_ROLE_KIND, False),
        (constants.RBAC_API_VERSION, constants.CLUSTER_ROLE_BINDING_KIND, False),
        (
            constants.ADMISSION_API_VERSION,
            constants.MUTATING_WEBHOOK_CONFIGURATION_KIND,
            False,
        ),
    ]

    ## Construction ############################################################

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        builder: Optional[ObjectSetBuilder] = None,
        log_level: Optional[LogLevelHandle] = None,
        deletion: Optional[DeletionOrchestrator] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used for all reads and writes
            builder:  Optional[ObjectSetBuilder]
                Produces the dependent objects. Defaults to the objects of the
                configured operator namespace and operand image
            log_level:  Optional[LogLevelHandle]
                The handle used to apply the logVerbosity of the singleton
            deletion:  Optional[DeletionOrchestrator]
                The teardown sequence. Defaults to one sharing the deploy
                manager and builder
        """
        self.deploy_manager = deploy_manager
        self.builder = builder or ObjectSetBuilder()
        self.log_level = log_level or LogLevelHandle()
        self.deletion = deletion or DeletionOrchestrator(
            deploy_manager, self.builder, status_writer=self.refresh_status
        )

    @classmethod
    def __str__(cls):
        """Stringify with the GVK"""
        return f"Controller({cls.group}/{cls.version}/{cls.kind})"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    ## Reconcile ###############################################################

    def reconcile(self, name: str) -> bool:
        """Run one reconcile pass for the named ClusterPodPlacementConfig

        Args:
            name:  str
                The name of the ClusterPodPlacementConfig

        Returns:
            requeue:  bool
                True when a finalizer was edited and the object must be
                reconciled again right away

        Raises:
            BarrierError: The teardown waits on the cluster
            PreconditionError: The operand is still progressing
            ClusterError: A read or write against the cluster failed
            OwnerReferenceError: Owner references could not be set
        """
        if name != constants.SINGLETON_NAME:
            log.warning(
                "Ignoring %s [%s]. Only [%s] is reconciled",
                self.kind,
                name,
                constants.SINGLETON_NAME,
            )
            return False

        cppc = self._get_cppc(name)
        if cppc is None:
            log.debug("%s [%s] not found. Nothing to do", self.kind, name)
            return False

        state = resources.lifecycle_state(cppc)
        log.debug("%s [%s] is %s", self.kind, name, state.value)

        if state is resources.LifecycleState.GONE:
            log.debug2("The primary finalizer was already removed")
            return False

        if state is resources.LifecycleState.DEPROVISIONING:
            self.deletion.run(cppc)
            return False

        if state is resources.LifecycleState.UNINITIALIZED:
            log.info("Adding the primary finalizer to [%s]", name)
            add_finalizer(self.deploy_manager, cppc, constants.PRIMARY_FINALIZER)
            return True

        if resources.exec_format_error_monitor_enabled(cppc) and (
            self._ensure_plugin_finalizers(cppc)
        ):
            return True

        flags = self.collect_status(cppc)
        return self._reconcile_active(cppc, flags)

    ## Status ##################################################################

    def collect_status(self, cppc: dict) -> status.StatusFlags:
        """Read the dependents and fold their state into the status flags. A
        dependent that is not found is simply not available.
        """
        deprovisioning = resources.is_being_deleted(cppc)
        controller = self._get(
            self.builder.deployment_ref(constants.POD_PLACEMENT_CONTROLLER_NAME)
        )

        # A controller deployment deleted out from under an active singleton
        # must be able to go away so that it gets recreated
        if (
            not deprovisioning
            and controller is not None
            and resources.is_being_deleted(controller)
        ):
            log.info(
                "Removing the primary finalizer from the deleted %s deployment",
                constants.POD_PLACEMENT_CONTROLLER_NAME,
            )
            remove_finalizer(
                self.deploy_manager, controller, constants.PRIMARY_FINALIZER
            )

        webhook = self._get(
            self.builder.deployment_ref(constants.POD_PLACEMENT_WEBHOOK_NAME)
        )
        hook = self._get(self.builder.mutating_webhook_configuration_ref())

        flags = status.build_flags(
            controller_available=status.is_deployment_available(controller),
            webhook_available=status.is_deployment_available(webhook),
            controller_up_to_date=status.is_deployment_up_to_date(controller),
            webhook_up_to_date=status.is_deployment_up_to_date(webhook),
            hook_available=hook is not None,
            deprovisioning=deprovisioning,
        )
        log.debug2("Status flags: %s", flags)
        return flags

    def write_status(self, cppc: dict, flags: status.StatusFlags) -> bool:
        """Write the conditions for the given flags onto the singleton

        Returns:
            changed:  bool
                False if nothing besides timestamps would change
        """
        current_status = cppc.get("status") or {}
        new_status = status.build_status(current_status, flags)
        if not status.status_changed(current_status, new_status):
            log.debug2("Status unchanged for [%s]", resources.get_name(cppc))
            return False
        log.debug3("New status: %s", new_status)
        success, changed = self.deploy_manager.set_status(
            kind=self.kind,
            name=resources.get_name(cppc),
            namespace=None,
            status=new_status,
            api_version=self.api_version,
        )
        assert_cluster(
            success, f"Failed to update the status of [{resources.get_name(cppc)}]"
        )
        return changed

    def refresh_status(self, cppc: dict):
        """Collect the status of the dependents and write it"""
        self.write_status(cppc, self.collect_status(cppc))

    ## Implementation Details ##################################################

    def _ensure_plugin_finalizers(self, cppc: dict) -> bool:
        """Add the plugin finalizer to the singleton, then to the plugin
        deployment once it exists

        Returns:
            changed:  bool
                True if a finalizer was added
        """
        if not resources.has_finalizer(cppc, constants.PLUGIN_FINALIZER):
            log.info("Adding the plugin finalizer to [%s]", resources.get_name(cppc))
            add_finalizer(self.deploy_manager, cppc, constants.PLUGIN_FINALIZER)
            return True

        handler = self._get(
            self.builder.deployment_ref(constants.ENOEXEC_CONTROLLER_NAME)
        )
        if handler is None:
            log.debug2(
                "The %s deployment does not exist yet",
                constants.ENOEXEC_CONTROLLER_NAME,
            )
            return False
        if add_finalizer(self.deploy_manager, handler, constants.PLUGIN_FINALIZER):
            log.info(
                "Added the plugin finalizer to the %s deployment",
                constants.ENOEXEC_CONTROLLER_NAME,
            )
            return True
        return False

    def _reconcile_active(self, cppc: dict, flags: status.StatusFlags) -> bool:
        self.log_level.apply(resources.log_verbosity(cppc))

        self._with_status(cppc, flags, self._ensure_namespace_labels)

        objects = self.builder.primary_objects(cppc)
        plugin_enabled = resources.exec_format_error_monitor_enabled(cppc)
        if plugin_enabled:
            objects += self.builder.plugin_objects(cppc)
        elif resources.has_finalizer(cppc, constants.PLUGIN_FINALIZER):
            self.deletion.teardown_plugin(cppc)
            return True

        if flags.can_deploy_hook:
            objects.append(self.builder.mutating_webhook_configuration(cppc))
        elif not flags.hook_not_available:
            self._delete_hook()

        if is_monitoring_available(self.deploy_manager, self.builder):
            log.debug("Adding the monitoring objects")
            objects += self.builder.primary_monitoring_objects()
            if plugin_enabled:
                objects += self.builder.plugin_monitoring_objects()
        else:
            log.debug(
                "%s is not available. Skipping the monitoring objects",
                constants.SERVICE_MONITORS_CRD_NAME,
            )

        self._with_status(
            cppc, flags, set_owner_references, self.deploy_manager, cppc, objects
        )
        self._with_status(cppc, flags, self._apply, objects)

        self.write_status(cppc, flags)
        assert_precondition(not flags.progressing, NOT_READY_MSG)
        return False

    def _with_status(self, cppc: dict, flags: status.StatusFlags, func, *args):
        """Run the given step and write the status before surfacing its
        failure
        """
        try:
            return func(*args)
        except Exception:
            try:
                self.write_status(cppc, flags)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Failed to update the status: %s", err)
            raise

    def _ensure_namespace_labels(self):
        ref = self.builder.namespace_ref()
        namespace = self._get(ref)
        assert_cluster(
            namespace is not None,
            f"Operator namespace [{self.builder.namespace}] not found",
        )
        labels = dict(namespace.get("metadata", {}).get("labels") or {})
        required = self.builder.namespace_labels()
        if all(labels.get(key) == value for key, value in required.items()):
            log.debug2("Namespace labels already in place")
            return
        log.debug("Updating the labels of namespace [%s]", self.builder.namespace)
        updated = copy.deepcopy(namespace)
        labels.update(required)
        updated["metadata"]["labels"] = labels
        success, _ = self.deploy_manager.deploy(
            [updated], manage_owner_references=False, method=DeployMethod.REPLACE
        )
        assert_cluster(success, "Failed to update the operator namespace labels")

    def _apply(self, objects: List[dict]):
        log.debug("Applying %d objects", len(objects))
        success, changed = self.deploy_manager.deploy(
            objects, manage_owner_references=False
        )
        assert_cluster(success, "Failed to apply the operand objects")
        log.debug2("Apply changed objects: %s", changed)

    def _delete_hook(self):
        """Remove the hook registration while the operand cannot serve it"""
        log.info(
            "Deleting the mutating webhook configuration as the operand is not "
            "ready to serve the admission requests"
        )
        success, _ = self.deploy_manager.disable(
            [self.builder.mutating_webhook_configuration_ref()]
        )
        if not success:
            log.warning("Failed to delete the mutating webhook configuration")

    def _get_cppc(self, name: str) -> Optional[dict]:
        success, content = self.deploy_manager.get_object_current_state(
            kind=self.kind, name=name, api_version=self.api_version
        )
        assert_cluster(success, f"Failed to fetch {self.kind} [{name}]")
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
