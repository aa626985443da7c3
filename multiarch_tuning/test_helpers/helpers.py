"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os
import uuid

# First Party
import alog

# Local
from multiarch_tuning import constants
from multiarch_tuning.cmd.run_operator_cmd import RunOperatorCmd
from multiarch_tuning.config import library_config as config_detail_dict
from multiarch_tuning.controller import ClusterPodPlacementConfigController
from multiarch_tuning.deletion import DeletionOrchestrator
from multiarch_tuning.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from multiarch_tuning.deploy_manager.openshift_deploy_manager import (
    OpenshiftDeployManager,
)
from multiarch_tuning.log_format import LogLevelHandle
from multiarch_tuning.objects import ObjectSetBuilder
from multiarch_tuning.webhook.admission import (
    ADMISSION_API_VERSION,
    ADMISSION_REVIEW_KIND,
)

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test-multiarch-tuning"
TEST_IMAGE = "test-registry/multiarch-tuning-operator:test"
SOME_OTHER_NAMESPACE = "somewhere"

## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield

    # Revert to the old values
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Failures ####################################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


def fail_for_kind(kind: str, fail_val):
    """Fail flag that only fails calls made for the given kind"""

    def fail_flag(*args, **kwargs):
        call_kind = kwargs.get("kind", args[0] if args else None)
        if isinstance(call_kind, list):
            call_kind = call_kind[0].get("kind") if call_kind else None
        if call_kind == kind:
            return fail_val
        return None

    return fail_flag


## Deploy Managers #############################################################


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        filter_fail=False,
        filter_raise=False,
        watch_fail=False,
        watch_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        resource_dir=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        resources = list(resources or [])
        # Parse pre-populated resources if needed
        resources = resources + RunOperatorCmd._parse_resource_dir(resource_dir)

        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources, **kwargs)

        self.watch_fail = "assert" if watch_raise else watch_fail
        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.filter_fail = "assert" if filter_raise else filter_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects, [])
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def get_ref(self, ref: dict) -> Optional[dict]:
        """Look up the object named by a reference manifest"""
        return self.get_obj(
            ref["kind"],
            ref["metadata"]["name"],
            ref["metadata"].get("namespace"),
            ref["apiVersion"],
        )

    def get_cppc(self, name=constants.SINGLETON_NAME) -> Optional[dict]:
        return self.get_obj(
            constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
            name,
            api_version=constants.API_VERSION,
        )


class MockedOpenshiftDeployManager(OpenshiftDeployManager):
    """Override class that uses a mocked DynamicClient. The resource handles
    returned by client.resources.get are MagicMocks keyed by kind so tests can
    program their answers.
    """

    def __init__(self, owner_cr=None):
        super().__init__(owner_cr)
        self.handles = {}

    def handle(self, kind: str) -> mock.MagicMock:
        """Get the mocked resource handle for the given kind"""
        return self.handles.setdefault(kind, mock.MagicMock(name=f"{kind}Handle"))

    def _setup_client(self):
        client = mock.MagicMock(name="DynamicClient")
        client.resources.get.side_effect = lambda kind, **_: self.handle(kind)
        return client


## Factories ###################################################################


def make_builder(namespace=TEST_NAMESPACE, image=TEST_IMAGE) -> ObjectSetBuilder:
    return ObjectSetBuilder(namespace=namespace, image=image)


def make_log_level() -> LogLevelHandle:
    """A log level handle that does not touch the global logging config"""
    return LogLevelHandle(configure=mock.Mock(), log_json=False)


def make_controller(
    deploy_manager,
    builder: Optional[ObjectSetBuilder] = None,
    deletion: Optional[DeletionOrchestrator] = None,
) -> ClusterPodPlacementConfigController:
    return ClusterPodPlacementConfigController(
        deploy_manager,
        builder=builder or make_builder(),
        log_level=make_log_level(),
        deletion=deletion,
    )


def make_cppc(
    name=constants.SINGLETON_NAME,
    finalizers: Optional[List[str]] = None,
    plugin_enabled=False,
    platforms: Optional[List[dict]] = None,
    log_verbosity: Optional[str] = None,
    deleting=False,
    **spec,
) -> dict:
    """Build a ClusterPodPlacementConfig manifest"""
    spec = copy.deepcopy(spec)
    if plugin_enabled:
        spec.setdefault("plugins", {})[constants.EXEC_FORMAT_ERROR_MONITOR_KEY] = {
            "enabled": True
        }
    if platforms is not None:
        spec.setdefault("plugins", {})[constants.NODE_AFFINITY_SCORING_KEY] = {
            "enabled": True,
            "platforms": platforms,
        }
    if log_verbosity:
        spec["logVerbosity"] = log_verbosity
    metadata = {"name": name}
    if finalizers:
        metadata["finalizers"] = list(finalizers)
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
        "metadata": metadata,
        "spec": spec,
    }


def make_ppc(
    name="ppc",
    namespace="app",
    priority: Optional[int] = None,
    platforms: Optional[List[dict]] = None,
    scoring_enabled: Optional[bool] = None,
) -> dict:
    """Build a PodPlacementConfig manifest"""
    spec = {}
    if priority is not None:
        spec["priority"] = priority
    if platforms is not None or scoring_enabled is not None:
        plugin = {"enabled": True if scoring_enabled is None else scoring_enabled}
        if platforms is not None:
            plugin["platforms"] = platforms
        spec["plugins"] = {constants.NODE_AFFINITY_SCORING_KEY: plugin}
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.POD_PLACEMENT_CONFIG_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_namespace(name=TEST_NAMESPACE, labels: Optional[dict] = None) -> dict:
    namespace = {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.NAMESPACE_KIND,
        "metadata": {"name": name},
    }
    if labels:
        namespace["metadata"]["labels"] = dict(labels)
    return namespace


def make_pod(name="app-pod", namespace="app", gated=True, phase="Pending") -> dict:
    spec = {"containers": [{"name": "app", "image": "app:latest"}]}
    if gated:
        spec["schedulingGates"] = [{"name": constants.SCHEDULING_GATE_NAME}]
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.POD_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
        "status": {"phase": phase},
    }


def make_enoexec_event(name="event", namespace=TEST_NAMESPACE) -> dict:
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.ENOEXEC_EVENT_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
    }


def make_service_monitors_crd() -> dict:
    ref = ObjectSetBuilder.service_monitors_crd_ref()
    return {
        "apiVersion": ref["apiVersion"],
        "kind": ref["kind"],
        "metadata": {"name": ref["metadata"]["name"]},
    }


## Simulations #################################################################


def simulate_rollout(deploy_manager, builder: ObjectSetBuilder, name: str) -> bool:
    """Set the status of the named deployment to a fully rolled out state

    Returns:
        found:  bool
            False if the deployment does not exist
    """
    ref = builder.deployment_ref(name)
    deployment = DryRunDeployManager.get_object_current_state(
        deploy_manager,
        kind=ref["kind"],
        name=name,
        namespace=builder.namespace,
        api_version=ref["apiVersion"],
    )[1]
    if deployment is None:
        return False
    replicas = deployment["spec"]["replicas"]
    DryRunDeployManager.set_status(
        deploy_manager,
        kind=ref["kind"],
        name=name,
        namespace=builder.namespace,
        status={
            "replicas": replicas,
            "updatedReplicas": replicas,
            "availableReplicas": replicas,
            "readyReplicas": replicas,
            "observedGeneration": deployment["metadata"]["generation"],
        },
        api_version=ref["apiVersion"],
    )
    return True


def admission_review(
    operation: str,
    obj: Optional[dict] = None,
    old: Optional[dict] = None,
    namespace: Optional[str] = None,
    uid: Optional[str] = None,
) -> dict:
    """Build an AdmissionReview request body"""
    request = {
        "uid": uid or str(uuid.uuid4()),
        "operation": operation,
        "object": obj,
        "oldObject": old,
    }
    manifest = obj or old or {}
    name = manifest.get("metadata", {}).get("name")
    if name:
        request["name"] = name
    namespace = namespace or manifest.get("metadata", {}).get("namespace")
    if namespace:
        request["namespace"] = namespace
    return {
        "apiVersion": ADMISSION_API_VERSION,
        "kind": ADMISSION_REVIEW_KIND,
        "request": request,
    }
