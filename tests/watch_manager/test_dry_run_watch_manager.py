"""
Tests for the DryRunWatchManager. These run the full lifecycle of the
ClusterPodPlacementConfig against the in-memory cluster.
"""

# Third Party
import pytest

# Local
from multiarch_tuning import constants, status
from multiarch_tuning.controller import ClusterPodPlacementConfigController
from multiarch_tuning.deploy_manager import DryRunDeployManager
from multiarch_tuning.exceptions import PreconditionError
from multiarch_tuning.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_builder,
    make_cppc,
    make_log_level,
    make_namespace,
    simulate_rollout,
)
from multiarch_tuning.watch_manager import DryRunWatchManager

## Helpers #####################################################################


class AlwaysRequeueController(ClusterPodPlacementConfigController):
    kind = "AlwaysRequeue"
    calls = 0

    def reconcile(self, name):
        AlwaysRequeueController.calls += 1
        return True


class NeverReadyController(ClusterPodPlacementConfigController):
    kind = "NeverReady"

    def reconcile(self, name):
        raise PreconditionError("not ready")


def make_wm(controller_type=ClusterPodPlacementConfigController, resources=None):
    dm = DryRunDeployManager(resources=[make_namespace()] + list(resources or []))
    wm = DryRunWatchManager(
        controller_type,
        deploy_manager=dm,
        builder=make_builder(),
        log_level=make_log_level(),
    )
    assert wm.watch()
    return wm


def get_cppc(wm):
    return wm.deploy_manager.get_object_current_state(
        kind=constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
        name=constants.SINGLETON_NAME,
        api_version=constants.API_VERSION,
    )[1]


def get_in_namespace(wm, kind, name, api_version=constants.APPS_API_VERSION):
    return wm.deploy_manager.get_object_current_state(
        kind=kind, name=name, namespace=TEST_NAMESPACE, api_version=api_version
    )[1]


def get_hook(wm):
    return wm.deploy_manager.get_object_current_state(
        kind=constants.MUTATING_WEBHOOK_CONFIGURATION_KIND,
        name=constants.MUTATING_WEBHOOK_CONFIGURATION_NAME,
        api_version=constants.ADMISSION_API_VERSION,
    )[1]


def condition_status(wm, type_name):
    condition = status.get_condition(type_name, get_cppc(wm).get("status"))
    return condition and condition["status"]


def roll_out(wm):
    """Mark both operand deployments as rolled out and replay the held back
    requeues
    """
    for name in (
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        constants.POD_PLACEMENT_WEBHOOK_NAME,
    ):
        assert simulate_rollout(wm.deploy_manager, wm.builder, name)
    wm.requeue_all()


def deploy_cppc(wm, **kwargs):
    success, _ = wm.deploy_manager.deploy([make_cppc(**kwargs)])
    assert success


## Interface ###################################################################


def test_watch_twice():
    wm = make_wm()
    assert not wm.watch()


def test_events_ignored_after_stop():
    wm = make_wm()
    wm.stop()
    wm.wait()
    deploy_cppc(wm)
    assert not wm.results
    assert not get_cppc(wm)["metadata"].get("finalizers")


def test_unrelated_event_ignored():
    wm = make_wm()
    wm.deploy_manager.deploy(
        [
            {
                "apiVersion": constants.APPS_API_VERSION,
                "kind": constants.DEPLOYMENT_KIND,
                "metadata": {"name": "unowned", "namespace": TEST_NAMESPACE},
                "spec": {},
            }
        ]
    )
    assert not wm.results


def test_immediate_requeues_are_bounded():
    """A controller that always asks for an immediate requeue is held back
    after the configured number of passes
    """
    AlwaysRequeueController.calls = 0
    wm = make_wm(AlwaysRequeueController)
    wm.request(constants.SINGLETON_NAME)
    assert AlwaysRequeueController.calls == wm.max_immediate_requeues + 1
    assert wm.delayed == [constants.SINGLETON_NAME]


def test_failed_reconcile_delayed():
    wm = make_wm(NeverReadyController)
    wm.request(constants.SINGLETON_NAME)
    result = wm.results[constants.SINGLETON_NAME]
    assert result.requeue
    assert isinstance(result.exception, PreconditionError)
    assert wm.delayed == [constants.SINGLETON_NAME]

    # Replaying the requeue runs it once more and holds it back again
    wm.requeue_all()
    assert wm.delayed == [constants.SINGLETON_NAME]


## Lifecycle ###################################################################


def test_create_progresses():
    """Creating the singleton installs the operand but not the hook"""
    wm = make_wm()
    deploy_cppc(wm)

    cppc = get_cppc(wm)
    assert cppc["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
    for name in (
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        constants.POD_PLACEMENT_WEBHOOK_NAME,
    ):
        assert get_in_namespace(wm, constants.DEPLOYMENT_KIND, name) is not None
    assert get_hook(wm) is None
    assert condition_status(wm, status.PROGRESSING_CONDITION) == "True"
    assert wm.delayed == [constants.SINGLETON_NAME]


def test_rollout_becomes_available():
    wm = make_wm()
    deploy_cppc(wm)
    roll_out(wm)

    assert get_hook(wm) is not None
    assert condition_status(wm, status.AVAILABLE_CONDITION) == "True"
    assert condition_status(wm, status.PROGRESSING_CONDITION) == "False"
    assert not wm.delayed
    assert wm.results[constants.SINGLETON_NAME].exception is None


def test_plugin_enable_and_disable():
    """Toggling the plugin installs and then tears down its objects"""
    wm = make_wm()
    deploy_cppc(wm)
    roll_out(wm)

    # Enable
    deploy_cppc(wm, plugin_enabled=True, finalizers=[constants.PRIMARY_FINALIZER])
    roll_out(wm)
    cppc = get_cppc(wm)
    assert constants.PLUGIN_FINALIZER in cppc["metadata"]["finalizers"]
    handler = get_in_namespace(
        wm, constants.DEPLOYMENT_KIND, constants.ENOEXEC_CONTROLLER_NAME
    )
    assert handler is not None
    assert constants.PLUGIN_FINALIZER in handler["metadata"]["finalizers"]
    assert (
        get_in_namespace(
            wm, constants.DAEMONSET_KIND, constants.ENOEXEC_DAEMONSET_NAME
        )
        is not None
    )

    # Disable
    deploy_cppc(
        wm,
        finalizers=[constants.PRIMARY_FINALIZER],
        plugins={constants.EXEC_FORMAT_ERROR_MONITOR_KEY: {"enabled": False}},
    )
    roll_out(wm)
    cppc = get_cppc(wm)
    assert cppc["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
    assert (
        get_in_namespace(
            wm, constants.DEPLOYMENT_KIND, constants.ENOEXEC_CONTROLLER_NAME
        )
        is None
    )
    assert (
        get_in_namespace(
            wm, constants.DAEMONSET_KIND, constants.ENOEXEC_DAEMONSET_NAME
        )
        is None
    )
    assert condition_status(wm, status.AVAILABLE_CONDITION) == "True"


@pytest.mark.parametrize("rolled_out", [True, False])
def test_delete_erases_everything(rolled_out):
    """Deleting the singleton runs the teardown until it is erased"""
    wm = make_wm()
    deploy_cppc(wm)
    if rolled_out:
        roll_out(wm)

    success, _ = wm.deploy_manager.disable(
        [
            {
                "apiVersion": constants.API_VERSION,
                "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
                "metadata": {"name": constants.SINGLETON_NAME},
            }
        ]
    )
    assert success

    assert get_cppc(wm) is None
    assert get_hook(wm) is None
    for name in (
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        constants.POD_PLACEMENT_WEBHOOK_NAME,
    ):
        assert get_in_namespace(wm, constants.DEPLOYMENT_KIND, name) is None
    assert not wm.results[constants.SINGLETON_NAME].requeue

    # The operator namespace is left in place
    assert (
        wm.deploy_manager.get_object_current_state(
            kind=constants.NAMESPACE_KIND,
            name=TEST_NAMESPACE,
            api_version=constants.CORE_API_VERSION,
        )[1]
        is not None
    )
