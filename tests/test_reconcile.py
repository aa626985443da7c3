"""Tests for the ReconcileManager"""

# Standard
from datetime import timedelta
from unittest import mock

# Third Party
import pytest

# First Party
import aconfig

# Local
from multiarch_tuning import constants
from multiarch_tuning.controller import ClusterPodPlacementConfigController
from multiarch_tuning.deletion import DeletionStage
from multiarch_tuning.deploy_manager import DryRunDeployManager, OpenshiftDeployManager
from multiarch_tuning.exceptions import (
    BarrierError,
    ClusterError,
    ConfigError,
    PreconditionError,
)
from multiarch_tuning.reconcile import (
    ReconcileManager,
    ReconciliationResult,
    RequeueParams,
)
from multiarch_tuning.test_helpers.helpers import (
    MockDeployManager,
    library_config,
    make_controller,
    make_cppc,
    make_log_level,
    make_namespace,
)

## Helpers #####################################################################


def setup_manager(*resources, controller_error=None):
    dm = MockDeployManager(resources=[make_namespace()] + list(resources))
    controller = make_controller(dm)
    if controller_error is not None:
        controller.reconcile = mock.Mock(side_effect=controller_error)
    return ReconcileManager(controller=controller, log_level=make_log_level())


def cppc_ref(name=constants.SINGLETON_NAME):
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
        "metadata": {"name": name},
    }


## Construction ################################################################


def test_construct_defaults():
    """Make sure that a reconcile manager can be constructed with its default
    args
    """
    with library_config(dry_run=False):
        rm = ReconcileManager(log_level=make_log_level())
    assert isinstance(rm.deploy_manager, OpenshiftDeployManager)
    assert isinstance(rm.controller, ClusterPodPlacementConfigController)
    assert rm.controller.deploy_manager is rm.deploy_manager


def test_construct_input_args():
    dm = MockDeployManager()
    rm = ReconcileManager(deploy_manager=dm, log_level=make_log_level())
    assert rm.deploy_manager is dm
    assert rm.controller.deploy_manager is dm


def test_construct_with_controller():
    """The controller's deploy manager wins"""
    dm = MockDeployManager()
    controller = make_controller(dm)
    rm = ReconcileManager(deploy_manager=MockDeployManager(), controller=controller)
    assert rm.controller is controller
    assert rm.deploy_manager is dm


def test_requeue_params_default():
    with library_config(requeue_after_seconds=5):
        assert RequeueParams().requeue_after == timedelta(seconds=5)


## parse_manifest ##############################################################


@pytest.mark.parametrize(
    ["resource", "raises"],
    [
        [cppc_ref(), False],
        [aconfig.Config(cppc_ref(), override_env_vars=False), False],
        [{"apiVersion": "v1", "kind": "Pod"}, True],
        [{"metadata": {"name": ""}}, True],
        ["BadValue", True],
    ],
)
def test_parse_manifest(resource, raises):
    """Ensure the ReconcileManager can parse a manifest"""
    if raises:
        with pytest.raises(ValueError):
            ReconcileManager.parse_manifest(resource)
    else:
        manifest = ReconcileManager.parse_manifest(resource)
        assert manifest.metadata.name == constants.SINGLETON_NAME


## configure_logging ###########################################################


def test_configure_logging():
    """Make sure the resource and the id are handed to the log level handle"""
    log_level = mock.Mock()
    rm = ReconcileManager(deploy_manager=MockDeployManager(), log_level=log_level)
    manifest = ReconcileManager.parse_manifest(cppc_ref())
    rm.configure_logging(manifest, "id")
    log_level.set_context.assert_called_once_with(manifest, "id")


## generate_id #################################################################


def test_generate_id_uniq():
    """Make sure that two reconciliation IDs don't match"""
    rm = ReconcileManager(deploy_manager=MockDeployManager())
    first = rm.generate_id()
    assert len(first) == 22
    assert first != rm.generate_id()


## setup_deploy_manager ########################################################


@pytest.mark.parametrize(
    ["dry_run", "expected"],
    [
        [True, DryRunDeployManager],
        [False, OpenshiftDeployManager],
    ],
)
def test_setup_deploy_manager(dry_run, expected):
    """Test config settings for deploy manager"""
    with library_config(dry_run=dry_run):
        assert isinstance(ReconcileManager.setup_deploy_manager(), expected)


## reconcile ###################################################################


def test_reconcile_finalizer_requeues_immediately():
    rm = setup_manager(make_cppc())
    result = rm.reconcile(cppc_ref())
    assert result.requeue
    assert result.requeue_params.requeue_after == timedelta()
    assert result.exception is None


def test_reconcile_nothing_to_do():
    rm = setup_manager()
    result = rm.reconcile(cppc_ref())
    assert not result.requeue
    assert result.exception is None


def test_reconcile_raises():
    rm = setup_manager(make_cppc(finalizers=[constants.PRIMARY_FINALIZER]))
    with pytest.raises(PreconditionError):
        rm.reconcile(cppc_ref())


## safe_reconcile ##############################################################


@pytest.mark.parametrize(
    "error",
    [
        PreconditionError("not ready"),
        BarrierError("waiting", DeletionStage.AWAITING_POD_UNGATING),
        ClusterError("conflict"),
        ConfigError("bad config"),
        RuntimeError("unexpected"),
    ],
)
def test_safe_reconcile_errors(error):
    """Make sure every failure is turned into a requeue carrying the error"""
    rm = setup_manager(make_cppc(), controller_error=error)
    result = rm.safe_reconcile(cppc_ref())
    assert isinstance(result, ReconciliationResult)
    assert result.requeue
    assert result.exception is error


def test_safe_reconcile_parse_error():
    rm = setup_manager()
    result = rm.safe_reconcile({"kind": "NoName"})
    assert result.requeue
    assert isinstance(result.exception, ValueError)


def test_safe_reconcile_success():
    rm = setup_manager(make_cppc())
    result = rm.safe_reconcile(cppc_ref())
    assert result.requeue
    assert result.exception is None
