"""
Tests for the finalizer helpers
"""

# Third Party
import pytest

# Local
from multiarch_tuning import constants, finalizers
from multiarch_tuning.deploy_manager import DeployMethod
from multiarch_tuning.exceptions import ClusterError
from multiarch_tuning.test_helpers.helpers import MockDeployManager, make_cppc


def test_add_finalizer():
    """Make sure the finalizer is appended and written with a replace"""
    dm = MockDeployManager(resources=[make_cppc()])
    cppc = dm.get_cppc()
    assert finalizers.add_finalizer(dm, cppc, constants.PRIMARY_FINALIZER)
    assert dm.get_cppc()["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
    assert dm.deploy.call_args.kwargs["method"] is DeployMethod.REPLACE
    assert dm.deploy.call_args.kwargs["manage_owner_references"] is False

    # The given manifest is not changed in place
    assert "finalizers" not in cppc["metadata"]


def test_add_finalizer_already_present():
    """Make sure nothing is written when the finalizer is present"""
    dm = MockDeployManager(
        resources=[make_cppc(finalizers=[constants.PRIMARY_FINALIZER])]
    )
    assert not finalizers.add_finalizer(
        dm, dm.get_cppc(), constants.PRIMARY_FINALIZER
    )
    dm.deploy.assert_not_called()


def test_remove_finalizer_keeps_others():
    """Make sure only the given finalizer is removed"""
    dm = MockDeployManager(
        resources=[
            make_cppc(
                finalizers=[constants.PRIMARY_FINALIZER, constants.PLUGIN_FINALIZER]
            )
        ]
    )
    assert finalizers.remove_finalizer(dm, dm.get_cppc(), constants.PLUGIN_FINALIZER)
    assert dm.get_cppc()["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
    assert not finalizers.remove_finalizer(
        dm, dm.get_cppc(), constants.PLUGIN_FINALIZER
    )


def test_remove_last_finalizer_of_deleted_object_erases_it():
    """Make sure removing the last finalizer lets a deleted object go"""
    dm = MockDeployManager(
        resources=[make_cppc(finalizers=[constants.PRIMARY_FINALIZER], deleting=True)]
    )
    finalizers.remove_finalizer(dm, dm.get_cppc(), constants.PRIMARY_FINALIZER)
    assert dm.get_cppc() is None


def test_finalizer_write_failure():
    """Make sure a failed write surfaces as a ClusterError"""
    dm = MockDeployManager(resources=[make_cppc()], deploy_fail=True)
    with pytest.raises(ClusterError):
        finalizers.add_finalizer(dm, dm.get_cppc(), constants.PRIMARY_FINALIZER)


def test_finalizer_stale_write_conflicts():
    """Make sure an edit based on a stale read does not overwrite a newer
    write
    """
    dm = MockDeployManager(resources=[make_cppc()], strict_resource_version=True)
    stale = dm.get_cppc()
    finalizers.add_finalizer(dm, dm.get_cppc(), constants.PRIMARY_FINALIZER)
    with pytest.raises(ClusterError):
        finalizers.add_finalizer(dm, stale, constants.PLUGIN_FINALIZER)
    assert dm.get_cppc()["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
