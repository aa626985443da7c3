"""
Tests for the WatchManagerBase base class
"""

# Standard
import threading
import time

# Third Party
import pytest

# Local
from multiarch_tuning import constants
from multiarch_tuning.controller import ClusterPodPlacementConfigController
from multiarch_tuning.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_builder,
    make_log_level,
)
from multiarch_tuning.watch_manager.base import WatchManagerBase

## Helpers #####################################################################


class DummyWatchManager(WatchManagerBase):
    def __init__(
        self,
        controller_type=ClusterPodPlacementConfigController,
        watch_success=True,
        stop_wait=0.0,
    ):
        super().__init__(
            controller_type, builder=make_builder(), log_level=make_log_level()
        )
        self.watching = False
        self.watch_success = watch_success
        self.stop_wait = stop_wait

    def watch(self):
        if self.watch_success:
            self.watching = True
            return True
        return False

    def wait(self):
        while self.watching:
            time.sleep(0.05)

    def stop(self):
        if self.stop_wait:
            threading.Thread(target=self._delayed_stop).start()
        else:
            self.watching = False

    def _delayed_stop(self):
        time.sleep(self.stop_wait)
        self.watching = False


class OtherController(ClusterPodPlacementConfigController):
    group = "other.example.com"
    version = "v1"
    kind = "Widget"
    dependent_kinds = []


## Construction ################################################################


def test_constructor_properties():
    """Test that the base class properties are set on the watch manager"""
    wm = DummyWatchManager()
    assert wm.controller_type == ClusterPodPlacementConfigController
    assert wm.group == constants.GROUP
    assert wm.version == constants.VERSION
    assert wm.kind == constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND
    assert wm.api_version == constants.API_VERSION


def test_constructor_registrations():
    """Test that all constructed watch managers get registered"""
    wm1 = DummyWatchManager()
    wm2 = DummyWatchManager(OtherController)
    assert len(WatchManagerBase._ALL_WATCHES) == 2
    assert str(wm1) in WatchManagerBase._ALL_WATCHES
    assert str(wm2) in WatchManagerBase._ALL_WATCHES


def test_constructor_no_duplicate_watches():
    DummyWatchManager()
    with pytest.raises(AssertionError):
        DummyWatchManager()


## watched_kinds ###############################################################


def test_watched_kinds():
    """The owner is watched cluster-wide, namespaced dependents only in the
    operator namespace
    """
    watched = DummyWatchManager().watched_kinds()
    assert watched[0] == (
        constants.API_VERSION,
        constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
        None,
    )
    assert (
        constants.APPS_API_VERSION,
        constants.DEPLOYMENT_KIND,
        TEST_NAMESPACE,
    ) in watched
    assert (
        constants.RBAC_API_VERSION,
        constants.CLUSTER_ROLE_KIND,
        None,
    ) in watched
    assert len(watched) == 1 + len(ClusterPodPlacementConfigController.dependent_kinds)


def test_watched_kinds_no_dependents():
    assert DummyWatchManager(OtherController).watched_kinds() == [
        ("other.example.com/v1", "Widget", None)
    ]


## owner_names #################################################################


def test_owner_names_owner_kind():
    wm = DummyWatchManager()
    resource = {
        "apiVersion": constants.API_VERSION,
        "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
        "metadata": {"name": constants.SINGLETON_NAME},
    }
    assert wm.owner_names(resource) == [constants.SINGLETON_NAME]


def test_owner_names_dependent():
    """Only the owner references of the watched kind are followed"""
    wm = DummyWatchManager()
    resource = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": "dep",
            "namespace": TEST_NAMESPACE,
            "ownerReferences": [
                {
                    "apiVersion": constants.API_VERSION,
                    "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
                    "name": constants.SINGLETON_NAME,
                },
                {"apiVersion": "v1", "kind": "ConfigMap", "name": "other"},
            ],
        },
    }
    assert wm.owner_names(resource) == [constants.SINGLETON_NAME]


def test_owner_names_unowned():
    wm = DummyWatchManager()
    resource = {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "svc"}}
    assert wm.owner_names(resource) == []


## start_all / stop_all ########################################################


def test_start_stop_all_blocking():
    """Test that start_all blocks until stop_all stops every manager"""
    wm1 = DummyWatchManager()
    wm2 = DummyWatchManager(OtherController)

    # Run start_all in a thread so that we can stop it
    thrd = threading.Thread(target=WatchManagerBase.start_all)
    thrd.start()
    time.sleep(0.1)

    assert wm1.watching
    assert wm2.watching
    assert thrd.is_alive()

    WatchManagerBase.stop_all()
    assert not wm1.watching
    assert not wm2.watching
    thrd.join(timeout=1)
    assert not thrd.is_alive()


def test_stop_all_delayed_stop():
    wm = DummyWatchManager(stop_wait=0.1)
    wm.watch()
    WatchManagerBase.stop_all()
    assert not wm.watching


def test_start_all_blocking_failure():
    """Test that a manager failing to start shuts down the started ones"""
    # NOTE: the failure is on wm2 because it sorts second
    wm1 = DummyWatchManager()
    wm2 = DummyWatchManager(OtherController, watch_success=False)

    assert not WatchManagerBase.start_all()
    assert not wm1.watching
    assert not wm2.watching
