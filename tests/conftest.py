"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from multiarch_tuning.test_helpers.helpers import configure_logging
from multiarch_tuning.watch_manager.base import WatchManagerBase

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture(autouse=True)
def reset_watches():
    """Watch managers register themselves globally, so each test starts with
    an empty registry
    """
    WatchManagerBase._ALL_WATCHES.clear()
    yield
    WatchManagerBase._ALL_WATCHES.clear()
