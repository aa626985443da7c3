"""
Tests for the common utilities
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from multiarch_tuning import utils
from multiarch_tuning.test_helpers.helpers import library_config

## nested_get ##################################################################


def test_nested_get():
    """Make sure values are found and missing keys fall back to the default"""
    dct = {"spec": {"plugins": {"foo": {"enabled": True}}, "empty": None}}
    assert utils.nested_get(dct, "spec.plugins.foo.enabled") is True
    assert utils.nested_get(dct, "spec.plugins.bar.enabled") is None
    assert utils.nested_get(dct, "spec.plugins.bar.enabled", False) is False
    assert utils.nested_get(dct, "spec.empty.value", "dflt") == "dflt"


def test_nested_get_non_dict_intermediate():
    """Make sure an intermediate value that is not a dict raises"""
    with pytest.raises(TypeError):
        utils.nested_get({"spec": {"priority": 3}}, "spec.priority.value")


## get_operator_namespace ######################################################


def test_get_operator_namespace_configured():
    """Make sure the configured namespace wins"""
    with library_config(operator_namespace="configured"):
        assert utils.get_operator_namespace() == "configured"


def test_get_operator_namespace_from_service_account(tmp_path):
    """Make sure the service account namespace file is used when no namespace
    is configured
    """
    namespace_file = tmp_path / "namespace"
    namespace_file.write_text("from-file\n", encoding="utf-8")
    with library_config(operator_namespace=""):
        with mock.patch.object(
            utils, "SERVICE_ACCOUNT_NAMESPACE_FILE", str(namespace_file)
        ):
            assert utils.get_operator_namespace() == "from-file"


def test_get_operator_namespace_default(tmp_path):
    """Make sure that "default" is used as the last resort"""
    with library_config(operator_namespace=""):
        with mock.patch.object(
            utils, "SERVICE_ACCOUNT_NAMESPACE_FILE", str(tmp_path / "missing")
        ):
            assert utils.get_operator_namespace() == "default"
