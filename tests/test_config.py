"""
Tests for the library config module

NOTE: Python makes it hard to change env vars in a way that will effect import
    time, so we're relying on the fact that aconfig is well tested and not
    actually validating the env-var override behavior!
"""

# Third Party
import pytest

# Local
from multiarch_tuning import config
from multiarch_tuning.test_helpers.helpers import library_config


def test_config_keys():
    """Make sure that the expected keys are present with the right types"""
    assert hasattr(config, "deploy_retries")
    assert isinstance(config.deploy_retries, int)
    assert isinstance(config.dry_run, bool)
    assert isinstance(config.reconcile.max_concurrent_reconciles, int)
    assert isinstance(config.webhook.port, int)


def test_config_missing_attribute():
    """Make sure that an unknown key raises an AttributeError"""
    with pytest.raises(AttributeError):
        config.not_a_config_key  # pylint: disable=pointless-statement


def test_library_config_override_and_revert():
    """Make sure that the library_config helper reverts its overrides"""
    original = config.dry_run
    with library_config(dry_run=not original, brand_new_key="value"):
        assert config.dry_run is not original
        assert config.brand_new_key == "value"
    assert config.dry_run is original
    with pytest.raises(AttributeError):
        config.brand_new_key  # pylint: disable=pointless-statement
