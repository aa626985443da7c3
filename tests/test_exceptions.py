"""
Tests for the custom exceptions
"""

# Third Party
import pytest

# Local
from multiarch_tuning import exceptions
from multiarch_tuning.deletion import DeletionStage


def test_fatal_and_expected_errors():
    """Make sure the fatal flag is static per error family"""
    assert exceptions.ConfigError("bad").is_fatal_error
    assert not exceptions.PreconditionError("wait").is_fatal_error
    assert not exceptions.ClusterError("transient").is_fatal_error
    assert not exceptions.BarrierError("barrier").is_fatal_error


def test_barrier_error_carries_stage():
    """Make sure the stage a barrier holds is kept on the error"""
    err = exceptions.BarrierError("waiting", DeletionStage.AWAITING_POD_UNGATING)
    assert err.stage is DeletionStage.AWAITING_POD_UNGATING
    assert str(err) == "waiting"
    assert isinstance(err, exceptions.MultiarchExpectedError)


def test_owner_reference_error_aggregates():
    """Make sure all the aggregated errors show up in the message"""
    err = exceptions.OwnerReferenceError([ValueError("one"), RuntimeError("two")])
    assert len(err.errors) == 2
    assert str(err) == "one; two"


@pytest.mark.parametrize(
    ["assertion", "error_type"],
    [
        (exceptions.assert_precondition, exceptions.PreconditionError),
        (exceptions.assert_config, exceptions.ConfigError),
        (exceptions.assert_cluster, exceptions.ClusterError),
        (exceptions.assert_valid, exceptions.ValidationError),
    ],
)
def test_assertions(assertion, error_type):
    """Make sure each assertion helper raises its error only when false"""
    assertion(True, "fine")
    with pytest.raises(error_type, match="broken"):
        assertion(False, "broken")


def test_validation_error_is_value_error():
    """Admission failures are value errors"""
    assert issubclass(exceptions.ValidationError, ValueError)
