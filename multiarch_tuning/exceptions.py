"""
This module implements custom exceptions
"""

# Standard
from typing import List, Optional

## Base Error ##################################################################


class MultiarchError(Exception):
    """Base class for all operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error indicates a problem
        that a retry alone will not resolve
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class MultiarchFatalError(MultiarchError):
    """A MultiarchFatalError indicates an unexpected failure that is not likely
    to resolve without a change to the configuration. The reconcile is still
    retried with backoff.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(MultiarchFatalError):
    """Exception caused during usage of user-provided configuration"""


## Expected Errors #############################################################


class MultiarchExpectedError(MultiarchError):
    """A MultiarchExpectedError indicates an expected failure condition that
    should cause a reconciliation to terminate, but is expected to resolve in a
    subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(MultiarchExpectedError):
    """Exception raised when an expected precondition is not met"""


class ClusterError(MultiarchExpectedError):
    """Exception raised when an operation against the cluster fails. These are
    transient (network, conflicts, rate limits) and retried with backoff.
    """


class BarrierError(MultiarchExpectedError):
    """Sentinel raised when a teardown barrier is not yet satisfied. It only
    exists to force a delayed retry of the reconcile.
    """

    def __init__(self, message: str = "", stage: Optional["DeletionStage"] = None):
        super().__init__(message)
        self.stage = stage


class OwnerReferenceError(MultiarchExpectedError):
    """Aggregate of the failures seen while setting owner references on the
    dependent resources
    """

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        super().__init__("; ".join(str(err) for err in self.errors))


## Admission Errors ############################################################


class ValidationError(ValueError):
    """Raised when an admitted object violates one of the invariants enforced
    at admission time. The message is returned as the denial reason.
    """


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError"""
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when the operator or the singleton configuration holds a value that
    cannot be used.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching the current state
    of a dependent) must succeed to continue.
    """
    if not condition:
        raise ClusterError(message)


def assert_valid(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ValidationError"""
    if not condition:
        raise ValidationError(message)
