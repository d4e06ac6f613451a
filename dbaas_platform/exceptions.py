"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class PlatformError(Exception):
    """Base class for all platform installer exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should mark the
        component as Failed rather than InProgress
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class PlatformFatalError(PlatformError):
    """A PlatformFatalError indicates a failure that will not resolve by simply
    running the same step again. The component is reported as Failed.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(PlatformFatalError):
    """Exception caused by invalid library or parent-object configuration"""


class ClusterError(PlatformFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class TemplateError(PlatformFatalError):
    """Exception caused when bundled content cannot be parsed into a valid
    object. This is terminal until the content is corrected.
    """


class OwnershipError(PlatformFatalError):
    """Exception caused when an object is already controlled by a different
    owner and cannot be adopted
    """


## Expected Errors #############################################################


class PlatformExpectedError(PlatformError):
    """A PlatformExpectedError indicates a condition that stops the current
    step but is expected to resolve on a subsequent reconciliation. The
    component is reported as InProgress.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ConflictError(PlatformExpectedError):
    """Exception raised when an update is rejected because it was based on a
    stale read of the object
    """


class PreconditionError(PlatformExpectedError):
    """Exception caused when an expected precondition is not met"""


class VerificationError(PlatformExpectedError):
    """Exception caused when a desired verification state is not reached"""


class ReconcileCancelledError(PlatformExpectedError):
    """Exception raised when the caller cancelled the pass or its deadline
    expired
    """


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError"""
    if not condition:
        raise PreconditionError(message)


def assert_verified(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a VerificationError. This
    should be used when verifying the state of a resource in the cluster.
    """
    if not condition:
        raise VerificationError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when a value in the library config or the parent spec is invalid.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    object) must succeed.
    """
    if not condition:
        raise ClusterError(message)
