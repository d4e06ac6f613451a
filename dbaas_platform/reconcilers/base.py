"""
Base class for the per-platform reconcilers
"""

# Standard
from typing import List
import abc

# First Party
import alog

# Local
from ..platforms import PlatformConfig
from ..session import Session
from ..steps import STEP_TYPE, StepResult, run_steps

log = alog.use_channel("RECON")


class PlatformReconciler(abc.ABC):
    """A PlatformReconciler drives one platform component toward installed
    (reconcile) or removed (cleanup). Each direction is a fixed ordered list
    of idempotent steps run by the shared step sequencer.
    """

    def __init__(self, platform: PlatformConfig):
        """Construct with the immutable descriptor of the platform

        Args:
            platform:  PlatformConfig
                The descriptor this reconciler installs
        """
        self.platform = platform

    @property
    def name(self) -> str:
        """The name of the platform this reconciler manages"""
        return self.platform.name

    @abc.abstractmethod
    def install_steps(self) -> List[STEP_TYPE]:
        """The ordered steps that install the platform"""

    @abc.abstractmethod
    def cleanup_steps(self) -> List[STEP_TYPE]:
        """The ordered steps that remove the platform"""

    @alog.logged_function(log.debug)
    def reconcile(self, session: Session) -> StepResult:
        """Run the install steps

        Args:
            session:  Session
                The session for the current pass

        Returns:
            result:  StepResult
                Success once the platform is installed and verified
        """
        result = run_steps(session, self.install_steps())
        log.debug2("[%s] reconcile: %s", self.name, result.status.value)
        return result

    @alog.logged_function(log.debug)
    def cleanup(self, session: Session) -> StepResult:
        """Run the cleanup steps

        Args:
            session:  Session
                The session for the current pass

        Returns:
            result:  StepResult
                Success once every object the platform owns is gone
        """
        result = run_steps(session, self.cleanup_steps())
        log.debug2("[%s] cleanup: %s", self.name, result.status.value)
        return result

    def __repr__(self):
        return f"{type(self).__name__}({self.name})"
