"""
The step sequencer shared by every platform reconciler.

A step is a callable taking the Session and returning an InstallStatus.
Raising is the error channel: expected errors (conflicts, unmet
preconditions, unverified state, cancellation) leave the component
InProgress while any other error marks it Failed.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple
import copy

# First Party
import alog

# Local
from .deploy_manager.owner_references import set_controller_reference
from .exceptions import PlatformError, assert_cluster
from .managed_object import ManagedObject
from .session import Session
from .status import InstallStatus

log = alog.use_channel("STEPS")

# Type definition for a single step
STEP_TYPE = Callable[[Session], InstallStatus]


@dataclass
class StepResult:
    """The outcome of running a sequence of steps

    Args:
        status:  InstallStatus
            The overall result
        message:  str
            Human readable explanation, used as the platform's lastMessage
        error:  Optional[Exception]
            The error that made the sequence fail. Only set when Failed.
        step:  Optional[str]
            The name of the step that stopped the sequence, if any
    """

    status: InstallStatus
    message: str = ""
    error: Optional[Exception] = None
    step: Optional[str] = None

    def __post_init__(self):
        assert (
            self.error is None or self.status == InstallStatus.FAILED
        ), "Only a Failed result may carry an error"

    @property
    def succeeded(self) -> bool:
        return self.status == InstallStatus.SUCCESS


@alog.logged_function(log.debug2)
def run_steps(session: Session, steps: Iterable[STEP_TYPE]) -> StepResult:
    """Run the steps in order, stopping at the first one that does not
    succeed

    Args:
        session:  Session
            The session for the current pass
        steps:  Iterable[STEP_TYPE]
            The ordered steps

    Returns:
        result:  StepResult
            Success if every step succeeded, otherwise the result of the first
            step that did not
    """
    for step in steps:
        step_name = _step_name(step)
        try:
            session.check_cancelled()
            log.debug3("Running step [%s]", step_name)
            status = step(session)
            assert isinstance(
                status, InstallStatus
            ), f"Step {step_name} returned {status} instead of an InstallStatus"
        except PlatformError as err:
            if not err.is_fatal_error:
                log.debug("Step [%s] not ready: %s", step_name, err)
                return StepResult(
                    status=InstallStatus.IN_PROGRESS,
                    message=str(err),
                    step=step_name,
                )
            log.warning("Step [%s] failed: %s", step_name, err)
            return StepResult(
                status=InstallStatus.FAILED,
                message=str(err),
                error=err,
                step=step_name,
            )
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Unexpected error in step [%s]: %s", step_name, err, exc_info=True)
            return StepResult(
                status=InstallStatus.FAILED,
                message=str(err),
                error=err,
                step=step_name,
            )

        if status != InstallStatus.SUCCESS:
            log.debug2("Step [%s] returned %s", step_name, status.value)
            return StepResult(
                status=status,
                message=f"Step {step_name} is {status.value}",
                step=step_name,
            )

    return StepResult(status=InstallStatus.SUCCESS)


## Read-Modify-Write ###########################################################


def get_current(session: Session, obj: ManagedObject) -> Optional[dict]:
    """Fetch the current state of an object, raising if the read itself fails

    Raises:
        ClusterError:  If the lookup fails
    """
    success, current = session.deploy_manager.get_object_current_state(
        kind=obj.kind,
        name=obj.name,
        namespace=obj.namespace,
        api_version=obj.api_version,
    )
    assert_cluster(success, f"Failed to fetch current state of {obj}")
    return current


def upsert(
    session: Session,
    obj: ManagedObject,
    mutate: Callable[[dict], None],
    controlled: bool = False,
) -> Tuple[dict, bool]:
    """Create or update an object so that it matches the mutation

    The current object (or a skeleton holding only its identity) is copied,
    passed to mutate, and written back only if the mutation changed anything.
    Updates carry the resourceVersion that was read so that a concurrent
    write surfaces as a ConflictError.

    Args:
        session:  Session
            The session for the current pass
        obj:  ManagedObject
            The identity of the object
        mutate:  Callable[[dict], None]
            Function that sets the desired fields on the object in place
        controlled:  bool
            If True, the parent is set as the object's controller

    Returns:
        resource:  dict
            The object as written (or as found when unchanged)
        changed:  bool
            Whether a write was made
    """
    current = get_current(session, obj)
    desired = copy.deepcopy(current) if current else obj.definition()
    mutate(desired)
    if controlled:
        set_controller_reference(session.owner_manifest, desired)

    if current is not None and desired == current:
        log.debug2("%s is up to date", obj)
        return current, False

    log.debug("%s %s", "Updating" if current else "Creating", obj)
    success, _ = session.deploy_manager.deploy([desired])
    assert_cluster(success, f"Failed to write {obj}")
    return desired, True


def delete_if_exists(session: Session, obj: ManagedObject) -> bool:
    """Delete an object, treating an absent object as already deleted

    Returns:
        changed:  bool
            Whether anything was deleted
    """
    success, changed = session.deploy_manager.disable([obj.definition()])
    assert_cluster(success, f"Failed to delete {obj}")
    if changed:
        log.debug("Deleted %s", obj)
    return changed


def _step_name(step: STEP_TYPE) -> str:
    return getattr(step, "__name__", None) or getattr(
        getattr(step, "func", None), "__name__", repr(step)
    )
