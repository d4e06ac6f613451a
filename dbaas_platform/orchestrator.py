"""
The installation orchestrator drives the platform reconcilers in their fixed
order and folds their results into the aggregate Ready condition and the
per-platform status list
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

# First Party
import alog

# Local
from . import status
from .reconcilers import PlatformReconciler
from .session import Session
from .status import InstallStatus, ReadyReason
from .steps import StepResult

log = alog.use_channel("ORCH")


@dataclass
class AggregateStatus:
    """The outcome of a single install or uninstall pass

    Args:
        status:  InstallStatus
            Success only if every platform succeeded
        ready_condition:  dict
            The Ready condition to write on the parent
        platform_entries:  List[dict]
            Status entries for the platforms visited in this pass
        platforms:  List[str]
            Names of every configured platform, in installation order
        results:  Dict[str, StepResult]
            The raw result of each visited platform
    """

    status: InstallStatus
    ready_condition: dict
    platform_entries: List[dict] = field(default_factory=list)
    platforms: List[str] = field(default_factory=list)
    results: Dict[str, StepResult] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == InstallStatus.SUCCESS


@alog.logged_function(log.debug)
@alog.timed_function(log.debug, "Install pass finished in: ")
def install_all(
    session: Session, reconcilers: Sequence[PlatformReconciler]
) -> AggregateStatus:
    """Reconcile each platform in order, stopping at the first one that is not
    installed yet

    Args:
        session:  Session
            The session for the current pass
        reconcilers:  Sequence[PlatformReconciler]
            The reconcilers in installation order

    Returns:
        aggregate:  AggregateStatus
            The combined outcome of the pass
    """
    visited = _run_in_order(
        session, reconcilers, lambda reconciler: reconciler.reconcile(session)
    )
    return _aggregate(reconcilers, visited, teardown=False)


@alog.logged_function(log.debug)
@alog.timed_function(log.debug, "Uninstall pass finished in: ")
def uninstall_all(
    session: Session, reconcilers: Sequence[PlatformReconciler]
) -> AggregateStatus:
    """Clean up each platform in reverse installation order, stopping at the
    first one that is not fully removed yet

    Args:
        session:  Session
            The session for the current pass
        reconcilers:  Sequence[PlatformReconciler]
            The reconcilers in installation order

    Returns:
        aggregate:  AggregateStatus
            The combined outcome of the pass
    """
    visited = _run_in_order(
        session,
        list(reversed(reconcilers)),
        lambda reconciler: reconciler.cleanup(session),
    )
    return _aggregate(reconcilers, visited, teardown=True)


def derive_ready_condition(
    visited: Sequence[Tuple[str, StepResult]], teardown: bool = False
) -> dict:
    """Build the Ready condition from the results of a pass

    A Failed platform dominates InProgress, which dominates Success.

    Args:
        visited:  Sequence[Tuple[str, StepResult]]
            The (name, result) of each platform visited, in visit order
        teardown:  bool
            Whether the pass was a cleanup pass

    Returns:
        ready_condition:  dict
            The condition dict for the parent status
    """
    failed = [
        (name, result)
        for name, result in visited
        if result.status == InstallStatus.FAILED
    ]
    if failed:
        name, result = failed[0]
        verb = "cleanup" if teardown else "installation"
        return status.make_ready_condition(
            status.CONDITION_FALSE,
            ReadyReason.FAILED,
            f"Platform {name} {verb} failed: {result.message}",
        )

    if teardown:
        return status.make_ready_condition(
            status.CONDITION_UNKNOWN,
            ReadyReason.CLEANUP,
            status.CLEANUP_MESSAGE,
        )

    in_progress = [
        name
        for name, result in visited
        if result.status == InstallStatus.IN_PROGRESS
    ]
    if in_progress:
        return status.make_ready_condition(
            status.CONDITION_FALSE,
            ReadyReason.IN_PROGRESS,
            f"{status.IN_PROGRESS_MESSAGE}: waiting on {', '.join(in_progress)}",
        )

    return status.make_ready_condition(
        status.CONDITION_TRUE,
        ReadyReason.READY,
        status.READY_MESSAGE,
    )


## Implementation Details ######################################################


def _run_in_order(session, reconcilers, run) -> List[Tuple[str, StepResult]]:
    visited = []
    for reconciler in reconcilers:
        result = run(reconciler)
        log.debug2("[%s] %s", reconciler.name, result.status.value)
        visited.append((reconciler.name, result))
        if not result.succeeded:
            log.info(
                "Stopping pass for %s/%s at platform %s: %s",
                session.namespace,
                session.name,
                reconciler.name,
                result.status.value,
            )
            break
    return visited


def _aggregate(
    reconcilers: Sequence[PlatformReconciler],
    visited: List[Tuple[str, StepResult]],
    teardown: bool,
) -> AggregateStatus:
    overall = InstallStatus.SUCCESS
    for _, result in visited:
        if result.status == InstallStatus.FAILED:
            overall = InstallStatus.FAILED
            break
        if result.status == InstallStatus.IN_PROGRESS:
            overall = InstallStatus.IN_PROGRESS

    return AggregateStatus(
        status=overall,
        ready_condition=derive_ready_condition(visited, teardown=teardown),
        platform_entries=[
            status.make_platform_status_entry(name, result.status, result.message)
            for name, result in visited
        ],
        platforms=[reconciler.name for reconciler in reconcilers],
        results=dict(visited),
    )
