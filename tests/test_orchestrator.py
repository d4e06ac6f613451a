"""
Tests for the installation orchestrator
"""

# Third Party
import pytest

# Local
from dbaas_platform import status
from dbaas_platform.exceptions import ClusterError, PreconditionError
from dbaas_platform.orchestrator import (
    derive_ready_condition,
    install_all,
    uninstall_all,
)
from dbaas_platform.status import InstallStatus, ReadyReason
from dbaas_platform.steps import StepResult
from dbaas_platform.test_helpers.helpers import DummyReconciler, setup_session

SUCCESS = InstallStatus.SUCCESS
IN_PROGRESS = InstallStatus.IN_PROGRESS
FAILED = InstallStatus.FAILED

## install_all #################################################################


def test_install_all_success():
    """Make sure every platform is visited in order when all succeed"""
    reconcilers = [DummyReconciler(name) for name in ["a", "b", "c"]]
    aggregate = install_all(setup_session(), reconcilers)
    assert aggregate.status == SUCCESS
    assert aggregate.completed
    assert aggregate.platforms == ["a", "b", "c"]
    assert [e["platformName"] for e in aggregate.platform_entries] == ["a", "b", "c"]
    assert all(e["platformStatus"] == "Success" for e in aggregate.platform_entries)
    assert aggregate.ready_condition["status"] == status.CONDITION_TRUE
    assert aggregate.ready_condition["reason"] == ReadyReason.READY.value
    assert aggregate.ready_condition["message"] == status.READY_MESSAGE


def test_install_all_empty():
    """An empty platform list is trivially Ready"""
    aggregate = install_all(setup_session(), [])
    assert aggregate.completed
    assert aggregate.platform_entries == []
    assert aggregate.ready_condition["status"] == status.CONDITION_TRUE


@pytest.mark.parametrize("stop_status", [IN_PROGRESS, FAILED])
def test_install_all_halts(stop_status):
    """Make sure no platform after the first non-Success one is visited"""
    first = DummyReconciler("first")
    second = DummyReconciler("second", install_results=[stop_status])
    third = DummyReconciler("third")
    aggregate = install_all(setup_session(), [first, second, third])

    assert aggregate.status == stop_status
    assert not aggregate.completed
    assert first.install_calls == 1
    assert second.install_calls == 1
    assert third.install_calls == 0
    assert [e["platformName"] for e in aggregate.platform_entries] == [
        "first",
        "second",
    ]
    assert aggregate.platforms == ["first", "second", "third"]
    assert set(aggregate.results) == {"first", "second"}


def test_install_all_in_progress_condition():
    """Make sure an unfinished platform is named in the Ready condition"""
    aggregate = install_all(
        setup_session(),
        [DummyReconciler("a"), DummyReconciler("b", install_results=[IN_PROGRESS])],
    )
    cond = aggregate.ready_condition
    assert cond["status"] == status.CONDITION_FALSE
    assert cond["reason"] == ReadyReason.IN_PROGRESS.value
    assert cond["message"].startswith(status.IN_PROGRESS_MESSAGE)
    assert "b" in cond["message"]


def test_install_all_failed_condition():
    """Make sure a failed platform and its error make it to the condition"""
    aggregate = install_all(
        setup_session(),
        [DummyReconciler("broken", install_error=ClusterError("no cluster"))],
    )
    cond = aggregate.ready_condition
    assert aggregate.status == FAILED
    assert cond["status"] == status.CONDITION_FALSE
    assert cond["reason"] == ReadyReason.FAILED.value
    assert "broken" in cond["message"]
    assert "no cluster" in cond["message"]
    assert isinstance(aggregate.results["broken"].error, ClusterError)


def test_install_all_expected_error_is_in_progress():
    """Make sure an expected error keeps the platform InProgress"""
    aggregate = install_all(
        setup_session(),
        [DummyReconciler("waiting", install_error=PreconditionError("not yet"))],
    )
    assert aggregate.status == IN_PROGRESS
    assert aggregate.platform_entries[0]["lastMessage"] == "not yet"


def test_install_all_converges_over_passes():
    """Make sure repeated passes advance the install until it is Ready"""
    session = setup_session()
    reconcilers = [
        DummyReconciler("a", install_results=[IN_PROGRESS, SUCCESS]),
        DummyReconciler("b", install_results=[IN_PROGRESS, IN_PROGRESS, SUCCESS]),
    ]
    statuses = [install_all(session, reconcilers).status for _ in range(4)]
    assert statuses == [IN_PROGRESS, IN_PROGRESS, IN_PROGRESS, SUCCESS]


## uninstall_all ###############################################################


def test_uninstall_all_reverse_order():
    """Make sure cleanup runs in reverse installation order"""
    calls = []

    class RecordingReconciler(DummyReconciler):
        def uninstall(self, _session):
            calls.append(self.name)
            return super().uninstall(_session)

    reconcilers = [RecordingReconciler(name) for name in ["a", "b", "c"]]
    aggregate = uninstall_all(setup_session(), reconcilers)
    assert calls == ["c", "b", "a"]
    assert aggregate.completed
    assert aggregate.platforms == ["a", "b", "c"]
    assert aggregate.ready_condition["status"] == status.CONDITION_UNKNOWN
    assert aggregate.ready_condition["reason"] == ReadyReason.CLEANUP.value


def test_uninstall_all_halts():
    """Make sure cleanup stops at the first platform not yet removed"""
    first = DummyReconciler("first")
    last = DummyReconciler("last", cleanup_results=[IN_PROGRESS])
    aggregate = uninstall_all(setup_session(), [first, last])
    assert aggregate.status == IN_PROGRESS
    assert last.cleanup_calls == 1
    assert first.cleanup_calls == 0
    assert aggregate.ready_condition["reason"] == ReadyReason.CLEANUP.value


def test_uninstall_all_failed():
    aggregate = uninstall_all(
        setup_session(),
        [DummyReconciler("a", cleanup_error=ClusterError("delete failed"))],
    )
    assert aggregate.status == FAILED
    assert aggregate.ready_condition["reason"] == ReadyReason.FAILED.value
    assert "cleanup" in aggregate.ready_condition["message"]


## derive_ready_condition ######################################################


def test_derive_ready_condition_failed_dominates():
    """Make sure Failed outranks InProgress which outranks Success"""
    visited = [
        ("a", StepResult(SUCCESS)),
        ("b", StepResult(IN_PROGRESS, "waiting")),
        ("c", StepResult(FAILED, "broken")),
    ]
    cond = derive_ready_condition(visited)
    assert cond["reason"] == ReadyReason.FAILED.value
    assert "c" in cond["message"]

    cond = derive_ready_condition(visited[:2])
    assert cond["reason"] == ReadyReason.IN_PROGRESS.value

    cond = derive_ready_condition(visited[:1])
    assert cond["reason"] == ReadyReason.READY.value


def test_derive_ready_condition_teardown():
    cond = derive_ready_condition([("a", StepResult(IN_PROGRESS))], teardown=True)
    assert cond["status"] == status.CONDITION_UNKNOWN
    assert cond["message"] == status.CLEANUP_MESSAGE
