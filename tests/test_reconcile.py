"""
Test the implementations of the PlatformReconcileManager
"""

# Standard
from datetime import timedelta
from unittest import mock

# Third Party
import pytest

# First Party
import alog

# Local
from dbaas_platform import config, constants, status
from dbaas_platform.deploy_manager import DryRunDeployManager
from dbaas_platform.exceptions import ClusterError, ConflictError
from dbaas_platform.log_format import PlatformJsonFormatter
from dbaas_platform.reconcile import (
    PlatformReconcileManager,
    ReconciliationResult,
    RequeueParams,
    ensure_platform_cr,
)
from dbaas_platform.status import InstallStatus, ReadyReason
from dbaas_platform.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    DummyReconciler,
    FailOnce,
    MockDeployManager,
    library_config,
    setup_cr,
)

log = alog.use_channel("TEST")

## Helpers #####################################################################


def get_parent(dm, name=TEST_INSTANCE_NAME):
    return dm.get_obj(
        constants.PLATFORM_KIND, name, TEST_NAMESPACE, constants.PLATFORM_API_VERSION
    )


def deleting_cr(**kwargs):
    return setup_cr(
        metadata={
            "deletionTimestamp": "2023-01-01T00:00:00Z",
            "finalizers": [config.finalizer],
        },
        **kwargs,
    )


def run(cr, dm, reconcilers, **kwargs):
    manager = PlatformReconcileManager(deploy_manager=dm, reconcilers=reconcilers)
    return manager.reconcile(cr, **kwargs)


## Install #####################################################################


def test_reconcile_install_ready():
    """Make sure a successful install adds the finalizer, writes a Ready
    status and requeues after the default delay
    """
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    result = run(cr, dm, [DummyReconciler("a"), DummyReconciler("b")])

    assert isinstance(result, ReconciliationResult)
    assert result.requeue
    assert result.requeue_params.requeue_after == timedelta(
        seconds=config.requeue_after_seconds
    )
    assert result.aggregate.completed
    assert result.exception is None

    parent = get_parent(dm)
    assert config.finalizer in parent["metadata"]["finalizers"]
    ready = status.get_condition(status.READY_CONDITION, parent["status"])
    assert ready["status"] == status.CONDITION_TRUE
    assert ready["reason"] == ReadyReason.READY.value
    assert [e["platformName"] for e in parent["status"]["platformsStatus"]] == [
        "a",
        "b",
    ]


def test_reconcile_install_in_progress():
    """Make sure an unfinished install requeues with the short delay"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    result = run(
        cr,
        dm,
        [DummyReconciler("a", install_results=[InstallStatus.IN_PROGRESS])],
    )
    assert result.requeue
    assert result.requeue_params.requeue_after == timedelta(
        seconds=config.error_requeue_after_seconds
    )
    assert not result.aggregate.completed

    ready = status.get_condition(status.READY_CONDITION, get_parent(dm)["status"])
    assert ready["reason"] == ReadyReason.IN_PROGRESS.value


def test_reconcile_finalizer_added_once():
    """Make sure repeated passes do not rewrite the finalizer"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    reconcilers = [DummyReconciler("a")]
    run(cr, dm, reconcilers)
    parent = get_parent(dm)
    run(parent, dm, reconcilers)
    assert get_parent(dm)["metadata"]["finalizers"] == [config.finalizer]
    assert len(dm.write_calls(constants.PLATFORM_KIND)) == 1


def test_reconcile_status_not_rewritten():
    """Make sure an unchanged outcome does not write the status again"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    reconcilers = [DummyReconciler("a")]
    run(cr, dm, reconcilers)
    assert dm.set_status.call_count == 1
    run(get_parent(dm), dm, reconcilers)
    assert dm.set_status.call_count == 1


def test_reconcile_no_manage_status():
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    with library_config(manage_status=False):
        run(cr, dm, [DummyReconciler("a")])
    assert not dm.set_status.called


## Teardown ####################################################################


def test_reconcile_teardown_complete():
    """Make sure a finished teardown releases the parent and stops requeuing"""
    cr = deleting_cr()
    dm = MockDeployManager(resources=[cr])
    reconciler = DummyReconciler("a")
    result = run(cr, dm, [reconciler])

    assert not result.requeue
    assert result.aggregate.completed
    assert reconciler.cleanup_calls == 1
    assert reconciler.install_calls == 0
    assert not dm.has_obj(
        constants.PLATFORM_KIND,
        TEST_INSTANCE_NAME,
        TEST_NAMESPACE,
        constants.PLATFORM_API_VERSION,
    )


def test_reconcile_teardown_in_progress():
    """Make sure an unfinished teardown keeps the finalizer and reports the
    cleanup condition
    """
    cr = deleting_cr()
    dm = MockDeployManager(resources=[cr])
    result = run(
        cr,
        dm,
        [DummyReconciler("a", cleanup_results=[InstallStatus.IN_PROGRESS])],
    )
    assert result.requeue
    parent = get_parent(dm)
    assert parent["metadata"]["finalizers"] == [config.finalizer]
    ready = status.get_condition(status.READY_CONDITION, parent["status"])
    assert ready["status"] == status.CONDITION_UNKNOWN
    assert ready["reason"] == ReadyReason.CLEANUP.value


def test_reconcile_teardown_empty():
    """Make sure teardown with nothing installed completes in one pass"""
    cr = deleting_cr()
    dm = MockDeployManager(resources=[cr])
    result = run(cr, dm, [])
    assert not result.requeue


## safe_reconcile ##############################################################


def test_safe_reconcile_error_status():
    """Make sure an error outside the platform steps is reported on the parent
    without losing the per-platform entries
    """
    entry = status.make_platform_status_entry("a", InstallStatus.SUCCESS)
    cr = setup_cr(status={"platformsStatus": [entry]})
    dm = MockDeployManager(resources=[cr], deploy_fail=True)
    manager = PlatformReconcileManager(
        deploy_manager=dm, reconcilers=[DummyReconciler("a")]
    )
    result = manager.safe_reconcile(cr)

    assert result.requeue
    assert isinstance(result.exception, ClusterError)
    assert result.requeue_params.requeue_after == timedelta(
        seconds=config.error_requeue_after_seconds
    )

    parent_status = get_parent(dm)["status"]
    ready = status.get_condition(status.READY_CONDITION, parent_status)
    assert ready["status"] == status.CONDITION_FALSE
    assert ready["reason"] == ReadyReason.FAILED.value
    assert "finalizer" in ready["message"]
    assert parent_status["platformsStatus"] == [entry]


def test_safe_reconcile_status_failure_swallowed():
    """Make sure a failed error status write does not escape"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr], deploy_fail=True, set_status_raise=True)
    manager = PlatformReconcileManager(deploy_manager=dm, reconcilers=[])
    result = manager.safe_reconcile(cr)
    assert result.requeue
    assert result.exception is not None


def test_safe_reconcile_parent_conflict_retried():
    """Make sure a conflict writing the parent is retried without reporting a
    failure, and the next pass goes through
    """
    cr = setup_cr()
    dm = MockDeployManager(
        resources=[cr],
        deploy_fail=FailOnce(ConflictError, kind=constants.PLATFORM_KIND),
    )
    reconciler = DummyReconciler("a")
    manager = PlatformReconcileManager(deploy_manager=dm, reconcilers=[reconciler])

    result = manager.safe_reconcile(cr)
    assert result.requeue
    assert isinstance(result.exception, ConflictError)
    assert result.requeue_params.requeue_after == timedelta(
        seconds=config.error_requeue_after_seconds
    )
    assert reconciler.install_calls == 0
    assert not dm.set_status.called
    assert not get_parent(dm).get("status")

    result = manager.safe_reconcile(cr)
    assert result.exception is None
    parent = get_parent(dm)
    assert parent["metadata"]["finalizers"] == [config.finalizer]
    ready = status.get_condition(status.READY_CONDITION, parent["status"])
    assert ready["status"] == status.CONDITION_TRUE


def test_safe_reconcile_status_conflict_not_failed():
    """Make sure a conflicting status write leaves no failure on the parent"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr], set_status_fail=FailOnce(ConflictError))
    manager = PlatformReconcileManager(
        deploy_manager=dm, reconcilers=[DummyReconciler("a")]
    )

    result = manager.safe_reconcile(cr)
    assert result.requeue
    assert isinstance(result.exception, ConflictError)
    assert dm.set_status.call_count == 1
    ready = status.get_condition(
        status.READY_CONDITION, get_parent(dm).get("status") or {}
    )
    assert ready.get("reason") != ReadyReason.FAILED.value


def test_safe_reconcile_passthrough():
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    manager = PlatformReconcileManager(
        deploy_manager=dm, reconcilers=[DummyReconciler("a")]
    )
    result = manager.safe_reconcile(cr)
    assert result.exception is None
    assert result.aggregate.completed


## Setup stages ################################################################


def test_setup_deploy_manager():
    """Make sure the given manager is used, else a dry run one when configured"""
    dm = MockDeployManager()
    assert PlatformReconcileManager(deploy_manager=dm).setup_deploy_manager() is dm
    with library_config(dry_run=True):
        assert isinstance(
            PlatformReconcileManager().setup_deploy_manager(), DryRunDeployManager
        )


def test_setup_reconcilers_from_config():
    """Make sure the reconcilers follow the configured platform order"""
    reconcilers = PlatformReconcileManager().setup_reconcilers()
    assert [r.name for r in reconcilers] == [
        p["name"] for p in config.library_config.platforms
    ]


def test_setup_reconcilers_given():
    reconcilers = [DummyReconciler("a")]
    manager = PlatformReconcileManager(reconcilers=reconcilers)
    assert manager.setup_reconcilers() is reconcilers


def test_generate_id():
    first = PlatformReconcileManager.generate_id()
    assert len(first) == 22
    assert first != PlatformReconcileManager.generate_id()


def test_parse_manifest():
    cr = PlatformReconcileManager.parse_manifest(
        {"kind": "DBaaSPlatform", "metadata": {"name": "x"}}
    )
    assert cr.metadata.name == "x"


@pytest.mark.parametrize(
    ["annotations", "json_formatter"],
    [
        [{}, False],
        [{constants.LOG_JSON_NAME: "true"}, True],
        [{constants.LOG_JSON_NAME: "false"}, False],
    ],
)
def test_configure_logging_annotations(annotations, json_formatter):
    """Make sure the annotations override the configured log settings"""
    annotations = dict(annotations, **{constants.LOG_DEFAULT_LEVEL_NAME: "debug3"})
    cr = setup_cr(metadata={"annotations": annotations})
    with mock.patch("alog.configure") as configure_mock:
        PlatformReconcileManager.configure_logging(cr, "abc")
    kwargs = configure_mock.call_args.kwargs
    assert kwargs["default_level"] == "debug3"
    assert isinstance(kwargs["formatter"], PlatformJsonFormatter) == json_formatter


def test_requeue_params_default():
    assert RequeueParams().requeue_after == timedelta(
        seconds=config.requeue_after_seconds
    )


## ensure_platform_cr ##########################################################


def test_ensure_platform_cr_creates():
    """Make sure the parent is created with the default sync period"""
    dm = MockDeployManager()
    created = ensure_platform_cr(dm, TEST_NAMESPACE)
    assert created["metadata"]["name"] == config.platform_cr_name
    assert created["spec"]["syncPeriod"] == config.default_sync_period
    assert created["metadata"]["labels"] == {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_VALUE
    }
    assert get_parent(dm, config.platform_cr_name) is not None


def test_ensure_platform_cr_existing():
    """Make sure an existing parent is returned untouched"""
    cr = setup_cr(name="custom")
    dm = MockDeployManager(resources=[cr])
    found = ensure_platform_cr(dm, TEST_NAMESPACE)
    assert found["metadata"]["name"] == "custom"
    assert not dm.deploy.called


def test_ensure_platform_cr_multiple():
    dm = MockDeployManager(resources=[setup_cr(name="one"), setup_cr(name="two")])
    with pytest.raises(ClusterError):
        ensure_platform_cr(dm, TEST_NAMESPACE)


@pytest.mark.parametrize("fail_kwarg", ["filter_fail", "deploy_fail"])
def test_ensure_platform_cr_cluster_failure(fail_kwarg):
    dm = MockDeployManager(**{fail_kwarg: True})
    with pytest.raises(ClusterError):
        ensure_platform_cr(dm, TEST_NAMESPACE)
