"""
Tests for the provider operator reconciler
"""

# Local
from dbaas_platform import constants
from dbaas_platform.exceptions import ConfigError, ConflictError
from dbaas_platform.olm_helpers import check_owner_reference_set
from dbaas_platform.reconcilers.provider_operator import ProviderOperatorReconciler
from dbaas_platform.status import InstallStatus
from dbaas_platform.test_helpers.helpers import (
    TEST_CATALOG_NAMESPACE,
    TEST_INSTALL_NAMESPACE,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    FailOnce,
    MockDeployManager,
    make_deployment,
    make_platform,
    setup_cr,
    setup_session,
)

## Helpers #####################################################################

PLATFORM_NAME = "mongodb-atlas"
CSV_NAME = "mongodb-atlas-kubernetes.v0.7.1"


def make_reconciler(**kwargs):
    return ProviderOperatorReconciler(make_platform(PLATFORM_NAME, **kwargs))


def get_catalog_source(dm):
    return dm.get_obj(
        constants.CATALOG_SOURCE_KIND,
        f"{PLATFORM_NAME}-catalogsource",
        TEST_CATALOG_NAMESPACE,
        constants.OLM_API_VERSION,
    )


def get_subscription(dm):
    return dm.get_obj(
        constants.SUBSCRIPTION_KIND,
        f"{PLATFORM_NAME}-subscription",
        TEST_NAMESPACE,
        constants.OLM_API_VERSION,
    )


def get_csv(dm):
    return dm.get_obj(constants.CSV_KIND, CSV_NAME, TEST_NAMESPACE, constants.OLM_API_VERSION)


def deploy_operator(dm, ready_replicas=1):
    dm.deploy(
        [
            make_deployment(
                f"{PLATFORM_NAME}-controller-manager", ready_replicas=ready_replicas
            )
        ]
    )


def deploy_csv(dm):
    dm.deploy(
        [
            {
                "apiVersion": constants.OLM_API_VERSION,
                "kind": constants.CSV_KIND,
                "metadata": {"name": CSV_NAME, "namespace": TEST_NAMESPACE},
                "spec": {"displayName": "MongoDB Atlas"},
            }
        ]
    )


## Install #####################################################################


def test_first_pass_writes_olm_objects():
    """Make sure the first pass writes the catalog source, subscription and
    operator group, then waits for the operator
    """
    session = setup_session()
    dm = session.deploy_manager
    result = make_reconciler().reconcile(session)

    assert result.status == InstallStatus.IN_PROGRESS
    assert result.step == "wait_for_operator"
    assert result.error is None
    assert f"{PLATFORM_NAME}-controller-manager" in result.message

    catalog = get_catalog_source(dm)
    assert catalog["spec"]["sourceType"] == "grpc"
    assert catalog["spec"]["image"] == f"quay.io/test/{PLATFORM_NAME}:latest"

    sub = get_subscription(dm)
    assert sub["spec"]["source"] == f"{PLATFORM_NAME}-catalogsource"
    assert sub["spec"]["sourceNamespace"] == TEST_CATALOG_NAMESPACE
    assert sub["spec"]["name"] == f"{PLATFORM_NAME}-package"
    assert sub["spec"]["channel"] == "alpha"
    assert sub["spec"]["installPlanApproval"] == "Automatic"
    assert "config" not in sub["spec"]
    assert sub["metadata"]["ownerReferences"][0]["uid"] == TEST_INSTANCE_UID

    assert dm.has_obj(
        constants.OPERATOR_GROUP_KIND,
        constants.GLOBAL_OPERATOR_GROUP,
        TEST_INSTALL_NAMESPACE,
        constants.OPERATOR_GROUP_API_VERSION,
    )


def test_full_convergence_without_csv():
    """Make sure the install is done once the operator has a ready replica"""
    session = setup_session()
    reconciler = make_reconciler()
    assert reconciler.reconcile(session).status == InstallStatus.IN_PROGRESS

    deploy_operator(session.deploy_manager, ready_replicas=0)
    assert reconciler.reconcile(session).status == InstallStatus.IN_PROGRESS

    deploy_operator(session.deploy_manager, ready_replicas=1)
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS


def test_csv_adoption_two_passes():
    """Make sure the CSV is adopted in one pass and observed in the next"""
    session = setup_session()
    dm = session.deploy_manager
    reconciler = make_reconciler(csv=CSV_NAME)
    deploy_operator(dm)

    # CSV not installed yet
    result = reconciler.reconcile(session)
    assert result.status == InstallStatus.IN_PROGRESS
    assert result.step == "reconcile_csv"
    assert get_subscription(dm)["spec"]["startingCSV"] == CSV_NAME

    # Adopt
    deploy_csv(dm)
    assert reconciler.reconcile(session).status == InstallStatus.IN_PROGRESS
    assert check_owner_reference_set(session.owner_manifest, get_csv(dm))

    # Observe
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS


def test_idempotent_after_success():
    """Make sure a converged install makes no further writes"""
    session = setup_session()
    dm = session.deploy_manager
    reconciler = make_reconciler(csv=CSV_NAME)
    deploy_operator(dm)
    deploy_csv(dm)
    for _ in range(3):
        reconciler.reconcile(session)
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS

    dm.reset_mocks()
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS
    assert not dm.deploy.called


def test_conflict_then_success():
    """Make sure a conflicting subscription write leaves the platform
    InProgress and the next pass recovers
    """
    cr = setup_cr()
    dm = MockDeployManager(
        resources=[cr],
        deploy_fail=FailOnce(ConflictError, kind=constants.SUBSCRIPTION_KIND),
    )
    session = setup_session(full_cr=cr, deploy_manager=dm)
    reconciler = make_reconciler()
    deploy_operator(dm)

    result = reconciler.reconcile(session)
    assert result.status == InstallStatus.IN_PROGRESS
    assert result.step == "reconcile_subscription"
    assert result.error is None
    assert get_subscription(dm) is None

    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS
    assert get_subscription(dm) is not None


def test_sync_period_propagated():
    """Make sure the sync period reaches the operator's environment"""
    session = setup_session(spec={"syncPeriod": 30})
    make_reconciler().reconcile(session)
    env = get_subscription(session.deploy_manager)["spec"]["config"]["env"]
    assert env == [{"name": constants.SYNC_PERIOD_ENV, "value": "30"}]


def test_invalid_sync_period_fails():
    session = setup_session(spec={"syncPeriod": 0})
    result = make_reconciler().reconcile(session)
    assert result.status == InstallStatus.FAILED
    assert isinstance(result.error, ConfigError)


def test_cluster_read_failure_fails():
    cr = setup_cr()
    session = setup_session(
        full_cr=cr, deploy_manager=MockDeployManager(resources=[cr], get_state_fail=True)
    )
    assert make_reconciler().reconcile(session).status == InstallStatus.FAILED


## Cleanup #####################################################################


def test_cleanup_empty_cluster():
    """Make sure cleanup of a platform that was never installed succeeds"""
    session = setup_session()
    assert make_reconciler(csv=CSV_NAME).cleanup(session).status == (
        InstallStatus.SUCCESS
    )


def test_cleanup_removes_objects():
    """Make sure cleanup removes what the install created, but keeps the
    shared operator group
    """
    session = setup_session()
    dm = session.deploy_manager
    reconciler = make_reconciler(csv=CSV_NAME)
    deploy_operator(dm)
    deploy_csv(dm)
    reconciler.reconcile(session)

    assert reconciler.cleanup(session).status == InstallStatus.SUCCESS
    assert get_catalog_source(dm) is None
    assert get_subscription(dm) is None
    assert get_csv(dm) is None
    assert not dm.has_obj(
        "Deployment", f"{PLATFORM_NAME}-controller-manager", TEST_NAMESPACE, "apps/v1"
    )
    assert dm.has_obj(
        constants.OPERATOR_GROUP_KIND,
        constants.GLOBAL_OPERATOR_GROUP,
        TEST_INSTALL_NAMESPACE,
        constants.OPERATOR_GROUP_API_VERSION,
    )


def test_cleanup_failure():
    """Make sure a failed delete marks the cleanup Failed"""
    cr = setup_cr()
    session = setup_session(
        full_cr=cr, deploy_manager=MockDeployManager(resources=[cr], disable_fail=True)
    )
    assert make_reconciler().cleanup(session).status == InstallStatus.FAILED
