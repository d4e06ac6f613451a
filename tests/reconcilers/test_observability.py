"""
Tests for the monitoring stack reconciler
"""

# Standard
import base64

# Third Party
import pytest

# Local
from dbaas_platform import constants
from dbaas_platform.exceptions import ConfigError
from dbaas_platform.olm_helpers import get_cluster_service_version, get_subscription
from dbaas_platform.platforms import ObservabilityConfig, PlatformType
from dbaas_platform.reconcilers.observability import (
    AUDIENCE_KEY,
    CLIENT_ID_KEY,
    CLIENT_SECRET_KEY,
    LEGACY_CSV_NAME,
    MONITORING_STACK_API_VERSION,
    MONITORING_STACK_KIND,
    MONITORING_STACK_NAME,
    SERVICE_MONITOR_API_VERSION,
    SERVICE_MONITOR_KIND,
    SERVICE_MONITOR_NAME,
    TOKEN_KEY,
    ObservabilityReconciler,
)
from dbaas_platform.status import InstallStatus
from dbaas_platform.test_helpers.helpers import (
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    make_platform,
    setup_session,
)

## Helpers #####################################################################

OPERATOR_NAMESPACE = "openshift-observability-operator"
SECRET_NAME = "rhobs-remote-write"
REMOTE_WRITE_URL = "https://rhobs.example.com/api/v1/receive"
TOKEN_URL = "https://sso.example.com/token"


def encode(value):
    return base64.b64encode(value.encode("utf-8")).decode("utf-8")


def make_reconciler(**kwargs):
    kwargs.setdefault("operator_subscription", "observability-operator")
    kwargs.setdefault("operator_namespace", OPERATOR_NAMESPACE)
    return ObservabilityReconciler(
        make_platform("observability", PlatformType.OBSERVABILITY),
        ObservabilityConfig(**kwargs),
    )


def remote_write_reconciler(auth_type, **kwargs):
    return make_reconciler(
        remote_write_url=REMOTE_WRITE_URL,
        auth_type=auth_type,
        secret_name=SECRET_NAME,
        **kwargs,
    )


def deploy_operator(dm):
    dm.deploy(
        [
            {
                "apiVersion": constants.OLM_API_VERSION,
                "kind": constants.SUBSCRIPTION_KIND,
                "metadata": {
                    "name": "observability-operator",
                    "namespace": OPERATOR_NAMESPACE,
                },
            }
        ]
    )


def deploy_secret(dm, data):
    dm.deploy(
        [
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"name": SECRET_NAME, "namespace": TEST_NAMESPACE},
                "data": data,
            }
        ]
    )


def deploy_cluster_version(dm, cluster_id="abc-123"):
    dm.deploy(
        [
            {
                "apiVersion": "config.openshift.io/v1",
                "kind": "ClusterVersion",
                "metadata": {"name": "version"},
                "spec": {"clusterID": cluster_id},
            }
        ]
    )


def get_stack(dm):
    return dm.get_obj(
        MONITORING_STACK_KIND,
        MONITORING_STACK_NAME,
        TEST_NAMESPACE,
        MONITORING_STACK_API_VERSION,
    )


def get_service_monitor(dm):
    return dm.get_obj(
        SERVICE_MONITOR_KIND,
        SERVICE_MONITOR_NAME,
        TEST_NAMESPACE,
        SERVICE_MONITOR_API_VERSION,
    )


## Install #####################################################################


def test_no_operator_is_noop():
    """Make sure nothing is written when the monitoring operator is absent"""
    session = setup_session()
    result = make_reconciler().reconcile(session)
    assert result.status == InstallStatus.SUCCESS
    assert not session.deploy_manager.deploy.called


def test_install_without_remote_write():
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    assert make_reconciler().reconcile(session).status == InstallStatus.SUCCESS

    stack = get_stack(dm)
    assert stack["metadata"]["labels"] == {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_VALUE
    }
    assert stack["spec"] == {
        "logLevel": "debug",
        "resourceSelector": {"matchLabels": {"app": "dbaas-prometheus"}},
    }
    assert stack["metadata"]["ownerReferences"][0]["uid"] == TEST_INSTANCE_UID

    monitor = get_service_monitor(dm)
    assert monitor["spec"]["endpoints"] == [
        {"interval": "30s", "path": "/metrics", "port": "metrics", "scheme": "http"}
    ]
    assert monitor["spec"]["selector"] == {"matchLabels": {"app": "dbaas-prometheus"}}


def test_install_idempotent():
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    reconciler = make_reconciler()
    reconciler.reconcile(session)
    dm.reset_mocks()
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS
    assert not dm.deploy.called


def test_foreign_labels_kept():
    """Make sure labels added by others survive and cause no writes"""
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    reconciler = make_reconciler()
    reconciler.reconcile(session)

    stack = get_stack(dm)
    stack["metadata"]["labels"]["team"] = "dbaas"
    dm.deploy([stack])

    dm.reset_mocks()
    assert reconciler.reconcile(session).status == InstallStatus.SUCCESS
    assert not dm.deploy.called
    assert get_stack(dm)["metadata"]["labels"] == {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_VALUE,
        "team": "dbaas",
    }


def test_removes_legacy_subscription():
    """Make sure the subscription and CSV from earlier releases are removed
    from the parent namespace
    """
    session = setup_session()
    dm = session.deploy_manager
    legacy = [
        get_subscription(TEST_NAMESPACE, "observability-subscription"),
        get_cluster_service_version(TEST_NAMESPACE, LEGACY_CSV_NAME),
    ]
    dm.deploy([obj.definition() for obj in legacy])

    assert make_reconciler().reconcile(session).status == InstallStatus.SUCCESS
    for obj in legacy:
        assert not dm.has_obj(obj.kind, obj.name, obj.namespace, obj.api_version)


## Remote write ################################################################


def test_remote_write_dex():
    """Make sure a dex token is decoded into the remote write entry"""
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    deploy_cluster_version(dm)
    deploy_secret(dm, {TOKEN_KEY: encode("secret-token")})

    result = remote_write_reconciler("dex").reconcile(session)
    assert result.status == InstallStatus.SUCCESS

    prometheus_config = get_stack(dm)["spec"]["prometheusConfig"]
    assert prometheus_config["replicas"] == 1
    assert prometheus_config["externalLabels"] == {"cluster_id": "abc-123"}
    remote_write = prometheus_config["remoteWrite"][0]
    assert remote_write["url"] == REMOTE_WRITE_URL
    assert remote_write["bearerToken"] == "secret-token"
    assert remote_write["tlsConfig"] == {"insecureSkipVerify": True}
    relabel = remote_write["writeRelabelConfigs"][0]
    assert relabel["action"] == "keep"
    assert relabel["sourceLabels"] == ["__name__"]
    assert "dbaas_.*$" in relabel["regex"]


def test_remote_write_sso():
    """Make sure sso credentials are referenced from the secret"""
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    deploy_secret(
        dm,
        {
            CLIENT_ID_KEY: encode("id"),
            CLIENT_SECRET_KEY: encode("secret"),
            AUDIENCE_KEY: encode("observatorium"),
        },
    )

    result = remote_write_reconciler("redhat-sso", token_url=TOKEN_URL).reconcile(
        session
    )
    assert result.status == InstallStatus.SUCCESS

    prometheus_config = get_stack(dm)["spec"]["prometheusConfig"]
    assert "externalLabels" not in prometheus_config
    oauth2 = prometheus_config["remoteWrite"][0]["oauth2"]
    assert oauth2 == {
        "clientId": {"secret": {"name": SECRET_NAME, "key": CLIENT_ID_KEY}},
        "clientSecret": {"name": SECRET_NAME, "key": CLIENT_SECRET_KEY},
        "tokenUrl": TOKEN_URL,
        "endpointParams": {"audience": "observatorium"},
    }


def test_remote_write_secret_missing():
    """Make sure a missing secret leaves the platform InProgress"""
    session = setup_session()
    deploy_operator(session.deploy_manager)
    result = remote_write_reconciler("dex").reconcile(session)
    assert result.status == InstallStatus.IN_PROGRESS
    assert result.step == "reconcile_monitoring_stack"
    assert result.error is None
    assert SECRET_NAME in result.message
    assert get_stack(session.deploy_manager) is None


@pytest.mark.parametrize(
    ["auth_type", "kwargs", "data"],
    [
        ["dex", {}, {}],
        ["bogus", {}, {TOKEN_KEY: encode("x")}],
        ["redhat-sso", {}, {CLIENT_ID_KEY: "x", CLIENT_SECRET_KEY: "x"}],
        [
            "redhat-sso",
            {"token_url": TOKEN_URL},
            {CLIENT_ID_KEY: "x", CLIENT_SECRET_KEY: "x"},
        ],
    ],
)
def test_remote_write_config_errors(auth_type, kwargs, data):
    """Make sure bad settings or an incomplete secret fail the platform"""
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    deploy_secret(dm, data)
    result = remote_write_reconciler(auth_type, **kwargs).reconcile(session)
    assert result.status == InstallStatus.FAILED
    assert isinstance(result.error, ConfigError)


## Cleanup #####################################################################


def test_cleanup():
    session = setup_session()
    dm = session.deploy_manager
    deploy_operator(dm)
    reconciler = make_reconciler()
    reconciler.reconcile(session)

    assert reconciler.cleanup(session).status == InstallStatus.SUCCESS
    assert get_stack(dm) is None
    assert get_service_monitor(dm) is None


def test_cleanup_empty_cluster():
    session = setup_session()
    assert make_reconciler().cleanup(session).status == InstallStatus.SUCCESS
