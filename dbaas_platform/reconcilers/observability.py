"""
Reconciler for the monitoring stack that scrapes the installer's own metrics
and optionally forwards them to a remote write endpoint
"""

# Standard
from typing import List, Optional
import base64

# First Party
import alog

# Local
from .. import constants
from ..exceptions import assert_config, assert_precondition
from ..managed_object import ManagedObject
from ..olm_helpers import (
    get_cluster_service_version,
    get_subscription,
    subscription_name,
)
from ..platforms import ObservabilityConfig, PlatformConfig
from ..session import Session
from ..status import InstallStatus
from ..steps import STEP_TYPE, delete_if_exists, get_current, upsert
from .base import PlatformReconciler

log = alog.use_channel("OBSRV")

MONITORING_STACK_API_VERSION = "monitoring.rhobs/v1alpha1"
MONITORING_STACK_KIND = "MonitoringStack"
MONITORING_STACK_NAME = "dbaas-operator-mso"
SERVICE_MONITOR_API_VERSION = "monitoring.rhobs/v1"
SERVICE_MONITOR_KIND = "ServiceMonitor"
SERVICE_MONITOR_NAME = "dbaas-operator-service-monitor"
SERVICE_MONITOR_INTERVAL = "30s"

CLUSTER_VERSION_API_VERSION = "config.openshift.io/v1"
CLUSTER_VERSION_KIND = "ClusterVersion"
CLUSTER_VERSION_NAME = "version"
CLUSTER_ID_LABEL = "cluster_id"

# Installed by earlier releases in the parent namespace
LEGACY_CSV_NAME = "observability-operator.v0.0.13"

AUTH_TYPE_DEX = "dex"
AUTH_TYPE_REDHAT_SSO = "redhat-sso"

# Keys in the remote write secret
TOKEN_KEY = "rhobs-token"
CLIENT_ID_KEY = "prom-remote-write-config-id"
CLIENT_SECRET_KEY = "prom-remote-write-config-secret"
AUDIENCE_KEY = "rhobs-audience"

EXPORTER_LABELS = {"app": "dbaas-prometheus"}
METRICS_TO_INCLUDE = [
    "dbaas_.*$",
    "csv_succeeded$",
    "csv_abnormal$",
    "ALERTS$",
    "subscription_sync_total",
]


class ObservabilityReconciler(PlatformReconciler):
    """Configures a MonitoringStack and a ServiceMonitor when the cluster has
    the observability operator installed. Without it there is nothing to do.
    """

    def __init__(self, platform: PlatformConfig, settings: ObservabilityConfig):
        super().__init__(platform)
        self.settings = settings

    def install_steps(self) -> List[STEP_TYPE]:
        return [
            self.remove_legacy_subscription,
            self.verify_monitoring_operator,
            self.reconcile_monitoring_stack,
            self.reconcile_service_monitor,
        ]

    def cleanup_steps(self) -> List[STEP_TYPE]:
        return [
            self.delete_service_monitor,
            self.delete_monitoring_stack,
        ]

    ## Identities ##############################################################

    @staticmethod
    def monitoring_stack(session: Session) -> ManagedObject:
        return ManagedObject(
            MONITORING_STACK_API_VERSION,
            MONITORING_STACK_KIND,
            MONITORING_STACK_NAME,
            session.namespace,
        )

    @staticmethod
    def service_monitor(session: Session) -> ManagedObject:
        return ManagedObject(
            SERVICE_MONITOR_API_VERSION,
            SERVICE_MONITOR_KIND,
            SERVICE_MONITOR_NAME,
            session.namespace,
        )

    ## Install Steps ###########################################################

    def remove_legacy_subscription(self, session: Session) -> InstallStatus:
        """Remove the operator subscription and CSV that earlier releases
        installed in the parent namespace
        """
        for obj in [
            get_subscription(session.namespace, subscription_name(self.name)),
            get_cluster_service_version(session.namespace, LEGACY_CSV_NAME),
        ]:
            if delete_if_exists(session, obj):
                log.info("Removed legacy monitoring object %s", obj)
        return InstallStatus.SUCCESS

    def verify_monitoring_operator(self, session: Session) -> InstallStatus:
        """Check for the observability operator's subscription. Its absence is
        not an error: the later steps become no-ops.
        """
        if not self._monitoring_operator_installed(session):
            log.debug(
                "Subscription %s not found in %s. Skipping monitoring setup.",
                self.settings.operator_subscription,
                self.settings.operator_namespace,
            )
        return InstallStatus.SUCCESS

    def reconcile_monitoring_stack(self, session: Session) -> InstallStatus:
        if not self._monitoring_operator_installed(session):
            return InstallStatus.SUCCESS

        prometheus_config = None
        if self.settings.remote_write_enabled:
            prometheus_config = self._prometheus_config(session)

        def mutate(obj: dict):
            obj["metadata"].setdefault("labels", {})[
                constants.MANAGED_BY_LABEL
            ] = constants.MANAGED_BY_VALUE
            spec = {
                "logLevel": "debug",
                "resourceSelector": {"matchLabels": dict(EXPORTER_LABELS)},
            }
            if prometheus_config is not None:
                spec["prometheusConfig"] = prometheus_config
            obj["spec"] = spec

        upsert(session, self.monitoring_stack(session), mutate, controlled=True)
        return InstallStatus.SUCCESS

    def reconcile_service_monitor(self, session: Session) -> InstallStatus:
        if not self._monitoring_operator_installed(session):
            return InstallStatus.SUCCESS

        def mutate(obj: dict):
            obj["metadata"].setdefault("labels", {}).update(EXPORTER_LABELS)
            obj["spec"] = {
                "endpoints": [
                    {
                        "interval": SERVICE_MONITOR_INTERVAL,
                        "path": "/metrics",
                        "port": "metrics",
                        "scheme": "http",
                    }
                ],
                "selector": {"matchLabels": dict(EXPORTER_LABELS)},
            }

        upsert(session, self.service_monitor(session), mutate, controlled=True)
        return InstallStatus.SUCCESS

    ## Cleanup Steps ###########################################################

    def delete_service_monitor(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.service_monitor(session))
        return InstallStatus.SUCCESS

    def delete_monitoring_stack(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.monitoring_stack(session))
        return InstallStatus.SUCCESS

    ## Implementation Details ##################################################

    def _monitoring_operator_installed(self, session: Session) -> bool:
        subscription = get_current(
            session,
            get_subscription(
                self.settings.operator_namespace, self.settings.operator_subscription
            ),
        )
        return subscription is not None

    def _prometheus_config(self, session: Session) -> dict:
        """Build the prometheus section holding the remote write target"""
        prometheus_config = {"replicas": 1}
        cluster_id = self._cluster_id(session)
        if cluster_id:
            prometheus_config["externalLabels"] = {CLUSTER_ID_LABEL: cluster_id}
        prometheus_config["remoteWrite"] = [self._remote_write_spec(session)]
        return prometheus_config

    @staticmethod
    def _cluster_id(session: Session) -> Optional[str]:
        cluster_version = get_current(
            session,
            ManagedObject(
                CLUSTER_VERSION_API_VERSION, CLUSTER_VERSION_KIND, CLUSTER_VERSION_NAME
            ),
        )
        return (cluster_version or {}).get("spec", {}).get("clusterID")

    def _remote_write_spec(self, session: Session) -> dict:
        """Build the remote write entry for the configured auth type

        Raises:
            PreconditionError:  If the secret does not exist yet
            ConfigError:  If the auth type is unknown or the secret is missing
                a required key
        """
        auth_type = self.settings.auth_type
        assert_config(
            auth_type in [AUTH_TYPE_DEX, AUTH_TYPE_REDHAT_SSO],
            f"Unknown remote write auth type {auth_type}",
        )
        secret_data = self._secret_data(session)
        spec = {"url": self.settings.remote_write_url}

        if auth_type == AUTH_TYPE_DEX:
            spec["bearerToken"] = _decode(_require_key(secret_data, TOKEN_KEY))
        else:
            assert_config(
                bool(self.settings.token_url),
                "Remote write with redhat-sso requires a token url",
            )
            _require_key(secret_data, CLIENT_ID_KEY)
            _require_key(secret_data, CLIENT_SECRET_KEY)
            audience = _decode(_require_key(secret_data, AUDIENCE_KEY))
            secret_name = self.settings.secret_name
            spec["oauth2"] = {
                "clientId": {"secret": {"name": secret_name, "key": CLIENT_ID_KEY}},
                "clientSecret": {"name": secret_name, "key": CLIENT_SECRET_KEY},
                "tokenUrl": self.settings.token_url,
                "endpointParams": {"audience": audience},
            }

        spec["tlsConfig"] = {"insecureSkipVerify": True}
        spec["writeRelabelConfigs"] = [
            {
                "sourceLabels": ["__name__"],
                "regex": "(" + "|".join(METRICS_TO_INCLUDE) + ")",
                "action": "keep",
            }
        ]
        return spec

    def _secret_data(self, session: Session) -> dict:
        secret = get_current(
            session,
            ManagedObject("v1", "Secret", self.settings.secret_name, session.namespace),
        )
        assert_precondition(
            secret is not None,
            f"Remote write secret {self.settings.secret_name} not found in "
            f"{session.namespace}",
        )
        return secret.get("data") or {}


def _require_key(secret_data: dict, key: str) -> str:
    assert_config(key in secret_data, f"Remote write secret has no value for {key}")
    return secret_data[key]


def _decode(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")
