"""
Reconciler for the dynamic console UI plugin
"""

# Standard
from typing import List

# First Party
import alog

# Local
from ..exceptions import assert_cluster, assert_verified
from ..managed_object import ManagedObject
from ..session import Session
from ..status import InstallStatus
from ..steps import STEP_TYPE, delete_if_exists, get_current, upsert
from ..utils import append_unique, remove_all, to_plain_dict
from ..verify_resources import (
    verify_console_deployment_available,
    verify_deployment_rolled_out,
)
from .base import PlatformReconciler

log = alog.use_channel("CPLGN")

CONSOLE_PORT = 9001
SERVICE_CERT_PREFIX = "serve-cert-"
SERVING_CERT_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"
SERVING_CERT_MOUNT = "/var/serving-cert"
PLUGIN_REPLICAS = 3

CONSOLE_PLUGIN_API_VERSION = "console.openshift.io/v1alpha1"
CONSOLE_PLUGIN_KIND = "ConsolePlugin"
CONSOLE_API_VERSION = "operator.openshift.io/v1"
CONSOLE_KIND = "Console"
CONSOLE_NAME = "cluster"


class ConsolePluginReconciler(PlatformReconciler):
    """Serves the UI plugin from a deployment in the parent namespace,
    registers it with the console and enables it in the console operator
    config
    """

    def install_steps(self) -> List[STEP_TYPE]:
        return [
            self.reconcile_service,
            self.reconcile_deployment,
            self.reconcile_console_plugin,
            self.enable_console_plugin,
        ]

    def cleanup_steps(self) -> List[STEP_TYPE]:
        return [
            self.disable_console_plugin,
            self.delete_console_plugin,
            self.delete_deployment,
            self.delete_service,
        ]

    ## Identities ##############################################################

    @property
    def cert_name(self) -> str:
        return SERVICE_CERT_PREFIX + self.name

    def service(self, session: Session) -> ManagedObject:
        return ManagedObject("v1", "Service", self.name, session.namespace)

    def deployment(self, session: Session) -> ManagedObject:
        return ManagedObject("apps/v1", "Deployment", self.name, session.namespace)

    def console_plugin(self) -> ManagedObject:
        return ManagedObject(CONSOLE_PLUGIN_API_VERSION, CONSOLE_PLUGIN_KIND, self.name)

    @staticmethod
    def console() -> ManagedObject:
        return ManagedObject(CONSOLE_API_VERSION, CONSOLE_KIND, CONSOLE_NAME)

    def _app_labels(self) -> dict:
        return {
            "app": self.name,
            "app.kubernetes.io/component": self.name,
            "app.kubernetes.io/instance": self.name,
            "app.kubernetes.io/part-of": self.name,
        }

    ## Install Steps ###########################################################

    def reconcile_service(self, session: Session) -> InstallStatus:
        """Expose the plugin server with a serving certificate"""

        def mutate(obj: dict):
            metadata = obj["metadata"]
            annotations = metadata.setdefault("annotations", {})
            annotations[SERVING_CERT_ANNOTATION] = self.cert_name
            metadata.setdefault("labels", {}).update(self._app_labels())
            spec = obj.setdefault("spec", {})
            spec["ports"] = [
                {
                    "name": f"{CONSOLE_PORT}-tcp",
                    "protocol": "TCP",
                    "port": CONSOLE_PORT,
                    "targetPort": CONSOLE_PORT,
                }
            ]
            spec["selector"] = {"app": self.name}
            spec["type"] = "ClusterIP"
            spec["sessionAffinity"] = "None"

        upsert(session, self.service(session), mutate, controlled=True)
        return InstallStatus.SUCCESS

    def reconcile_deployment(self, session: Session) -> InstallStatus:
        """Run the plugin server and wait for every replica to be ready"""
        namespace = session.namespace
        envs = [to_plain_dict(env) for env in self.platform.envs]

        def mutate(obj: dict):
            labels = self._app_labels()
            labels["app.openshift.io/runtime-namespace"] = namespace
            obj["metadata"].setdefault("labels", {}).update(labels)

            tcp_probe = {"tcpSocket": {"port": CONSOLE_PORT}}
            spec = obj.setdefault("spec", {})
            spec["replicas"] = PLUGIN_REPLICAS
            spec["selector"] = {"matchLabels": {"app": self.name}}
            template = spec.setdefault("template", {})
            template["metadata"] = {"labels": {"app": self.name}}
            pod_spec = template.setdefault("spec", {})
            pod_spec["containers"] = [
                {
                    "name": self.name,
                    "image": self.platform.image,
                    "ports": [{"containerPort": CONSOLE_PORT, "protocol": "TCP"}],
                    "imagePullPolicy": "Always",
                    "args": [
                        "--ssl",
                        f"--cert={SERVING_CERT_MOUNT}/tls.crt",
                        f"--key={SERVING_CERT_MOUNT}/tls.key",
                    ],
                    "volumeMounts": [
                        {
                            "name": self.cert_name,
                            "readOnly": True,
                            "mountPath": SERVING_CERT_MOUNT,
                        }
                    ],
                    "env": envs,
                    "securityContext": {
                        "allowPrivilegeEscalation": False,
                        "capabilities": {"drop": ["ALL"]},
                        "readOnlyRootFilesystem": True,
                        "runAsNonRoot": True,
                    },
                    "livenessProbe": dict(tcp_probe, initialDelaySeconds=5),
                    "readinessProbe": dict(
                        tcp_probe, initialDelaySeconds=30, periodSeconds=20
                    ),
                }
            ]
            pod_spec["volumes"] = [
                {
                    "name": self.cert_name,
                    "secret": {"secretName": self.cert_name, "defaultMode": 420},
                }
            ]
            pod_spec["restartPolicy"] = "Always"
            pod_spec["dnsPolicy"] = "ClusterFirst"
            spec["strategy"] = {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxUnavailable": "25%", "maxSurge": "25%"},
            }

        deployment = self.deployment(session)
        upsert(session, deployment, mutate, controlled=True)

        # Re-read so that the rollout check sees the server's view
        assert_verified(
            verify_deployment_rolled_out(get_current(session, deployment)),
            f"Plugin deployment {self.name} is still rolling out",
        )
        return InstallStatus.SUCCESS

    def reconcile_console_plugin(self, session: Session) -> InstallStatus:
        """Register the plugin's service with the console"""
        namespace = session.namespace

        def mutate(obj: dict):
            spec = obj.setdefault("spec", {})
            spec["displayName"] = self.platform.display_name
            spec["service"] = {
                "name": self.name,
                "namespace": namespace,
                "port": CONSOLE_PORT,
                "basePath": "/",
            }

        upsert(session, self.console_plugin(), mutate)
        return InstallStatus.SUCCESS

    def enable_console_plugin(self, session: Session) -> InstallStatus:
        """Add the plugin to the console operator config, then wait for the
        console to redeploy
        """
        console = self.console()
        current = get_current(session, console)
        if current is None:
            log.debug("Console operator config %s not found", CONSOLE_NAME)
            return InstallStatus.IN_PROGRESS

        spec = current.setdefault("spec", {})
        plugins = spec["plugins"] = spec.get("plugins") or []
        if append_unique(plugins, self.name):
            log.debug("[%s] Enabling plugin in the console", self.name)
            success, _ = session.deploy_manager.deploy([current])
            assert_cluster(success, f"Failed to enable plugin {self.name}")
            return InstallStatus.IN_PROGRESS

        if verify_console_deployment_available(current):
            return InstallStatus.SUCCESS
        return InstallStatus.IN_PROGRESS

    ## Cleanup Steps ###########################################################

    def disable_console_plugin(self, session: Session) -> InstallStatus:
        """Remove the plugin from the console operator config if present"""
        current = get_current(session, self.console())
        if current is None:
            return InstallStatus.SUCCESS

        plugins = current.get("spec", {}).get("plugins")
        if plugins and remove_all(plugins, self.name):
            log.debug("[%s] Disabling plugin in the console", self.name)
            success, _ = session.deploy_manager.deploy([current])
            assert_cluster(success, f"Failed to disable plugin {self.name}")
        return InstallStatus.SUCCESS

    def delete_console_plugin(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.console_plugin())
        return InstallStatus.SUCCESS

    def delete_deployment(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.deployment(session))
        return InstallStatus.SUCCESS

    def delete_service(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.service(session))
        return InstallStatus.SUCCESS
