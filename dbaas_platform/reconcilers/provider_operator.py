"""
Reconciler for database provider operators installed from their own catalog
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager.owner_references import set_controller_reference
from ..exceptions import assert_cluster, assert_verified
from ..managed_object import ManagedObject
from ..olm_helpers import (
    catalog_source_name,
    check_owner_reference_set,
    get_catalog_source,
    get_cluster_service_version,
    get_operator_group,
    get_subscription,
    subscription_name,
)
from ..session import Session
from ..status import InstallStatus
from ..steps import STEP_TYPE, delete_if_exists, get_current, upsert
from ..verify_resources import verify_deployment_started
from .base import PlatformReconciler

log = alog.use_channel("PROVR")

DEPLOYMENT_API_VERSION = "apps/v1"
DEPLOYMENT_KIND = "Deployment"


class ProviderOperatorReconciler(PlatformReconciler):
    """Installs a provider operator through OLM: its catalog source, a
    subscription to its package, the shared operator group, and finally
    ownership of the installed CSV
    """

    def install_steps(self) -> List[STEP_TYPE]:
        return [
            self.reconcile_catalog_source,
            self.reconcile_subscription,
            self.reconcile_operator_group,
            self.wait_for_operator,
            self.reconcile_csv,
        ]

    def cleanup_steps(self) -> List[STEP_TYPE]:
        return [
            self.delete_deployment,
            self.delete_csv,
            self.delete_subscription,
            self.delete_catalog_source,
        ]

    ## Identities ##############################################################

    def catalog_source(self) -> ManagedObject:
        return get_catalog_source(
            self.platform.catalog_namespace, catalog_source_name(self.name)
        )

    def subscription(self, session: Session) -> ManagedObject:
        return get_subscription(session.namespace, subscription_name(self.name))

    def operator_group(self) -> ManagedObject:
        return get_operator_group(
            self.platform.install_namespace, constants.GLOBAL_OPERATOR_GROUP
        )

    def csv(self, session: Session) -> Optional[ManagedObject]:
        if not self.platform.csv:
            return None
        return get_cluster_service_version(session.namespace, self.platform.csv)

    def deployment(self, session: Session) -> ManagedObject:
        return ManagedObject(
            DEPLOYMENT_API_VERSION,
            DEPLOYMENT_KIND,
            self.platform.deployment_name,
            session.namespace,
        )

    ## Install Steps ###########################################################

    def reconcile_catalog_source(self, session: Session) -> InstallStatus:
        """Make sure the platform's catalog source serves its index image"""

        def mutate(obj: dict):
            obj["spec"] = {
                "sourceType": "grpc",
                "image": self.platform.image,
                "displayName": self.platform.display_name,
                "grpcPodConfig": {"securityContextConfig": "legacy"},
            }

        upsert(session, self.catalog_source(), mutate)
        return InstallStatus.SUCCESS

    def reconcile_subscription(self, session: Session) -> InstallStatus:
        """Subscribe to the platform's package from its catalog source"""
        catalog_source = self.catalog_source()
        sync_period = session.sync_period

        def mutate(obj: dict):
            spec = {
                "source": catalog_source.name,
                "sourceNamespace": catalog_source.namespace,
                "name": self.platform.package_name,
                "channel": self.platform.channel,
                "installPlanApproval": "Automatic",
            }
            if self.platform.csv:
                spec["startingCSV"] = self.platform.csv
            if sync_period is not None:
                spec["config"] = {
                    "env": [
                        {"name": constants.SYNC_PERIOD_ENV, "value": str(sync_period)}
                    ]
                }
            obj["spec"] = spec

        upsert(session, self.subscription(session), mutate, controlled=True)
        return InstallStatus.SUCCESS

    def reconcile_operator_group(self, session: Session) -> InstallStatus:
        """Make sure the shared global operator group exists"""
        return reconcile_global_operator_group(session, self.operator_group())

    def wait_for_operator(self, session: Session) -> InstallStatus:
        """Wait until the operator's deployment has a ready replica"""
        return wait_for_deployment(session, self.platform.deployment_name)

    def reconcile_csv(self, session: Session) -> InstallStatus:
        """Take controller ownership of the installed CSV so that it is
        collected with the parent. Adoption takes two passes: the first writes
        the reference and the second observes it.
        """
        csv = self.csv(session)
        if csv is None:
            log.debug2("[%s] No CSV configured to adopt", self.name)
            return InstallStatus.SUCCESS

        current = get_current(session, csv)
        if current is None:
            log.debug("[%s] CSV %s not installed yet", self.name, csv.name)
            return InstallStatus.IN_PROGRESS

        owner = session.owner_manifest
        if check_owner_reference_set(owner, current):
            return InstallStatus.SUCCESS

        log.debug("[%s] Adopting CSV %s", self.name, csv.name)
        set_controller_reference(owner, current)
        success, _ = session.deploy_manager.deploy([current])
        assert_cluster(success, f"Failed to set owner of {csv}")
        return InstallStatus.IN_PROGRESS

    ## Cleanup Steps ###########################################################

    def delete_deployment(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.deployment(session))
        return InstallStatus.SUCCESS

    def delete_csv(self, session: Session) -> InstallStatus:
        csv = self.csv(session)
        if csv is not None:
            delete_if_exists(session, csv)
        return InstallStatus.SUCCESS

    def delete_subscription(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.subscription(session))
        return InstallStatus.SUCCESS

    def delete_catalog_source(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.catalog_source())
        return InstallStatus.SUCCESS


## Shared OLM Steps ############################################################


def reconcile_global_operator_group(
    session: Session, operator_group: ManagedObject
) -> InstallStatus:
    """Create the operator group with an empty spec so that it selects every
    namespace
    """

    def mutate(obj: dict):
        obj["spec"] = {}

    upsert(session, operator_group, mutate)
    return InstallStatus.SUCCESS


def wait_for_deployment(session: Session, deployment_name: str) -> InstallStatus:
    """Look for the named deployment in the parent namespace and wait for a
    ready replica
    """
    success, deployments = session.filter_objects_current_state(
        kind=DEPLOYMENT_KIND,
        api_version=DEPLOYMENT_API_VERSION,
    )
    assert_cluster(success, f"Failed to list deployments in {session.namespace}")
    assert_verified(
        any(
            deployment.get("metadata", {}).get("name") == deployment_name
            and verify_deployment_started(deployment)
            for deployment in deployments
        ),
        f"Deployment {deployment_name} has no ready replicas",
    )
    return InstallStatus.SUCCESS
