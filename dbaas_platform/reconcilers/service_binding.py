"""
Reconciler for the service binding operator, installed from a shared catalog
"""

# Standard
from typing import List

# First Party
import alog

# Local
from .. import constants
from ..managed_object import ManagedObject
from ..olm_helpers import (
    get_catalog_source,
    get_operator_group,
    get_subscription,
    subscription_name,
)
from ..session import Session
from ..status import InstallStatus
from ..steps import STEP_TYPE, delete_if_exists, get_current, upsert
from .base import PlatformReconciler
from .provider_operator import (
    DEPLOYMENT_API_VERSION,
    DEPLOYMENT_KIND,
    reconcile_global_operator_group,
    wait_for_deployment,
)

log = alog.use_channel("SBO")


class ServiceBindingReconciler(PlatformReconciler):
    """Installs the binding helper operator. The catalog it comes from is
    shared with the rest of the cluster and is never created or deleted here.
    """

    def install_steps(self) -> List[STEP_TYPE]:
        return [
            self.verify_catalog_source,
            self.reconcile_subscription,
            self.reconcile_operator_group,
            self.wait_for_operator,
        ]

    def cleanup_steps(self) -> List[STEP_TYPE]:
        return [
            self.delete_deployment,
            self.delete_subscription,
        ]

    def catalog_source(self) -> ManagedObject:
        return get_catalog_source(
            self.platform.catalog_namespace, self.platform.catalog_source
        )

    def subscription(self, session: Session) -> ManagedObject:
        return get_subscription(session.namespace, subscription_name(self.name))

    ## Install Steps ###########################################################

    def verify_catalog_source(self, session: Session) -> InstallStatus:
        """Wait for the shared catalog to be available"""
        if get_current(session, self.catalog_source()) is None:
            log.debug(
                "Catalog %s not found in %s",
                self.platform.catalog_source,
                self.platform.catalog_namespace,
            )
            return InstallStatus.IN_PROGRESS
        return InstallStatus.SUCCESS

    def reconcile_subscription(self, session: Session) -> InstallStatus:
        catalog_source = self.catalog_source()

        def mutate(obj: dict):
            obj["spec"] = {
                "source": catalog_source.name,
                "sourceNamespace": catalog_source.namespace,
                "name": self.platform.package_name,
                "channel": self.platform.channel,
                "installPlanApproval": "Automatic",
            }

        upsert(session, self.subscription(session), mutate)
        return InstallStatus.SUCCESS

    def reconcile_operator_group(self, session: Session) -> InstallStatus:
        return reconcile_global_operator_group(
            session,
            get_operator_group(
                self.platform.install_namespace, constants.GLOBAL_OPERATOR_GROUP
            ),
        )

    def wait_for_operator(self, session: Session) -> InstallStatus:
        return wait_for_deployment(session, self.platform.deployment_name)

    ## Cleanup Steps ###########################################################

    def delete_deployment(self, session: Session) -> InstallStatus:
        delete_if_exists(
            session,
            ManagedObject(
                DEPLOYMENT_API_VERSION,
                DEPLOYMENT_KIND,
                self.platform.deployment_name,
                session.namespace,
            ),
        )
        return InstallStatus.SUCCESS

    def delete_subscription(self, session: Session) -> InstallStatus:
        delete_if_exists(session, self.subscription(session))
        return InstallStatus.SUCCESS
