"""
The PlatformReconcileManager manages an individual reconcile of the parent
platform object. It sets up the session, builds the platform reconcilers, runs
the install or uninstall pass and writes the resulting status.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional, Union
import base64
import datetime
import logging
import threading
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants, status
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import ClusterError, PlatformExpectedError, assert_cluster
from .log_format import PlatformJsonFormatter
from .orchestrator import AggregateStatus, install_all, uninstall_all
from .platforms import load_observability_config, load_platforms
from .reconcilers import PlatformReconciler, make_reconcilers
from .session import Session
from .utils import add_finalizer, remove_finalizer

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation session"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The aggregate outcome of the pass, if one ran
    aggregate: Optional[AggregateStatus] = None
    # Flag to identify if the reconciliation raised an exception
    exception: Exception = None


def error_requeue_params() -> RequeueParams:
    """Requeue parameters used when a pass did not complete"""
    return RequeueParams(
        requeue_after=datetime.timedelta(
            seconds=float(config.error_requeue_after_seconds)
        )
    )


## PlatformReconcileManager ####################################################


class PlatformReconcileManager:
    """This class manages reconciliations of the parent platform object. Its
    primary function is to run a single install or uninstall pass given the
    parent manifest and the current cluster state via a DeployManager.
    """

    ## Construction ############################################################

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        reconcilers: Optional[List[PlatformReconciler]] = None,
    ):
        """The constructor sets up the properties used across every reconcile

        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, a new DeployManager will
                be created for each reconcile.
            reconcilers:  Optional[List[PlatformReconciler]]
                The ordered platform reconcilers. If not given, they are built
                from the library config for each reconcile.
        """
        self.deploy_manager = deploy_manager
        self.reconcilers = reconcilers

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        deadline: Optional[datetime.datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Parse the raw parent manifest
            2. Setup logging based on config with overrides from the parent
            3. Build the platform reconcilers
            4. Setup the DeployManager and Session objects
            5. Run the install pass, or the uninstall pass if the parent is
               being deleted

        Args:
            resource:  Union[dict, aconfig.Config]
                A raw representation of the parent to be reconciled
            deadline:  Optional[datetime.datetime]
                No new step starts after this time
            cancel_event:  Optional[threading.Event]
                No new step starts once this is set

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """

        # Parse the full parent content
        cr_manifest = self.parse_manifest(resource)

        # generate id unique to this session
        reconcile_id = self.generate_id()

        # Initialize logging prior to any other work
        self.configure_logging(cr_manifest, reconcile_id)

        # Build the reconcilers from the current config
        reconcilers = self.setup_reconcilers()

        # Configure deploy manager on a per reconcile basis unless a manager
        # is provided on initialization
        deploy_manager = self.setup_deploy_manager()

        session = Session(
            reconciliation_id=reconcile_id,
            cr_manifest=cr_manifest,
            deploy_manager=deploy_manager,
            deadline=deadline,
            cancel_event=cancel_event,
        )
        return self.run_reconcile(session, reconcilers)

    def safe_reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        **kwargs,
    ) -> ReconciliationResult:
        """This function calls out to reconcile but catches any errors thrown.
        This function guarantees a safe result for the trigger loop.

        Args:
            resource:  Union[dict, aconfig.Config]
                A raw representation of the parent
            **kwargs:
                Passed through to reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(resource, **kwargs)

        # Expected errors from writing the parent (a stale resourceVersion, or
        # a parent that is already gone) are retried without a failure status
        except PlatformExpectedError as exc:
            log.debug("Expected error during reconcile: %s", exc, exc_info=True)
            log.info("Requeuing parent after expected error: %s", exc)
            return ReconciliationResult(
                requeue=True, requeue_params=error_requeue_params(), exception=exc
            )

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        if config.manage_status:
            try:
                self._update_error_status(resource, error)
                log.debug("Update parent status with error message")
            except Exception as exc:  # pylint: disable=broad-except
                log.error("Failed to update status: %s", exc, exc_info=True)

        # If we got to this return it means there was an exception during
        # reconcile and we should requeue with the error delay
        log.info("Requeuing parent due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=error_requeue_params(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config])
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed and validated config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse full_cr") from exc

        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile

        Args:
            cr_manifest: aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id: str
                The unique id for the reconciliation
        """

        # Fetch the annotations for logging
        # NOTE: We use safe fetching here because this happens before the
        #   manifest is validated in the Session constructor
        annotations = cr_manifest.get("metadata", {}).get("annotations", {})
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )

        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        # Convert boolean args
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the old handler so that an embedding process keeps its output
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=PlatformJsonFormatter(cr_manifest, reconciliation_id)
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    def setup_reconcilers(self) -> List[PlatformReconciler]:
        """Get the ordered platform reconcilers, building them from the
        library config if none were given at construction

        Raises:
            ConfigError:  If the platforms table is invalid
        """
        if self.reconcilers is not None:
            return self.reconcilers
        platforms = load_platforms(config.library_config)
        observability = load_observability_config(config.library_config)
        reconcilers = make_reconcilers(platforms, observability)
        log.debug2("Built reconcilers: %s", reconcilers)
        return reconcilers

    def setup_deploy_manager(self) -> DeployManagerBase:
        """Configure a deploy_manager for a reconcile

        Returns:
            deploy_manager: DeployManagerBase
                The deploy_manager to be used during reconcile
        """
        if self.deploy_manager:
            return self.deploy_manager

        if config.dry_run:
            log.debug("Using DryRunDeployManager")
            return DryRunDeployManager()

        log.debug("Using OpenshiftDeployManager")
        return OpenshiftDeployManager()

    def run_reconcile(
        self, session: Session, reconcilers: List[PlatformReconciler]
    ) -> ReconciliationResult:
        """Run the install or uninstall pass with the constructed Session. This
        function also updates the parent status and handles requeue logic.

        Args:
            session: Session
                The current Session state
            reconcilers: List[PlatformReconciler]
                The ordered platform reconcilers

        Returns:
            reconciliation_result: ReconciliationResult
                The result of the reconcile
        """
        deleting = session.is_deleting
        log.info(
            "%s resource %s/%s/%s",
            "Finalizing" if deleting else "Reconciling",
            session.kind,
            session.namespace,
            session.name,
        )

        # Ensure the parent holds the finalizer before anything is installed
        if not deleting:
            add_finalizer(session, config.finalizer)

        if deleting:
            aggregate = uninstall_all(session, reconcilers)
        else:
            aggregate = install_all(session, reconcilers)
        log.info(
            "Pass for %s/%s finished with %s",
            session.namespace,
            session.name,
            aggregate.status.value,
        )

        if config.manage_status:
            self._update_resource_status(
                session.deploy_manager,
                session.cr_manifest,
                ready_condition=aggregate.ready_condition,
                platform_entries=aggregate.platform_entries,
                configured_platforms=aggregate.platforms,
            )

        # Once everything is removed, release the parent
        if deleting and aggregate.completed:
            remove_finalizer(session, config.finalizer)
            return ReconciliationResult(requeue=False, aggregate=aggregate)

        requeue_params = (
            RequeueParams() if aggregate.completed else error_requeue_params()
        )
        return ReconciliationResult(
            requeue=True, requeue_params=requeue_params, aggregate=aggregate
        )

    ## Status Details ##########################################################

    def _update_resource_status(
        self, deploy_manager: DeployManagerBase, manifest: aconfig.Config, **kwargs
    ) -> dict:
        """Helper function to update the status of the parent given a
        deploy_manager, manifest and status kwargs

        Args:
            deploy_manager: DeployManagerBase
                The DeployManager used to update the resource
            manifest: aconfig.Config
                The manifest of the resource being updated
            **kwargs:
                The key word arguments passed to update_resource_status

        Returns:
            updated_status: dict
                The updated status applied to the resource
        """
        return status.update_resource_status(
            deploy_manager,
            manifest.kind,
            manifest.apiVersion,
            manifest.metadata.name,
            manifest.metadata.namespace,
            **kwargs,
        )

    def _update_error_status(
        self, resource: Union[dict, aconfig.Config], error: Exception
    ) -> dict:
        """Update the status of the parent after an error occurred outside of
        the platform steps. The existing per-platform entries are kept.

        Args:
            resource: Union[dict, aconfig.Config]
                The resource that's status is being updated
            error: Exception
                The exception that stopped the reconciliation

        Returns:
            status: dict
                The updated status after the error message
        """
        cr_manifest = self.parse_manifest(resource)
        deploy_manager = self.setup_deploy_manager()
        return self._update_resource_status(
            deploy_manager,
            cr_manifest,
            ready_condition=status.make_ready_condition(
                status.CONDITION_FALSE,
                status.ReadyReason.FAILED,
                str(error),
            ),
            platform_entries=[],
        )


## Bootstrap ###################################################################


@alog.logged_function(log.debug)
def ensure_platform_cr(deploy_manager: DeployManagerBase, namespace: str) -> dict:
    """Make sure exactly one parent platform object exists in the namespace

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to look up and create the parent
        namespace:  str
            The namespace the operator is installed in

    Returns:
        platform_cr:  dict
            The existing parent, or the newly created one

    Raises:
        ClusterError:  If the lookup or creation fails, or if more than one
            parent exists
    """
    success, existing = deploy_manager.filter_objects_current_state(
        kind=constants.PLATFORM_KIND,
        namespace=namespace,
        api_version=constants.PLATFORM_API_VERSION,
    )
    assert_cluster(success, f"Failed to list {constants.PLATFORM_KIND} in {namespace}")
    if len(existing) > 1:
        raise ClusterError(
            f"Found {len(existing)} {constants.PLATFORM_KIND} objects in {namespace}"
        )
    if existing:
        log.debug2("Found existing platform %s", existing[0]["metadata"]["name"])
        return existing[0]

    platform_cr = {
        "apiVersion": constants.PLATFORM_API_VERSION,
        "kind": constants.PLATFORM_KIND,
        "metadata": {
            "name": config.platform_cr_name,
            "namespace": namespace,
            "labels": {constants.MANAGED_BY_LABEL: constants.MANAGED_BY_VALUE},
        },
        "spec": {"syncPeriod": config.default_sync_period},
    }
    log.info(
        "Creating %s %s/%s", constants.PLATFORM_KIND, namespace, config.platform_cr_name
    )
    success, _ = deploy_manager.deploy([platform_cr])
    assert_cluster(success, f"Failed to create {config.platform_cr_name}")

    success, created = deploy_manager.get_object_current_state(
        kind=constants.PLATFORM_KIND,
        name=config.platform_cr_name,
        namespace=namespace,
        api_version=constants.PLATFORM_API_VERSION,
    )
    assert_cluster(success, f"Failed to fetch {config.platform_cr_name}")
    return created or platform_cr
