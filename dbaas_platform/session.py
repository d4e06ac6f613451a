"""
This module holds the core session state for an individual reconciliation
"""

# Standard
from datetime import datetime
from typing import List, Optional, Tuple
import threading

# First Party
import aconfig
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .exceptions import ReconcileCancelledError, assert_config
from .utils import to_plain_dict

log = alog.use_channel("SESSION")

# Helper Definition to define when a session should use its own namespace
# or the one passed in as an argument
_SESSION_NAMESPACE = "__SESSION_NAMESPACE__"


class Session:  # pylint: disable=too-many-public-methods
    """A session is the core context for the state of an in-progress
    reconciliation of the parent platform object
    """

    # We strictly define the set of attributes that a Session can have to
    # disallow arbitrary assignment
    __slots__ = [
        "__id",
        "__cr_manifest",
        "__deploy_manager",
        "__deadline",
        "__cancel_event",
    ]

    def __init__(  # pylint: disable=too-many-arguments
        self,
        reconciliation_id: str,
        cr_manifest: aconfig.Config,
        deploy_manager: DeployManagerBase,
        deadline: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Construct a session object to hold the state for a reconciliation

        Args:
            reconciliation_id:  str
                The unique ID for this reconciliation
            cr_manifest:  aconfig.Config
                The full value of the parent manifest that triggered this
                reconciliation
            deploy_manager:  DeployManagerBase
                The preconfigured DeployManager in charge of every read and
                write against the cluster
            deadline:  Optional[datetime]
                If given, no new step starts after this time
            cancel_event:  Optional[threading.Event]
                If given and set, no new step starts
        """
        self.__id = reconciliation_id
        if not isinstance(cr_manifest, aconfig.Config):
            cr_manifest = aconfig.Config(cr_manifest, override_env_vars=False)
        self._validate_cr(cr_manifest)
        self.__cr_manifest = cr_manifest
        self.__deploy_manager = deploy_manager
        self.__deadline = deadline
        self.__cancel_event = cancel_event

    ## Properties ##############################################################

    @property
    def id(self) -> str:  # pylint: disable=invalid-name
        """The unique reconciliation ID"""
        return self.__id

    @property
    def cr_manifest(self) -> aconfig.Config:
        """The full parent manifest that triggered this reconciliation"""
        return self.__cr_manifest

    @property
    def spec(self) -> aconfig.Config:
        """The spec section of the parent manifest"""
        return self.cr_manifest.get("spec") or aconfig.Config({})

    @property
    def metadata(self) -> aconfig.Config:
        """The metadata for the parent"""
        return self.cr_manifest.metadata

    @property
    def kind(self) -> str:
        """The kind of the parent"""
        return self.cr_manifest.kind

    @property
    def api_version(self) -> str:
        """The api version of the parent"""
        return self.cr_manifest.apiVersion

    @property
    def name(self) -> str:
        """The metadata.name for the parent"""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """The metadata.namespace for the parent"""
        return self.metadata.namespace

    @property
    def uid(self) -> Optional[str]:
        """The metadata.uid for the parent"""
        return self.metadata.get("uid")

    @property
    def finalizers(self) -> List[str]:
        """The metadata.finalizers for the parent"""

        # Manually create finalizer list if it doesn't exist so its
        # editable
        if "finalizers" not in self.metadata:
            self.metadata["finalizers"] = []

        return self.metadata.get("finalizers")

    @property
    def is_deleting(self) -> bool:
        """Whether the parent has been marked for deletion"""
        return bool(self.metadata.get("deletionTimestamp"))

    @property
    def sync_period(self) -> Optional[int]:
        """The spec.syncPeriod (minutes) for the parent, if set

        Raises:
            ConfigError:  If the value is not an int within the allowed bounds
        """
        sync_period = self.spec.get("syncPeriod")
        if sync_period is None:
            return None
        assert_config(
            isinstance(sync_period, int)
            and not isinstance(sync_period, bool)
            and constants.MIN_SYNC_PERIOD <= sync_period <= constants.MAX_SYNC_PERIOD,
            f"spec.syncPeriod must be an int in [{constants.MIN_SYNC_PERIOD}, "
            f"{constants.MAX_SYNC_PERIOD}], got {sync_period}",
        )
        return sync_period

    @property
    def owner_manifest(self) -> dict:
        """A plain dict copy of the parent used for ownership references"""
        return to_plain_dict(self.cr_manifest)

    @property
    def deploy_manager(self) -> DeployManagerBase:
        """Allow read access to the deploy manager"""
        return self.__deploy_manager

    @property
    def cancelled(self) -> bool:
        """Whether the caller cancelled the pass or its deadline passed"""
        if self.__cancel_event is not None and self.__cancel_event.is_set():
            return True
        return self.__deadline is not None and datetime.now() >= self.__deadline

    ## Utilities ###############################################################

    def check_cancelled(self):
        """Raise if the pass should not start any new work

        Raises:
            ReconcileCancelledError:  If cancelled or past the deadline
        """
        if self.cancelled:
            log.debug("Reconciliation [%s] cancelled", self.id)
            raise ReconcileCancelledError(f"Reconciliation {self.id} cancelled")

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = _SESSION_NAMESPACE,
    ) -> Tuple[bool, Optional[dict]]:
        """Get the current state of the given object, by default in the
        namespace of this session

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            api_version:  str
                The api_version of the resource kind to fetch
            namespace:  Optional[str]
                The namespace to look in. None for cluster scoped objects.

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """
        namespace = namespace if namespace != _SESSION_NAMESPACE else self.namespace
        return self.deploy_manager.get_object_current_state(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
        )

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        namespace: Optional[str] = _SESSION_NAMESPACE,
    ) -> Tuple[bool, List[dict]]:
        """List objects of the given kind, by default in the namespace of this
        session

        Args:
            kind:  str
                The kind of the object to fetch
            api_version:  str
                The api_version of the resource kind to fetch
            label_selector:  str
                The label selector to filter the results by
            field_selector:  str
                The field selector to filter the results by
            namespace:  Optional[str]
                The namespace to look in

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[Dict]
                The list of resources in dict representation,
                or [] if none match
        """
        namespace = namespace if namespace != _SESSION_NAMESPACE else self.namespace
        return self.deploy_manager.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=label_selector,
            field_selector=field_selector,
        )

    ## Implementation Details ##################################################

    @staticmethod
    def _validate_cr(cr_manifest: aconfig.Config):
        """Ensure that all expected elements of the parent are present.
        Expected elements are those that are guaranteed to be present by the
        kube API.
        """
        assert "kind" in cr_manifest, "CR missing required section ['kind']"
        assert "apiVersion" in cr_manifest, "CR missing required section ['apiVersion']"
        assert "metadata" in cr_manifest, "CR missing required section ['metadata']"
        assert (
            "name" in cr_manifest.metadata
        ), "CR missing required section ['metadata.name']"
        assert (
            "namespace" in cr_manifest.metadata
        ), "CR missing required section ['metadata.namespace']"
