"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the installer is
running in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, List, Optional, Tuple
import copy
import threading

# Third Party
from deepdiff import DeepDiff
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as ClientConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from ..exceptions import ConflictError, assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

# Name used to identify writes made by this library
FIELD_MANAGER = "dbaas-platform"

# Metadata fields that change on every write and are ignored when diffing
_VOLATILE_METADATA = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
]


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self):
        # Set up the client lazily
        log.debug("Initializing openshift client")
        self._client = None

        # Keep a threading lock for performing status updates so that
        # concurrent status writes in one process are serialized
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Create or replace each resource using the openshift client. A
        resourceVersion on the definition is sent with the replace so that the
        server rejects writes based on a stale read.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes

        Raises:
            ConflictError:  If the server rejected a write as stale
        """
        return self._run_operation(resource_definitions, self._apply)

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each resource if it exists

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete from the cluster

        Returns:
            success:  bool
                True if delete succeeded, False otherwise
            changed:  bool
                Whether or not the delete resulted in changes
        """
        return self._run_operation(resource_definitions, self._disable)

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state using calls directly to the api client

        Args:
            kind:  str
                The kind of the object ot fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for no namespace
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind that match the given selectors

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch
            label_selector:  str
                The label_selector to filter the resources
            field_selector:  str
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects configuration,
                or an empty list if no objects match
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        if not namespace:
            resources.namespaced = False

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Write the status sub-resource of an object

        Args:
            kind:  str
                The kind of the object to update
            name:  str
                The full name of the object to update
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status object to set onto the given object
            api_version:  Optional[str]
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update operation succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """
        # Create a dummy resource to use in the common operation wrapper
        resource_definitions = [
            {
                "kind": kind,
                "apiVersion": api_version,
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                },
            }
        ]
        return self._run_operation(
            resource_definitions,
            self._set_status,
            status=status,
        )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the installer
        is running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")

            # Create Empty Config and load in-cluster information
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)

            # Generate ApiClient and return Openshift DynamicClient
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and
        api_version
        """
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No resource kind [%s/%s] found or multiple kinds match",
                api_version,
                kind,
            )
        return resources

    def _run_operation(
        self,
        resource_definitions: List[dict],
        operation: Callable,
        **kwargs,
    ) -> Tuple[bool, bool]:
        """Shared wrapper for executing a client operation on each resource in
        order, stopping at the first failure
        """
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"

        if not resource_definitions:
            log.debug("Nothing to do for an empty list of resources")
            return True, False

        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = operation(resource_definition, **kwargs) or changed

            # Stale writes are expected and surface to the caller
            except ClientConflictError as err:
                log.debug("Conflict on [%s]: %s", operation.__name__, err)
                raise ConflictError(str(err)) from err

            # On failure, mark it and stop processing the rest of the resources
            # since later resources may depend on earlier ones
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation.__name__,
                    err,
                    exc_info=True,
                )
                success = False
                break

        return success, changed

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition, require_api_version=True):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            kind,
            name,
        ], "Cannot operate on a resource without kind or name"
        assert (
            not require_api_version or api_version is not None
        ), "Cannot operate on a resource without apiVersion"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    @staticmethod
    def _manifest_diff(current: dict, desired: dict) -> bool:
        """Compare two manifests while ignoring fields the server owns"""
        current = copy.deepcopy(current)
        desired = copy.deepcopy(desired)
        for manifest in [current, desired]:
            manifest.pop("status", None)
            for field in _VOLATILE_METADATA:
                manifest.get("metadata", {}).pop(field, None)
        diff = DeepDiff(current, desired, ignore_order=False)
        log.debug3("Manifest diff: %s", diff)
        return bool(diff)

    ################
    ## Operations ##
    ################

    def _apply(self, resource_definition: dict) -> bool:
        """Create or replace a single resource

        Returns:
            changed:  bool
                Whether or not the write resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(
            success,
            "Failed to fetch current state for "
            + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
        )

        if current and not self._manifest_diff(current, resource_definition):
            log.debug2("No change for [%s/%s]", res_id.kind, res_id.name)
            return False

        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        assert_cluster(
            resource_handle,
            "Failed to fetch resource handle for "
            + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}",
        )
        if not res_id.namespace:
            resource_handle.namespaced = False

        # Let the server set managedFields
        resource_definition = copy.deepcopy(resource_definition)
        resource_definition["metadata"].pop("managedFields", None)

        if not current:
            log.debug2(
                "Creating [%s/%s/%s] in %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.create(
                body=resource_definition,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
        else:
            log.debug2(
                "Replacing [%s/%s/%s] in %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.replace(
                body=resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            )
        return True

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource from the cluster if it exists

        Returns:
            changed:  bool
                Whether or not the delete resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        log.debug2("Fetching resource [%s/%s]", res_id.api_version, res_id.kind)
        try:
            # This may fail with ResourceNotFoundError if the kind is not served
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            if not res_id.namespace:
                resource_handle.namespaced = False

            # This may fail with NotFoundError if the instance is already gone
            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            return True

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )
        return False

    def _set_status(self, resource_definition: dict, status: dict) -> bool:
        """Write the status of a single resource

        Returns:
            changed:  bool
                Whether or not the status update resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(
            resource_definition, require_api_version=False
        )
        resource_handle = self.client.resources.get(
            api_version=res_id.api_version, kind=res_id.kind
        )
        if not res_id.namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False

            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
