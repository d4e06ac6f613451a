"""
Descriptor helpers for the OLM objects a package-managed platform goes
through. These only build identities; they never touch the cluster.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import constants
from .deploy_manager.owner_references import get_controller_of
from .managed_object import ManagedObject

log = alog.use_channel("OLM")


def get_catalog_source(namespace: str, name: str) -> ManagedObject:
    """Identity of a CatalogSource"""
    return ManagedObject(
        constants.OLM_API_VERSION, constants.CATALOG_SOURCE_KIND, name, namespace
    )


def get_subscription(namespace: str, name: str) -> ManagedObject:
    """Identity of a Subscription"""
    return ManagedObject(
        constants.OLM_API_VERSION, constants.SUBSCRIPTION_KIND, name, namespace
    )


def get_operator_group(namespace: str, name: str) -> ManagedObject:
    """Identity of an OperatorGroup"""
    return ManagedObject(
        constants.OPERATOR_GROUP_API_VERSION,
        constants.OPERATOR_GROUP_KIND,
        name,
        namespace,
    )


def get_cluster_service_version(namespace: str, name: str) -> ManagedObject:
    """Identity of a ClusterServiceVersion, the record OLM writes once a
    package is installed
    """
    return ManagedObject(constants.OLM_API_VERSION, constants.CSV_KIND, name, namespace)


def catalog_source_name(platform_name: str) -> str:
    """Name of the catalog source owned by a platform"""
    return f"{platform_name}-catalogsource"


def subscription_name(platform_name: str) -> str:
    """Name of the subscription owned by a platform"""
    return f"{platform_name}-subscription"


def check_owner_reference_set(owner: dict, obj: Optional[dict]) -> bool:
    """Check whether the object's controller reference points at the owner.

    The comparison uses the API group (not the version), the kind and the name
    so that a version bump of the owner's API does not trigger re-adoption.

    Args:
        owner:  dict
            The full manifest of the would-be owner
        obj:  Optional[dict]
            The full manifest of the owned object

    Returns:
        is_set:  bool
            True if the object is controlled by the owner
    """
    existing = get_controller_of(obj or {})
    if existing is None:
        log.debug3("No controller reference found")
        return False
    owner_metadata = owner.get("metadata", {})
    return (
        _api_group(existing.get("apiVersion")) == _api_group(owner.get("apiVersion"))
        and existing.get("kind") == owner.get("kind")
        and existing.get("name") == owner_metadata.get("name")
    )


def _api_group(api_version: Optional[str]) -> str:
    """Parse the group out of an apiVersion. Core objects have no group."""
    if not api_version or "/" not in api_version:
        return ""
    return api_version.rsplit("/", 1)[0]
