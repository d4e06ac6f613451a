"""
This module holds the controller-reference primitives used to mark objects as
owned by the parent platform object
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from ..exceptions import OwnershipError

log = alog.use_channel("OWNRF")


def set_controller_reference(owner: dict, obj: dict):
    """Set the owner as the controller of the object, in place.

    Any non-controller references already on the object are kept. If the
    object is already controlled by the owner, the reference is refreshed.

    Args:
        owner:  dict
            The full manifest for the owning resource
        obj:  dict
            The object that should be controlled by the owner

    Raises:
        OwnershipError:  If a different controller already owns the object
    """
    _validate_object_struct(owner)
    _validate_object_struct(obj)
    new_ref = _make_owner_reference(owner)

    metadata = obj["metadata"]
    existing = get_controller_of(obj)
    if existing is not None and existing.get("uid") != new_ref["uid"]:
        raise OwnershipError(
            "{}/{} is already controlled by {}/{}".format(
                obj["kind"],
                metadata["name"],
                existing.get("kind"),
                existing.get("name"),
            )
        )

    log.debug2("Setting controller of %s/%s", obj["kind"], metadata["name"])
    owner_refs = list(metadata.get("ownerReferences") or [])

    # Replace the current controller entry in place to keep the order stable
    for i, ref in enumerate(owner_refs):
        if ref.get("controller"):
            owner_refs[i] = new_ref
            break
    else:
        owner_refs.append(new_ref)
    metadata["ownerReferences"] = owner_refs


def get_controller_of(obj: dict) -> Optional[dict]:
    """Get the ownerReferences entry marked as controller, if any"""
    for ref in obj.get("metadata", {}).get("ownerReferences", []) or []:
        if ref.get("controller"):
            return ref
    return None


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.name)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"


def _make_owner_reference(owner: dict) -> dict:
    """Make a controller owner reference for the given owner

    Error Semantics: This function makes a best-effort and does not validate
    the content of the owner, so the resulting ownerReference may contain None
    entries.

    Args:
        owner:  dict
            The full manifest for the owning resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner.get("metadata", {})
    return {
        "apiVersion": owner.get("apiVersion"),
        "kind": owner.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": True,
        # The parent will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }
