"""
Common utilities shared across the library
"""

# Standard
from typing import Any, List
import copy

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster, assert_precondition

log = alog.use_channel("UTILS")


# Forward declaration for Session
SESSION_TYPE = "Session"

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and both values are dicts, the
    values are merged recursively. Otherwise the override value wins.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if isinstance(base.get(key), dict) and isinstance(value, dict):
            base[key] = merge_configs(base[key], value)
        else:
            base[key] = value
    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when any part of the key is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i+1])} "
                "is not a dict"
            )
    return dct.get(parts[-1], dflt)


def to_plain_dict(obj: Any) -> Any:
    """Recursively convert dict subclasses (e.g. aconfig.Config) into plain
    dicts and lists so that they can be safely sent to the cluster or compared
    """
    if isinstance(obj, dict):
        return {key: to_plain_dict(val) for key, val in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain_dict(val) for val in obj]
    return obj


## Ordered Sets ################################################################


def append_unique(items: List[str], item: str) -> bool:
    """Append an item to a list if not already present

    Returns:
        added:  bool
            True if the list was modified
    """
    if item in items:
        return False
    items.append(item)
    return True


def remove_all(items: List[str], item: str) -> bool:
    """Remove every occurrence of an item from a list in place

    Returns:
        removed:  bool
            True if the list was modified
    """
    original_len = len(items)
    items[:] = [existing for existing in items if existing != item]
    return len(items) != original_len


## Finalizers ##################################################################


def add_finalizer(session: SESSION_TYPE, finalizer: str):
    """Add a finalizer to the parent object of the session

    Args:
        session:  Session
            The session for the current pass
        finalizer:  str
            The finalizer to be added
    """
    if finalizer in session.finalizers:
        return

    manifest = _get_current_parent(session)
    finalizers = manifest["metadata"].setdefault("finalizers", [])
    if append_unique(finalizers, finalizer):
        log.debug("Adding finalizer: %s", finalizer)
        success, _ = session.deploy_manager.deploy([manifest])
        assert_cluster(success, f"Failed to add finalizer {finalizer}")
    session.finalizers.append(finalizer)


def remove_finalizer(session: SESSION_TYPE, finalizer: str):
    """Remove a finalizer from the parent object of the session

    Args:
        session:  Session
            The session for the current pass
        finalizer:  str
            The finalizer to remove
    """
    if finalizer not in session.finalizers:
        return

    log.debug("Removing finalizer: %s", finalizer)
    success, found = session.get_object_current_state(
        kind=session.kind,
        api_version=session.api_version,
        name=session.name,
    )
    assert_cluster(success, "Failed to look up parent object")

    # If still present in the cluster, update it without the finalizer
    if found:
        remove_all(found.setdefault("metadata", {}).setdefault("finalizers", []), finalizer)
        success, _ = session.deploy_manager.deploy([found])
        assert_cluster(success, f"Failed to remove finalizer {finalizer}")

    session.finalizers.remove(finalizer)


def _get_current_parent(session: SESSION_TYPE) -> dict:
    """Fetch a copy of the live parent object

    Raises:
        PreconditionError:  If the parent no longer exists in the cluster
    """
    success, current = session.get_object_current_state(
        kind=session.kind,
        api_version=session.api_version,
        name=session.name,
    )
    assert_cluster(success, "Failed to look up parent object")
    assert_precondition(
        current is not None,
        f"Parent {session.kind}/{session.name} not found in the cluster",
    )
    current = copy.deepcopy(current)
    current.setdefault("metadata", {})
    return current
