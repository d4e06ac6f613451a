"""
This module holds the common functionality used to represent the status of
the platform installation on the parent object

The parent status has one aggregate condition:

* Ready: True once every configured platform has installed successfully

Additionally, the status reports the last known result of every configured
platform. The schema is:
{
    "conditions": [
        {
            "type": "Ready",
            "status": "True|False|Unknown",
            "reason": "Ready|InstallationInprogress|InstallationFailed|InstallationCleanup",
            "message": "...",
            "lastTransitionTime": "...",
        },
    ],
    "platformsStatus": [
        {
            "platformName": "<name>",
            "platformStatus": "Success|InProgress|Failed",
            "lastMessage": "...",
        },
    ],
}
"""

# Standard
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" value of the aggregate condition
READY_CONDITION = "Ready"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

# The keys for the per-platform status list
PLATFORMS_STATUS = "platformsStatus"
PLATFORM_NAME = "platformName"
PLATFORM_STATUS = "platformStatus"
PLATFORM_MESSAGE = "lastMessage"

# Messages for the aggregate condition
READY_MESSAGE = "DBaaS platform stack installation complete"
IN_PROGRESS_MESSAGE = "DBaaS platform stack install in progress"
CLEANUP_MESSAGE = "DBaaS platform stack cleanup in progress"

# Condition status strings
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"


class InstallStatus(Enum):
    """The tri-state result of a step, a reconciler or a whole pass"""

    # The work is done and verified
    SUCCESS = "Success"

    # The work was started or is waiting on the cluster and should be retried
    IN_PROGRESS = "InProgress"

    # The work hit an error that will not resolve by itself
    FAILED = "Failed"


class ReadyReason(Enum):
    """Nested class to hold reason constants for the Ready condition"""

    # Every platform is installed
    READY = "Ready"

    # At least one platform is still installing
    IN_PROGRESS = "InstallationInprogress"

    # At least one platform failed to install or clean up
    FAILED = "InstallationFailed"

    # The stack is being torn down
    CLEANUP = "InstallationCleanup"


def make_ready_condition(
    status: str,
    reason: Union[ReadyReason, str],
    message: str = "",
    last_transition_time: Optional[datetime] = None,
) -> dict:
    """Convert the aggregate condition to the dict representation to be added
    to the parent object

    Args:
        status:  str
            One of "True", "False" or "Unknown"
        reason:  Union[ReadyReason, str]
            The reason for the condition value
        message:  str
            Plain-text message explaining the condition value
        last_transition_time:  Optional[datetime]
            The timestamp to use. Defaults to now.

    Returns:
        condition:  dict
            The condition dict
    """
    assert status in [
        CONDITION_TRUE,
        CONDITION_FALSE,
        CONDITION_UNKNOWN,
    ], f"Invalid condition status: {status}"
    if isinstance(reason, str):
        reason = ReadyReason(reason)
    last_transition_time = last_transition_time or datetime.now()
    return {
        "type": READY_CONDITION,
        "status": status,
        "reason": reason.value,
        "message": message,
        TIMESTAMP_KEY: last_transition_time.isoformat(),
    }


def make_platform_status_entry(
    name: str,
    status: Union[InstallStatus, str],
    message: str = "",
) -> dict:
    """Make a single entry of the per-platform status list"""
    if isinstance(status, str):
        status = InstallStatus(status)
    return {
        PLATFORM_NAME: name,
        PLATFORM_STATUS: status.value,
        PLATFORM_MESSAGE: message,
    }


def update_platform_status(
    current_status: dict,
    ready_condition: dict,
    platform_entries: List[dict],
    configured_platforms: Optional[Iterable[str]] = None,
) -> dict:
    """Create an updated status based on the values in the current status

    Args:
        current_status:  dict
            The dict representation of the current status on the parent
        ready_condition:  dict
            The new Ready condition
        platform_entries:  List[dict]
            Fresh entries for the platforms visited in this pass
        configured_platforms:  Optional[Iterable[str]]
            Names of every configured platform, in installation order. Entries
            for platforms not in this list are dropped. If None, the existing
            entries are kept in their current order.

    Returns:
        updated_status:  dict
            Updated dict representation of the status
    """
    # Make a deep copy so that change detection compares against the
    # unmodified current status
    current_status = copy.deepcopy(current_status or {})

    # Keep the previous transition time if the condition value did not flip
    ready_condition = copy.deepcopy(ready_condition)
    previous_ready = get_condition(READY_CONDITION, current_status)
    if previous_ready.get("status") == ready_condition.get("status") and previous_ready.get(
        TIMESTAMP_KEY
    ):
        ready_condition[TIMESTAMP_KEY] = previous_ready[TIMESTAMP_KEY]

    # Conditions written by other actors are kept as-is
    external_conditions = [
        cond
        for cond in current_status.get("conditions", [])
        if cond.get("type") != READY_CONDITION
    ]
    log.debug3("External conditions: %s", external_conditions)

    # Visited platforms get fresh entries, unvisited ones keep their last entry
    entries_by_name = {
        entry.get(PLATFORM_NAME): entry
        for entry in current_status.get(PLATFORMS_STATUS, [])
    }
    entries_by_name.update({entry[PLATFORM_NAME]: entry for entry in platform_entries})
    if configured_platforms is None:
        configured_platforms = list(entries_by_name)
    platforms_status = [
        entries_by_name[name] for name in configured_platforms if name in entries_by_name
    ]

    updated_status = {
        key: val
        for key, val in current_status.items()
        if key not in ["conditions", PLATFORMS_STATUS]
    }
    updated_status["conditions"] = [ready_condition] + external_conditions
    updated_status[PLATFORMS_STATUS] = platforms_status
    return updated_status


def update_resource_status(  # pylint: disable=too-many-arguments
    deploy_manager: "DeployManagerBase",  # noqa: F821
    kind: str,
    api_version: str,
    name: str,
    namespace: Optional[str],
    **kwargs,
) -> dict:
    """Fetch the current status of the parent, merge in the new values and
    write it back if anything meaningful changed

    Args:
        deploy_manager: DeployManagerBase
            The deploy manager used to get and set status
        kind: str
            The kind of the resource
        api_version: str
            The api_version of the resource
        name: str
            The name of the resource
        namespace: Optional[str]
            The namespace the resource is located in
        **kwargs:
            Keyword arguments passed to update_platform_status

    Returns:
        status_object: dict
            The applied status if successful, an empty dict otherwise
    """
    log.debug3("Updating status for %s/%s.%s/%s", namespace, api_version, kind, name)

    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return {}
    current_status = (current_state or {}).get("status", {})
    log.debug3("Pre-update status: %s", current_status)

    status_object = update_platform_status(current_status, **kwargs)
    log.debug3("Updated status: %s", status_object)

    # Only write when something other than a timestamp changed
    if status_changed(current_status, status_object):
        log.debug("Found meaningful change. Updating status")
        log.debug2("(current) %s != (updated) %s", current_status, status_object)
        success, _ = deploy_manager.set_status(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
            status=status_object,
        )

        # A failed status write is retried on the next pass
        if not success:
            log.warning("Failed to update status for [%s/%s/%s]", namespace, kind, name)
            return {}

    return status_object


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current parent
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}
