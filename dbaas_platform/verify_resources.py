"""
This library holds common verification routines for the objects that the
platform reconcilers wait on. All of these are pure functions of an object's
current state.
"""

# Standard
from datetime import datetime
from typing import List, Optional

# Third Party
import dateutil.parser

# First Party
import alog

## Globals #####################################################################

log = alog.use_channel("VERFY")

DEFAULT_TIMESTAMP_KEY = "lastTransitionTime"
DEPLOYMENT_AVAILABLE_CONDITION = "DeploymentAvailable"


## Individual Resources ########################################################


def verify_deployment_started(object_state: Optional[dict]) -> bool:
    """Verify that at least one replica of a deployment is ready"""
    if not object_state:
        return False
    ready_replicas = object_state.get("status", {}).get("readyReplicas") or 0
    log.debug3("Deployment ready replicas: %s", ready_replicas)
    return ready_replicas > 0


def verify_deployment_rolled_out(object_state: Optional[dict]) -> bool:
    """Verify that every replica the deployment reports is ready. A deployment
    that has not reported any replicas yet is not rolled out.
    """
    if not object_state:
        return False
    obj_status = object_state.get("status", {})
    replicas = obj_status.get("replicas")
    if not replicas:
        log.debug2("No replicas found in deployment status. Not ready.")
        return False
    ready_replicas = obj_status.get("readyReplicas") or 0
    log.debug3("Deployment ready %s/%s", ready_replicas, replicas)
    return ready_replicas == replicas


def verify_console_deployment_available(object_state: Optional[dict]) -> bool:
    """Verify that the console operator reports its deployment available"""
    if not object_state:
        return False
    return verify_condition(object_state, DEPLOYMENT_AVAILABLE_CONDITION, True)


## Helpers #####################################################################


def verify_condition(
    object_state: dict,
    type_val: str,
    expected_status: bool,
    timestamp_key: str = DEFAULT_TIMESTAMP_KEY,
    expected_reason: Optional[str] = None,
) -> bool:
    """Check that the latest condition of the given type has the expected
    status and, optionally, reason
    """
    conditions = _get_conditions(object_state, type_val)
    log.debug2("Found %d [%s] conditions", len(conditions), type_val)
    if not conditions:
        log.debug2("No %s conditions. Not verified", type_val)
        return False

    latest_cond = _sort_conditions_by_date(conditions, timestamp_key)[0]
    log.debug3("Latest '%s' condition: %s", type_val, latest_cond)
    return _check_condition(latest_cond, expected_status, expected_reason)


def _get_conditions(object_state: dict, type_val: str) -> List[dict]:
    """Get the list of conditions from an object state"""
    return [
        cond
        for cond in (object_state.get("status") or {}).get("conditions") or []
        if cond.get("type") == type_val
    ]


def _parse_condition_timestamp(condition: dict, timestamp_key: str) -> datetime:
    """Parse the timestamp in a condition"""
    timestamp = condition.get(timestamp_key)
    if isinstance(timestamp, str):
        return dateutil.parser.parse(timestamp).replace(tzinfo=None)
    if isinstance(timestamp, datetime):
        return timestamp.replace(tzinfo=None)
    log.debug2("Found condition with no valid timestamp. Using epoch")
    return datetime.fromtimestamp(0)


def _sort_conditions_by_date(conditions: List[dict], timestamp_key: str) -> List[dict]:
    """Sort conditions with the newest first"""
    return sorted(
        conditions,
        key=lambda cond: _parse_condition_timestamp(cond, timestamp_key),
        reverse=True,
    )


def _check_condition(
    condition: dict, expected_status: bool, expected_reason: Optional[str] = None
) -> bool:
    """Check whether a single condition has the expected values"""
    obj_status = condition.get("status")
    if isinstance(obj_status, str):
        status_match = obj_status.lower() == str(expected_status).lower()
    else:
        status_match = obj_status is not None and bool(obj_status) == expected_status
    reason_match = expected_reason is None or condition.get("reason") == expected_reason
    return status_match and reason_match
