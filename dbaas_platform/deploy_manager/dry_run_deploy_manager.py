"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional, Tuple
import copy
import itertools
import re
import uuid

# First Party
import alog

# Local
from ..exceptions import ConflictError
from .base import DeployManagerBase

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe across parents
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields owned by the store rather than the writer
_SERVER_FIELDS = ["resourceVersion", "uid", "creationTimestamp"]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        strict_resource_version: bool = True,
    ):
        """Construct with an optional set of resources to pre-populate the
        in-memory cluster with

        Args:
            resources:  Optional[List[dict]]
                Objects that exist in the cluster before the first call
            strict_resource_version:  bool
                If True, writes carrying a resourceVersion that does not match
                the stored one raise ConflictError
        """
        # {namespace: {kind: {api_version: {name: obj}}}}
        self._cluster_content: Dict[
            Optional[str], Dict[str, Dict[str, Dict[str, dict]]]
        ] = {}
        self.strict_resource_version = strict_resource_version
        self._resource_versions = itertools.count(1)
        self._deploy(resources or [], check_version=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        log.info("DRY RUN deploy")
        return self._deploy(resource_definitions)

    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        log.info("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version, kind, name, namespace = _identity(resource)
            with DRY_RUN_CLUSTER_LOCK:
                current = self._get_entry(namespace, kind, api_version, name)
                if current is None:
                    log.debug2("Nothing to delete for %s/%s", kind, name)
                    continue
                changed = True

                # Objects holding finalizers are only marked for deletion
                metadata = current.setdefault("metadata", {})
                if metadata.get("finalizers"):
                    log.debug2("Marking %s/%s for deletion", kind, name)
                    metadata.setdefault(
                        "deletionTimestamp",
                        datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ"),
                    )
                    metadata["deletionGracePeriodSeconds"] = 0
                else:
                    self._delete_key(namespace, kind, current["apiVersion"], name)
        return True, changed

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        log.info(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_entry(namespace, kind, api_version, name)
            return True, copy.deepcopy(current)

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        log.info(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if api_version is not None and api_ver != api_version:
                    continue
                for resource in entries.values():
                    labels = resource.get("metadata", {}).get("labels", {})
                    if label_selector and not match_selector(labels, label_selector):
                        log.debug3("Label mismatch for %s", resource["metadata"])
                        continue
                    if field_selector and not match_selector(
                        _flatten(resource), field_selector
                    ):
                        log.debug3("Field mismatch for %s", resource["metadata"])
                        continue
                    matches.append(copy.deepcopy(resource))
        log.debug2("Found %d matches for %s in %s", len(matches), kind, namespace)
        return True, matches

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        log.info("DRY RUN set_status of [%s/%s] in %s", kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._get_entry(namespace, kind, api_version, name)
            if current is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            if current.get("status") == status:
                return True, False
            current["status"] = copy.deepcopy(status)
            current["metadata"]["resourceVersion"] = self._next_resource_version()
        return True, True

    ## Implementation Details ##################################################

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _get_entry(
        self,
        namespace: Optional[str],
        kind: str,
        api_version: Optional[str],
        name: str,
    ) -> Optional[dict]:
        """Get the stored object (not a copy). A None api_version matches any
        version as long as the match is unique.
        """
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        matches = [
            entries[name]
            for api_ver, entries in kind_entries.items()
            if name in entries and api_version in [None, api_ver]
        ]
        if len(matches) == 1:
            return matches[0]
        return None

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _deploy(
        self,
        resource_definitions: List[dict],
        check_version: bool = True,
    ) -> Tuple[bool, bool]:
        changes = False
        for resource in resource_definitions:
            resource = copy.deepcopy(resource)
            api_version, kind, name, namespace = _identity(resource)
            log.debug("DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name)
            log.debug4(resource)
            metadata = resource.setdefault("metadata", {})

            with DRY_RUN_CLUSTER_LOCK:
                entries = (
                    self._cluster_content.setdefault(namespace, {})
                    .setdefault(kind, {})
                    .setdefault(api_version, {})
                )
                current = entries.get(name)

                if current is not None:
                    stored_version = current["metadata"].get("resourceVersion")
                    incoming_version = metadata.get("resourceVersion")
                    if (
                        check_version
                        and self.strict_resource_version
                        and incoming_version
                        and incoming_version != stored_version
                    ):
                        log.warning(
                            "Unable to deploy %s/%s. resourceVersion %s is out of date",
                            kind,
                            name,
                            incoming_version,
                        )
                        raise ConflictError(
                            f"Conflict writing {kind}/{name}: stale resourceVersion"
                        )

                    # Status is a sub-resource and is kept unless given
                    if "status" not in resource and "status" in current:
                        resource["status"] = copy.deepcopy(current["status"])
                    for field in _SERVER_FIELDS:
                        if field in current["metadata"]:
                            metadata[field] = current["metadata"][field]

                    if _strip_server_fields(current) == _strip_server_fields(resource):
                        log.debug2("No change for %s/%s", kind, name)
                        continue
                else:
                    metadata["uid"] = metadata.get("uid") or str(uuid.uuid4())
                    metadata["creationTimestamp"] = datetime.now().isoformat()

                changes = True
                metadata["resourceVersion"] = self._next_resource_version()
                entries[name] = resource

                # Objects marked for deletion go away once their finalizers do
                if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                    log.debug2("Completing deletion of %s/%s", kind, name)
                    self._delete_key(namespace, kind, api_version, name)

        return True, changes


## Selectors ###################################################################

# <key> in (a, b) / <key> notin (a, b)
_SET_EXPR = re.compile(r"^\s*([^\s!=]+)\s+(in|notin)\s+\((.*)\)\s*$")
# <key>=<val> / <key>==<val> / <key>!=<val>
_EQUALITY_EXPR = re.compile(r"^\s*([^\s!=]+)\s*(==|=|!=)\s*(.*?)\s*$")
# <key> / !<key>
_EXISTS_EXPR = re.compile(r"^\s*(!?)\s*([^\s!=]+)\s*$")


def match_selector(values: dict, selector: str) -> bool:
    """Determine whether a flat dict of values matches a kubernetes style
    label or field selector. All comma separated requirements must match.

    Supported requirements: key=value, key==value, key!=value,
    key in (a,b), key notin (a,b), key and !key.
    """
    for requirement in _split_requirements(selector):
        if not _match_requirement(values, requirement):
            log.debug3("Requirement [%s] does not match", requirement)
            return False
    return True


def _match_requirement(values: dict, requirement: str) -> bool:
    match = _SET_EXPR.match(requirement)
    if match:
        key, op, options = match.groups()
        options = [opt.strip() for opt in options.split(",")]
        value = _str_or_none(values.get(key))
        return (value in options) == (op == "in")

    match = _EQUALITY_EXPR.match(requirement)
    if match:
        key, op, expected = match.groups()
        value = _str_or_none(values.get(key))
        return (value == expected) == (op != "!=")

    match = _EXISTS_EXPR.match(requirement)
    if match:
        negate, key = match.groups()
        return (key in values) != bool(negate)

    raise ValueError(f"Invalid selector requirement: {requirement}")


def _split_requirements(selector: str) -> List[str]:
    """Split on commas that are not inside a parenthesized set"""
    parts = []
    depth = 0
    current = ""
    for char in selector:
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current.strip():
        parts.append(current)
    return parts


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value).strip()


def _flatten(obj: dict, prefix: str = "") -> dict:
    """Flatten nested dicts into dot-delimited keys, e.g. {a:{b:1}} -> {a.b:1}"""
    flat = {}
    for key, val in obj.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(val, dict):
            flat.update(_flatten(val, full_key))
        else:
            flat[full_key] = val
    return flat


def _identity(resource: dict) -> Tuple[str, str, str, Optional[str]]:
    metadata = resource.get("metadata", {})
    return (
        resource.get("apiVersion"),
        resource.get("kind"),
        metadata.get("name"),
        metadata.get("namespace"),
    )


def _strip_server_fields(resource: dict) -> dict:
    stripped = copy.deepcopy(resource)
    for field in _SERVER_FIELDS:
        stripped.get("metadata", {}).pop(field, None)
    return stripped
