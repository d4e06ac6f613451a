"""
Descriptors for the configured platform components. These are built once from
the library config and handed to reconcilers at construction so that no
reconciler reads global config.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

# First Party
import aconfig
import alog

# Local
from .exceptions import assert_config
from .utils import to_plain_dict

log = alog.use_channel("PLTFM")


class PlatformType(Enum):
    """The kinds of platform components that can be installed"""

    OPERATOR = "operator"
    CONSOLE_PLUGIN = "console_plugin"
    QUICK_START = "quick_start"
    OBSERVABILITY = "observability"
    SERVICE_BINDING = "service_binding"


# Fields each type must set
_REQUIRED_FIELDS = {
    PlatformType.OPERATOR: ["package_name", "channel", "deployment_name", "image"],
    PlatformType.SERVICE_BINDING: [
        "package_name",
        "channel",
        "deployment_name",
        "catalog_source",
    ],
    PlatformType.CONSOLE_PLUGIN: ["image"],
    PlatformType.QUICK_START: [],
    PlatformType.OBSERVABILITY: [],
}


@dataclass(frozen=True)
class PlatformConfig:  # pylint: disable=too-many-instance-attributes
    """Immutable descriptor of a single platform component"""

    name: str
    type: PlatformType
    display_name: str = ""
    package_name: str = ""
    channel: str = ""
    csv: str = ""
    deployment_name: str = ""
    image: str = ""
    envs: Tuple[dict, ...] = field(default_factory=tuple)
    catalog_source: str = ""
    catalog_namespace: str = ""
    install_namespace: str = ""


@dataclass(frozen=True)
class ObservabilityConfig:
    """Immutable settings for the monitoring stack"""

    operator_subscription: str
    operator_namespace: str
    remote_write_url: str = ""
    auth_type: str = ""
    token_url: str = ""
    secret_name: str = ""

    @property
    def remote_write_enabled(self) -> bool:
        """Remote write is only configured when all required values are set"""
        return bool(self.remote_write_url and self.auth_type and self.secret_name)


def load_platforms(config: aconfig.Config) -> List[PlatformConfig]:
    """Build the ordered platform descriptors from the library config

    Args:
        config:  aconfig.Config
            The library config holding the ordered platforms table and the
            shared namespaces

    Returns:
        platforms:  List[PlatformConfig]
            The descriptors in installation order

    Raises:
        ConfigError:  If an entry is malformed or names are not unique
    """
    platforms = []
    seen_names = set()
    for entry in config.get("platforms") or []:
        entry = to_plain_dict(entry)
        name = entry.get("name")
        assert_config(bool(name), f"Platform entry without a name: {entry}")
        assert_config(name not in seen_names, f"Duplicate platform name: {name}")
        seen_names.add(name)

        type_name = entry.get("type")
        assert_config(
            type_name in [platform_type.value for platform_type in PlatformType],
            f"Unknown platform type for {name}: {type_name}",
        )
        platform_type = PlatformType(type_name)
        for required in _REQUIRED_FIELDS[platform_type]:
            assert_config(
                bool(entry.get(required)),
                f"Platform {name} of type {type_name} requires {required}",
            )

        platform = PlatformConfig(
            name=name,
            type=platform_type,
            display_name=entry.get("display_name") or "",
            package_name=entry.get("package_name") or "",
            channel=entry.get("channel") or "",
            csv=entry.get("csv") or "",
            deployment_name=entry.get("deployment_name") or "",
            image=entry.get("image") or "",
            envs=tuple(entry.get("envs") or []),
            catalog_source=entry.get("catalog_source") or "",
            catalog_namespace=entry.get("catalog_namespace")
            or config.catalog_namespace,
            install_namespace=entry.get("install_namespace")
            or config.install_namespace,
        )
        log.debug2("Loaded platform %s", platform)
        platforms.append(platform)
    return platforms


def load_observability_config(config: aconfig.Config) -> ObservabilityConfig:
    """Build the monitoring stack settings from the library config"""
    settings = config.get("observability") or {}
    return ObservabilityConfig(
        operator_subscription=settings.get("operator_subscription")
        or "observability-operator",
        operator_namespace=settings.get("operator_namespace")
        or "openshift-observability-operator",
        remote_write_url=settings.get("remote_write_url") or "",
        auth_type=settings.get("auth_type") or "",
        token_url=settings.get("token_url") or "",
        secret_name=settings.get("secret_name") or "",
    )
