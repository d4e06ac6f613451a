"""
The per-platform reconcilers and the factory that builds them from the
configured platform descriptors
"""

# Standard
from typing import List, Optional

# Local
from ..exceptions import assert_config
from ..platforms import ObservabilityConfig, PlatformConfig, PlatformType
from .base import PlatformReconciler
from .console_plugin import ConsolePluginReconciler
from .observability import ObservabilityReconciler
from .provider_operator import ProviderOperatorReconciler
from .quickstart import QuickStartReconciler
from .service_binding import ServiceBindingReconciler

# Reconciler class for each platform type that needs no extra settings
_RECONCILER_TYPES = {
    PlatformType.OPERATOR: ProviderOperatorReconciler,
    PlatformType.CONSOLE_PLUGIN: ConsolePluginReconciler,
    PlatformType.QUICK_START: QuickStartReconciler,
    PlatformType.SERVICE_BINDING: ServiceBindingReconciler,
}


def get_reconciler(
    platform: PlatformConfig,
    observability: Optional[ObservabilityConfig] = None,
) -> PlatformReconciler:
    """Construct the reconciler for a single platform descriptor

    Args:
        platform:  PlatformConfig
            The descriptor to reconcile
        observability:  Optional[ObservabilityConfig]
            The monitoring settings, required for the observability type

    Returns:
        reconciler:  PlatformReconciler
            The reconciler bound to the descriptor
    """
    if platform.type == PlatformType.OBSERVABILITY:
        assert_config(
            observability is not None,
            f"Platform {platform.name} requires observability settings",
        )
        return ObservabilityReconciler(platform, observability)
    return _RECONCILER_TYPES[platform.type](platform)


def make_reconcilers(
    platforms: List[PlatformConfig],
    observability: Optional[ObservabilityConfig] = None,
) -> List[PlatformReconciler]:
    """Construct the reconcilers for every platform, keeping the order"""
    return [get_reconciler(platform, observability) for platform in platforms]
