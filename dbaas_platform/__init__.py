"""
Package exports
"""

# Local
from . import config, reconcile, status
from .deploy_manager import DeployManagerBase
from .exceptions import (
    assert_cluster,
    assert_config,
    assert_precondition,
    assert_verified,
)
from .managed_object import ManagedObject
from .orchestrator import AggregateStatus, install_all, uninstall_all
from .platforms import PlatformConfig, PlatformType
from .reconcile import (
    PlatformReconcileManager,
    ReconciliationResult,
    ensure_platform_cr,
)
from .reconcilers import PlatformReconciler
from .session import Session
from .status import InstallStatus
from .steps import StepResult, run_steps
