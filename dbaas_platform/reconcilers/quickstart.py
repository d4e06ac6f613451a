"""
Reconciler for the bundled console quick start guides
"""

# Standard
from typing import List, Optional
import os

# Third Party
import yaml

# First Party
import alog

# Local
from ..exceptions import TemplateError
from ..managed_object import ManagedObject
from ..platforms import PlatformConfig
from ..session import Session
from ..status import InstallStatus
from ..steps import STEP_TYPE, delete_if_exists, upsert
from .base import PlatformReconciler

log = alog.use_channel("QSTRT")

QUICK_START_API_VERSION = "console.openshift.io/v1"
QUICK_START_KIND = "ConsoleQuickStart"
QUICK_START_CATEGORY = "Database management"

# Templates shipped with the package
DEFAULT_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "quickstarts")
TEMPLATE_SUFFIX = "-quick-start.yaml"

# The quick starts in installation order
QUICK_START_NAMES = [
    "accessing-the-database-access-menu-for-configuring-and-monitoring",
    "accessing-the-developer-workspace-and-adding-a-database-instance",
    "connecting-an-application-to-a-database-instance-using-the-topology-view",
    "installing-the-red-hat-openshift-database-access-add-on",
]


class QuickStartReconciler(PlatformReconciler):
    """Publishes each bundled quick start template as a cluster scoped
    ConsoleQuickStart
    """

    def __init__(
        self,
        platform: PlatformConfig,
        template_dir: Optional[str] = None,
        quick_start_names: Optional[List[str]] = None,
    ):
        super().__init__(platform)
        self.template_dir = template_dir or DEFAULT_TEMPLATE_DIR
        self.quick_start_names = quick_start_names or QUICK_START_NAMES

    def install_steps(self) -> List[STEP_TYPE]:
        return [self.reconcile_quick_starts]

    def cleanup_steps(self) -> List[STEP_TYPE]:
        return [self.delete_quick_starts]

    @staticmethod
    def quick_start(name: str) -> ManagedObject:
        return ManagedObject(QUICK_START_API_VERSION, QUICK_START_KIND, name)

    def load_template(self, name: str) -> dict:
        """Parse a bundled template and return its spec

        Raises:
            TemplateError:  If the template is missing, is not valid yaml, or
                has no spec mapping
        """
        template_path = os.path.join(self.template_dir, name + TEMPLATE_SUFFIX)
        log.debug3("Loading quick start template %s", template_path)
        try:
            with open(template_path, encoding="utf-8") as handle:
                content = yaml.safe_load(handle)
        except OSError as err:
            raise TemplateError(f"Could not read quick start {name}: {err}") from err
        except yaml.YAMLError as err:
            raise TemplateError(f"Could not parse quick start {name}: {err}") from err

        spec = content.get("spec") if isinstance(content, dict) else None
        if not isinstance(spec, dict):
            raise TemplateError(f"Quick start {name} has no spec")
        return spec

    ## Steps ###################################################################

    def reconcile_quick_starts(self, session: Session) -> InstallStatus:
        """Upsert every quick start, stopping between items if cancelled"""
        for name in self.quick_start_names:
            session.check_cancelled()
            spec = self.load_template(name)

            def mutate(obj: dict, spec=spec):
                obj["metadata"].setdefault("annotations", {})[
                    "categories"
                ] = QUICK_START_CATEGORY
                obj["spec"] = spec

            upsert(session, self.quick_start(name), mutate)
        return InstallStatus.SUCCESS

    def delete_quick_starts(self, session: Session) -> InstallStatus:
        for name in self.quick_start_names:
            session.check_cancelled()
            delete_if_exists(session, self.quick_start(name))
        return InstallStatus.SUCCESS
