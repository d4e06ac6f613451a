"""
The DeployManager is the abstraction in charge of interacting with the
cluster to look up, write, and delete the objects the platform reconcilers
manage.
"""

# Local
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .openshift_deploy_manager import OpenshiftDeployManager
