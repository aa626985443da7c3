"""
Cluster access for the operator and the admission webhooks: the interface,
the live OpenShift client and the in-memory cluster used in dry runs and tests
"""

# Local
from .base import DeployManagerBase, DeployMethod
from .dry_run_deploy_manager import DryRunDeployManager
from .kube_event import KubeEventType, KubeWatchEvent
from .openshift_deploy_manager import OpenshiftDeployManager
