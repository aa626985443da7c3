"""
Package exports
"""

# Local
from . import config, reconcile, status, watch_manager
from .controller import ClusterPodPlacementConfigController
from .deletion import DeletionOrchestrator, DeletionStage
from .deploy_manager import DeployManagerBase
from .exceptions import (
    assert_cluster,
    assert_config,
    assert_precondition,
    assert_valid,
)
from .log_format import LogLevelHandle
from .objects import ObjectSetBuilder
from .reconcile import ReconcileManager, ReconciliationResult
