"""
Python-based implementation of the WatchManager
"""

# Standard
from typing import List, Optional, Type
import threading

# First Party
import alog

# Local
from ...controller import ClusterPodPlacementConfigController
from ...deploy_manager import DeployManagerBase, OpenshiftDeployManager
from ...log_format import LogLevelHandle
from ...objects import ObjectSetBuilder
from ...reconcile import ReconcileManager
from ..base import WatchManagerBase
from .threads import ReconcileThread, WatchThread

log = alog.use_channel("PYTHW")


class PythonWatchManager(WatchManagerBase):
    """The PythonWatchManager uses the kubernetes watch client to watch the
    ClusterPodPlacementConfig and its dependents and execute reconciles. It
    does the following two things

    1. Start a watch thread for the owner kind and each dependent kind
    2. Start a reconcile thread that runs the reconciles in a worker pool
    """

    def __init__(
        self,
        controller_type: Type[
            ClusterPodPlacementConfigController
        ] = ClusterPodPlacementConfigController,
        deploy_manager: Optional[DeployManagerBase] = None,
        builder: Optional[ObjectSetBuilder] = None,
        log_level: Optional[LogLevelHandle] = None,
        max_concurrent_reconciles: Optional[int] = None,
    ):
        """Initialize the required threads

        Args:
            controller_type: Type[ClusterPodPlacementConfigController]
                The controller to be watched
            deploy_manager: Optional[DeployManagerBase] = None
                An optional DeployManager override
            builder:  Optional[ObjectSetBuilder]
                The object set builder handed to the controller
            log_level:  Optional[LogLevelHandle]
                The handle owning the process log level
            max_concurrent_reconciles: Optional[int]
                Size of the reconcile worker pool
        """
        super().__init__(controller_type, builder=builder, log_level=log_level)

        # Handle functional args
        if deploy_manager is None:
            log.debug("Using OpenshiftDeployManager")
            deploy_manager = OpenshiftDeployManager()
        self.deploy_manager = deploy_manager

        # Setup Control variables
        self.shutdown = threading.Event()

        # Setup Threads
        self.reconcile_manager = ReconcileManager(
            controller=controller_type(
                self.deploy_manager, builder=self.builder, log_level=self.log_level
            ),
            log_level=self.log_level,
        )
        self.reconcile_thread = ReconcileThread(
            self.reconcile_manager,
            max_concurrent_reconciles=max_concurrent_reconciles,
        )
        self.watch_threads: List[WatchThread] = [
            WatchThread(
                self.reconcile_thread,
                kind=kind,
                api_version=api_version,
                owner_kind=self.kind,
                owner_api_version=self.api_version,
                namespace=namespace,
                deploy_manager=self.deploy_manager,
            )
            for api_version, kind, namespace in self.watched_kinds()
        ]

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start all threads

        Returns:
            success:  bool
                True if all threads process are running correctly
        """
        log.info("Starting PythonWatchManager: %s", self)

        # If watch has been shutdown then exit before starting threads
        if self.shutdown.is_set():
            return False

        # Start reconcile thread and all watch threads
        self.reconcile_thread.start_thread()
        for watch_thread in self.watch_threads:
            log.debug("Starting watch_thread: %s", watch_thread)
            watch_thread.start_thread()
        return True

    def wait(self):
        """Wait shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self):
        """Stop all threads. This waits for all reconciles to finish"""
        log.info(
            "Stopping PythonWatchManager for %s/%s/%s",
            self.group,
            self.version,
            self.kind,
        )
        self.shutdown.set()
        for watch_thread in self.watch_threads:
            watch_thread.stop_thread()
        self.reconcile_thread.stop_thread()
