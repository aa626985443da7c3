"""
Dry run implementation of the WatchManager abstraction
"""

# Standard
from functools import partial
from typing import Dict, List, Optional, Type
import logging

# First Party
import alog

# Local
from ..controller import ClusterPodPlacementConfigController
from ..deploy_manager import DryRunDeployManager
from ..log_format import LogLevelHandle
from ..objects import ObjectSetBuilder
from ..reconcile import ReconcileManager, ReconciliationResult
from .base import WatchManagerBase

log = alog.use_channel("DRWAT")


class DryRunWatchManager(WatchManagerBase):
    """
    The DryRunWatchManager implements the WatchManagerBase interface using a
    single shared DryRunDeployManager to manage an in-memory representation of
    the cluster. Reconciles run synchronously inside the write that triggered
    them. Events received while a reconcile is running are queued and drained
    once it ends.
    """

    # Number of immediate requeues of one object before they are held back
    # with the delayed ones
    max_immediate_requeues = 20

    def __init__(
        self,
        controller_type: Type[
            ClusterPodPlacementConfigController
        ] = ClusterPodPlacementConfigController,
        deploy_manager: Optional[DryRunDeployManager] = None,
        builder: Optional[ObjectSetBuilder] = None,
        log_level: Optional[LogLevelHandle] = None,
    ):
        """Construct with the type of controller to watch and optionally a
        deploy_manager instance. A deploy_manager will be constructed if none is
        given.

        Args:
            controller_type:  Type[ClusterPodPlacementConfigController]
                The class for the controller that will be watched
            deploy_manager:  Optional[DryRunDeployManager]
                If given, this deploy_manager will be used. This allows for
                there to be pre-populated resources.
            builder:  Optional[ObjectSetBuilder]
                The object set builder handed to the controller
            log_level:  Optional[LogLevelHandle]
                The handle owning the process log level
        """
        super().__init__(controller_type, builder=builder, log_level=log_level)

        self._deploy_manager = deploy_manager or DryRunDeployManager()
        self.reconcile_manager = ReconcileManager(
            controller=controller_type(
                self._deploy_manager, builder=self.builder, log_level=self.log_level
            ),
            log_level=self.log_level,
        )

        # Names waiting for a reconcile and names whose requeue is delayed
        self._pending: List[str] = []
        self._delayed: Dict[str, ReconciliationResult] = {}
        self._running = False
        self._watching = False

        # The result of the last reconcile of each name
        self.results: Dict[str, ReconciliationResult] = {}

    @property
    def deploy_manager(self) -> DryRunDeployManager:
        return self._deploy_manager

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Register the watches with the deploy manager"""
        if self._watching:
            log.warning("Cannot watch multiple times!")
            return False

        log.debug("Registering %s with the DeployManager", self.controller_type)
        for api_version, kind, namespace in self.watched_kinds():
            self._deploy_manager.register_watch(
                api_version=api_version,
                kind=kind,
                namespace=namespace,
                callback=partial(self.handle_event, False),
            )

            # Erasing a dependent may release a teardown barrier
            if kind != self.kind:
                self._deploy_manager.register_finalizer(
                    api_version=api_version,
                    kind=kind,
                    namespace=namespace,
                    callback=partial(self.handle_event, True),
                )
        self._watching = True
        return True

    def wait(self):
        """There is nothing to do in wait"""

    def stop(self):
        """Unregistering is not supported, events are ignored after stop"""
        self._watching = False

    ## Public Interface ########################################################

    def handle_event(self, erased: bool, resource: dict):
        """Queue a reconcile for the owners of the resource and drain the
        queue unless a reconcile is already running
        """
        if not self._watching:
            return
        log.debug3(
            "Handling %s event for %s",
            "erase" if erased else "write",
            resource.get("metadata", {}).get("name"),
        )
        for name in self.owner_names(resource):
            self.request(name)

    def request(self, name: str):
        """Request a reconcile of the named object"""
        if name not in self._pending:
            self._pending.append(name)
        self._drain()

    def requeue_all(self):
        """Replay every delayed requeue. This stands in for the passing of
        time in the in-memory cluster.
        """
        delayed = list(self._delayed)
        self._delayed.clear()
        for name in delayed:
            self.request(name)

    @property
    def delayed(self) -> List[str]:
        """The names holding a delayed requeue"""
        return list(self._delayed)

    ## Implementation Details ##################################################

    def _drain(self):
        if self._running:
            return
        self._running = True
        try:
            immediate_counts = {}
            while self._pending:
                name = self._pending.pop(0)
                result = self._run_reconcile(name)
                self.results[name] = result
                if not result.requeue:
                    self._delayed.pop(name, None)
                    continue
                immediate = (
                    result.exception is None
                    and not result.requeue_params.requeue_after
                )
                immediate_counts[name] = immediate_counts.get(name, 0) + 1
                if immediate and immediate_counts[name] <= self.max_immediate_requeues:
                    if name not in self._pending:
                        self._pending.append(name)
                else:
                    log.debug2("Holding back requeue of %s", name)
                    self._delayed[name] = result
        finally:
            self._running = False

    def _run_reconcile(self, name: str) -> ReconciliationResult:
        # Save the log handlers and restore them after the reconcile
        log_formatters = {}
        for handler in logging.getLogger().handlers:
            log_formatters[handler] = handler.formatter

        resource = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": {"name": name},
        }
        result = self.reconcile_manager.safe_reconcile(resource)

        for handler, formatter in log_formatters.items():
            handler.setFormatter(formatter)
        return result
