"""
The ReconcileThread is the heart of the PythonWatchManager. It runs reconciles
in a bounded worker pool and handles their results.
"""
# Standard
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import partial
from typing import Dict, Optional
import queue
import threading

# First Party
import alog

# Local
from .... import config
from ....reconcile import ReconcileManager, ReconciliationResult
from ..utils import ReconcileRequest, ReconcileRequestType, TimerEvent
from .base import ThreadBase
from .timer import TimerThread

log = alog.use_channel("RCLTHRD")


class ReconcileThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """This class is the core reconciliation class. A resource is never
    reconciled by two workers at once: requests that arrive while a reconcile
    of the same key is running are coalesced into a single pending request.
    Failed reconciles are retried with an exponential backoff per key.
    """

    def __init__(
        self,
        reconcile_manager: ReconcileManager,
        max_concurrent_reconciles: Optional[int] = None,
        timer_thread: Optional[TimerThread] = None,
    ):
        """Initialize the request queue, the worker pool and the reconcile
        tracking

        Args:
            reconcile_manager: ReconcileManager
                The manager running each individual reconcile
            max_concurrent_reconciles: Optional[int]
                Size of the worker pool. Defaults to
                config.reconcile.max_concurrent_reconciles
            timer_thread: Optional[TimerThread]
                The timer used for delayed requeues
        """
        super().__init__(
            name="reconcile_thread",
            deploy_manager=reconcile_manager.deploy_manager,
        )
        self.reconcile_manager = reconcile_manager

        self.request_queue = queue.Queue()
        self.timer_thread = timer_thread or TimerThread()
        self.max_concurrent_reconciles = (
            max_concurrent_reconciles or config.reconcile.max_concurrent_reconciles
        )
        self.executor = ThreadPoolExecutor(
            max_workers=self.max_concurrent_reconciles,
            thread_name_prefix="reconcile_worker",
        )

        # Setup reconcile, request, and event mappings. All of them are guarded
        # by the reconcile lock
        self.running_reconciles: Dict[str, ReconcileRequest] = {}
        self.pending_reconciles: Dict[str, ReconcileRequest] = {}
        self.event_map: Dict[str, TimerEvent] = {}
        self.failure_counts: Dict[str, int] = {}
        self.reconcile_lock = threading.RLock()

    def run(self):
        """Wait for requests and start a reconcile for each of them. A request
        for a key that is already running waits in the pending map until the
        running reconcile ends.
        """
        while not self.should_stop():
            request = self.request_queue.get()
            if request.type == ReconcileRequestType.STOPPED:
                log.debug("Received stop request")
                return
            log.debug3("Got request %s from queue", request)
            self._handle_request(request)

    ## Class Interface #########################################################

    def start_thread(self):
        """Override start_thread to start the timer thread"""
        self.timer_thread.start_thread()
        super().start_thread()

    def stop_thread(self):
        """Override stop_thread to let the running reconciles finish"""
        super().stop_thread()
        self.timer_thread.stop_thread()
        self.request_queue.put(ReconcileRequest(ReconcileRequestType.STOPPED, None))
        log.info("Waiting for Running Reconciles to end")
        self.executor.shutdown(wait=True)

    ## Public Interface ########################################################

    def push_request(self, request: ReconcileRequest):
        """Push request to reconcile queue

        Args:
            request: ReconcileRequest
                the ReconcileRequest to add to the queue
        """
        log.debug(
            "Pushing request '%s' to reconcile queue",
            request,
            extra={"resource": request.resource},
        )
        self.request_queue.put(request)

    def backoff_delay(self, key: str) -> timedelta:
        """The delay before retrying a key that failed, doubling with each
        consecutive failure up to the configured maximum
        """
        failures = self.failure_counts.get(key, 1)
        delay = float(config.reconcile.backoff_base_seconds) * 2 ** (failures - 1)
        return timedelta(
            seconds=min(delay, float(config.reconcile.backoff_max_seconds))
        )

    ## Implementation Details ##################################################

    def _handle_request(self, request: ReconcileRequest):
        key = request.key()
        with self.reconcile_lock:
            if key in self.running_reconciles:
                self._push_to_pending_reconcile(request)
                return

            # A newer request replaces any scheduled requeue
            if key in self.event_map:
                self.event_map.pop(key).cancel()
            self._start_reconcile(request)

    def _start_reconcile(self, request: ReconcileRequest):
        """Submit the reconcile to the worker pool. Called with the reconcile
        lock held.
        """
        if self.should_stop():
            return
        key = request.key()
        log.info(
            "Starting reconcile for request %s",
            request,
            extra={"resource": request.resource},
        )
        self.running_reconciles[key] = request
        future = self.executor.submit(
            self.reconcile_manager.safe_reconcile, request.resource.definition
        )
        future.add_done_callback(partial(self._handle_reconcile_end, request))

    def _handle_reconcile_end(self, request: ReconcileRequest, future: Future):
        """Record the result, schedule a requeue if one is needed and start the
        pending request of the same key
        """
        key = request.key()
        exception = future.exception()
        if exception is not None:
            log.error("Reconcile worker failed: %s", exception)
            result = ReconciliationResult(requeue=True, exception=exception)
        else:
            result = future.result()
        log.info(
            "Reconcile completed with result %s",
            result,
            extra={"resource": request.resource},
        )

        with self.reconcile_lock:
            self.running_reconciles.pop(key, None)
            pending = self.pending_reconciles.pop(key, None)
            if pending is not None:
                self._start_reconcile(pending)
                return
            self._schedule_requeue(request, result)

    def _schedule_requeue(
        self, request: ReconcileRequest, result: ReconciliationResult
    ):
        """Called with the reconcile lock held"""
        key = request.key()
        if result.exception is not None:
            self.failure_counts[key] = self.failure_counts.get(key, 0) + 1
            delay = self.backoff_delay(key)
        else:
            self.failure_counts.pop(key, None)
            delay = result.requeue_params.requeue_after

        if not result.requeue:
            return

        future_request = ReconcileRequest(
            ReconcileRequestType.REQUEUED, request.resource
        )
        if not delay:
            log.debug2("Requeuing %s right away", key)
            self.push_request(future_request)
            return

        log.debug("Requeuing %s in %s", key, delay)
        event = self.timer_thread.put_event(
            datetime.now() + delay, self.push_request, future_request
        )
        if event:
            self.event_map[key] = event

    def _push_to_pending_reconcile(self, request: ReconcileRequest):
        """Push a request to the pending map if it's newer than the current
        one. Called with the reconcile lock held.
        """
        key = request.key()
        current = self.pending_reconciles.get(key)
        if current is None or request.timestamp > current.timestamp:
            log.debug3("Adding event %s to pending reconciles", request)
            self.pending_reconciles[key] = request
        else:
            log.debug4("Event in queue is newer than event %s", request)
