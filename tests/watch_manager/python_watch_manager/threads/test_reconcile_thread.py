"""
Tests for the ReconcileThread
"""
# Standard
from datetime import timedelta
from unittest import mock
import threading
import time

# Third Party
import pytest

# First Party
import aconfig

# Local
from multiarch_tuning import constants
from multiarch_tuning.deploy_manager import KubeEventType
from multiarch_tuning.managed_object import ManagedObject
from multiarch_tuning.reconcile import ReconciliationResult, RequeueParams
from multiarch_tuning.test_helpers.helpers import MockDeployManager, library_config
from multiarch_tuning.watch_manager.python_watch_manager.threads import (
    ReconcileThread,
)
from multiarch_tuning.watch_manager.python_watch_manager.utils import (
    ReconcileRequest,
    ReconcileRequestType,
    TimerEvent,
)

## Helpers #####################################################################


class FakeReconcileManager:
    """Stands in for the ReconcileManager, answering with the queued results
    and recording the concurrency of the reconciles
    """

    def __init__(self, results=None, wait_time=0.0, error=None):
        self.deploy_manager = MockDeployManager()
        self.results = list(results or [])
        self.wait_time = wait_time
        self.error = error
        self.calls = []
        self.running = {}
        self.max_running = {}
        self.max_total = 0
        self.lock = threading.Lock()

    def safe_reconcile(self, resource):
        name = resource["metadata"]["name"]
        with self.lock:
            self.calls.append(name)
            self.running[name] = self.running.get(name, 0) + 1
            self.max_running[name] = max(
                self.max_running.get(name, 0), self.running[name]
            )
            self.max_total = max(self.max_total, sum(self.running.values()))
            result = (
                self.results.pop(0)
                if self.results
                else ReconciliationResult(requeue=False)
            )
        time.sleep(self.wait_time)
        with self.lock:
            self.running[name] -= 1
        if self.error:
            raise self.error
        return result


def make_request(name=constants.SINGLETON_NAME, type_=KubeEventType.ADDED):
    return ReconcileRequest(
        type_,
        ManagedObject(
            {
                "apiVersion": constants.API_VERSION,
                "kind": constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
                "metadata": {"name": name},
            }
        ),
    )


def make_thread(reconcile_manager, max_concurrent_reconciles=2):
    timer_thread = mock.MagicMock()
    timer_thread.put_event.side_effect = lambda time, action, *args: TimerEvent(
        time=time, action=action, args=args
    )
    return ReconcileThread(
        reconcile_manager,
        max_concurrent_reconciles=max_concurrent_reconciles,
        timer_thread=timer_thread,
    )


def requeued_requests(thread):
    return [call.args[2] for call in thread.timer_thread.put_event.call_args_list]


## Tests #######################################################################


@pytest.mark.timeout(5)
def test_reconcile_thread_happy_path():
    manager = FakeReconcileManager()
    thread = make_thread(manager)
    thread.start_thread()
    thread.timer_thread.start_thread.assert_called_once()

    thread.push_request(make_request())
    time.sleep(0.5)
    thread.stop_thread()

    assert manager.calls == [constants.SINGLETON_NAME]
    thread.timer_thread.put_event.assert_not_called()
    thread.timer_thread.stop_thread.assert_called_once()
    assert not thread.running_reconciles


@pytest.mark.timeout(5)
def test_reconcile_requeue_after():
    """A requested delay goes through the timer"""
    manager = FakeReconcileManager(
        results=[
            ReconciliationResult(
                requeue=True,
                requeue_params=RequeueParams(requeue_after=timedelta(seconds=30)),
            )
        ]
    )
    thread = make_thread(manager)
    thread.start_thread()
    thread.push_request(make_request())
    time.sleep(0.5)
    thread.stop_thread()

    requests = requeued_requests(thread)
    assert len(requests) == 1
    assert requests[0].type == ReconcileRequestType.REQUEUED
    assert requests[0].key() in thread.event_map


@pytest.mark.timeout(5)
def test_reconcile_requeue_immediate():
    """A zero delay pushes the request straight back to the queue"""
    manager = FakeReconcileManager(
        results=[
            ReconciliationResult(
                requeue=True, requeue_params=RequeueParams(requeue_after=timedelta())
            ),
            ReconciliationResult(requeue=False),
        ]
    )
    thread = make_thread(manager)
    thread.start_thread()
    thread.push_request(make_request())
    time.sleep(0.5)
    thread.stop_thread()

    assert manager.calls == [constants.SINGLETON_NAME] * 2
    thread.timer_thread.put_event.assert_not_called()


@pytest.mark.timeout(5)
@pytest.mark.parametrize(
    "manager",
    [
        FakeReconcileManager(
            results=[
                ReconciliationResult(requeue=True, exception=RuntimeError("boom"))
            ]
        ),
        FakeReconcileManager(error=RuntimeError("worker failure")),
    ],
)
def test_reconcile_failure_backs_off(manager):
    """Failed reconciles are retried after the backoff of their key"""
    with library_config(
        reconcile=aconfig.Config(
            {
                "max_concurrent_reconciles": 2,
                "backoff_base_seconds": 30,
                "backoff_max_seconds": 300,
            },
            override_env_vars=False,
        )
    ):
        thread = make_thread(manager)
        thread.start_thread()
        request = make_request()
        thread.push_request(request)
        time.sleep(0.5)
        thread.stop_thread()

    assert thread.failure_counts == {request.key(): 1}
    assert len(requeued_requests(thread)) == 1
    scheduled = thread.timer_thread.put_event.call_args.args[0]
    assert scheduled > request.timestamp + timedelta(seconds=29)


@pytest.mark.timeout(5)
def test_reconcile_success_resets_failures():
    manager = FakeReconcileManager()
    thread = make_thread(manager)
    request = make_request()
    thread.failure_counts[request.key()] = 3
    thread.start_thread()
    thread.push_request(request)
    time.sleep(0.5)
    thread.stop_thread()
    assert not thread.failure_counts


@pytest.mark.timeout(5)
def test_reconcile_same_key_coalesced():
    """Requests arriving while a key is reconciling collapse into a single
    follow up reconcile, and the key never runs twice at once
    """
    manager = FakeReconcileManager(wait_time=0.5)
    thread = make_thread(manager, max_concurrent_reconciles=4)
    thread.start_thread()
    for _ in range(3):
        thread.push_request(make_request())
        time.sleep(0.05)
    time.sleep(1.5)
    thread.stop_thread()

    assert manager.calls == [constants.SINGLETON_NAME] * 2
    assert manager.max_running[constants.SINGLETON_NAME] == 1
    assert not thread.pending_reconciles


@pytest.mark.timeout(5)
def test_reconcile_distinct_keys_in_parallel():
    manager = FakeReconcileManager(wait_time=0.5)
    thread = make_thread(manager, max_concurrent_reconciles=2)
    thread.start_thread()
    thread.push_request(make_request("first"))
    thread.push_request(make_request("second"))
    time.sleep(0.3)
    thread.stop_thread()

    assert sorted(manager.calls) == ["first", "second"]
    assert manager.max_total == 2


@pytest.mark.timeout(5)
def test_reconcile_pool_bounded():
    manager = FakeReconcileManager(wait_time=0.3)
    thread = make_thread(manager, max_concurrent_reconciles=1)
    thread.start_thread()
    thread.push_request(make_request("first"))
    thread.push_request(make_request("second"))
    time.sleep(1)
    thread.stop_thread()

    assert sorted(manager.calls) == ["first", "second"]
    assert manager.max_total == 1


@pytest.mark.timeout(5)
def test_new_request_cancels_scheduled_requeue():
    manager = FakeReconcileManager()
    thread = make_thread(manager)
    request = make_request()
    event = TimerEvent(time=request.timestamp, action=thread.push_request)
    thread.event_map[request.key()] = event

    thread.start_thread()
    thread.push_request(request)
    time.sleep(0.5)
    thread.stop_thread()

    assert event.stale
    assert request.key() not in thread.event_map


def test_pending_keeps_newest():
    thread = make_thread(FakeReconcileManager())
    newest = make_request()
    older = ReconcileRequest(
        KubeEventType.MODIFIED,
        newest.resource,
        timestamp=newest.timestamp - timedelta(seconds=1),
    )
    thread._push_to_pending_reconcile(newest)
    thread._push_to_pending_reconcile(older)
    assert thread.pending_reconciles[newest.key()] is newest


@pytest.mark.parametrize(
    ["failures", "expected"],
    [[None, 1], [1, 1], [2, 2], [3, 4], [10, 10]],
)
def test_backoff_delay(failures, expected):
    """The delay doubles with every failure up to the maximum"""
    with library_config(
        reconcile=aconfig.Config(
            {
                "max_concurrent_reconciles": 2,
                "backoff_base_seconds": 1,
                "backoff_max_seconds": 10,
            },
            override_env_vars=False,
        )
    ):
        thread = make_thread(FakeReconcileManager())
        if failures is not None:
            thread.failure_counts["key"] = failures
        assert thread.backoff_delay("key") == timedelta(seconds=expected)


def test_default_pool_size():
    with library_config(
        reconcile=aconfig.Config(
            {
                "max_concurrent_reconciles": 7,
                "backoff_base_seconds": 1,
                "backoff_max_seconds": 10,
            },
            override_env_vars=False,
        )
    ):
        thread = ReconcileThread(FakeReconcileManager())
    assert thread.max_concurrent_reconciles == 7
