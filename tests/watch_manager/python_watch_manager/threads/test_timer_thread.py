"""
Tests for the TimerThread
"""
# Standard
from datetime import datetime, timedelta
import time

# Third Party
import pytest

# Local
from multiarch_tuning.watch_manager.python_watch_manager.threads import TimerThread

## Helpers #####################################################################


class Counter:
    def __init__(self, initial_value=0):
        self.value = initial_value

    def increment(self, value=1):
        self.value += value


## Tests #######################################################################


@pytest.mark.timeout(5)
def test_timer_thread_happy_path():
    timer = TimerThread()
    timer.start_thread()

    value_tracker = Counter()
    timer.put_event(datetime.now(), value_tracker.increment)
    timer.put_event(datetime.now() + timedelta(seconds=0.1), value_tracker.increment)
    timer.put_event(datetime.now() + timedelta(seconds=0.2), value_tracker.increment, 2)
    timer.put_event(
        datetime.now() + timedelta(seconds=0.3), value_tracker.increment, value=2
    )
    time.sleep(2.5)
    timer.stop_thread()
    assert value_tracker.value == 6


@pytest.mark.timeout(5)
def test_timer_thread_canceled():
    timer = TimerThread()

    value_tracker = Counter()
    timer.put_event(datetime.now(), value_tracker.increment)
    canceled_event = timer.put_event(
        datetime.now() + timedelta(seconds=0.5), value_tracker.increment
    )
    canceled_event.cancel()

    timer.start_thread()
    time.sleep(2)
    timer.stop_thread()
    assert value_tracker.value == 1


@pytest.mark.timeout(5)
def test_timer_thread_future_event_not_run():
    timer = TimerThread()
    timer.start_thread()

    value_tracker = Counter()
    timer.put_event(datetime.now() + timedelta(minutes=5), value_tracker.increment)
    time.sleep(1.5)
    timer.stop_thread()
    timer.join(timeout=2)
    assert not timer.is_alive()
    assert value_tracker.value == 0


def test_timer_thread_stopped_rejects_events():
    timer = TimerThread()
    timer.stop_thread()
    assert timer.put_event(datetime.now(), Counter().increment) is None
    assert not timer.timer_heap


def test_timer_thread_name():
    assert TimerThread().name == "timer_thread"
    assert TimerThread(name="other").name == "other"
