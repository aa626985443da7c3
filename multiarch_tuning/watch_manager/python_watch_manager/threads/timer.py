"""
The TimerThread is a helper class used to run scheduled events
"""

# Standard
from datetime import datetime
from heapq import heappop, heappush
from typing import Any, Callable, Dict, List, Optional
import threading

# First Party
import alog

# Local
from ..utils import MIN_SLEEP_TIME, TimerEvent
from .base import ThreadBase

log = alog.use_channel("TMRTHRD")


class TimerThread(ThreadBase):
    """The TimerThread class is a helper class to run scheduled actions. This is
    very similar to the threading.Timer stdlib class except that it uses one
    shared thread for all events instead of a thread per event."""

    def __init__(self, name: Optional[str] = None):
        """Initialize a priorityqueue like object and a synchronization object"""
        super().__init__(name=name or "timer_thread", daemon=True)

        # Use a heap queue instead of a queue.PriorityQueue as we're already
        # handling synchronization with the notify condition
        self.timer_heap = []
        self.notify_condition = threading.Condition()

    def run(self):
        """The TimerThread's control loop sleeps until the next scheduled
        event and executes all pending actions."""
        while not self.should_stop():
            # Wait until the next event or a new event is pushed
            with self.notify_condition:
                time_to_sleep = self._get_time_to_sleep()
                if time_to_sleep:
                    log.debug2(
                        "Timer waiting %ss until next scheduled event", time_to_sleep
                    )
                else:
                    log.debug2("Timer waiting until event queued")
                self.notify_condition.wait(timeout=time_to_sleep)

            if self.should_stop():
                return

            # Run all the events that are due
            for event in self._get_all_current_events():
                log.debug("Timer executing action for event: %s", event)
                event.action(*event.args, **event.kwargs)

    ## Class Interface #########################################################

    def stop_thread(self):
        """Override stop_thread to wake the control loop"""
        super().stop_thread()
        with self.notify_condition:
            log.debug("Notifying TimerThread of shutdown")
            self.notify_condition.notify_all()

    ## Public Interface ########################################################

    def put_event(
        self, time: datetime, action: Callable, *args: Any, **kwargs: Dict
    ) -> Optional[TimerEvent]:
        """Push an event to the timer

        Args:
            time: datetime
                The datetime to execute the event at
            action: Callable
                The action to execute
            *args: Any
                Args to pass to the action
            **kwargs: Dict
                Kwargs to pass to the action

        Returns:
            event: Optional[TimerEvent]
                TimerEvent describing the event and can be cancelled
        """
        # Don't allow pushing to a stopped thread
        if self.should_stop():
            return None

        event = TimerEvent(time=time, action=action, args=args, kwargs=kwargs)
        with self.notify_condition:
            heappush(self.timer_heap, event)
            self.notify_condition.notify_all()
        return event

    ## Implementation Details ##################################################

    def _get_time_to_sleep(self) -> Optional[float]:
        """Calculate the time to sleep based on the current queue"""
        with self.notify_condition:
            if not self.timer_heap:
                return None
            time_to_sleep = (self.timer_heap[0].time - datetime.now()).total_seconds()
            return max(time_to_sleep, MIN_SLEEP_TIME)

    def _get_all_current_events(self) -> List[TimerEvent]:
        """Pop every event that is due, skipping cancelled ones"""
        event_list = []
        now = datetime.now()
        with self.notify_condition:
            while self.timer_heap and self.timer_heap[0].time <= now:
                event = heappop(self.timer_heap)
                if event.stale:
                    log.debug2("Skipping timer event %s", event)
                    continue
                event_list.append(event)
        return event_list
