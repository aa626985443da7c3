""" Import All constants and classes from utils module """
# Local
from .constants import MIN_SLEEP_TIME
from .types import ReconcileRequest, ReconcileRequestType, ResourceId, TimerEvent
