"""
Threaded watch manager backed by the kubernetes watch client
"""

# Local
from .python_watch_manager import PythonWatchManager
