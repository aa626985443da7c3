"""
Custom logging formats and the handle used to change the process log level
from the ClusterPodPlacementConfig
"""

# Standard
from typing import Callable, Optional
import threading

# First Party
from alog import AlogJsonFormatter
import alog

# Local
from . import config, constants

log = alog.use_channel("LOGFMT")


class MultiarchJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identifiers
    of the resource being reconciled, the reconciliationId and thread
    information to the json
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "resourceVersion",
        "resourceName",
        "reconciliationId",
    ]

    def __init__(self, manifest=None, reconciliation_id=None):
        super().__init__()
        self.manifest = manifest
        self.reconciliation_id = reconciliation_id

    def format(self, record):
        if self.reconciliation_id:
            record.reconciliationId = self.reconciliation_id

        if resource := getattr(record, "resource", self.manifest):
            record.kind = resource.get("kind")
            record.apiVersion = resource.get("apiVersion")

            metadata = resource.get("metadata", {})
            record.resourceVersion = metadata.get("resourceVersion")
            record.resourceName = metadata.get("name")

        return super().format(record)


class LogLevelHandle:
    """Owns the process wide log level. The controller holds one of these and
    applies the logVerbosity of the ClusterPodPlacementConfig through it, so
    that nothing else mutates the global alog configuration.
    """

    def __init__(
        self,
        configure: Optional[Callable] = None,
        filters: Optional[str] = None,
        log_json: Optional[bool] = None,
        thread_id: Optional[bool] = None,
    ):
        """
        Args:
            configure:  Optional[Callable]
                The function used to reconfigure logging. Defaults to
                alog.configure
            filters:  Optional[str]
                Per-channel filters kept across level changes
            log_json:  Optional[bool]
                Emit json logs
            thread_id:  Optional[bool]
                Include the thread id in the log header
        """
        self._configure = configure or alog.configure
        self._filters = config.log_filters if filters is None else filters
        self._log_json = config.log_json if log_json is None else log_json
        self._thread_id = config.log_thread_id if thread_id is None else thread_id
        self._lock = threading.Lock()
        self._verbosity = None
        self._manifest = None
        self._reconciliation_id = None

    @property
    def verbosity(self) -> Optional[str]:
        """The verbosity currently applied, None until the first apply"""
        return self._verbosity

    def set_context(self, manifest=None, reconciliation_id: Optional[str] = None):
        """Attach the resource being reconciled and the reconciliation id to
        the json log lines. The current level is kept.
        """
        with self._lock:
            self._manifest = manifest
            self._reconciliation_id = reconciliation_id
            if self._log_json:
                self._reconfigure(
                    constants.LOG_VERBOSITY_ALOG_LEVELS[self._verbosity]
                    if self._verbosity
                    else config.log_level
                )

    def apply(self, verbosity: str) -> bool:
        """Apply the given verbosity if it differs from the current one

        Args:
            verbosity:  str
                One of Normal, Debug, Trace or TraceAll. Unknown values are
                treated as Normal

        Returns:
            changed:  bool
                True if logging was reconfigured
        """
        if verbosity not in constants.LOG_VERBOSITY_ALOG_LEVELS:
            verbosity = constants.LOG_VERBOSITY_NORMAL
        with self._lock:
            if verbosity == self._verbosity:
                return False
            level = constants.LOG_VERBOSITY_ALOG_LEVELS[verbosity]
            self._reconfigure(level)
            self._verbosity = verbosity
        log.info("Log verbosity set to %s (%s)", verbosity, level)
        return True

    def _reconfigure(self, level: str):
        self._configure(
            default_level=level,
            filters=self._filters,
            formatter=MultiarchJsonFormatter(self._manifest, self._reconciliation_id)
            if self._log_json
            else "pretty",
            thread_id=self._thread_id,
        )
