"""
The ReconcileManager class manages an individual reconcile of the
ClusterPodPlacementConfig. It parses the resource, sets up the per reconcile
log context, runs the controller and turns the outcome into a
ReconciliationResult.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional, Union
import base64
import datetime
import uuid

# First Party
import aconfig
import alog

# Local
from . import config
from .controller import ClusterPodPlacementConfigController
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import BarrierError, ClusterError, MultiarchExpectedError
from .log_format import LogLevelHandle
from .objects import ObjectSetBuilder

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation session"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Flag to identify if the reconciliation raised an exception
    exception: Exception = None


## ReconcileManager ############################################################


class ReconcileManager:
    """This class manages reconciliations of the ClusterPodPlacementConfig. Its
    primary function is to run reconciles given a CR manifest and the current
    cluster state via a DeployManager.
    """

    ## Construction ############################################################

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        controller: Optional[ClusterPodPlacementConfigController] = None,
        log_level: Optional[LogLevelHandle] = None,
        builder: Optional[ObjectSetBuilder] = None,
    ):
        """The constructor sets up the properties used across every
        reconcile

        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, one is created based on
                config.dry_run
            controller:  Optional[ClusterPodPlacementConfigController]
                The controller to run. If not given, one is constructed with the
                deploy manager
            log_level:  Optional[LogLevelHandle]
                The handle owning the process log level
            builder:  Optional[ObjectSetBuilder]
                The object set builder handed to the controller
        """
        self.log_level = log_level or LogLevelHandle()
        if controller is not None:
            self.deploy_manager = controller.deploy_manager
            self.controller = controller
        else:
            self.deploy_manager = deploy_manager or self.setup_deploy_manager()
            self.controller = ClusterPodPlacementConfigController(
                self.deploy_manager, builder=builder, log_level=self.log_level
            )

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(
        self, resource: Union[dict, aconfig.Config]
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Parse the raw CR manifest
            2. Setup the log context for this reconcile
            3. Run the controller

        Args:
            resource: Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled. Only
                the identity is used since the controller reads the latest
                state itself.

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """

        # Parse the full CR content
        cr_manifest = self.parse_manifest(resource)

        # generate id unique to this session
        reconcile_id = self.generate_id()

        # Initialize logging prior to any other work
        self.configure_logging(cr_manifest, reconcile_id)

        return self.run_controller(cr_manifest)

    def safe_reconcile(self, resource: dict) -> ReconciliationResult:
        """
        This function calls out to reconcile but catches any errors thrown. This
        function guarantees a safe result which is needed by the Watch Managers

        Args:
            resource: Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile. Failed reconciles are always
                requeued and carry the exception
        """
        try:
            return self.reconcile(resource)

        # Barriers and not-ready states are expected and resolve on their own
        except BarrierError as exc:
            log.info("Teardown barrier not satisfied: %s", exc)
            error = exc

        # Transient failures talking to the cluster
        except ClusterError as exc:
            log.warning("Cluster error during reconcile: %s", exc)
            log.debug("Cluster error details", exc_info=True)
            error = exc

        except MultiarchExpectedError as exc:
            log.info("Requeuing: %s", exc)
            error = exc

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        # If we got to this return it means there was an
        # exception during reconcile and we should requeue
        # with the backoff of the caller
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config])
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed and validated config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse full_cr") from exc

        if not cr_manifest.get("metadata", {}).get("name"):
            raise ValueError("Resource has no metadata.name")

        return cr_manifest

    def configure_logging(self, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Attach the resource and the reconciliation id to the log lines

        Args:
            cr_manifest: aconfig.Config
                The resource being reconciled
            reconciliation_id: str
                The unique id for the reconciliation
        """
        self.log_level.set_context(cr_manifest, reconciliation_id)

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    @staticmethod
    def setup_deploy_manager() -> DeployManagerBase:
        """Create the deploy manager selected by config.dry_run"""
        if config.dry_run:
            log.warning("Running DRY RUN")
            return DryRunDeployManager()
        log.debug("Running with the openshift deploy manager")
        return OpenshiftDeployManager()

    def run_controller(self, cr_manifest: aconfig.Config) -> ReconciliationResult:
        """Run the controller for the given resource and convert its answer

        Args:
            cr_manifest: aconfig.Config
                The resource being reconciled

        Returns:
            reconciliation_result: ReconciliationResult
                The result of the reconcile
        """
        name = cr_manifest.metadata.name
        log.info("Reconciling resource %s/%s", cr_manifest.get("kind"), name)

        if self.controller.reconcile(name):
            log.debug("Requeuing [%s] right away", name)
            return ReconciliationResult(
                requeue=True,
                requeue_params=RequeueParams(requeue_after=datetime.timedelta()),
            )
        return ReconciliationResult(requeue=False, requeue_params=RequeueParams())
