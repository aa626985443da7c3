"""
Admission validators for the PodPlacementConfig and ClusterPodPlacementConfig
kinds. They enforce the invariants that span sibling objects and therefore
cannot be expressed by the CRD schema.

NOTE: The priority check is not atomic with the write that follows it. Two
    creates carrying the same priority that are admitted at the same time can
    both be allowed.
"""

# Standard
from typing import Callable, List, Optional, Tuple
import threading

# First Party
import alog

# Local
from .. import constants, resources
from ..deploy_manager import DeployManagerBase
from ..exceptions import ValidationError, assert_valid
from . import admission
from .admission import AdmissionRequest, AdmissionResponse, ObjectDecoder

log = alog.use_channel("VALID")

VALID_POD_PLACEMENT_CONFIG_MSG = "valid PodPlacementConfig"
VALID_CLUSTER_POD_PLACEMENT_CONFIG_MSG = "valid ClusterPodPlacementConfig"
NOT_HANDLED_MSG = "operation not explicitly handled"
DUPLICATE_ARCHITECTURE_MSG = (
    "duplicate architecture in the .spec.plugins.nodeAffinityScoring.platforms list"
)
EMPTY_PLATFORMS_MSG = (
    "the .spec.plugins.nodeAffinityScoring.platforms list must contain at least "
    "one entry"
)
SINGLETON_NAME_MSG = (
    f"{constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND} must be named "
    f"{constants.SINGLETON_NAME}"
)
LOCAL_CONFIGS_EXIST_MSG = (
    "cannot delete ClusterPodPlacementConfig while local PodPlacementConfigs "
    "still exist"
)


## Weighted terms ##############################################################


def validate_weighted_platforms(platforms: Optional[List[dict]], required: bool):
    """Validate the weighted architecture terms of a nodeAffinityScoring block

    Args:
        platforms:  Optional[List[dict]]
            The declared terms, None when the list is absent
        required:  bool
            Whether the list must hold at least one term

    Raises:
        ValidationError: The first violated rule
    """
    if required:
        assert_valid(bool(platforms), EMPTY_PLATFORMS_MSG)
    seen = set()
    for term in platforms or []:
        assert_valid(isinstance(term, dict), "platform terms must be objects")
        architecture = term.get("architecture")
        weight = term.get("weight")
        assert_valid(
            architecture in constants.SUPPORTED_ARCHITECTURES,
            f"unsupported architecture {architecture!r}, expected one of "
            + ", ".join(constants.SUPPORTED_ARCHITECTURES),
        )
        assert_valid(
            isinstance(weight, int)
            and not isinstance(weight, bool)
            and constants.MIN_PLATFORM_WEIGHT
            <= weight
            <= constants.MAX_PLATFORM_WEIGHT,
            f"weight {weight!r} of architecture {architecture} must be between "
            f"{constants.MIN_PLATFORM_WEIGHT} and {constants.MAX_PLATFORM_WEIGHT}",
        )
        assert_valid(architecture not in seen, DUPLICATE_ARCHITECTURE_MSG)
        seen.add(architecture)


def validate_node_affinity_scoring(manifest: dict):
    """Terms are checked when the plugin is enabled, or when a non-empty list
    is declared on a disabled plugin
    """
    enabled = resources.plugin_enabled(manifest, constants.NODE_AFFINITY_SCORING_KEY)
    platforms = resources.weighted_platforms(manifest)
    if enabled or platforms:
        validate_weighted_platforms(platforms, required=enabled)


## Priority ####################################################################


def validate_priority_new(ppc: dict, siblings: List[dict]):
    """A new object may not take a priority held by a sibling"""
    value = resources.priority(ppc)
    for sibling in siblings:
        assert_valid(
            resources.priority(sibling) != value,
            f"priority {value} already used by {resources.get_name(sibling)}",
        )


def validate_priority_update(ppc: dict, old_ppc: dict, siblings: List[dict]):
    """An object may keep its priority, but not move onto a sibling's"""
    value = resources.priority(ppc)
    if value == resources.priority(old_ppc):
        return
    name = resources.get_name(ppc)
    for sibling in siblings:
        if resources.get_name(sibling) == name:
            continue
        assert_valid(
            resources.priority(sibling) != value,
            f"priority {value} already used by {resources.get_name(sibling)}",
        )


def validate_cluster_platforms(cppc: dict):
    """The cluster wide terms may not repeat an architecture"""
    seen = set()
    for term in resources.weighted_platforms(cppc) or []:
        architecture = term.get("architecture") if isinstance(term, dict) else None
        assert_valid(architecture not in seen, DUPLICATE_ARCHITECTURE_MSG)
        seen.add(architecture)


## Validators ##################################################################


class ValidatorBase:
    """Common plumbing of the validators: the lazily built decoder and the
    conversion of the outcome into an AdmissionResponse
    """

    api_version = constants.API_VERSION
    kind = None

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager
        self._decoder = None
        self._decoder_lock = threading.Lock()

    @property
    def decoder(self) -> ObjectDecoder:
        """The decoder is built on the first request, once"""
        if self._decoder is None:
            with self._decoder_lock:
                if self._decoder is None:
                    log.debug("Building the %s decoder", self.kind)
                    self._decoder = self._build_decoder()
        return self._decoder

    def _build_decoder(self) -> ObjectDecoder:
        return ObjectDecoder(self.api_version, self.kind)

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        """Evaluate one admission request

        Args:
            request:  AdmissionRequest
                The request sent by the API server

        Returns:
            response:  AdmissionResponse
                The verdict. Invariant violations are denials, failures to
                decode or to read the siblings are errors.
        """
        log.debug2(
            "%s %s %s/%s",
            request.operation,
            self.kind,
            request.namespace,
            request.name,
        )
        response = self._handle(request)
        log.debug(
            "%s %s %s/%s allowed=%s: %s",
            request.operation,
            self.kind,
            request.namespace,
            request.name,
            response.allowed,
            response.message,
        )
        response.uid = request.uid
        return response

    def _handle(self, request: AdmissionRequest) -> AdmissionResponse:
        raise NotImplementedError()

    def _decode(
        self, raw: Optional[dict], which: str
    ) -> Tuple[Optional[dict], Optional[AdmissionResponse]]:
        try:
            return self.decoder.decode(raw), None
        except ValueError as err:
            return None, admission.errored(
                400, ValueError(f"failed to decode {which} {self.kind}: {err}")
            )

    def _malformed(self, which: str, err: TypeError) -> AdmissionResponse:
        """A decoded object whose fields do not have the expected shape"""
        return admission.errored(
            400, ValueError(f"failed to decode {which} {self.kind}: {err}")
        )

    def _list(
        self, namespace: Optional[str], handler: Callable[[List[dict]], None]
    ) -> Optional[AdmissionResponse]:
        """List the PodPlacementConfigs of a namespace (all of them when None)
        and run the handler on them, turning a list failure into an error
        """
        success, siblings = self.deploy_manager.filter_objects_current_state(
            kind=constants.POD_PLACEMENT_CONFIG_KIND,
            namespace=namespace,
            api_version=constants.API_VERSION,
        )
        if not success:
            where = f"namespace {namespace!r}" if namespace else "the cluster"
            return admission.errored(
                500,
                RuntimeError(
                    f"failed to list existing PodPlacementConfigs in {where}"
                ),
            )
        handler(siblings)
        return None


class PodPlacementConfigValidator(ValidatorBase):
    """Validates the PodPlacementConfig writes: well formed weighted terms and
    a priority unique within the namespace
    """

    kind = constants.POD_PLACEMENT_CONFIG_KIND
    path = constants.POD_PLACEMENT_CONFIG_WEBHOOK_PATH

    def _handle(self, request: AdmissionRequest) -> AdmissionResponse:
        if request.operation not in (admission.CREATE, admission.UPDATE):
            return admission.allowed(NOT_HANDLED_MSG)

        ppc, error = self._decode(request.object, "new")
        if error is not None:
            return error
        value = resources.priority(ppc)
        if not isinstance(value, int) or isinstance(value, bool):
            return admission.errored(
                400,
                ValueError(
                    f"failed to decode new {self.kind}: priority {value!r} is "
                    "not an integer"
                ),
            )

        old_ppc = None
        if request.operation == admission.UPDATE:
            old_ppc, error = self._decode(request.old_object, "old")
            if error is not None:
                return error

        try:
            validate_node_affinity_scoring(ppc)
            namespace = request.namespace or resources.get_namespace(ppc)
            if request.operation == admission.CREATE:
                error = self._list(
                    namespace, lambda siblings: validate_priority_new(ppc, siblings)
                )
            else:
                error = self._list(
                    namespace,
                    lambda siblings: validate_priority_update(
                        ppc, old_ppc, siblings
                    ),
                )
        except ValidationError as err:
            return admission.denied(str(err))
        except TypeError as err:
            return self._malformed("new", err)
        if error is not None:
            return error
        return admission.allowed(VALID_POD_PLACEMENT_CONFIG_MSG)


class ClusterPodPlacementConfigValidator(ValidatorBase):
    """Validates the ClusterPodPlacementConfig writes: the singleton name,
    unique architectures in its weighted terms and no deletion while local
    PodPlacementConfigs exist
    """

    kind = constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND
    path = constants.CLUSTER_POD_PLACEMENT_CONFIG_WEBHOOK_PATH

    def _handle(self, request: AdmissionRequest) -> AdmissionResponse:
        if request.operation == admission.DELETE:
            try:
                error = self._list(None, self._validate_delete)
            except ValidationError as err:
                return admission.denied(str(err))
            return error or admission.allowed(VALID_CLUSTER_POD_PLACEMENT_CONFIG_MSG)

        if request.operation not in (admission.CREATE, admission.UPDATE):
            return admission.allowed(NOT_HANDLED_MSG)

        cppc, error = self._decode(request.object, "new")
        if error is not None:
            return error
        try:
            assert_valid(resources.is_singleton(cppc), SINGLETON_NAME_MSG)
            validate_cluster_platforms(cppc)
        except ValidationError as err:
            return admission.denied(str(err))
        except TypeError as err:
            return self._malformed("new", err)
        return admission.allowed(VALID_CLUSTER_POD_PLACEMENT_CONFIG_MSG)

    @staticmethod
    def _validate_delete(local_configs: List[dict]):
        assert_valid(not local_configs, LOCAL_CONFIGS_EXIST_MSG)
