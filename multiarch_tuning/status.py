"""
This module holds the status aggregation of the ClusterPodPlacementConfig. The
live state of the operand deployments and of the hook registration is folded
into a set of flags, and the flags are rendered as conditions.

The conditions reported on the ClusterPodPlacementConfig are:

* Available: The operand can gate and reconcile pods
* Progressing: Some operand component is still rolling out
* Degraded: Some operand component has no available replica
* Deprovisioning: The ClusterPodPlacementConfig is being deleted
* PodPlacementControllerNotRolledOut: The controller is not available or not up
    to date
* PodPlacementWebhookNotRolledOut: The webhook is not available or not up to
    date
* MutatingWebhookConfigurationNotAvailable: The hook registration is missing
"""

# Standard
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants
from .utils import nested_get

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" values of the conditions
AVAILABLE_CONDITION = "Available"
PROGRESSING_CONDITION = "Progressing"
DEGRADED_CONDITION = "Degraded"
DEPROVISIONING_CONDITION = "Deprovisioning"
CONTROLLER_NOT_ROLLED_OUT_CONDITION = "PodPlacementControllerNotRolledOut"
WEBHOOK_NOT_ROLLED_OUT_CONDITION = "PodPlacementWebhookNotRolledOut"
HOOK_NOT_AVAILABLE_CONDITION = "MutatingWebhookConfigurationNotAvailable"

# Reason used when nothing is pending
ALL_COMPONENTS_READY = "AllComponentsReady"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

# Message templates. The first substitution is the "not " polarity token.
HOOK_READY_MSG = "The mutating webhook configuration is %sready."
CONTROLLER_ROLLED_OUT_MSG = "The pod placement controller is %sfully rolled out."
WEBHOOK_ROLLED_OUT_MSG = "The pod placement webhook is %sfully rolled out."
READY_MSG = (
    "The cluster pod placement config operand is %sready. "
    "We can%s gate and reconcile pods."
)
DEGRADED_MSG = "The cluster pod placement config operand is %sdegraded."
PROGRESSING_MSG = "The cluster pod placement config operand is %sprogressing."
DEPROVISIONING_MSG = (
    "The cluster pod placement config operand is %sbeing deprovisioned. %s"
)
PENDING_DEPROVISIONING_MSG = (
    f"Some pods may still have the {constants.SCHEDULING_GATE_NAME} scheduling "
    "gate. The pod placement controller is updating them and will terminate."
)


@dataclass(frozen=True)
class StatusFlags:
    """The flags derived from the state of the operand"""

    available: bool
    progressing: bool
    degraded: bool
    deprovisioning: bool
    controller_not_ready: bool
    webhook_not_ready: bool
    hook_not_available: bool
    can_deploy_hook: bool


## Readiness ###################################################################


def is_deployment_available(deployment: Optional[dict]) -> bool:
    """A deployment is available when it has at least one available replica.
    A missing deployment is not available.
    """
    if not deployment:
        return False
    return (nested_get(deployment, "status.availableReplicas") or 0) > 0


def is_deployment_up_to_date(deployment: Optional[dict]) -> bool:
    """A deployment is up to date when every replica count matches the desired
    replicas, none is unavailable and the controller observed the latest
    generation
    """
    if not deployment:
        return False
    expected = nested_get(deployment, "spec.replicas")
    if expected is None:
        expected = -1
    status = deployment.get("status") or {}
    return (
        status.get("updatedReplicas", 0) == expected
        and status.get("replicas", 0) == expected
        and status.get("availableReplicas", 0) == expected
        and status.get("readyReplicas", 0) == expected
        and status.get("unavailableReplicas", 0) == 0
        and status.get("observedGeneration", 0)
        == nested_get(deployment, "metadata.generation", 0)
    )


## Aggregation #################################################################


def build_flags(  # pylint: disable=too-many-arguments
    controller_available: bool,
    webhook_available: bool,
    controller_up_to_date: bool,
    webhook_up_to_date: bool,
    hook_available: bool,
    deprovisioning: bool,
) -> StatusFlags:
    """Fold the readiness of the operand components into the status flags

    Args:
        controller_available:  bool
            The pod placement controller has an available replica
        webhook_available:  bool
            The pod placement webhook has an available replica
        controller_up_to_date:  bool
            The pod placement controller is fully rolled out
        webhook_up_to_date:  bool
            The pod placement webhook is fully rolled out
        hook_available:  bool
            The hook registration exists
        deprovisioning:  bool
            The ClusterPodPlacementConfig is being deleted

    Returns:
        flags:  StatusFlags
            The derived flags
    """
    available = hook_available and webhook_available and controller_available
    return StatusFlags(
        available=available,
        progressing=(
            not controller_up_to_date or not webhook_up_to_date or not hook_available
        )
        and not deprovisioning,
        degraded=not available and not deprovisioning,
        deprovisioning=deprovisioning,
        controller_not_ready=not controller_available or not controller_up_to_date,
        webhook_not_ready=not webhook_available or not webhook_up_to_date,
        hook_not_available=not hook_available,
        can_deploy_hook=webhook_available
        and controller_available
        and not deprovisioning,
    )


def build_conditions(flags: StatusFlags) -> List[dict]:
    """Render the flags as conditions, without timestamps"""
    reason = "".join(
        condition_type
        for condition_type, pending in [
            (CONTROLLER_NOT_ROLLED_OUT_CONDITION, flags.controller_not_ready),
            (WEBHOOK_NOT_ROLLED_OUT_CONDITION, flags.webhook_not_ready),
            (HOOK_NOT_AVAILABLE_CONDITION, flags.hook_not_available),
        ]
        if pending
    ) or ALL_COMPONENTS_READY

    return [
        _make_condition(
            AVAILABLE_CONDITION,
            flags.available,
            reason,
            READY_MSG % (_not(flags.available), _not(flags.available).strip()),
        ),
        _make_condition(
            PROGRESSING_CONDITION,
            flags.progressing,
            reason,
            PROGRESSING_MSG % _not(flags.progressing),
        ),
        _make_condition(
            DEGRADED_CONDITION,
            flags.degraded,
            _capitalized_not(flags.degraded) + DEGRADED_CONDITION,
            DEGRADED_MSG % _not(flags.degraded),
        ),
        _make_condition(
            DEPROVISIONING_CONDITION,
            flags.deprovisioning,
            _capitalized_not(flags.deprovisioning) + DEPROVISIONING_CONDITION,
            DEPROVISIONING_MSG
            % (
                _not(flags.deprovisioning),
                PENDING_DEPROVISIONING_MSG if flags.deprovisioning else "",
            ),
        ),
        _make_condition(
            CONTROLLER_NOT_ROLLED_OUT_CONDITION,
            flags.controller_not_ready,
            f"PodPlacementController{_capitalized_not(not flags.controller_not_ready)}Ready",
            CONTROLLER_ROLLED_OUT_MSG % _not(not flags.controller_not_ready),
        ),
        _make_condition(
            WEBHOOK_NOT_ROLLED_OUT_CONDITION,
            flags.webhook_not_ready,
            f"PodPlacementWebhook{_capitalized_not(not flags.webhook_not_ready)}Ready",
            WEBHOOK_ROLLED_OUT_MSG % _not(not flags.webhook_not_ready),
        ),
        _make_condition(
            HOOK_NOT_AVAILABLE_CONDITION,
            flags.hook_not_available,
            reason,
            HOOK_READY_MSG % _not(not flags.hook_not_available),
        ),
    ]


def build_status(
    current_status: Optional[dict],
    flags: StatusFlags,
    now: Optional[datetime] = None,
) -> dict:
    """Produce the new status block from the current one and the flags. Fields
    other than the conditions are kept, and conditions whose status does not
    change keep their lastTransitionTime.

    Args:
        current_status:  Optional[dict]
            The status currently stored on the ClusterPodPlacementConfig
        flags:  StatusFlags
            The flags computed for this reconcile
        now:  Optional[datetime]
            The transition time for conditions that change

    Returns:
        status:  dict
            The new status block
    """
    status = copy.deepcopy(dict(current_status or {}))
    conditions = list(status.get("conditions") or [])
    for condition in build_conditions(flags):
        conditions = set_condition(conditions, condition, now=now)
    status["conditions"] = conditions
    return status


def set_condition(
    conditions: List[dict], new_condition: dict, now: Optional[datetime] = None
) -> List[dict]:
    """Insert or update a condition by type. The lastTransitionTime only moves
    when the status of the condition changes.

    Returns:
        conditions:  List[dict]
            A new list of conditions
    """
    now = now or datetime.now(timezone.utc)
    updated = []
    found = False
    for condition in conditions:
        if condition.get("type") != new_condition["type"]:
            updated.append(condition)
            continue
        found = True
        merged = dict(condition)
        merged.update(new_condition)
        if condition.get("status") != new_condition["status"] or not condition.get(
            TIMESTAMP_KEY
        ):
            merged[TIMESTAMP_KEY] = _timestamp(now)
        else:
            merged[TIMESTAMP_KEY] = condition[TIMESTAMP_KEY]
        updated.append(merged)
    if not found:
        merged = dict(new_condition)
        merged[TIMESTAMP_KEY] = _timestamp(now)
        updated.append(merged)
    return updated


def get_condition(type_name: str, current_status: Optional[dict]) -> dict:
    """Get the condition with the given type, or an empty dict"""
    for condition in (current_status or {}).get("conditions") or []:
        if condition.get("type") == type_name:
            return condition
    return {}


def is_condition_true(type_name: str, current_status: Optional[dict]) -> bool:
    return get_condition(type_name, current_status).get("status") == "True"


def status_changed(current_status: Optional[dict], new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


## Implementation Details ######################################################


def _not(value: bool) -> str:
    return "" if value else "not "


def _capitalized_not(value: bool) -> str:
    return "" if value else "Not"


def _timestamp(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _make_condition(type_name: str, value: bool, reason: str, message: str) -> dict:
    """Convert the condition to the dict representation to be added to the
    kubernetes object
    """
    return {
        "type": type_name,
        "status": "True" if value else "False",
        "reason": reason,
        "message": message,
    }
