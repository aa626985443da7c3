"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import itertools
import operator
import uuid

# First Party
import alog

# Local
from ..managed_object import ManagedObject
from .base import DeployManagerBase, DeployMethod
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import update_owner_references

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Fields owned by the server that a client write never removes
_SERVER_METADATA_FIELDS = [
    "uid",
    "creationTimestamp",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
    "generation",
]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources=None,
        owner_cr=None,
        strict_resource_version=False,
    ):
        """Construct with an optional set of resources that already exist in
        the cluster

        Args:
            resources:  Optional[List[dict]]
                Resources present in the in-memory cluster on construction
            owner_cr:  Optional[dict]
                If given, deployed objects get an ownerReference to this CR
            strict_resource_version:  bool
                If true, writes carrying a stale resourceVersion are rejected
                the way the API server answers with a conflict
        """
        self._owner_cr = owner_cr
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version
        self._resource_versions = itertools.count(1)

        # Dicts of registered watches and watchers
        self._watches = {}
        self._finalizers = {}

        # Deploy provided resources
        self._deploy(resources or [], call_watches=False, manage_owner_references=False)

    ## Interface ###############################################################

    def deploy(
        self,
        resource_definitions,
        manage_owner_references=True,
        method: DeployMethod = DeployMethod.DEFAULT,
        **_,
    ):
        log.debug("DRY RUN deploy")
        return self._deploy(
            resource_definitions,
            manage_owner_references=manage_owner_references,
            method=method,
        )

    def disable(self, resource_definitions):
        log.debug("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")
            _, content = self.get_object_current_state(
                kind=kind, api_version=api_version, namespace=namespace, name=name
            )
            if content is None:
                continue
            changed = True

            # Mark the object as being deleted
            with DRY_RUN_CLUSTER_LOCK:
                current = self._cluster_content[namespace][kind][api_version][name]
                current["metadata"].setdefault(
                    "deletionTimestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")
                )
                current["metadata"]["deletionGracePeriodSeconds"] = 0
                current = copy.deepcopy(current)

            # If there are no finalizers the object is erased right away
            if not current["metadata"].get("finalizers"):
                with DRY_RUN_CLUSTER_LOCK:
                    self._delete_key(namespace, kind, api_version, name)
                self._call_finalizers(current)
            else:
                log.debug2(
                    "[%s/%s] is blocked by finalizers %s",
                    kind,
                    name,
                    current["metadata"]["finalizers"],
                )
                self._call_watches(current)

        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )

        # Look in the cluster state
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if name in entries and (api_ver == api_version or api_version is None):
                    matches.append(copy.deepcopy(entries[name]))
        log.debug3(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, matches[0]
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        with DRY_RUN_CLUSTER_LOCK:
            # Without a namespace, namespaced kinds are listed across all of
            # the namespaces
            if namespace is None:
                namespaces = list(self._cluster_content.values())
            else:
                namespaces = [self._cluster_content.get(namespace, {})]

            matches = []
            for namespace_content in namespaces:
                for api_ver, entries in namespace_content.get(kind, {}).items():
                    if api_ver != api_version and api_version is not None:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels") or {}
                        if label_selector and not _match_selector(
                            labels, label_selector
                        ):
                            continue
                        if field_selector and not _match_selector(
                            _convert_dict_to_dot(resource), field_selector
                        ):
                            continue
                        matches.append(copy.deepcopy(resource))

        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s", api_version, kind, name, namespace
        )
        log.debug4("Status: %s", status)
        with DRY_RUN_CLUSTER_LOCK:
            entries = (
                self._cluster_content.get(namespace, {})
                .get(kind, {})
                .get(api_version, {})
            )
            if name not in entries:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            current = entries[name]
            changed = current.get("status") != status
            if changed:
                current["status"] = copy.deepcopy(status)
                current["metadata"]["resourceVersion"] = self._next_resource_version()
            current = copy.deepcopy(current)

        if changed:
            self._call_watches(current)
        return True, changed

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks"""

        event_queue = Queue()
        seen = set()

        def add_event(manifest: dict):
            """Callback triggered when resources are deployed"""
            resource = ManagedObject(manifest)
            event_type = KubeEventType.ADDED
            if resource.uid in seen:
                event_type = KubeEventType.MODIFIED
            seen.add(resource.uid)
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(manifest: dict):
            """Callback triggered when resources are erased"""
            resource = ManagedObject(manifest)
            seen.discard(resource.uid)
            event_queue.put(KubeWatchEvent(type=KubeEventType.DELETED, resource=resource))

        # Get initial resources
        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            resource = ManagedObject(manifest)
            seen.add(resource.uid)
            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
            log.debug2("Yielding initial event %s", event)
            yield event

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        # Register callbacks
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=add_event,
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=delete_event,
        )

        # Yield any events from the callback queue
        while True:
            sec_till_end = max((end_time - datetime.now()).total_seconds(), 0.01)
            try:
                event = event_queue.get(timeout=min(sec_till_end, 1))
                log.debug2("Yielding event %s", event)
                yield event
            except Empty:
                pass

            if datetime.now() > end_time:
                return

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for write events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call when an object of the given
        api_version/kind is erased
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering finalizer for %s", watch_key)
        self._finalizers.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions)).zfill(5)

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        candidate_keys = {
            self._watch_key(
                api_version=api_version, kind=kind, namespace=namespace, name=name
            ),
            self._watch_key(api_version=api_version, kind=kind, namespace=namespace),
            self._watch_key(api_version=api_version, kind=kind),
        }
        callback_map = self._finalizers if finalizer else self._watches
        return [
            (key, callback)
            for key, callback_list in list(callback_map.items())
            if key in candidate_keys
            for callback in list(callback_list)
        ]

    def _call_watches(self, resource: dict):
        metadata = resource.get("metadata", {})
        for key, callback in self._get_registered_watches(
            resource.get("apiVersion"),
            resource.get("kind"),
            metadata.get("namespace"),
            metadata.get("name"),
        ):
            log.debug3("Calling registered watch [%s] for [%s]", callback, key)
            callback(copy.deepcopy(resource))

    def _call_finalizers(self, resource: dict):
        metadata = resource.get("metadata", {})
        for key, callback in self._get_registered_watches(
            resource.get("apiVersion"),
            resource.get("kind"),
            metadata.get("namespace"),
            metadata.get("name"),
            finalizer=True,
        ):
            log.debug3("Calling registered finalizer [%s] for [%s]", callback, key)
            callback(copy.deepcopy(resource))

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _deploy(  # pylint: disable=too-many-locals
        self,
        resource_definitions,
        call_watches=True,
        manage_owner_references=True,
        method: DeployMethod = DeployMethod.DEFAULT,
    ):
        changes = False
        for resource in resource_definitions:
            resource = copy.deepcopy(dict(resource))
            resource.setdefault("metadata", {})
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource["metadata"].get("name")
            namespace = resource["metadata"].get("namespace")
            log.debug2(
                "DRY RUN deploy [%s/%s/%s/%s] with %s",
                namespace,
                kind,
                api_version,
                name,
                method,
            )
            log.debug4(resource)

            # If owner CR configured, add ownerReferences
            if self._owner_cr and manage_owner_references:
                update_owner_references(self, self._owner_cr, resource)

            with DRY_RUN_CLUSTER_LOCK:
                entries = (
                    self._cluster_content.setdefault(namespace, {})
                    .setdefault(kind, {})
                    .setdefault(api_version, {})
                )
                current = entries.get(name)
                current_metadata = (current or {}).get("metadata", {})

                requested_version = resource["metadata"].get("resourceVersion")
                if (
                    self.strict_resource_version
                    and current is not None
                    and requested_version
                    and requested_version != current_metadata.get("resourceVersion")
                ):
                    log.warning(
                        "Unable to deploy [%s/%s]. resourceVersion is out of date",
                        kind,
                        name,
                    )
                    return False, changes

                if current is not None:
                    self._carry_server_fields(current, resource, method)
                else:
                    resource["metadata"].setdefault(
                        "creationTimestamp", datetime.now().isoformat()
                    )
                    resource["metadata"].setdefault("uid", str(uuid.uuid4()))
                    resource["metadata"].setdefault("generation", 1)

                changed = not _same_content(current, resource)
                if not changed:
                    continue
                changes = True
                resource["metadata"]["resourceVersion"] = self._next_resource_version()
                entries[name] = resource

                # Erase the object if it is being deleted and has no
                # finalizers left
                erased = bool(
                    resource["metadata"].get("deletionTimestamp")
                    and not resource["metadata"].get("finalizers")
                )
                if erased:
                    self._delete_key(namespace, kind, api_version, name)
                stored = copy.deepcopy(resource)

            if call_watches:
                if erased:
                    self._call_finalizers(stored)
                else:
                    self._call_watches(stored)

        return True, changes

    @staticmethod
    def _carry_server_fields(current: dict, resource: dict, method: DeployMethod):
        """Keep the fields that the server owns (and the status, which is only
        written through the status subresource) when writing an object that
        already exists
        """
        current_metadata = current.get("metadata", {})
        metadata = resource["metadata"]
        for field in _SERVER_METADATA_FIELDS:
            if field in current_metadata:
                metadata[field] = current_metadata[field]
        if "status" in current:
            resource["status"] = copy.deepcopy(current["status"])
        else:
            resource.pop("status", None)

        # Apply merges the finalizer set, replace writes it as given
        if method is DeployMethod.DEFAULT:
            finalizers = list(current_metadata.get("finalizers") or [])
            for finalizer in metadata.get("finalizers") or []:
                if finalizer not in finalizers:
                    finalizers.append(finalizer)
            if finalizers:
                metadata["finalizers"] = finalizers
            if "ownerReferences" not in metadata and current_metadata.get(
                "ownerReferences"
            ):
                metadata["ownerReferences"] = copy.deepcopy(
                    current_metadata["ownerReferences"]
                )

        # Bump the generation when the spec changes
        if current.get("spec") != resource.get("spec"):
            metadata["generation"] = current_metadata.get("generation", 1) + 1


def _same_content(current: Optional[dict], desired: dict) -> bool:
    """Compare two manifests ignoring the resourceVersion"""
    if current is None:
        return False
    current = copy.deepcopy(current)
    desired = copy.deepcopy(desired)
    current.get("metadata", {}).pop("resourceVersion", None)
    desired.get("metadata", {}).pop("resourceVersion", None)
    return current == desired


## Selectors ###################################################################


def _match_selector(values: dict, value_selector: str) -> bool:
    """Implement the kubernetes selector syntax to determine if a set of values
    matches the selector. See:
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#label-selectors
    """
    log.debug3("DRY RUN match_selector [%s/%s]", values, value_selector)

    # Spaces are required to tell the set operators apart from the values
    equality_ops = ["==", "!=", "="]
    set_ops = [" notin ", " in "]
    operator_actions = {
        "==": operator.eq,
        "=": operator.eq,
        "!=": operator.ne,
        " in ": lambda value, expected: value in expected,
        " notin ": lambda value, expected: value not in expected,
    }

    for selector in _split_selectors(value_selector):
        selector = selector.strip()
        action = None
        expected_key = None
        expected_value = None

        for op in set_ops + equality_ops:  # pylint: disable=invalid-name
            split_selector = selector.split(op)
            if len(split_selector) != 2:
                continue
            action = operator_actions[op]
            expected_key = split_selector[0].strip()
            if op in set_ops:
                expected_value = [
                    part.strip()
                    for part in split_selector[1].strip().strip("()").split(",")
                ]
            else:
                expected_value = split_selector[1].strip()
            break

        # Existence selectors: "key" and "!key"
        if action is None:
            if selector.startswith("!"):
                expected_key = selector[1:].strip()
                action = lambda value, _: value is None
            else:
                expected_key = selector
                action = lambda value, _: value is not None

        value = values.get(expected_key)
        value = str(value).strip() if value is not None else value
        if not action(value, expected_value):
            log.debug4("Value %s does not match selector %s", value, selector)
            return False

    return True


def _split_selectors(selector: str = "") -> List[str]:
    """Split up selectors by , but ignoring those surrounded by () e.g.
    'app,app in (frontend, backend)' becomes ['app','app in (frontend, backend)']
    """
    output_list = []
    current_selector = ""
    in_paren = False
    for char in selector:
        if char == "," and not in_paren:
            output_list.append(current_selector)
            current_selector = ""
            continue
        if char == "(":
            in_paren = True
        elif char == ")":
            in_paren = False
        current_selector += char
    if current_selector:
        output_list.append(current_selector)
    return output_list


def _convert_dict_to_dot(dictionary, prefix="") -> dict:
    """Convert a nested dictionary to a flat map with dotted keys. For example
    {a:{b:1},c:2} becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}

    output_dict = {}
    for key, value in dictionary.items():
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict.update(_convert_dict_to_dot(value, new_key))
    return output_dict
