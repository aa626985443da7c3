"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import recursive_diff
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..constants import FIELD_MANAGER
from ..exceptions import assert_cluster
from .base import DeployManagerBase, DeployMethod
from .kube_event import KubeWatchEvent
from .owner_references import update_owner_references

log = alog.use_channel("OSFTD")

## Deploy Manager ##############################################################

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# Metadata fields that the server changes on every write
_VOLATILE_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
]

class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, owner_cr: Optional[dict] = None):
        """
        Args:
            owner_cr:  Optional[dict]
                The dict content of the CR that owns the deployed objects. If
                given, deployed objects will have an ownerReference added to
                assign ownership to this CR instance.
        """
        self._owner_cr = owner_cr

        # Set up the client
        log.debug("Initializing openshift client")
        self._client = None

        # Serialize status updates so concurrent reconciles do not conflict on
        # the same object
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(
        self,
        resource_definitions: List[dict],
        manage_owner_references: bool = True,
        method: DeployMethod = DeployMethod.DEFAULT,
        **_,
    ) -> Tuple[bool, bool]:
        """Deploy using the openshift client

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster
            manage_owner_references:  bool
                If true, ownerReferences for the owner CR will be applied to
                the deployed object
            method:  DeployMethod
                DEFAULT applies the fields with server side apply. REPLACE puts
                the whole object and is not retried on conflict since the
                caller owns the resourceVersion it read.

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes
        """
        return self._retried_operation(
            resource_definitions,
            self._apply,
            max_retries=0 if method is DeployMethod.REPLACE else config.deploy_retries,
            manage_owner_references=manage_owner_references,
            method=method,
        )

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete the given resources from the cluster. Missing kinds and
        missing objects count as success without change.

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete

        Returns:
            success:  bool
                True if the delete succeeded, False otherwise
            changed:  bool
                Whether or not the delete resulted in changes
        """
        return self._retried_operation(
            resource_definitions,
            self._disable,
            max_retries=config.deploy_retries,
            manage_owner_references=False,
        )

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, dict]:
        """Fetch the current state of a single object by name

        Args:
            kind:  str
                The kind of the object ot fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for no namespace
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None

        return True, resource.to_dict()

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event = KubeWatchEvent.from_watch(event_obj)
                    if event is None:
                        log.debug2("Skipping %s watch event", event_obj.get("type"))
                        continue
                    yield event
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2(
                        "Resource age expired, restarting watch %s/%s",
                        kind,
                        api_version,
                    )
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise exception
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch Socket closed, restarting watch %s/%s", kind, api_version)
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid Chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )

            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug(
                    "Internal watch stopped. Stopping deploy manager watch for %s/%s",
                    kind,
                    api_version,
                )
                return

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind that match either/both the label or field
        selector. Without a namespace, the list spans the whole cluster.

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of  dict representations for the objects configuration,
                or an empty list if no objects match
        """
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status subresource of an object managed by this operator

        Returns:
            success:  bool
                Whether or not the status update operation succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """
        # Create a dummy resource to use in the common retry function
        resource_definitions = [
            {
                "kind": kind,
                "apiVersion": api_version,
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                },
            }
        ]
        return self._retried_operation(
            resource_definitions,
            self._set_status,
            max_retries=config.deploy_retries,
            status=status,
            manage_owner_references=False,
        )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return resources

    def _update_owner_references(self, resource_definitions):
        """If configured to do so, add owner references to the given resources"""
        if self._owner_cr:
            for resource_definition in resource_definitions:
                update_owner_references(self, self._owner_cr, resource_definition)

    def _retried_operation(
        self,
        resource_definitions,
        operation,
        max_retries,
        manage_owner_references,
        **kwargs,
    ):
        """Shared wrapper for executing a client operation with retries"""
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"
        log.debug3("Running operation with %d retries", max_retries)

        if not resource_definitions:
            log.debug("Nothing to do for an empty list of resources")
            return True, False

        if manage_owner_references:
            self._update_owner_references(resource_definitions)

        # Run each resource individually and stop at the first failure since
        # later resources may depend on earlier ones
        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = (
                    self._run_individual_operation_with_retries(
                        operation,
                        max_retries,
                        resource_definition=resource_definition,
                        **kwargs,
                    )
                    or changed
                )
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation,
                    err,
                    exc_info=True,
                )
                success = False
                break

        return success, changed

    def _run_individual_operation_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource_definition: dict,
        **kwargs,
    ):
        """Helper to execute a single helper operation with retries

        Args:
            operation:  Callable
                The operation function to run
            remaining_retries:  int
                The number of remaining retries
            resource_definition:  dict
                The dict representation of the resource being applied
            **kwargs:  dict
                Keyword args to pass to the operation beyond resource_definition

        Returns:
            changed:  bool
                Whether or not the operation resulted in meaningful change
        """
        try:
            return operation(resource_definition=resource_definition, **kwargs)
        except ConflictError as err:
            log.debug2("Handling ConflictError: %s", err)
            if not remaining_retries:
                raise

            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)

            # Refresh the resourceVersion before trying again
            res_id = self._get_resource_identifiers(
                resource_definition, require_api_version=False
            )
            success, content = self.get_object_current_state(
                kind=res_id.kind,
                name=res_id.name,
                namespace=res_id.namespace,
                api_version=res_id.api_version,
            )
            assert_cluster(
                success and content is not None,
                "Failed to fetch updated resourceVersion for "
                f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
            )
            updated_resource_version = content.get("metadata", {}).get(
                "resourceVersion"
            )
            assert_cluster(
                updated_resource_version is not None,
                "No updated resource version found!",
            )
            log.debug3(
                "Updating resourceVersion from %s -> %s",
                resource_definition.get("metadata", {}).get("resourceVersion"),
                updated_resource_version,
            )
            resource_definition.setdefault("metadata", {})[
                "resourceVersion"
            ] = updated_resource_version

            return self._run_individual_operation_with_retries(
                operation, remaining_retries - 1, resource_definition, **kwargs
            )

    @staticmethod
    def _project(current, desired):
        """Reduce the current state to the fields named in the desired manifest
        so that server defaulted fields do not count as a difference
        """
        if isinstance(current, dict) and isinstance(desired, dict):
            return {
                key: OpenshiftDeployManager._project(current[key], value)
                for key, value in desired.items()
                if key in current
            }
        return current

    @classmethod
    def _clean_manifest(cls, manifest: dict) -> dict:
        """Remove the fields of a manifest that change on every write"""
        manifest = copy.deepcopy(manifest)
        for metadata_field in _VOLATILE_METADATA_FIELDS:
            manifest.get("metadata", {}).pop(metadata_field, None)
        return manifest

    @classmethod
    def _manifest_diff(cls, current: dict, desired: dict) -> bool:
        """Compare the current state with the desired manifest, ignoring the
        fields that the desired manifest does not declare

        Returns:
            changed:  bool
                True if applying the desired manifest changes the object
        """
        desired = cls._clean_manifest(desired)
        current = cls._project(cls._clean_manifest(current), desired)
        diff = recursive_diff(current, desired)
        change = bool(diff)
        log.debug2("Found change? %s", change)
        log.debug3("Current: %s", current)
        log.debug3("Desired: %s", desired)
        return change

    # Internal struct to hold the key resource identifier elements
    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    @classmethod
    def _get_resource_identifiers(cls, resource_definition, require_api_version=True):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [
            kind,
            name,
        ], "Cannot apply resource without kind or name"
        assert (
            not require_api_version or api_version is not None
        ), "Cannot apply resource without apiVersion"
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    ################
    ## Operations ##
    ################

    def _resource_handle_for(self, res_id) -> Resource:
        log.debug2("Fetching resource handle [%s/%s]", res_id.api_version, res_id.kind)
        resource_handle = self._get_resource_handle(
            api_version=res_id.api_version, kind=res_id.kind
        )
        assert_cluster(
            resource_handle,
            "Failed to fetch resource handle for "
            f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}",
        )
        return resource_handle

    def _replace_resource(self, resource_definition: dict) -> dict:
        """Put the whole resource. The resourceVersion in the definition makes
        the write fail with a conflict if the object changed since it was read.
        """
        res_id = self._get_resource_identifiers(resource_definition)
        resource_definition["metadata"]["managedFields"] = None
        resource_handle = self._resource_handle_for(res_id)
        log.debug2(
            "Attempting to put [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        return resource_handle.replace(
            resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=FIELD_MANAGER,
        ).to_dict()

    def _apply_resource(self, resource_definition: dict) -> dict:
        """Server side apply a single resource, taking ownership of fields held
        by other managers if needed
        """
        res_id = self._get_resource_identifiers(resource_definition)
        resource_definition["metadata"]["managedFields"] = None
        resource_handle = self._resource_handle_for(res_id)
        log.debug2(
            "Attempting to apply [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        try:
            return resource_handle.server_side_apply(
                resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
            ).to_dict()
        except ConflictError:
            log.debug(
                "Overriding field manager conflict for [%s/%s/%s] in %s ",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return resource_handle.server_side_apply(
                resource_definition,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=FIELD_MANAGER,
                force_conflicts=True,
            ).to_dict()

    def _apply(self, resource_definition, method: DeployMethod):
        """Apply a single resource to the cluster

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(
            success,
            "Failed to fetch current state for "
            f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}/{res_id.name}",
        )
        current = current or {}

        if not self._manifest_diff(current, resource_definition):
            return False

        log.debug2(
            "Attempting to deploy [%s/%s/%s] in %s with %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
            method,
        )
        if method is DeployMethod.REPLACE and current:
            apply_res = self._replace_resource(resource_definition)
        else:
            apply_res = self._apply_resource(resource_definition)

        # The applied manifest does not always result in the resource looking
        # identical so the change is computed against the result
        return self._manifest_diff(current, apply_res)

    def _disable(self, resource_definition):
        """Delete a single resource from the cluster if it exists

        Returns:
            changed:  bool
                Whether or not the disable resulted in a meaningful change
        """
        changed = False
        res_id = self._get_resource_identifiers(resource_definition)

        log.debug2("Fetching resource [%s/%s]", res_id.api_version, res_id.kind)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )

            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            changed = True

        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2(
                "Valid error caught when disabling [%s/%s]: %s",
                res_id.kind,
                res_id.name,
                err,
            )

        return changed

    def _set_status(self, resource_definition, status):
        """Replace the status subresource of a single resource

        Returns:
            changed:  bool
                Whether or not the status update resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(
            resource_definition, require_api_version=False
        )
        resource_handle = self.client.resources.get(
            api_version=res_id.api_version, kind=res_id.kind
        )

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            log.debug2(
                "Resource version: %s",
                resource.get("metadata", {}).get("resourceVersion"),
            )
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False

            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                res_id.kind,
                res_id.name,
                res_id.namespace,
            )
            return True
