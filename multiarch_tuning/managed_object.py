"""
Helper object to represent a kubernetes object observed by the operator
"""
# Standard
import uuid

KUBE_LIST_IDENTIFIER = "List"


class ManagedObject:
    """Basic struct to represent a kubernetes object"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid", uuid.uuid4())
        self.resource_version = self.metadata.get("resourceVersion")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        # If resource is not list then check name
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"

        assert self.kind is not None, "No kind found"
        assert self.api_version is not None, "No apiVersion found"

    @property
    def owner_references(self):
        """The ownerReferences of the object, or an empty list"""
        return self.metadata.get("ownerReferences") or []

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash explicitly excludes the definition so that the object's
        identifier in a map is based only on the unique identifier of the
        resource in the cluster
        """
        return hash(self.metadata.get("uid", str(self)))

    def __eq__(self, other):
        return hash(self) == hash(other)
