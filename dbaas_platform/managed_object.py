"""
Identity-only handle for an object in the cluster that a reconciler addresses
"""
# Standard
from typing import Optional


class ManagedObject:
    """Basic struct holding the identity of a cluster object. It carries no
    state of its own; state is always re-read from the cluster.
    """

    __slots__ = ["api_version", "kind", "name", "namespace"]

    def __init__(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ):
        assert kind, "No kind found"
        assert api_version, "No apiVersion found"
        assert name, "No name found"
        self.api_version = api_version
        self.kind = kind
        self.name = name
        self.namespace = namespace

    def definition(self) -> dict:
        """Get the minimal manifest for this identity"""
        metadata = {"name": self.name}
        if self.namespace is not None:
            metadata["namespace"] = self.namespace
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }

    def __str__(self):
        if self.namespace:
            return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        return hash(str(self))

    def __eq__(self, other):
        return isinstance(other, ManagedObject) and str(self) == str(other)
