"""Generic get/list/create/update/delete access to dependent objects."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection


@dataclass(frozen=True)
class ResourceKind:
    """API coordinates of a resource kind."""

    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool = True
    # CoreV1Api/StorageV1Api method suffix, None for custom resources
    builtin: Optional[tuple[str, str]] = None

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


STORAGE_CLUSTER = ResourceKind("StorageCluster", "ocs.openshift.io", "v1", "storageclusters")
STORAGE_CLUSTER_INITIALIZATION = ResourceKind(
    "StorageClusterInitialization", "ocs.openshift.io", "v1", "storageclusterinitializations"
)
CEPH_CLUSTER = ResourceKind("CephCluster", "ceph.rook.io", "v1", "cephclusters")
CEPH_BLOCK_POOL = ResourceKind("CephBlockPool", "ceph.rook.io", "v1", "cephblockpools")
CEPH_FILESYSTEM = ResourceKind("CephFilesystem", "ceph.rook.io", "v1", "cephfilesystems")
CEPH_OBJECT_STORE = ResourceKind("CephObjectStore", "ceph.rook.io", "v1", "cephobjectstores")
VOLUME_SNAPSHOT_CLASS = ResourceKind(
    "VolumeSnapshotClass", "snapshot.storage.k8s.io", "v1", "volumesnapshotclasses",
    namespaced=False,
)
INFRASTRUCTURE = ResourceKind(
    "Infrastructure", "config.openshift.io", "v1", "infrastructures", namespaced=False
)
STORAGE_CLASS = ResourceKind(
    "StorageClass", "storage.k8s.io", "v1", "storageclasses",
    namespaced=False, builtin=("storage_v1", "storage_class"),
)
CONFIG_MAP = ResourceKind(
    "ConfigMap", "", "v1", "configmaps", builtin=("core_v1", "config_map")
)
SECRET = ResourceKind("Secret", "", "v1", "secrets", builtin=("core_v1", "secret"))
NODE = ResourceKind("Node", "", "v1", "nodes", namespaced=False, builtin=("core_v1", "node"))


def object_key(obj: dict[str, Any]) -> tuple[str, Optional[str]]:
    """Return (name, namespace) of an API object dict."""
    metadata = obj.get("metadata", {})
    return metadata["name"], metadata.get("namespace")


class ObjectStore(ABC):
    """
    Blocking CRUD interface over dependent objects.

    Objects are exchanged in their JSON (dict) form. Reads of missing objects
    return None; deletes of missing objects return False. Every other API
    failure, including write conflicts, propagates to the caller.
    """

    @abstractmethod
    def get(
        self, kind: ResourceKind, name: str, namespace: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        """Fetch an object, None when it does not exist."""

    @abstractmethod
    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind."""

    @abstractmethod
    def create(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        """Create an object."""

    @abstractmethod
    def update(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        """Replace an object, guarded by its resourceVersion."""

    @abstractmethod
    def update_status(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource of an object."""

    @abstractmethod
    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        """Delete an object, False when it did not exist."""


class KubernetesObjectStore(ObjectStore):
    """ObjectStore backed by the Kubernetes API."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize object store.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.custom_objects = cluster.custom_objects

    def _builtin_call(self, kind: ResourceKind, verb: str):
        api_name, suffix = kind.builtin
        api = getattr(self.cluster, api_name)
        scope = "namespaced_" if kind.namespaced else ""
        return getattr(api, f"{verb}_{scope}{suffix}")

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.cluster.api_client.sanitize_for_serialization(obj)

    def _with_type_meta(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)
        return obj

    def get(
        self, kind: ResourceKind, name: str, namespace: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        try:
            if kind.builtin:
                read = self._builtin_call(kind, "read")
                result = read(name, namespace) if kind.namespaced else read(name)
            elif kind.namespaced:
                result = self.custom_objects.get_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name
                )
            else:
                result = self.custom_objects.get_cluster_custom_object(
                    kind.group, kind.version, kind.plural, name
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._with_type_meta(kind, self._to_dict(result))

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        if kind.builtin:
            list_call = self._builtin_call(kind, "list")
            if kind.namespaced:
                result = list_call(namespace, label_selector=label_selector)
            else:
                result = list_call(label_selector=label_selector)
            items = [self._to_dict(item) for item in result.items]
        else:
            if kind.namespaced:
                result = self.custom_objects.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural,
                    label_selector=label_selector,
                )
            else:
                result = self.custom_objects.list_cluster_custom_object(
                    kind.group, kind.version, kind.plural,
                    label_selector=label_selector,
                )
            items = result.get("items", [])
        return [self._with_type_meta(kind, item) for item in items]

    def create(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        body = self._with_type_meta(kind, body)
        _, namespace = object_key(body)
        if kind.builtin:
            create = self._builtin_call(kind, "create")
            result = create(namespace, body) if kind.namespaced else create(body)
        elif kind.namespaced:
            result = self.custom_objects.create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body
            )
        else:
            result = self.custom_objects.create_cluster_custom_object(
                kind.group, kind.version, kind.plural, body
            )
        return self._to_dict(result)

    def update(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        name, namespace = object_key(body)
        if kind.builtin:
            replace = self._builtin_call(kind, "replace")
            result = replace(name, namespace, body) if kind.namespaced else replace(name, body)
        elif kind.namespaced:
            result = self.custom_objects.replace_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, body
            )
        else:
            result = self.custom_objects.replace_cluster_custom_object(
                kind.group, kind.version, kind.plural, name, body
            )
        return self._to_dict(result)

    def update_status(self, kind: ResourceKind, body: dict[str, Any]) -> dict[str, Any]:
        name, namespace = object_key(body)
        if kind.builtin:
            raise ValueError(f"status updates are not supported for {kind.kind}")
        if kind.namespaced:
            result = self.custom_objects.replace_namespaced_custom_object_status(
                kind.group, kind.version, namespace, kind.plural, name, body
            )
        else:
            result = self.custom_objects.replace_cluster_custom_object_status(
                kind.group, kind.version, kind.plural, name, body
            )
        return self._to_dict(result)

    def delete(self, kind: ResourceKind, name: str, namespace: Optional[str] = None) -> bool:
        try:
            if kind.builtin:
                delete = self._builtin_call(kind, "delete")
                if kind.namespaced:
                    delete(name, namespace)
                else:
                    delete(name)
            elif kind.namespaced:
                self.custom_objects.delete_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name
                )
            else:
                self.custom_objects.delete_cluster_custom_object(
                    kind.group, kind.version, kind.plural, name
                )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise
