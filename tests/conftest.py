"""Pytest configuration and fixtures for reconciler tests."""

import base64
import copy
import json
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from ocs_reconciler.store import STORAGE_CLUSTER, ObjectStore, ResourceKind


class FakeObjectStore(ObjectStore):
    """In-memory ObjectStore recording every read and write."""

    def __init__(self):
        self.objects: dict[tuple[str, Optional[str], str], dict[str, Any]] = {}
        self.reads: list[tuple[str, str]] = []
        self.writes: list[tuple[str, str, str]] = []
        self._version = 0

    def _key(self, kind: ResourceKind, name: str, namespace: Optional[str]):
        return (kind.kind, namespace if kind.namespaced else None, name)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def seed(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Store an object without recording a write."""
        obj = copy.deepcopy(obj)
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)
        metadata = obj["metadata"]
        metadata.setdefault("resourceVersion", self._next_version())
        metadata.setdefault("uid", f"uid-{metadata['name']}")
        self.objects[self._key(kind, metadata["name"], metadata.get("namespace"))] = obj
        return obj

    def stored(
        self, kind: ResourceKind, name: str, namespace: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        """Peek at an object without recording a read."""
        return self.objects.get(self._key(kind, name, namespace))

    def set_status(
        self, kind: ResourceKind, name: str, namespace: Optional[str], status: dict[str, Any]
    ) -> None:
        self.objects[self._key(kind, name, namespace)]["status"] = status

    def writes_of(self, kind: ResourceKind) -> list[tuple[str, str]]:
        return [(verb, name) for verb, k, name in self.writes if k == kind.kind]

    def child_writes(self) -> list[tuple[str, str, str]]:
        return [w for w in self.writes if w[1] != STORAGE_CLUSTER.kind]

    def reads_of(self, kind: ResourceKind) -> list[str]:
        return [name for k, name in self.reads if k == kind.kind]

    def reset_log(self) -> None:
        self.reads.clear()
        self.writes.clear()

    def get(self, kind, name, namespace=None):
        self.reads.append((kind.kind, name))
        obj = self.stored(kind, name, namespace)
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind, namespace=None, label_selector=None):
        self.reads.append((kind.kind, "*"))
        items = []
        for (k, ns, _), obj in self.objects.items():
            if k != kind.kind or (kind.namespaced and ns != namespace):
                continue
            if label_selector and not _matches(obj, label_selector):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, kind, body):
        metadata = body["metadata"]
        key = self._key(kind, metadata["name"], metadata.get("namespace"))
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.writes.append(("create", kind.kind, metadata["name"]))
        return copy.deepcopy(self.seed(kind, body))

    def update(self, kind, body):
        metadata = body["metadata"]
        key = self._key(kind, metadata["name"], metadata.get("namespace"))
        existing = self.objects.get(key)
        if existing is None:
            raise ApiException(status=404, reason="NotFound")
        version = metadata.get("resourceVersion")
        if version and version != existing["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        self.writes.append(("update", kind.kind, metadata["name"]))
        obj = copy.deepcopy(body)
        # Status is a subresource and ignored by plain updates
        if "status" in existing:
            obj["status"] = existing["status"]
        else:
            obj.pop("status", None)
        obj["metadata"]["resourceVersion"] = self._next_version()
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def update_status(self, kind, body):
        metadata = body["metadata"]
        key = self._key(kind, metadata["name"], metadata.get("namespace"))
        existing = self.objects.get(key)
        if existing is None:
            raise ApiException(status=404, reason="NotFound")
        self.writes.append(("update_status", kind.kind, metadata["name"]))
        existing["status"] = copy.deepcopy(body.get("status", {}))
        existing["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(existing)

    def delete(self, kind, name, namespace=None):
        key = self._key(kind, name, namespace)
        if key not in self.objects:
            return False
        self.writes.append(("delete", kind.kind, name))
        del self.objects[key]
        return True


def _matches(obj: dict[str, Any], selector: str) -> bool:
    labels = obj.get("metadata", {}).get("labels") or {}
    for term in selector.split(","):
        if "=" in term:
            key, value = term.split("=", 1)
            if labels.get(key) != value:
                return False
        elif term not in labels:
            return False
    return True


def encode_records(records: list[dict[str, Any]]) -> str:
    return base64.b64encode(json.dumps(records).encode("utf-8")).decode("ascii")


@pytest.fixture
def fake_store():
    """Empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def defaults():
    """Default reconciler settings."""
    from ocs_reconciler import ReconcilerDefaults

    return ReconcilerDefaults()


@pytest.fixture
def readiness(tmp_path):
    """Readiness marker in a temporary directory."""
    from ocs_reconciler import FileReadiness

    return FileReadiness(str(tmp_path / "ready"))


@pytest.fixture
def probe():
    """Reachability probe that accepts every endpoint."""
    return MagicMock(return_value=None)


@pytest.fixture
def storage_cluster_dict():
    """Sample internal StorageCluster as returned by the API server."""
    return {
        "apiVersion": "ocs.openshift.io/v1",
        "kind": "StorageCluster",
        "metadata": {
            "name": "ocs-storagecluster",
            "namespace": "openshift-storage",
            "uid": "sc-uid",
        },
        "spec": {
            "storageDeviceSets": [
                {
                    "name": "ocs-deviceset",
                    "count": 1,
                    "portable": True,
                    "dataPVCTemplate": {
                        "spec": {
                            "storageClassName": "gp2",
                            "accessModes": ["ReadWriteOnce"],
                            "volumeMode": "Block",
                            "resources": {"requests": {"storage": "512Gi"}},
                        }
                    },
                }
            ],
        },
    }


@pytest.fixture
def external_storage_cluster_dict(storage_cluster_dict):
    """Sample StorageCluster connecting to an external cluster."""
    obj = copy.deepcopy(storage_cluster_dict)
    obj["spec"] = {"externalStorage": {"enable": True}}
    return obj


@pytest.fixture
def storage_cluster(storage_cluster_dict):
    """Sample internal StorageCluster model."""
    from ocs_reconciler import StorageCluster

    return StorageCluster.from_dict(storage_cluster_dict)


@pytest.fixture
def external_storage_cluster(external_storage_cluster_dict):
    """Sample external StorageCluster model."""
    from ocs_reconciler import StorageCluster

    return StorageCluster.from_dict(external_storage_cluster_dict)


@pytest.fixture
def make_context(fake_store, defaults):
    """Factory for a pass context over the fake store."""
    from ocs_reconciler import PlatformDetector, ReconcileContext

    def _make(instance, platform: str = ""):
        return ReconcileContext(
            instance=instance,
            store=fake_store,
            defaults=defaults,
            platform=PlatformDetector(fake_store, override=platform),
        )

    return _make


@pytest.fixture
def external_records():
    """Records of a complete external cluster details payload."""
    return [
        {
            "kind": "ConfigMap",
            "name": "rook-ceph-mon-endpoints",
            "data": {"data": "a=10.0.0.10:6789", "maxMonId": "0", "mapping": "{}"},
        },
        {
            "kind": "Secret",
            "name": "rook-ceph-mon",
            "data": {"admin-secret": "admin-secret", "fsid": "fsid-1", "mon-secret": "mon-secret"},
        },
        {
            "kind": "CephCluster",
            "name": "openshift-storage",
            "data": {"MonitoringEndpoint": "10.0.0.1", "MonitoringPort": "9283"},
        },
        {
            "kind": "StorageClass",
            "name": "ceph-rbd",
            "data": {"pool": "replicapool"},
        },
        {
            "kind": "StorageClass",
            "name": "cephfs",
            "data": {"fsName": "myfs", "pool": "myfs-data0"},
        },
        {
            "kind": "StorageClass",
            "name": "ceph-rgw",
            "data": {"endpoint": "10.0.0.2:8080", "poolPrefix": "default"},
        },
    ]


@pytest.fixture
def seed_external_cluster(fake_store):
    """Seed the external cluster details secret and the operator config map."""
    from ocs_reconciler.store import CONFIG_MAP, SECRET

    def _seed(records, namespace: str = "openshift-storage"):
        fake_store.seed(
            SECRET,
            {
                "metadata": {"name": "rook-ceph-external-cluster-details", "namespace": namespace},
                "data": {"external_cluster_details": encode_records(records)},
            },
        )
        fake_store.seed(
            CONFIG_MAP,
            {
                "metadata": {"name": "rook-ceph-operator-config", "namespace": namespace},
                "data": {"ROOK_CSI_ENABLE_CEPHFS": "false"},
            },
        )

    return _seed


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.storage_v1 = MagicMock(spec=client.StorageV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    mock_conn.api_client = MagicMock(spec=client.ApiClient)
    return mock_conn
