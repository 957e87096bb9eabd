"""StorageCluster resource models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

STORAGE_CLUSTER_API_VERSION = "ocs.openshift.io/v1"
STORAGE_CLUSTER_KIND = "StorageCluster"


class KubeModel(BaseModel):
    """Base model mapping snake_case fields to Kubernetes camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Phase(str, Enum):
    """StorageCluster phase shown to users."""

    PROGRESSING = "Progressing"
    READY = "Ready"
    NOT_READY = "Not Ready"
    ERROR = "Error"
    EXPANDING = "Expanding"
    DELETING = "Deleting"


class ReconcileStrategy(str, Enum):
    """How the reconciler treats a managed resource kind."""

    MANAGE = "manage"
    INIT = "init"
    IGNORE = "ignore"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ReconcileStrategy":
        """
        Parse a user supplied strategy.

        Empty and unknown values mean ``manage``; matching ignores case.
        """
        if not value:
            return cls.MANAGE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.MANAGE


class ConditionStatus(str, Enum):
    """Condition status values."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    """Condition types reported on the StorageCluster."""

    AVAILABLE = "Available"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    UPGRADEABLE = "Upgradeable"
    RECONCILE_COMPLETE = "ReconcileComplete"
    EXTERNAL_CLUSTER_CONNECTED = "ExternalClusterConnected"
    EXTERNAL_CLUSTER_CONNECTING = "ExternalClusterConnecting"


class Condition(KubeModel):
    """A typed, timestamped health signal."""

    type: str
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_heartbeat_time: Optional[datetime] = None
    last_transition_time: Optional[datetime] = None


class ObjectReference(KubeModel):
    """Reference to an object created and maintained by the reconciler."""

    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None


class ObjectMeta(KubeModel):
    """Subset of Kubernetes object metadata used by the reconciler."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: Optional[str] = None


class ManagedResourcePolicy(KubeModel):
    """Reconcile policy for one managed resource kind."""

    reconcile_strategy: str = ""
    disable_storage_class: bool = False
    disable_snapshot_class: bool = False

    @property
    def strategy(self) -> ReconcileStrategy:
        """Parsed reconcile strategy."""
        return ReconcileStrategy.parse(self.reconcile_strategy)


class ManagedResourcesSpec(KubeModel):
    """Per-kind reconcile policies."""

    ceph_block_pools: ManagedResourcePolicy = Field(default_factory=ManagedResourcePolicy)
    ceph_filesystems: ManagedResourcePolicy = Field(default_factory=ManagedResourcePolicy)
    ceph_object_stores: ManagedResourcePolicy = Field(default_factory=ManagedResourcePolicy)


class ExternalStorageSpec(KubeModel):
    """External mode switch."""

    enable: bool = False


class StorageDeviceSetConfig(KubeModel):
    """OSD tuning options of a device set."""

    tune_slow_device_class: bool = False


class StorageDeviceSet(KubeModel):
    """A set of storage devices backing the engine cluster."""

    name: str
    count: int = Field(..., ge=1)
    replica: int = Field(default=0, ge=0)
    device_type: str = ""
    topology_key: str = ""
    portable: bool = False
    resources: dict[str, Any] = Field(default_factory=dict)
    placement: dict[str, Any] = Field(default_factory=dict)
    prepare_placement: dict[str, Any] = Field(default_factory=dict)
    config: StorageDeviceSetConfig = Field(default_factory=StorageDeviceSetConfig)
    data_pvc_template: dict[str, Any] = Field(
        default_factory=dict, alias="dataPVCTemplate"
    )
    metadata_pvc_template: Optional[dict[str, Any]] = Field(
        default=None, alias="metadataPVCTemplate"
    )
    wal_pvc_template: Optional[dict[str, Any]] = Field(
        default=None, alias="walPVCTemplate"
    )


class StorageClusterSpec(KubeModel):
    """Desired state of a StorageCluster."""

    label_selector: Optional[dict[str, Any]] = None
    external_storage: ExternalStorageSpec = Field(default_factory=ExternalStorageSpec)
    host_network: bool = False
    placement: dict[str, dict[str, Any]] = Field(default_factory=dict)
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    storage_device_sets: list[StorageDeviceSet] = Field(default_factory=list)
    mon_pvc_template: Optional[dict[str, Any]] = Field(
        default=None, alias="monPVCTemplate"
    )
    mon_data_dir_host_path: str = ""
    network: Optional[dict[str, Any]] = None
    managed_resources: ManagedResourcesSpec = Field(default_factory=ManagedResourcesSpec)
    flexible_scaling: bool = False
    version: str = ""


class NodeTopologyMap(KubeModel):
    """Topology label values across all storage nodes."""

    labels: dict[str, list[str]] = Field(default_factory=dict)


class StorageClusterStatus(KubeModel):
    """Observed state of a StorageCluster."""

    phase: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    related_objects: list[ObjectReference] = Field(default_factory=list)
    node_topologies: Optional[NodeTopologyMap] = None
    failure_domain: str = ""
    external_secret_hash: str = ""


class StorageCluster(KubeModel):
    """Top-level desired/observed state record."""

    api_version: str = STORAGE_CLUSTER_API_VERSION
    kind: str = STORAGE_CLUSTER_KIND
    metadata: ObjectMeta
    spec: StorageClusterSpec = Field(default_factory=StorageClusterSpec)
    status: StorageClusterStatus = Field(default_factory=StorageClusterStatus)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "StorageCluster":
        """Build a StorageCluster from its API representation."""
        return cls.model_validate(obj)

    def to_dict(self) -> dict[str, Any]:
        """Return the API representation."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def is_external(self) -> bool:
        return self.spec.external_storage.enable

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def owner_reference(self) -> dict[str, Any]:
        """Controller owner reference pointing at this StorageCluster."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }


class ExternalResource(BaseModel):
    """One record of the external cluster details payload."""

    kind: str
    name: str
    data: dict[str, str] = Field(default_factory=dict)
