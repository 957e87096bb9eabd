"""OCS Reconciler - StorageCluster convergence engine."""

from .base import (
    Ensurer,
    ExternalClusterDetails,
    ReconcileContext,
    ResourceEnsurer,
    StorageClassConfiguration,
)
from .cephcluster import CephClusterEnsurer
from .cephpools import CephBlockPoolEnsurer, CephFilesystemEnsurer
from .cluster import ClusterConnection
from .config import Settings, configure_logging, get_settings
from .defaults import ReconcilerDefaults
from .errors import (
    DependencyNotReadyError,
    EndpointUnreachableError,
    ExternalResourceError,
    MarkedForDeletionError,
    ReconcileError,
)
from .external import ExternalResourceSynthesizer, compute_checksum
from .models import (
    Condition,
    ConditionStatus,
    ConditionType,
    ExternalResource,
    Phase,
    ReconcileStrategy,
    StorageCluster,
    StorageClusterSpec,
    StorageClusterStatus,
    StorageDeviceSet,
)
from .objectstores import CephObjectStoreEnsurer
from .platform import PlatformDetector
from .readiness import FileReadiness
from .reconciler import StorageClusterReconciler
from .snapshotclasses import SnapshotClassManager
from .storageclasses import StorageClassManager
from .store import KubernetesObjectStore, ObjectStore, ResourceKind
from .topology import NodeTopologyEnsurer

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "StorageClusterReconciler",
    "ReconcileContext",
    # Ensurers
    "Ensurer",
    "ResourceEnsurer",
    "NodeTopologyEnsurer",
    "CephClusterEnsurer",
    "CephBlockPoolEnsurer",
    "CephFilesystemEnsurer",
    "CephObjectStoreEnsurer",
    "StorageClassManager",
    "SnapshotClassManager",
    "ExternalResourceSynthesizer",
    "ExternalClusterDetails",
    "StorageClassConfiguration",
    "compute_checksum",
    # Cluster access
    "ClusterConnection",
    "ObjectStore",
    "KubernetesObjectStore",
    "ResourceKind",
    "PlatformDetector",
    "FileReadiness",
    # Configuration
    "Settings",
    "get_settings",
    "configure_logging",
    "ReconcilerDefaults",
    # Errors
    "ReconcileError",
    "DependencyNotReadyError",
    "ExternalResourceError",
    "EndpointUnreachableError",
    "MarkedForDeletionError",
    # Models
    "StorageCluster",
    "StorageClusterSpec",
    "StorageClusterStatus",
    "StorageDeviceSet",
    "Condition",
    "ConditionStatus",
    "ConditionType",
    "ExternalResource",
    "Phase",
    "ReconcileStrategy",
]
