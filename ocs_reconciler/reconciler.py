"""StorageCluster reconcile orchestrator."""

import logging
from typing import Optional

from kubernetes.client.exceptions import ApiException

from .base import Ensurer, ReconcileContext, new_object
from .cephcluster import CephClusterEnsurer
from .cephpools import CephBlockPoolEnsurer, CephFilesystemEnsurer
from .cluster import ClusterConnection
from .conditions import (
    REASON_INIT,
    REASON_RECONCILE_COMPLETED,
    REASON_RECONCILE_FAILED,
    RECONCILE_COMPLETED_MESSAGE,
    complete_conditions,
    error_conditions,
    is_condition_false,
    progressing_conditions,
    reconcile_complete_condition,
    set_condition,
    set_conditions,
)
from .config import Settings, get_settings
from .defaults import ReconcilerDefaults
from .external import ExternalResourceSynthesizer
from .models import Condition, ConditionType, Phase, StorageCluster
from .objectstores import CephObjectStoreEnsurer
from .platform import PlatformDetector
from .readiness import FileReadiness
from .snapshotclasses import SnapshotClassManager
from .storageclasses import StorageClassManager
from .store import (
    STORAGE_CLUSTER,
    STORAGE_CLUSTER_INITIALIZATION,
    KubernetesObjectStore,
    ObjectStore,
)
from .topology import NodeTopologyEnsurer

logger = logging.getLogger(__name__)

FINALIZER = "storagecluster.ocs.openshift.io"
INIT_MESSAGE = "Initializing StorageCluster"


class StorageClusterReconciler:
    """
    Converges the children of a StorageCluster and aggregates their health.

    One ``reconcile`` call is one pass over a fixed, ordered list of
    ensurers. The first failing ensurer aborts the pass; the failure is
    recorded in the StorageCluster status and raised to the caller, which
    decides when to try again.
    """

    def __init__(
        self,
        store: ObjectStore,
        readiness: FileReadiness,
        defaults: Optional[ReconcilerDefaults] = None,
        platform: Optional[PlatformDetector] = None,
        synthesizer: Optional[ExternalResourceSynthesizer] = None,
    ):
        """
        Initialize reconciler.

        Args:
            store: Object store for the StorageCluster and its children
            readiness: Readiness signal toggled after every pass
            defaults: Placement, resource and sizing defaults
            platform: Platform detector, reads the Infrastructure object when None
            synthesizer: External cluster details synthesizer
        """
        self.store = store
        self.readiness = readiness
        self.defaults = defaults or ReconcilerDefaults()
        self.platform = platform or PlatformDetector(store)

        self.object_stores = CephObjectStoreEnsurer()
        self.synthesizer = synthesizer or ExternalResourceSynthesizer()
        self.synthesizer.object_stores = self.object_stores
        self.storage_classes = StorageClassManager()
        self.snapshot_classes = SnapshotClassManager()

        ceph_cluster = CephClusterEnsurer()
        self.internal_pipeline: list[Ensurer] = [
            NodeTopologyEnsurer(),
            ceph_cluster,
            CephBlockPoolEnsurer(),
            CephFilesystemEnsurer(),
            self.object_stores,
            self.storage_classes,
            self.snapshot_classes,
        ]
        self.external_pipeline: list[Ensurer] = [
            self.synthesizer,
            ceph_cluster,
            self.storage_classes,
        ]

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StorageClusterReconciler":
        """Wire a reconciler against the cluster described by settings."""
        settings = settings or get_settings()
        store = KubernetesObjectStore(ClusterConnection.from_settings(settings))
        return cls(
            store=store,
            readiness=FileReadiness(settings.readiness_file_path),
            defaults=ReconcilerDefaults.from_settings(settings),
            platform=PlatformDetector(store, override=settings.platform),
            synthesizer=ExternalResourceSynthesizer(
                secret_name=settings.external_secret_name,
                secret_key=settings.external_secret_key,
                probe_timeout=settings.probe_timeout_seconds,
            ),
        )

    def pipeline(self, instance: StorageCluster) -> list[Ensurer]:
        return self.external_pipeline if instance.is_external else self.internal_pipeline

    def reconcile(self, namespace: str, name: str) -> Optional[StorageCluster]:
        """
        Run one reconcile pass for a StorageCluster.

        Args:
            namespace: StorageCluster namespace
            name: StorageCluster name

        Returns:
            The StorageCluster as persisted by this pass, None if it does not exist

        Raises:
            ReconcileError: If an ensurer failed; the status records the error
            ApiException: If the API server rejected a read or write
        """
        obj = self.store.get(STORAGE_CLUSTER, name, namespace)
        if obj is None:
            logger.info(f"StorageCluster {namespace}/{name} not found, ignoring")
            return None
        instance = StorageCluster.from_dict(obj)

        if instance.is_deleting:
            return self.delete(instance)

        if FINALIZER not in instance.metadata.finalizers:
            logger.info(f"Adding finalizer to StorageCluster {namespace}/{name}")
            instance.metadata.finalizers.append(FINALIZER)
            instance = StorageCluster.from_dict(
                self.store.update(STORAGE_CLUSTER, instance.to_dict())
            )

        if not instance.status.conditions:
            logger.info(f"Initializing status of StorageCluster {namespace}/{name}")
            set_conditions(
                instance.status.conditions, progressing_conditions(REASON_INIT, INIT_MESSAGE)
            )
            instance.status.phase = Phase.PROGRESSING.value
            instance = self.persist_status(instance)

        ctx = ReconcileContext(
            instance=instance,
            store=self.store,
            defaults=self.defaults,
            platform=self.platform,
        )
        try:
            self.ensure_initialization(instance)
            conditions: list[Condition] = []
            for ensurer in self.pipeline(instance):
                conditions.extend(ensurer.ensure_created(ctx))
            self.record_success(instance, conditions, expanding=ctx.expanding)
        except Exception as e:
            logger.error(f"Failed to reconcile StorageCluster {namespace}/{name}: {e}")
            self.record_failure(instance, e)
            raise

        return self.persist_status(instance)

    def ensure_initialization(self, instance: StorageCluster) -> None:
        """Create the StorageClusterInitialization companion object once."""
        if self.store.get(STORAGE_CLUSTER_INITIALIZATION, instance.name, instance.namespace):
            return
        init = new_object(STORAGE_CLUSTER_INITIALIZATION, instance.name, instance)
        init["spec"] = {}
        logger.info(f"Creating StorageClusterInitialization {instance.namespace}/{instance.name}")
        try:
            self.store.create(STORAGE_CLUSTER_INITIALIZATION, init)
        except ApiException as e:
            if e.status != 409:
                raise
            logger.info("StorageClusterInitialization already exists")

    def record_success(
        self, instance: StorageCluster, negatives: list[Condition], expanding: bool = False
    ) -> None:
        """
        Record a pass in which every ensurer succeeded.

        Expanding only holds for the pass that grew a device set; any later
        pass reports Ready or NotReady again.
        """
        status = instance.status
        status.phase = Phase.EXPANDING.value if expanding else Phase.READY.value
        if not negatives:
            set_conditions(
                status.conditions,
                complete_conditions(REASON_RECONCILE_COMPLETED, RECONCILE_COMPLETED_MESSAGE),
            )
            self.readiness.set()
            return

        set_conditions(status.conditions, negatives)
        set_condition(status.conditions, reconcile_complete_condition())

        if is_condition_false(status.conditions, ConditionType.UPGRADEABLE):
            self.readiness.unset()
            if status.phase == Phase.READY.value:
                status.phase = Phase.NOT_READY.value

    def record_failure(self, instance: StorageCluster, error: Exception) -> None:
        set_conditions(
            instance.status.conditions,
            error_conditions(REASON_RECONCILE_FAILED, f"Error while reconciling: {error}"),
        )
        instance.status.phase = Phase.ERROR.value
        try:
            self.persist_status(instance)
        except ApiException as e:
            logger.error(f"Failed to persist status of StorageCluster {instance.name}: {e}")

    def persist_status(self, instance: StorageCluster) -> StorageCluster:
        return StorageCluster.from_dict(
            self.store.update_status(STORAGE_CLUSTER, instance.to_dict())
        )

    def delete(self, instance: StorageCluster) -> StorageCluster:
        """
        Tear down cluster-scoped children and release the finalizer.

        Namespaced children carry owner references and are garbage collected.
        """
        if FINALIZER not in instance.metadata.finalizers:
            return instance

        logger.info(f"Deleting StorageCluster {instance.namespace}/{instance.name}")
        instance.status.phase = Phase.DELETING.value
        instance = self.persist_status(instance)

        ctx = ReconcileContext(
            instance=instance,
            store=self.store,
            defaults=self.defaults,
            platform=self.platform,
        )
        self.storage_classes.ensure_deleted(ctx)
        self.snapshot_classes.ensure_deleted(ctx)

        instance.metadata.finalizers.remove(FINALIZER)
        logger.info(f"Removing finalizer from StorageCluster {instance.namespace}/{instance.name}")
        return StorageCluster.from_dict(self.store.update(STORAGE_CLUSTER, instance.to_dict()))
