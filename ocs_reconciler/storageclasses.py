"""StorageClass lifecycle: dependency gating, create, recreate on drift, teardown."""

import logging
from abc import abstractmethod
from typing import Any

from kubernetes.client.exceptions import ApiException

from .base import (
    Ensurer,
    ReconcileContext,
    StorageClassConfiguration,
    is_marked_for_deletion,
    new_object,
)
from .errors import DependencyNotReadyError, MarkedForDeletionError
from .models import Condition, ManagedResourcePolicy, ReconcileStrategy, StorageCluster
from .naming import (
    ceph_block_pool_name,
    ceph_filesystem_name,
    ceph_object_store_name,
    cephfs_storage_class_name,
    rbd_storage_class_name,
    rgw_storage_class_name,
)
from .store import CEPH_BLOCK_POOL, CEPH_FILESYSTEM, STORAGE_CLASS, ResourceKind

logger = logging.getLogger(__name__)

READY_PHASE = "Ready"

CEPHFS_PROVISIONER_SECRET = "rook-csi-cephfs-provisioner"
CEPHFS_NODE_SECRET = "rook-csi-cephfs-node"
RBD_PROVISIONER_SECRET = "rook-csi-rbd-provisioner"
RBD_NODE_SECRET = "rook-csi-rbd-node"

OBJECT_BUCKET_REGION = "us-east-1"


def csi_secret_parameters(
    namespace: str, provisioner_secret: str, node_secret: str
) -> dict[str, str]:
    """CSI secret references shared by the file and block classes."""
    return {
        "csi.storage.k8s.io/provisioner-secret-name": provisioner_secret,
        "csi.storage.k8s.io/provisioner-secret-namespace": namespace,
        "csi.storage.k8s.io/node-stage-secret-name": node_secret,
        "csi.storage.k8s.io/node-stage-secret-namespace": namespace,
        "csi.storage.k8s.io/controller-expand-secret-name": provisioner_secret,
        "csi.storage.k8s.io/controller-expand-secret-namespace": namespace,
    }


def new_storage_class(
    name: str,
    provisioner: str,
    parameters: dict[str, str],
    description: str,
    allow_volume_expansion: bool = True,
) -> dict[str, Any]:
    obj = new_object(STORAGE_CLASS, name)
    obj["metadata"]["annotations"] = {"description": description}
    obj["provisioner"] = provisioner
    obj["reclaimPolicy"] = "Delete"
    if allow_volume_expansion:
        obj["allowVolumeExpansion"] = True
    obj["parameters"] = parameters
    return obj


def new_cephfs_storage_class(sc: StorageCluster) -> dict[str, Any]:
    ns = sc.namespace
    parameters = {"clusterID": ns, "fsName": ceph_filesystem_name(sc)}
    parameters.update(csi_secret_parameters(ns, CEPHFS_PROVISIONER_SECRET, CEPHFS_NODE_SECRET))
    return new_storage_class(
        cephfs_storage_class_name(sc),
        f"{ns}.cephfs.csi.ceph.com",
        parameters,
        "Provides RWO and RWX Filesystem volumes",
    )


def new_rbd_storage_class(sc: StorageCluster, thick: bool = False) -> dict[str, Any]:
    ns = sc.namespace
    parameters = {
        "clusterID": ns,
        "pool": ceph_block_pool_name(sc),
        "imageFeatures": "layering",
        "csi.storage.k8s.io/fstype": "ext4",
        "imageFormat": "2",
        "thickProvision": "true" if thick else "false",
    }
    parameters.update(csi_secret_parameters(ns, RBD_PROVISIONER_SECRET, RBD_NODE_SECRET))
    description = "Provides RWO Filesystem volumes, and RWO and RWX Block volumes"
    if thick:
        description += " with thick provisioning"
    return new_storage_class(
        rbd_storage_class_name(sc, "-thick" if thick else ""),
        f"{ns}.rbd.csi.ceph.com",
        parameters,
        description,
    )


def new_rgw_storage_class(sc: StorageCluster) -> dict[str, Any]:
    ns = sc.namespace
    return new_storage_class(
        rgw_storage_class_name(sc),
        f"{ns}.ceph.rook.io/bucket",
        {
            "objectStoreNamespace": ns,
            "region": OBJECT_BUCKET_REGION,
            "objectStoreName": ceph_object_store_name(sc),
        },
        "Provides Object Bucket Claims (OBCs)",
        allow_volume_expansion=False,
    )


def _configuration(obj: dict[str, Any], policy: ManagedResourcePolicy) -> StorageClassConfiguration:
    return StorageClassConfiguration(
        obj=obj, strategy=policy.strategy, disabled=policy.disable_storage_class
    )


def cephfs_configuration(sc: StorageCluster) -> StorageClassConfiguration:
    return _configuration(new_cephfs_storage_class(sc), sc.spec.managed_resources.ceph_filesystems)


def rbd_configuration(sc: StorageCluster, thick: bool = False) -> StorageClassConfiguration:
    return _configuration(
        new_rbd_storage_class(sc, thick), sc.spec.managed_resources.ceph_block_pools
    )


def rgw_configuration(sc: StorageCluster) -> StorageClassConfiguration:
    return _configuration(new_rgw_storage_class(sc), sc.spec.managed_resources.ceph_object_stores)


def storage_class_configurations(ctx: ReconcileContext) -> list[StorageClassConfiguration]:
    """
    StorageClasses a StorageCluster provides.

    In external mode only the classes published in the external cluster
    details are provided. The object bucket class is omitted on platforms
    with their own object service unless the cluster is external.
    """
    if ctx.instance.is_external:
        return list(ctx.external.storage_classes) if ctx.external else []

    configurations = [
        cephfs_configuration(ctx.instance),
        rbd_configuration(ctx.instance),
        rbd_configuration(ctx.instance, thick=True),
    ]
    if not ctx.platform.avoid_object_store():
        configurations.append(rgw_configuration(ctx.instance))
    return configurations


class ClassManager(Ensurer):
    """
    Lifecycle of cluster-scoped class objects.

    Class parameters are immutable once created, so a drifted class is
    deleted and created again instead of being updated. A crash between the
    two calls leaves the class absent and the next pass creates it.
    """

    kind: ResourceKind
    # Fields whose drift forces a recreate
    compared_fields: tuple[str, ...] = ()

    @abstractmethod
    def configurations(self, ctx: ReconcileContext) -> list[StorageClassConfiguration]:
        """Classes to converge in this pass."""

    def teardown_configurations(
        self, ctx: ReconcileContext
    ) -> list[StorageClassConfiguration]:
        """Classes to remove when the StorageCluster is deleted."""
        return self.configurations(ctx)

    def check_dependencies(self, ctx: ReconcileContext) -> None:
        """Raise when a resource the classes point at is not ready."""

    def ensure_created(self, ctx: ReconcileContext) -> list[Condition]:
        self.check_dependencies(ctx)
        for config in self.configurations(ctx):
            self.ensure_class(ctx, config)
        return []

    def drifted(self, existing: dict[str, Any], desired: dict[str, Any]) -> bool:
        return any(existing.get(f) != desired.get(f) for f in self.compared_fields)

    def ensure_class(self, ctx: ReconcileContext, config: StorageClassConfiguration) -> None:
        name = config.name
        if config.strategy == ReconcileStrategy.IGNORE or config.disabled:
            logger.debug(f"Skipping {self.kind.kind} {name}")
            return

        existing = ctx.store.get(self.kind, name)
        if existing is None:
            logger.info(f"Creating {self.kind.kind} {name}")
            ctx.store.create(self.kind, config.obj)
            return

        if config.strategy == ReconcileStrategy.INIT:
            return
        if is_marked_for_deletion(existing):
            raise MarkedForDeletionError(self.kind.kind, name)

        if self.drifted(existing, config.obj):
            logger.info(f"{self.kind.kind} {name} needs to be updated, recreating it")
            ctx.store.delete(self.kind, name)
            ctx.store.create(self.kind, config.obj)

    def ensure_deleted(self, ctx: ReconcileContext) -> None:
        for config in self.teardown_configurations(ctx):
            name = config.name
            try:
                existing = ctx.store.get(self.kind, name)
                if existing is None:
                    logger.info(f"{self.kind.kind} {name} not found, nothing to delete")
                    continue
                if is_marked_for_deletion(existing):
                    logger.info(f"{self.kind.kind} {name} is already marked for deletion")
                    continue
                logger.info(f"Deleting {self.kind.kind} {name}")
                ctx.store.delete(self.kind, name)
            except ApiException as e:
                logger.error(f"Failed to delete {self.kind.kind} {name}: {e}")


class StorageClassManager(ClassManager):
    """Provides the file, block and object bucket StorageClasses."""

    kind = STORAGE_CLASS
    compared_fields = ("parameters",)

    def configurations(self, ctx: ReconcileContext) -> list[StorageClassConfiguration]:
        return storage_class_configurations(ctx)

    def teardown_configurations(
        self, ctx: ReconcileContext
    ) -> list[StorageClassConfiguration]:
        sc = ctx.instance
        return [
            cephfs_configuration(sc),
            rbd_configuration(sc),
            rbd_configuration(sc, thick=True),
            rgw_configuration(sc),
        ]

    def check_dependencies(self, ctx: ReconcileContext) -> None:
        """
        Block until the pool and filesystem backing the classes are Ready.

        External clusters own their pools, so nothing is checked for them.

        Raises:
            DependencyNotReadyError: If a dependency is missing or not Ready
        """
        if ctx.instance.is_external:
            return

        sc = ctx.instance
        managed = sc.spec.managed_resources
        dependencies = (
            (CEPH_BLOCK_POOL, ceph_block_pool_name(sc), managed.ceph_block_pools),
            (CEPH_FILESYSTEM, ceph_filesystem_name(sc), managed.ceph_filesystems),
        )
        for kind, name, policy in dependencies:
            if policy.disable_storage_class or policy.strategy == ReconcileStrategy.IGNORE:
                continue
            obj = ctx.store.get(kind, name, ctx.namespace)
            if obj is None:
                error = DependencyNotReadyError(kind.kind, name, "does not exist")
            else:
                phase = obj.get("status", {}).get("phase", "")
                if phase == READY_PHASE:
                    continue
                error = DependencyNotReadyError(
                    kind.kind, name, f"is not Ready yet (phase {phase!r})"
                )
            logger.warning(f"Not creating StorageClasses: {error}")
            raise error
