"""VolumeSnapshotClass lifecycle."""

from typing import Any

from .base import ReconcileContext, StorageClassConfiguration, new_object
from .models import ManagedResourcePolicy, StorageCluster
from .naming import cephfs_snapshot_class_name, rbd_snapshot_class_name
from .storageclasses import CEPHFS_PROVISIONER_SECRET, RBD_PROVISIONER_SECRET, ClassManager
from .store import VOLUME_SNAPSHOT_CLASS


def new_snapshot_class(name: str, driver: str, namespace: str, secret: str) -> dict[str, Any]:
    obj = new_object(VOLUME_SNAPSHOT_CLASS, name)
    obj["driver"] = driver
    obj["deletionPolicy"] = "Delete"
    obj["parameters"] = {
        "clusterID": namespace,
        "csi.storage.k8s.io/snapshotter-secret-name": secret,
        "csi.storage.k8s.io/snapshotter-secret-namespace": namespace,
    }
    return obj


def _configuration(obj: dict[str, Any], policy: ManagedResourcePolicy) -> StorageClassConfiguration:
    return StorageClassConfiguration(
        obj=obj, strategy=policy.strategy, disabled=policy.disable_snapshot_class
    )


def snapshot_class_configurations(sc: StorageCluster) -> list[StorageClassConfiguration]:
    ns = sc.namespace
    managed = sc.spec.managed_resources
    return [
        _configuration(
            new_snapshot_class(
                cephfs_snapshot_class_name(sc),
                f"{ns}.cephfs.csi.ceph.com",
                ns,
                CEPHFS_PROVISIONER_SECRET,
            ),
            managed.ceph_filesystems,
        ),
        _configuration(
            new_snapshot_class(
                rbd_snapshot_class_name(sc),
                f"{ns}.rbd.csi.ceph.com",
                ns,
                RBD_PROVISIONER_SECRET,
            ),
            managed.ceph_block_pools,
        ),
    ]


class SnapshotClassManager(ClassManager):
    """Provides the file and block VolumeSnapshotClasses of an internal cluster."""

    kind = VOLUME_SNAPSHOT_CLASS
    compared_fields = ("driver", "deletionPolicy", "parameters")

    def configurations(self, ctx: ReconcileContext) -> list[StorageClassConfiguration]:
        if ctx.instance.is_external:
            return []
        return snapshot_class_configurations(ctx.instance)

    def teardown_configurations(
        self, ctx: ReconcileContext
    ) -> list[StorageClassConfiguration]:
        return snapshot_class_configurations(ctx.instance)
