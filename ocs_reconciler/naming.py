"""Names of the objects generated for a StorageCluster."""

from .models import StorageCluster

# Names of the storage class records in the external cluster details payload
EXTERNAL_CEPHFS_STORAGE_CLASS = "cephfs"
EXTERNAL_RBD_STORAGE_CLASS = "ceph-rbd"
EXTERNAL_RGW_STORAGE_CLASS = "ceph-rgw"


def ceph_cluster_name(sc: StorageCluster) -> str:
    return f"{sc.name}-cephcluster"


def ceph_block_pool_name(sc: StorageCluster) -> str:
    return f"{sc.name}-cephblockpool"


def ceph_filesystem_name(sc: StorageCluster) -> str:
    return f"{sc.name}-cephfilesystem"


def ceph_object_store_name(sc: StorageCluster) -> str:
    return f"{sc.name}-cephobjectstore"


def cephfs_storage_class_name(sc: StorageCluster) -> str:
    return f"{sc.name}-{EXTERNAL_CEPHFS_STORAGE_CLASS}"


def rbd_storage_class_name(sc: StorageCluster, suffix: str = "") -> str:
    return f"{sc.name}-{EXTERNAL_RBD_STORAGE_CLASS}{suffix}"


def rgw_storage_class_name(sc: StorageCluster) -> str:
    return f"{sc.name}-{EXTERNAL_RGW_STORAGE_CLASS}"


def cephfs_snapshot_class_name(sc: StorageCluster) -> str:
    return f"{sc.name}-cephfsplugin-snapclass"


def rbd_snapshot_class_name(sc: StorageCluster) -> str:
    return f"{sc.name}-rbdplugin-snapclass"
