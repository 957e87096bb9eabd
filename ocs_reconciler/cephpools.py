"""Block pool and filesystem ensurers."""

import copy
from typing import Any

from .base import ReconcileContext, ResourceEnsurer, new_object
from .conditions import error_conditions
from .models import Condition, ReconcileStrategy, StorageCluster
from .naming import ceph_block_pool_name, ceph_filesystem_name
from .store import CEPH_BLOCK_POOL, CEPH_FILESYSTEM

REPLICA_SIZE = 3


def new_ceph_block_pool(sc: StorageCluster) -> dict[str, Any]:
    pool = new_object(CEPH_BLOCK_POOL, ceph_block_pool_name(sc), sc)
    pool["spec"] = {
        "failureDomain": sc.status.failure_domain,
        "replicated": {"size": REPLICA_SIZE},
    }
    return pool


def new_ceph_filesystem(sc: StorageCluster, ctx: ReconcileContext) -> dict[str, Any]:
    fs = new_object(CEPH_FILESYSTEM, ceph_filesystem_name(sc), sc)
    fs["spec"] = {
        "metadataPool": {"replicated": {"size": REPLICA_SIZE}},
        "dataPools": [
            {
                "failureDomain": sc.status.failure_domain,
                "replicated": {"size": REPLICA_SIZE},
            }
        ],
        "metadataServer": {
            "activeCount": 1,
            "activeStandby": True,
            "placement": copy.deepcopy(sc.spec.placement.get("mds"))
            or ctx.defaults.placement("mds", sc.spec.label_selector),
            "resources": ctx.defaults.resources("mds", sc.spec.resources),
        },
    }
    return fs


def phase_conditions(kind: str, status: dict[str, Any]) -> list[Condition]:
    """A pool or filesystem in phase Failure degrades the cluster."""
    phase = status.get("phase", "")
    if phase == "Failure":
        return error_conditions(f"{kind}Failure", f"{kind} is in phase {phase}")
    return []


class CephBlockPoolEnsurer(ResourceEnsurer):
    """Ensures the default replicated block pool."""

    kind = CEPH_BLOCK_POOL

    def strategy(self, ctx: ReconcileContext) -> ReconcileStrategy:
        return ctx.instance.spec.managed_resources.ceph_block_pools.strategy

    def desired_objects(self, ctx: ReconcileContext) -> list[dict[str, Any]]:
        return [new_ceph_block_pool(ctx.instance)]

    def status_conditions(
        self, ctx: ReconcileContext, found: dict[str, Any]
    ) -> list[Condition]:
        return phase_conditions(self.kind.kind, found["status"])


class CephFilesystemEnsurer(ResourceEnsurer):
    """Ensures the default shared filesystem."""

    kind = CEPH_FILESYSTEM

    def strategy(self, ctx: ReconcileContext) -> ReconcileStrategy:
        return ctx.instance.spec.managed_resources.ceph_filesystems.strategy

    def desired_objects(self, ctx: ReconcileContext) -> list[dict[str, Any]]:
        return [new_ceph_filesystem(ctx.instance, ctx)]

    def status_conditions(
        self, ctx: ReconcileContext, found: dict[str, Any]
    ) -> list[Condition]:
        return phase_conditions(self.kind.kind, found["status"])
