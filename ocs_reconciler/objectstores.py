"""Object store (CephObjectStore) ensurer."""

import copy
import logging
from typing import Any

from .base import ReconcileContext, ResourceEnsurer, new_object, set_related_object
from .cephpools import phase_conditions
from .models import Condition, ReconcileStrategy, StorageCluster
from .naming import ceph_object_store_name
from .store import CEPH_OBJECT_STORE

logger = logging.getLogger(__name__)

GATEWAY_PORT = 80
GATEWAY_INSTANCES = 2
HEALTH_CHECK_INTERVAL = "60s"


def new_ceph_object_store(sc: StorageCluster, ctx: ReconcileContext) -> dict[str, Any]:
    """Object store served by gateways running in this cluster."""
    store = new_object(CEPH_OBJECT_STORE, ceph_object_store_name(sc), sc)
    store["spec"] = {
        "preservePoolsOnDelete": False,
        "dataPool": {
            "failureDomain": sc.status.failure_domain,
            "replicated": {"size": 3, "targetSizeRatio": 0.49},
        },
        "metadataPool": {
            "failureDomain": sc.status.failure_domain,
            "replicated": {"size": 3},
        },
        "gateway": {
            "port": GATEWAY_PORT,
            "instances": GATEWAY_INSTANCES,
            "placement": copy.deepcopy(sc.spec.placement.get("rgw"))
            or ctx.defaults.placement("rgw", sc.spec.label_selector),
            "resources": ctx.defaults.resources("rgw", sc.spec.resources),
        },
    }
    return store


def new_external_ceph_object_store(sc: StorageCluster, host: str, port: int) -> dict[str, Any]:
    """Object store fronting a gateway of the external cluster."""
    store = new_object(CEPH_OBJECT_STORE, ceph_object_store_name(sc), sc)
    store["spec"] = {
        "gateway": {
            "port": port,
            "externalRgwEndpoints": [{"ip": host}],
        },
        "healthCheck": {
            "bucket": {"disabled": False, "interval": HEALTH_CHECK_INTERVAL},
        },
    }
    return store


class CephObjectStoreEnsurer(ResourceEnsurer):
    """
    Ensures the in-cluster object store.

    Platforms that ship their own object service never get one.
    """

    kind = CEPH_OBJECT_STORE

    def strategy(self, ctx: ReconcileContext) -> ReconcileStrategy:
        return ctx.instance.spec.managed_resources.ceph_object_stores.strategy

    def enabled(self, ctx: ReconcileContext) -> bool:
        if ctx.platform.avoid_object_store():
            logger.info(
                f"Not creating a CephObjectStore on platform {ctx.platform.get_platform()}"
            )
            return False
        return True

    def desired_objects(self, ctx: ReconcileContext) -> list[dict[str, Any]]:
        return [new_ceph_object_store(ctx.instance, ctx)]

    def status_conditions(
        self, ctx: ReconcileContext, found: dict[str, Any]
    ) -> list[Condition]:
        return phase_conditions(self.kind.kind, found["status"])

    def ensure_external(self, ctx: ReconcileContext, host: str, port: int) -> None:
        """Converge the object store of an external gateway endpoint."""
        strategy = self.strategy(ctx)
        if strategy == ReconcileStrategy.IGNORE:
            return
        desired = new_external_ceph_object_store(ctx.instance, host, port)
        found = self.converge(ctx, desired, strategy)
        if found is not None:
            set_related_object(ctx.instance, found)
