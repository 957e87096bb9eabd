"""Storage node topology discovery."""

import logging

from .base import Ensurer, ReconcileContext
from .defaults import HOSTNAME_TOPOLOGY_KEY, RACK_TOPOLOGY_KEY, ZONE_TOPOLOGY_KEY
from .models import Condition, NodeTopologyMap
from .store import NODE

logger = logging.getLogger(__name__)

TOPOLOGY_KEYS = (ZONE_TOPOLOGY_KEY, RACK_TOPOLOGY_KEY, HOSTNAME_TOPOLOGY_KEY)

# Fewer zones than this and replicas are spread across racks instead
MIN_FAILURE_DOMAIN_ZONES = 3


def determine_failure_domain(topology: NodeTopologyMap, flexible_scaling: bool) -> str:
    """
    Pick the failure domain data replicas are spread over.

    Args:
        topology: Topology label values of the storage nodes
        flexible_scaling: Whether replicas may be spread over hosts

    Returns:
        host, zone or rack
    """
    if flexible_scaling:
        return "host"
    if len(topology.labels.get(ZONE_TOPOLOGY_KEY, [])) >= MIN_FAILURE_DOMAIN_ZONES:
        return "zone"
    return "rack"


class NodeTopologyEnsurer(Ensurer):
    """Records the topology of the storage nodes in the StorageCluster status."""

    def ensure_created(self, ctx: ReconcileContext) -> list[Condition]:
        selector = ctx.defaults.node_label_selector(ctx.instance.spec.label_selector)
        nodes = ctx.store.list(NODE, label_selector=selector)

        status = ctx.instance.status
        topology = status.node_topologies or NodeTopologyMap()
        for node in nodes:
            labels = node.get("metadata", {}).get("labels") or {}
            for key in TOPOLOGY_KEYS:
                value = labels.get(key)
                if value is None:
                    continue
                values = topology.labels.setdefault(key, [])
                if value not in values:
                    values.append(value)
        status.node_topologies = topology

        # The failure domain is fixed once chosen; pools are created with it
        if not status.failure_domain:
            status.failure_domain = determine_failure_domain(
                topology, ctx.instance.spec.flexible_scaling
            )
            logger.info(
                f"Failure domain of StorageCluster {ctx.namespace}/{ctx.instance.name} "
                f"set to {status.failure_domain}"
            )
        return []
