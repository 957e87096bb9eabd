"""Default placement, resource and sizing values for StorageCluster children."""

import copy
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import Settings

# Node label used to distribute storage nodes when there are not enough zones
RACK_TOPOLOGY_KEY = "topology.rook.io/rack"
ZONE_TOPOLOGY_KEY = "topology.kubernetes.io/zone"
HOSTNAME_TOPOLOGY_KEY = "kubernetes.io/hostname"


def _requirements(cpu: str, memory: str) -> dict[str, Any]:
    return {
        "limits": {"cpu": cpu, "memory": memory},
        "requests": {"cpu": cpu, "memory": memory},
    }


DEFAULT_DAEMON_RESOURCES: dict[str, dict[str, Any]] = {
    "mon": _requirements("1", "2Gi"),
    "mgr": _requirements("1", "3Gi"),
    "mds": _requirements("3", "8Gi"),
    "rgw": _requirements("2", "4Gi"),
    "osd": _requirements("2", "5Gi"),
}


class ReconcilerDefaults(BaseModel):
    """
    Explicit defaults handed to every ensurer.

    Nothing here is mutated during a reconcile pass; every accessor returns a
    fresh copy so callers may embed the result in a desired object.
    """

    model_config = ConfigDict(frozen=True)

    ceph_image: str = "ceph/ceph:v15"
    mon_count: int = 3
    device_set_replica: int = 3
    data_dir_host_path: str = "/var/lib/rook"
    mon_pvc_size: str = "10Gi"
    node_affinity_key: str = "cluster.ocs.openshift.io/openshift-storage"
    node_toleration_key: str = "node.ocs.openshift.io/storage"
    daemon_resources: dict[str, dict[str, Any]] = Field(
        default_factory=lambda: copy.deepcopy(DEFAULT_DAEMON_RESOURCES)
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconcilerDefaults":
        """Build defaults from reconciler settings."""
        return cls(
            ceph_image=settings.ceph_image,
            mon_count=settings.mon_count,
            device_set_replica=settings.device_set_replica,
            data_dir_host_path=settings.data_dir_host_path,
            node_affinity_key=settings.node_affinity_key,
            node_toleration_key=settings.node_toleration_key,
        )

    def node_label_selector(self, label_selector: Optional[dict[str, Any]] = None) -> str:
        """Label selector string matching the storage nodes."""
        if not label_selector:
            return self.node_affinity_key
        parts = [f"{k}={v}" for k, v in sorted(label_selector.get("matchLabels", {}).items())]
        for expr in label_selector.get("matchExpressions", []):
            operator = expr.get("operator")
            values = ",".join(expr.get("values", []))
            if operator == "Exists":
                parts.append(expr["key"])
            elif operator == "DoesNotExist":
                parts.append(f"!{expr['key']}")
            elif operator == "In":
                parts.append(f"{expr['key']} in ({values})")
            elif operator == "NotIn":
                parts.append(f"{expr['key']} notin ({values})")
        return ",".join(parts)

    def node_affinity(self, label_selector: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Required node affinity selecting the storage nodes."""
        if label_selector:
            requirements = [
                {"key": key, "operator": "In", "values": [value]}
                for key, value in sorted(label_selector.get("matchLabels", {}).items())
            ]
            requirements.extend(copy.deepcopy(label_selector.get("matchExpressions", [])))
        else:
            requirements = [{"key": self.node_affinity_key, "operator": "Exists"}]
        return {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [{"matchExpressions": requirements}]
            }
        }

    def tolerations(self) -> list[dict[str, Any]]:
        return [
            {
                "key": self.node_toleration_key,
                "operator": "Equal",
                "value": "true",
                "effect": "NoSchedule",
            }
        ]

    def placement(
        self, component: str, label_selector: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Default placement of a daemon.

        Every daemon is pinned to storage nodes and tolerates the storage
        taint. Monitors must land on distinct hosts; other daemons prefer to.
        """
        placement: dict[str, Any] = {
            "nodeAffinity": self.node_affinity(label_selector),
            "tolerations": self.tolerations(),
        }
        if component == "all":
            return placement

        term = {
            "labelSelector": {
                "matchExpressions": [
                    {"key": "app", "operator": "In", "values": [f"rook-ceph-{component}"]}
                ]
            },
            "topologyKey": HOSTNAME_TOPOLOGY_KEY,
        }
        if component == "mon":
            placement["podAntiAffinity"] = {
                "requiredDuringSchedulingIgnoredDuringExecution": [term]
            }
        else:
            placement["podAntiAffinity"] = {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {"weight": 100, "podAffinityTerm": term}
                ]
            }
        return placement

    def resources(
        self, daemon: str, custom: Optional[dict[str, dict[str, Any]]] = None
    ) -> dict[str, Any]:
        """Resource requirements of a daemon, user overrides first."""
        if custom and daemon in custom:
            return copy.deepcopy(custom[daemon])
        return copy.deepcopy(self.daemon_resources.get(daemon, {}))
