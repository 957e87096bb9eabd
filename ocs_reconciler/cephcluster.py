"""Storage engine cluster (CephCluster) ensurer."""

import copy
import logging
from typing import Any, Optional

from .base import ReconcileContext, ResourceEnsurer, new_object
from .conditions import error_conditions, external_connecting_conditions, progressing_conditions
from .defaults import ReconcilerDefaults
from .models import Condition, StorageCluster
from .naming import ceph_cluster_name
from .store import CEPH_CLUSTER

logger = logging.getLogger(__name__)

MACHINE_DISRUPTION_BUDGET_NAMESPACE = "openshift-machine-api"

# Daemons placed and sized at the cluster level; OSDs are handled per device set
CLUSTER_DAEMONS = ("mon", "mgr")

PROGRESSING_STATES = {"Creating", "Updating", "Progressing"}
ERROR_STATES = {"Error", "Failure"}


def new_storage_class_device_sets(
    sc: StorageCluster, defaults: ReconcilerDefaults
) -> list[dict[str, Any]]:
    """Expand every StorageDeviceSet into its replicated engine device sets."""
    device_sets = []
    for ds in sc.spec.storage_device_sets:
        replica = ds.replica or defaults.device_set_replica
        for i in range(replica):
            placement = copy.deepcopy(ds.placement) or defaults.placement(
                "osd", sc.spec.label_selector
            )
            prepare_placement = copy.deepcopy(ds.prepare_placement) or copy.deepcopy(placement)

            templates = []
            for template_name, template in (
                ("data", ds.data_pvc_template),
                ("metadata", ds.metadata_pvc_template),
                ("wal", ds.wal_pvc_template),
            ):
                if not template:
                    continue
                template = copy.deepcopy(template)
                template.setdefault("metadata", {})["name"] = template_name
                templates.append(template)

            device_sets.append(
                {
                    "name": f"{ds.name}-{i}",
                    "count": ds.count,
                    "portable": ds.portable,
                    "tuneSlowDeviceClass": ds.config.tune_slow_device_class,
                    "resources": copy.deepcopy(ds.resources)
                    or defaults.resources("osd", sc.spec.resources),
                    "placement": placement,
                    "preparePlacement": prepare_placement,
                    "volumeClaimTemplates": templates,
                }
            )
    return device_sets


def mon_volume_claim_template(
    sc: StorageCluster, defaults: ReconcilerDefaults
) -> Optional[dict[str, Any]]:
    """
    Volume claim template of the monitors.

    An explicit template wins; otherwise monitors use the storage class of
    the first device set's data volumes.
    """
    if sc.spec.mon_pvc_template:
        return copy.deepcopy(sc.spec.mon_pvc_template)
    if not sc.spec.storage_device_sets:
        return None
    data_template = sc.spec.storage_device_sets[0].data_pvc_template
    return {
        "spec": {
            "storageClassName": data_template.get("spec", {}).get("storageClassName"),
            "resources": {"requests": {"storage": defaults.mon_pvc_size}},
        }
    }


def new_ceph_cluster(sc: StorageCluster, defaults: ReconcilerDefaults) -> dict[str, Any]:
    """Desired CephCluster for a StorageCluster running its own storage."""
    placement = {
        component: copy.deepcopy(sc.spec.placement.get(component))
        or defaults.placement(component, sc.spec.label_selector)
        for component in ("all",) + CLUSTER_DAEMONS
    }
    resources = {daemon: defaults.resources(daemon, sc.spec.resources) for daemon in CLUSTER_DAEMONS}

    mon: dict[str, Any] = {"count": defaults.mon_count, "allowMultiplePerNode": False}
    template = mon_volume_claim_template(sc, defaults)
    if template:
        mon["volumeClaimTemplate"] = template

    cluster = new_object(CEPH_CLUSTER, ceph_cluster_name(sc), sc, labels={"app": sc.name})
    cluster["spec"] = {
        "cephVersion": {"image": defaults.ceph_image, "allowUnsupported": False},
        "mon": mon,
        "mgr": {"modules": [{"name": "pg_autoscaler", "enabled": True}]},
        "dataDirHostPath": sc.spec.mon_data_dir_host_path or defaults.data_dir_host_path,
        "disruptionManagement": {
            "managePodBudgets": True,
            "manageMachineDisruptionBudgets": True,
            "machineDisruptionBudgetNamespace": MACHINE_DISRUPTION_BUDGET_NAMESPACE,
        },
        "network": copy.deepcopy(sc.spec.network) or {"hostNetwork": sc.spec.host_network},
        "monitoring": {"enabled": True, "rulesNamespace": sc.namespace},
        "storage": {
            "useAllNodes": False,
            "storageClassDeviceSets": new_storage_class_device_sets(sc, defaults),
        },
        "placement": placement,
        "resources": resources,
    }
    return cluster


def new_external_ceph_cluster(
    sc: StorageCluster,
    defaults: ReconcilerDefaults,
    monitoring_endpoint: str | None,
    monitoring_port: str | None,
) -> dict[str, Any]:
    """Desired CephCluster connecting to a pre-existing storage cluster."""
    monitoring: dict[str, Any] = {
        "enabled": bool(monitoring_endpoint),
        "rulesNamespace": sc.namespace,
    }
    if monitoring_endpoint:
        monitoring["externalMgrEndpoints"] = [{"ip": monitoring_endpoint}]
        monitoring["externalMgrPrometheusPort"] = int(monitoring_port)

    cluster = new_object(CEPH_CLUSTER, ceph_cluster_name(sc), sc, labels={"app": sc.name})
    cluster["spec"] = {
        "external": {"enable": True},
        "crashCollector": {"disable": True},
        "dataDirHostPath": defaults.data_dir_host_path,
        "monitoring": monitoring,
    }
    return cluster


def ceph_cluster_conditions(status: dict[str, Any]) -> list[Condition]:
    """Map a reported CephCluster status to negative conditions."""
    state = status.get("state") or status.get("phase", "")
    health = status.get("ceph", {}).get("health", "")
    message = status.get("message") or f"CephCluster is in state {state!r}"

    if state in PROGRESSING_STATES:
        return progressing_conditions(f"ClusterState{state}", message)
    if state == "Connecting":
        return external_connecting_conditions(message)
    if state in ERROR_STATES:
        return error_conditions("ClusterStateError", message)
    if health == "HEALTH_ERR":
        return error_conditions("CephHealthError", f"CephCluster health is {health}")
    return []


class CephClusterEnsurer(ResourceEnsurer):
    """Ensures the CephCluster exists with its spec in the desired state."""

    kind = CEPH_CLUSTER

    def desired_objects(self, ctx: ReconcileContext) -> list[dict[str, Any]]:
        if ctx.instance.is_external:
            external = ctx.external
            return [
                new_external_ceph_cluster(
                    ctx.instance,
                    ctx.defaults,
                    external.monitoring_endpoint if external else None,
                    external.monitoring_port if external else None,
                )
            ]
        return [new_ceph_cluster(ctx.instance, ctx.defaults)]

    def before_update(
        self, ctx: ReconcileContext, found: dict[str, Any], desired: dict[str, Any]
    ) -> None:
        found_counts = {
            ds["name"]: ds.get("count", 0)
            for ds in found.get("spec", {}).get("storage", {}).get("storageClassDeviceSets", [])
        }
        for ds in desired["spec"].get("storage", {}).get("storageClassDeviceSets", []):
            if ds["name"] in found_counts and ds["count"] > found_counts[ds["name"]]:
                logger.info(
                    f"Device set {ds['name']} grows from {found_counts[ds['name']]} "
                    f"to {ds['count']}, cluster is expanding"
                )
                ctx.expanding = True
                break

    def status_conditions(
        self, ctx: ReconcileContext, found: dict[str, Any]
    ) -> list[Condition]:
        return ceph_cluster_conditions(found["status"])
