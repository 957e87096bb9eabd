"""Tests for StorageClusterReconciler."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from ocs_reconciler import (
    ConditionStatus,
    ConditionType,
    DependencyNotReadyError,
    ExternalResourceError,
    ExternalResourceSynthesizer,
    Phase,
    PlatformDetector,
    StorageCluster,
    StorageClusterReconciler,
)
from ocs_reconciler.conditions import find_condition
from ocs_reconciler.reconciler import FINALIZER
from ocs_reconciler.store import (
    CEPH_BLOCK_POOL,
    CEPH_CLUSTER,
    CEPH_FILESYSTEM,
    CEPH_OBJECT_STORE,
    CONFIG_MAP,
    SECRET,
    STORAGE_CLASS,
    STORAGE_CLUSTER,
    STORAGE_CLUSTER_INITIALIZATION,
    VOLUME_SNAPSHOT_CLASS,
)

NAMESPACE = "openshift-storage"
NAME = "ocs-storagecluster"


@pytest.fixture
def make_reconciler(fake_store, readiness, defaults, probe):
    """Factory for a reconciler over the fake store."""

    def _make(platform: str = ""):
        return StorageClusterReconciler(
            store=fake_store,
            readiness=readiness,
            defaults=defaults,
            platform=PlatformDetector(fake_store, override=platform),
            synthesizer=ExternalResourceSynthesizer(probe=probe),
        )

    return _make


def _stored_cluster(fake_store):
    return StorageCluster.from_dict(fake_store.stored(STORAGE_CLUSTER, NAME, NAMESPACE))


def _condition(sc, ctype):
    return find_condition(sc.status.conditions, ctype)


def _mark_children_ready(fake_store):
    fake_store.set_status(
        CEPH_CLUSTER, f"{NAME}-cephcluster", NAMESPACE,
        {"state": "Created", "ceph": {"health": "HEALTH_OK"}},
    )
    for kind, suffix in (
        (CEPH_BLOCK_POOL, "cephblockpool"),
        (CEPH_FILESYSTEM, "cephfilesystem"),
        (CEPH_OBJECT_STORE, "cephobjectstore"),
    ):
        if fake_store.stored(kind, f"{NAME}-{suffix}", NAMESPACE):
            fake_store.set_status(kind, f"{NAME}-{suffix}", NAMESPACE, {"phase": "Ready"})


class TestReconcileInternal:
    """Test cases for reconciling a StorageCluster running its own storage."""

    def test_not_found(self, fake_store, make_reconciler):
        """Test a missing StorageCluster is a no-op."""
        assert make_reconciler().reconcile(NAMESPACE, NAME) is None
        assert fake_store.writes == []

    def test_fresh_cluster_first_pass(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test the first pass creates the children and waits for pools."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)

        with pytest.raises(DependencyNotReadyError):
            make_reconciler().reconcile(NAMESPACE, NAME)

        cluster = fake_store.stored(CEPH_CLUSTER, f"{NAME}-cephcluster", NAMESPACE)
        assert cluster["spec"]["mon"]["count"] == 3
        assert fake_store.stored(STORAGE_CLUSTER_INITIALIZATION, NAME, NAMESPACE) is not None
        assert fake_store.writes_of(STORAGE_CLASS) == []

        sc = _stored_cluster(fake_store)
        assert FINALIZER in sc.metadata.finalizers
        assert sc.status.phase == Phase.ERROR.value
        degraded = _condition(sc, ConditionType.DEGRADED)
        assert degraded.status == ConditionStatus.TRUE
        assert degraded.reason == "ReconcileFailed"
        assert degraded.message.startswith("Error while reconciling: CephBlockPool")

    @pytest.mark.parametrize("platform,expected", [("", 4), ("AWS", 3)])
    def test_storage_classes_after_pools_ready(
        self, fake_store, storage_cluster_dict, make_reconciler, platform, expected
    ):
        """Test storage classes appear once pool and filesystem are Ready."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler(platform)
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)

        reconciler.reconcile(NAMESPACE, NAME)

        assert len(fake_store.writes_of(STORAGE_CLASS)) == expected
        assert len(fake_store.writes_of(VOLUME_SNAPSHOT_CLASS)) == 2

    def test_ready_and_idempotent(self, fake_store, storage_cluster_dict, make_reconciler, readiness):
        """Test a converged cluster is Ready and a further pass writes no children."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)
        reconciler.reconcile(NAMESPACE, NAME)
        fake_store.reset_log()

        result = reconciler.reconcile(NAMESPACE, NAME)

        assert fake_store.child_writes() == []
        assert result.status.phase == Phase.READY.value
        assert _condition(result, ConditionType.AVAILABLE).status == ConditionStatus.TRUE
        assert _condition(result, ConditionType.RECONCILE_COMPLETE).status == ConditionStatus.TRUE
        assert readiness.is_set()

    def test_not_reporting_children(self, fake_store, storage_cluster_dict, make_reconciler, readiness):
        """Test children without status leave the cluster Not Ready."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        for kind, suffix in ((CEPH_BLOCK_POOL, "cephblockpool"), (CEPH_FILESYSTEM, "cephfilesystem")):
            fake_store.set_status(kind, f"{NAME}-{suffix}", NAMESPACE, {"phase": "Ready"})
        readiness.set()

        result = reconciler.reconcile(NAMESPACE, NAME)

        assert result.status.phase == Phase.NOT_READY.value
        assert _condition(result, ConditionType.RECONCILE_COMPLETE).status == ConditionStatus.TRUE
        assert _condition(result, ConditionType.UPGRADEABLE).status == ConditionStatus.FALSE
        assert not readiness.is_set()

    def test_drift_converges_in_one_pass(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test a drifted child is fixed by exactly one update."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)
        reconciler.reconcile(NAMESPACE, NAME)

        fake_store.stored(CEPH_CLUSTER, f"{NAME}-cephcluster", NAMESPACE)["spec"]["mon"]["count"] = 1
        fake_store.reset_log()
        reconciler.reconcile(NAMESPACE, NAME)

        assert fake_store.child_writes() == [("update", "CephCluster", f"{NAME}-cephcluster")]

        fake_store.reset_log()
        reconciler.reconcile(NAMESPACE, NAME)
        assert fake_store.child_writes() == []

    def test_ignored_pools_never_touched(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test an ignored kind sees no reads or writes across a whole pass."""
        storage_cluster_dict["spec"]["managedResources"] = {
            "cephBlockPools": {"reconcileStrategy": "ignore"},
            "cephFilesystems": {"reconcileStrategy": "ignore"},
        }
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)

        make_reconciler().reconcile(NAMESPACE, NAME)

        assert fake_store.reads_of(CEPH_BLOCK_POOL) == []
        assert fake_store.writes_of(CEPH_BLOCK_POOL) == []
        assert fake_store.reads_of(CEPH_FILESYSTEM) == []

    def test_expanding_phase(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test growing a device set reports Expanding."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)
        reconciler.reconcile(NAMESPACE, NAME)

        stored = fake_store.stored(STORAGE_CLUSTER, NAME, NAMESPACE)
        stored["spec"]["storageDeviceSets"][0]["count"] = 2
        result = reconciler.reconcile(NAMESPACE, NAME)

        assert result.status.phase == Phase.EXPANDING.value

    def test_expanding_phase_clears_on_next_pass(
        self, fake_store, storage_cluster_dict, make_reconciler, readiness
    ):
        """Test the pass after an expansion reports Ready again."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)
        reconciler.reconcile(NAMESPACE, NAME)
        stored = fake_store.stored(STORAGE_CLUSTER, NAME, NAMESPACE)
        stored["spec"]["storageDeviceSets"][0]["count"] = 2
        reconciler.reconcile(NAMESPACE, NAME)
        fake_store.reset_log()

        result = reconciler.reconcile(NAMESPACE, NAME)

        assert fake_store.child_writes() == []
        assert result.status.phase == Phase.READY.value
        assert _stored_cluster(fake_store).status.phase == Phase.READY.value
        assert readiness.is_set()

    def test_status_persist_failure_keeps_original_error(
        self, fake_store, storage_cluster_dict, make_reconciler, monkeypatch
    ):
        """Test a failed status write does not hide the pass failure."""
        storage_cluster_dict["metadata"]["finalizers"] = [FINALIZER]
        storage_cluster_dict["status"] = {
            "conditions": [{"type": "Available", "status": "False", "reason": "Init"}]
        }
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        monkeypatch.setattr(fake_store, "update_status", MagicMock(side_effect=ApiException(status=500)))

        with pytest.raises(DependencyNotReadyError):
            make_reconciler().reconcile(NAMESPACE, NAME)

    def test_init_conditions_persisted(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test a StorageCluster without conditions is initialized first."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        statuses = []
        real_update_status = fake_store.update_status

        def recording_update_status(kind, body):
            statuses.append(body["status"].get("phase"))
            return real_update_status(kind, body)

        fake_store.update_status = recording_update_status
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)

        assert statuses == [Phase.PROGRESSING.value, Phase.ERROR.value]


class TestReconcileExternal:
    """Test cases for reconciling an external StorageCluster."""

    def test_synthesis_and_classes(
        self, fake_store, external_storage_cluster_dict, external_records, seed_external_cluster,
        make_reconciler, probe,
    ):
        """Test an external pass synthesizes records and provides the published classes."""
        seed_external_cluster(external_records)
        fake_store.seed(STORAGE_CLUSTER, external_storage_cluster_dict)

        result = make_reconciler().reconcile(NAMESPACE, NAME)

        cluster = fake_store.stored(CEPH_CLUSTER, f"{NAME}-cephcluster", NAMESPACE)
        assert cluster["spec"]["external"] == {"enable": True}
        assert cluster["spec"]["monitoring"]["externalMgrEndpoints"] == [{"ip": "10.0.0.1"}]
        assert sorted(name for _, name in fake_store.writes_of(STORAGE_CLASS)) == [
            f"{NAME}-ceph-rbd",
            f"{NAME}-ceph-rgw",
            f"{NAME}-cephfs",
        ]
        assert fake_store.writes_of(CEPH_BLOCK_POOL) == []
        assert fake_store.writes_of(VOLUME_SNAPSHOT_CLASS) == []
        assert result.status.external_secret_hash
        assert _stored_cluster(fake_store).status.external_secret_hash == result.status.external_secret_hash

    def test_missing_connection_key(
        self, fake_store, external_storage_cluster_dict, external_records, seed_external_cluster, make_reconciler,
    ):
        """Test a missing connection key fails the pass and creates nothing from the records."""
        del external_records[2]["data"]["MonitoringEndpoint"]
        seed_external_cluster(external_records)
        fake_store.seed(STORAGE_CLUSTER, external_storage_cluster_dict)

        with pytest.raises(ExternalResourceError, match="MonitoringEndpoint"):
            make_reconciler().reconcile(NAMESPACE, NAME)

        assert fake_store.writes_of(CONFIG_MAP) == []
        assert fake_store.writes_of(SECRET) == []
        assert fake_store.writes_of(CEPH_CLUSTER) == []
        sc = _stored_cluster(fake_store)
        assert sc.status.phase == Phase.ERROR.value
        assert "MonitoringEndpoint" in _condition(sc, ConditionType.DEGRADED).message

    def test_unchanged_payload(
        self, fake_store, external_storage_cluster_dict, external_records, seed_external_cluster,
        make_reconciler, probe,
    ):
        """Test re-running with the same payload dispatches nothing but rechecks classes."""
        seed_external_cluster(external_records)
        fake_store.seed(STORAGE_CLUSTER, external_storage_cluster_dict)
        reconciler = make_reconciler()
        reconciler.reconcile(NAMESPACE, NAME)
        fake_store.reset_log()
        probe.reset_mock()

        result = reconciler.reconcile(NAMESPACE, NAME)

        probe.assert_not_called()
        assert fake_store.child_writes() == []
        assert len(fake_store.reads_of(STORAGE_CLASS)) == 3
        cluster = fake_store.stored(CEPH_CLUSTER, f"{NAME}-cephcluster", NAMESPACE)
        assert cluster["spec"]["monitoring"]["externalMgrPrometheusPort"] == 9283
        assert result.status.phase == Phase.NOT_READY.value


class TestReconcileDeletion:
    """Test cases for StorageCluster deletion."""

    def test_teardown(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test deletion removes classes and releases the finalizer."""
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)
        reconciler = make_reconciler()
        with pytest.raises(DependencyNotReadyError):
            reconciler.reconcile(NAMESPACE, NAME)
        _mark_children_ready(fake_store)
        reconciler.reconcile(NAMESPACE, NAME)

        fake_store.stored(STORAGE_CLUSTER, NAME, NAMESPACE)["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        fake_store.reset_log()
        result = reconciler.reconcile(NAMESPACE, NAME)

        deleted = [name for verb, name in fake_store.writes_of(STORAGE_CLASS) if verb == "delete"]
        assert len(deleted) == 4
        assert len(fake_store.writes_of(VOLUME_SNAPSHOT_CLASS)) == 2
        assert FINALIZER not in result.metadata.finalizers
        assert result.status.phase == Phase.DELETING.value
        assert fake_store.writes_of(CEPH_CLUSTER) == []

    def test_deleting_without_finalizer(self, fake_store, storage_cluster_dict, make_reconciler):
        """Test a deleting StorageCluster without our finalizer is left alone."""
        storage_cluster_dict["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        fake_store.seed(STORAGE_CLUSTER, storage_cluster_dict)

        make_reconciler().reconcile(NAMESPACE, NAME)

        assert fake_store.writes == []
