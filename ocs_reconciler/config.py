"""Configuration management for the StorageCluster reconciler."""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Reconciler settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "ocs-reconciler"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file, in-cluster config when unset",
    )
    kube_context: Optional[str] = None
    operator_namespace: str = "openshift-storage"

    # Storage engine Settings
    ceph_image: str = "ceph/ceph:v15"
    mon_count: int = Field(default=3, ge=1)
    device_set_replica: int = Field(default=3, ge=1)
    data_dir_host_path: str = "/var/lib/rook"
    node_affinity_key: str = "cluster.ocs.openshift.io/openshift-storage"
    node_toleration_key: str = "node.ocs.openshift.io/storage"

    # Platform Settings
    platform: Optional[str] = Field(
        default=None,
        description="Platform type override (AWS, GCP, None, ...); "
        "looked up from the Infrastructure object when unset",
    )

    # External mode Settings
    external_secret_name: str = "rook-ceph-external-cluster-details"
    external_secret_key: str = "external_cluster_details"
    probe_timeout_seconds: float = Field(default=5.0, gt=0)

    # Readiness Settings
    readiness_file_path: str = "/tmp/operator-sdk-ready"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Configure process-wide logging from settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
