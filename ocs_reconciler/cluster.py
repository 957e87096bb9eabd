"""Kubernetes client connection management."""

from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, CoreV1Api, CustomObjectsApi, StorageV1Api

from .config import Settings


class ClusterConnection:
    """Represents a connection to the Kubernetes cluster hosting the StorageCluster."""

    def __init__(
        self,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file, in-cluster config when None
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If the client configuration cannot be loaded
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._storage_v1: Optional[StorageV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None

        self._initialize_client()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClusterConnection":
        """Create a connection from reconciler settings."""
        return cls(kubeconfig_path=settings.kubeconfig_path, context=settings.kube_context)

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            else:
                # Running inside the cluster as the operator pod
                config.load_incluster_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._storage_v1 = StorageV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def storage_v1(self) -> StorageV1Api:
        """Get StorageV1Api instance."""
        if not self._storage_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._storage_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client
