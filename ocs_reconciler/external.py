"""
External cluster details synthesis.

An external StorageCluster is described by a JSON list of records stored in a
Secret. Every pass the records are read, digested and turned into the pass's
external details (monitoring endpoint and the StorageClasses to provide). The
records are only dispatched into ConfigMaps, Secrets and the object store
when their digest differs from the one recorded in the StorageCluster status.
"""

import base64
import binascii
import concurrent.futures
import hashlib
import json
import logging
import socket
import time
from typing import Any, Callable, Optional

from pydantic import TypeAdapter, ValidationError

from .base import (
    Ensurer,
    ExternalClusterDetails,
    ReconcileContext,
    StorageClassConfiguration,
    new_object,
)
from .errors import EndpointUnreachableError, ExternalResourceError
from .models import Condition, ExternalResource, StorageCluster
from .naming import (
    EXTERNAL_CEPHFS_STORAGE_CLASS,
    EXTERNAL_RBD_STORAGE_CLASS,
    EXTERNAL_RGW_STORAGE_CLASS,
)
from .objectstores import CephObjectStoreEnsurer
from .storageclasses import cephfs_configuration, rbd_configuration, rgw_configuration
from .store import CONFIG_MAP, SECRET, ResourceKind

logger = logging.getLogger(__name__)

MONITORING_ENDPOINT_KEY = "MonitoringEndpoint"
MONITORING_PORT_KEY = "MonitoringPort"
RGW_ENDPOINT_KEY = "endpoint"

MIN_PORT = 1
MAX_PORT = 65535

ROOK_OPERATOR_CONFIG_MAP = "rook-ceph-operator-config"
ROOK_CSI_ENABLE_CEPHFS_KEY = "ROOK_CSI_ENABLE_CEPHFS"

KIND_CEPH_CLUSTER = "CephCluster"
KIND_CONFIG_MAP = "ConfigMap"
KIND_SECRET = "Secret"
KIND_STORAGE_CLASS = "StorageClass"

STORAGE_CLASS_BUILDERS: dict[str, Callable[[StorageCluster], StorageClassConfiguration]] = {
    EXTERNAL_CEPHFS_STORAGE_CLASS: cephfs_configuration,
    EXTERNAL_RBD_STORAGE_CLASS: rbd_configuration,
    EXTERNAL_RGW_STORAGE_CLASS: rgw_configuration,
}

_records_adapter = TypeAdapter(list[ExternalResource])

# probe(host, port, timeout) raises OSError when the endpoint is unreachable
Probe = Callable[[str, int, float], None]

# Name lookups; getaddrinfo itself takes no timeout
_resolver = concurrent.futures.ThreadPoolExecutor(max_workers=4, thread_name_prefix="resolver")


def probe_endpoint(host: str, port: int, timeout: float) -> None:
    """
    Resolve host and open a TCP connection to it within timeout seconds.

    The timeout bounds the whole probe: name resolution runs on the resolver
    pool and every connection attempt only gets the time that is left.

    Raises:
        OSError: If the host does not resolve or accept a connection in time
    """
    deadline = time.monotonic() + timeout
    future = _resolver.submit(socket.getaddrinfo, host, port, type=socket.SOCK_STREAM)
    try:
        addresses = future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as e:
        future.cancel()
        raise TimeoutError(f"resolving {host} timed out after {timeout}s") from e

    last_error: Optional[OSError] = None
    for family, socktype, proto, _, sockaddr in addresses:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        sock = socket.socket(family, socktype, proto)
        try:
            sock.settimeout(remaining)
            sock.connect(sockaddr)
            return
        except OSError as e:
            last_error = e
        finally:
            sock.close()
    if last_error is not None:
        raise last_error
    raise TimeoutError(f"connecting to {host}:{port} timed out after {timeout}s")


def parse_port(value: str, what: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise ExternalResourceError(f"{what} has a non-numeric port {value!r}")
    port = int(value)
    if not MIN_PORT <= port <= MAX_PORT:
        raise ExternalResourceError(f"{what} has an out of range port {value!r}")
    return port


def split_host_port(endpoint: str) -> tuple[str, int]:
    """
    Split ``host:port``, bracketed IPv6 hosts included.

    Raises:
        ExternalResourceError: If the host is empty or the port not numeric
    """
    host, sep, port = endpoint.rpartition(":")
    if not sep:
        raise ExternalResourceError(f"endpoint {endpoint!r} is not in host:port form")
    host = host.strip("[]")
    if not host:
        raise ExternalResourceError(f"endpoint {endpoint!r} has an empty host")
    return host, parse_port(port, f"endpoint {endpoint!r}")


def compute_checksum(records: list[ExternalResource]) -> str:
    """
    SHA-512 digest of the records.

    Records and their keys are put in canonical order first, so equal payloads
    digest equally regardless of how they were serialized. The digest covers
    the decoded content, not the secret bytes: a change in whitespace or in
    record or key order alone does not trigger synthesis again.
    """
    canonical = sorted(
        json.dumps(record.model_dump(), sort_keys=True, separators=(",", ":"))
        for record in records
    )
    return hashlib.sha512(("[" + ",".join(canonical) + "]").encode("utf-8")).hexdigest()


def decode_records(payload: bytes) -> list[ExternalResource]:
    """Decode the JSON record list of the external cluster details."""
    try:
        return _records_adapter.validate_json(payload)
    except ValidationError as e:
        raise ExternalResourceError(f"invalid external cluster details: {e}") from e


class ExternalResourceSynthesizer(Ensurer):
    """Turns the external cluster details secret into cluster resources."""

    def __init__(
        self,
        secret_name: str = "rook-ceph-external-cluster-details",
        secret_key: str = "external_cluster_details",
        probe_timeout: float = 5.0,
        probe: Probe = probe_endpoint,
        object_stores: Optional[CephObjectStoreEnsurer] = None,
    ):
        """
        Initialize the synthesizer.

        Args:
            secret_name: Secret holding the external cluster details
            secret_key: Key of the records in that secret
            probe_timeout: Seconds an endpoint gets to accept a connection
            probe: Reachability check, replaced in tests
            object_stores: Ensurer converging the external object store
        """
        self.secret_name = secret_name
        self.secret_key = secret_key
        self.probe_timeout = probe_timeout
        self.probe = probe
        self.object_stores = object_stores or CephObjectStoreEnsurer()

    def ensure_created(self, ctx: ReconcileContext) -> list[Condition]:
        records = self.load_records(ctx)
        checksum = compute_checksum(records)
        ctx.external = self.derive(ctx, records, checksum)

        if checksum == ctx.instance.status.external_secret_hash:
            logger.info("External cluster details unchanged, skipping synthesis")
            return []

        operator_config = self.validate(ctx, ctx.external)
        self.apply(ctx, records, operator_config)
        ctx.instance.status.external_secret_hash = checksum
        logger.info(f"External cluster details synthesized, checksum {checksum[:12]}")
        return []

    def load_records(self, ctx: ReconcileContext) -> list[ExternalResource]:
        """
        Read and decode the external cluster details.

        Raises:
            ExternalResourceError: If the secret or key is missing or the
                payload is not a list of records
        """
        secret = ctx.store.get(SECRET, self.secret_name, ctx.namespace)
        if secret is None:
            raise ExternalResourceError(
                f"external cluster details secret {ctx.namespace}/{self.secret_name} not found"
            )
        data = secret.get("data") or {}
        if self.secret_key not in data:
            raise ExternalResourceError(
                f"key {self.secret_key!r} not found in secret {self.secret_name}"
            )
        try:
            payload = base64.b64decode(data[self.secret_key], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ExternalResourceError(
                f"key {self.secret_key!r} of secret {self.secret_name} is not base64: {e}"
            ) from e
        return decode_records(payload)

    def derive(
        self, ctx: ReconcileContext, records: list[ExternalResource], checksum: str
    ) -> ExternalClusterDetails:
        """Compute the pass's external details from the records alone."""
        details = ExternalClusterDetails(checksum=checksum)
        for record in records:
            if record.kind == KIND_CEPH_CLUSTER:
                for key in (MONITORING_ENDPOINT_KEY, MONITORING_PORT_KEY):
                    if key not in record.data:
                        raise ExternalResourceError(
                            f"{key} not present in the external cluster secret {self.secret_name}"
                        )
                details.monitoring_endpoint = record.data[MONITORING_ENDPOINT_KEY]
                details.monitoring_port = record.data[MONITORING_PORT_KEY]
                parse_port(details.monitoring_port, MONITORING_PORT_KEY)
            elif record.kind == KIND_STORAGE_CLASS:
                builder = STORAGE_CLASS_BUILDERS.get(record.name)
                if builder is None:
                    logger.warning(f"Ignoring unknown external StorageClass {record.name!r}")
                    continue
                parameters = dict(record.data)
                if record.name == EXTERNAL_RGW_STORAGE_CLASS:
                    endpoint = parameters.pop(RGW_ENDPOINT_KEY, "")
                    details.object_store_endpoint = split_host_port(endpoint)
                config = builder(ctx.instance)
                config.obj["parameters"].update(parameters)
                details.storage_classes.append(config)
            elif record.kind not in (KIND_CONFIG_MAP, KIND_SECRET):
                logger.warning(f"Ignoring external resource {record.name!r} of kind {record.kind!r}")
        return details

    def check_endpoint(self, host: str, port: int) -> None:
        try:
            self.probe(host, port, self.probe_timeout)
        except OSError as e:
            logger.error(f"Endpoint {host}:{port} is not reachable: {e}")
            raise EndpointUnreachableError(f"{host}:{port}", e) from e

    def validate(
        self, ctx: ReconcileContext, details: ExternalClusterDetails
    ) -> dict[str, Any]:
        """
        Check everything the apply step relies on before anything is written.

        Returns:
            The operator ConfigMap holding the CSI feature flags
        """
        if details.monitoring_endpoint:
            self.check_endpoint(details.monitoring_endpoint, int(details.monitoring_port))
        if details.object_store_endpoint:
            self.check_endpoint(*details.object_store_endpoint)

        operator_config = ctx.store.get(CONFIG_MAP, ROOK_OPERATOR_CONFIG_MAP, ctx.namespace)
        if operator_config is None:
            raise ExternalResourceError(
                f"ConfigMap {ctx.namespace}/{ROOK_OPERATOR_CONFIG_MAP} not found"
            )
        return operator_config

    def apply(
        self,
        ctx: ReconcileContext,
        records: list[ExternalResource],
        operator_config: dict[str, Any],
    ) -> None:
        for record in records:
            if record.kind == KIND_CONFIG_MAP:
                obj = new_object(CONFIG_MAP, record.name, ctx.instance)
                obj["data"] = dict(record.data)
                self.get_or_create(ctx, CONFIG_MAP, obj)
            elif record.kind == KIND_SECRET:
                obj = new_object(SECRET, record.name, ctx.instance)
                obj["data"] = {
                    k: base64.b64encode(v.encode("utf-8")).decode("ascii")
                    for k, v in record.data.items()
                }
                self.get_or_create(ctx, SECRET, obj)

        enable_cephfs = any(
            r.kind == KIND_STORAGE_CLASS and r.name == EXTERNAL_CEPHFS_STORAGE_CLASS
            for r in records
        )
        self.set_csi_cephfs(ctx, operator_config, enable_cephfs)

        if ctx.external and ctx.external.object_store_endpoint:
            host, port = ctx.external.object_store_endpoint
            self.object_stores.ensure_external(ctx, host, port)

    def get_or_create(self, ctx: ReconcileContext, kind: ResourceKind, obj: dict[str, Any]) -> None:
        """Create obj unless an object of that name exists; existing ones are never updated."""
        name = obj["metadata"]["name"]
        if ctx.store.get(kind, name, ctx.namespace) is None:
            logger.info(f"Creating {kind.kind} {ctx.namespace}/{name}")
            ctx.store.create(kind, obj)

    def set_csi_cephfs(
        self, ctx: ReconcileContext, operator_config: dict[str, Any], enable: bool
    ) -> None:
        value = "true" if enable else "false"
        data = operator_config.get("data") or {}
        if data.get(ROOK_CSI_ENABLE_CEPHFS_KEY) == value:
            return
        data[ROOK_CSI_ENABLE_CEPHFS_KEY] = value
        operator_config["data"] = data
        logger.info(f"Setting {ROOK_CSI_ENABLE_CEPHFS_KEY} to {value}")
        ctx.store.update(CONFIG_MAP, operator_config)
