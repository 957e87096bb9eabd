"""Pass-scoped context and the create/diff/update/observe ensurer pattern."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from .conditions import not_reporting_conditions
from .defaults import ReconcilerDefaults
from .errors import MarkedForDeletionError
from .models import Condition, ObjectReference, ReconcileStrategy, StorageCluster
from .platform import PlatformDetector
from .store import ObjectStore, ResourceKind, object_key

logger = logging.getLogger(__name__)


@dataclass
class StorageClassConfiguration:
    """Target class object plus the policy governing it, rebuilt every pass."""

    obj: dict[str, Any]
    strategy: ReconcileStrategy
    disabled: bool = False

    @property
    def name(self) -> str:
        return self.obj["metadata"]["name"]


@dataclass
class ExternalClusterDetails:
    """What the external cluster details payload contributes to a pass."""

    checksum: str
    monitoring_endpoint: Optional[str] = None
    monitoring_port: Optional[str] = None
    storage_classes: list[StorageClassConfiguration] = field(default_factory=list)
    # (host, port) of the external object gateway
    object_store_endpoint: Optional[tuple[str, int]] = None


@dataclass
class ReconcileContext:
    """State shared by the ensurers of one reconcile pass."""

    instance: StorageCluster
    store: ObjectStore
    defaults: ReconcilerDefaults
    platform: PlatformDetector
    external: Optional[ExternalClusterDetails] = None
    # Set when a device set grew during this pass
    expanding: bool = False

    @property
    def namespace(self) -> str:
        return self.instance.namespace


def is_marked_for_deletion(obj: dict[str, Any]) -> bool:
    return obj.get("metadata", {}).get("deletionTimestamp") is not None


def set_related_object(instance: StorageCluster, obj: dict[str, Any]) -> None:
    """Record a child in the StorageCluster's related objects, replacing stale entries."""
    metadata = obj.get("metadata", {})
    ref = ObjectReference(
        api_version=obj.get("apiVersion", ""),
        kind=obj.get("kind", ""),
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        uid=metadata.get("uid"),
        resource_version=metadata.get("resourceVersion"),
    )
    related = instance.status.related_objects
    for i, existing in enumerate(related):
        if (existing.kind, existing.name, existing.namespace) == (
            ref.kind, ref.name, ref.namespace
        ):
            related[i] = ref
            return
    related.append(ref)


def new_object(
    kind: ResourceKind,
    name: str,
    instance: Optional[StorageCluster] = None,
    labels: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """
    Skeleton of a child object.

    Namespaced children are owned by the StorageCluster so they are garbage
    collected with it. Cluster-scoped children never get an owner reference.
    """
    metadata: dict[str, Any] = {"name": name}
    if labels:
        metadata["labels"] = dict(labels)
    if kind.namespaced and instance is not None:
        metadata["namespace"] = instance.namespace
        metadata["ownerReferences"] = [instance.owner_reference()]
    return {"apiVersion": kind.api_version, "kind": kind.kind, "metadata": metadata}


class Ensurer(ABC):
    """A convergence unit of the reconcile pipeline."""

    @abstractmethod
    def ensure_created(self, ctx: ReconcileContext) -> list[Condition]:
        """
        Converge the unit's resources.

        Returns:
            Negative conditions to merge into the StorageCluster status
        """

    def ensure_deleted(self, ctx: ReconcileContext) -> None:
        """Clean up resources not removed by owner-reference garbage collection."""


class ResourceEnsurer(Ensurer):
    """
    Create-if-absent, diff, overwrite, observe.

    Subclasses describe the desired objects of one kind; this class fetches
    each by name, creates it when absent, replaces the whole spec when it
    drifted and otherwise translates its status into conditions.
    """

    kind: ResourceKind

    @abstractmethod
    def desired_objects(self, ctx: ReconcileContext) -> list[dict[str, Any]]:
        """Desired objects computed from the StorageCluster spec."""

    def strategy(self, ctx: ReconcileContext) -> ReconcileStrategy:
        return ReconcileStrategy.MANAGE

    def enabled(self, ctx: ReconcileContext) -> bool:
        return True

    def before_update(
        self, ctx: ReconcileContext, found: dict[str, Any], desired: dict[str, Any]
    ) -> None:
        """Hook called before a drifted object is overwritten."""

    def status_conditions(
        self, ctx: ReconcileContext, found: dict[str, Any]
    ) -> list[Condition]:
        """Translate a non-empty child status into negative conditions."""
        return []

    def ensure_created(self, ctx: ReconcileContext) -> list[Condition]:
        strategy = self.strategy(ctx)
        if strategy == ReconcileStrategy.IGNORE:
            logger.debug(f"Ignoring {self.kind.kind} resources")
            return []
        if not self.enabled(ctx):
            return []

        conditions: list[Condition] = []
        for desired in self.desired_objects(ctx):
            found = self.converge(ctx, desired, strategy)
            if found is not None:
                conditions.extend(self.observe(ctx, found))
        return conditions

    def converge(
        self,
        ctx: ReconcileContext,
        desired: dict[str, Any],
        strategy: ReconcileStrategy = ReconcileStrategy.MANAGE,
    ) -> Optional[dict[str, Any]]:
        """
        Bring one object to its desired spec.

        Returns:
            The existing object when it needed no write, otherwise None
        """
        name, namespace = object_key(desired)
        found = ctx.store.get(self.kind, name, namespace)
        if found is None:
            logger.info(f"Creating {self.kind.kind} {namespace}/{name}")
            ctx.store.create(self.kind, desired)
            return None

        if strategy == ReconcileStrategy.INIT:
            return found
        if is_marked_for_deletion(found):
            raise MarkedForDeletionError(self.kind.kind, name)

        if found.get("spec") != desired.get("spec"):
            logger.info(f"Updating spec for {self.kind.kind} {namespace}/{name}")
            self.before_update(ctx, found, desired)
            found["spec"] = desired.get("spec")
            owner_refs = desired["metadata"].get("ownerReferences")
            if owner_refs:
                found["metadata"]["ownerReferences"] = owner_refs
            ctx.store.update(self.kind, found)
            return None

        return found

    def observe(self, ctx: ReconcileContext, found: dict[str, Any]) -> list[Condition]:
        set_related_object(ctx.instance, found)
        if not found.get("status"):
            name, namespace = object_key(found)
            logger.info(f"{self.kind.kind} {namespace}/{name} is not reporting status")
            return not_reporting_conditions(self.kind.kind)
        return self.status_conditions(ctx, found)
