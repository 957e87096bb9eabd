"""Cloud platform detection."""

import logging
from typing import Optional

from .store import INFRASTRUCTURE, ObjectStore

logger = logging.getLogger(__name__)

# Platforms with a native object service, where no CephObjectStore is deployed
AVOID_OBJECT_STORE_PLATFORMS = frozenset({"AWS", "GCP", "Azure", "IBMCloud"})

INFRASTRUCTURE_NAME = "cluster"


def avoid_object_store(platform: str) -> bool:
    """True if object storage should not be deployed on this platform."""
    return platform in AVOID_OBJECT_STORE_PLATFORMS


class PlatformDetector:
    """
    Resolves the platform the cluster runs on.

    An explicit override wins. Otherwise the cluster Infrastructure object is
    read once and the answer cached for the lifetime of the process; clusters
    without that object report the empty platform.
    """

    def __init__(self, store: ObjectStore, override: Optional[str] = None):
        self.store = store
        self._platform: Optional[str] = override

    def get_platform(self) -> str:
        if self._platform is not None:
            return self._platform

        infrastructure = self.store.get(INFRASTRUCTURE, INFRASTRUCTURE_NAME)
        platform = ""
        if infrastructure:
            status = infrastructure.get("status", {})
            platform = status.get("platformStatus", {}).get("type") or status.get(
                "platform", ""
            )
        logger.info(f"Detected platform {platform!r}")
        self._platform = platform
        return platform

    def avoid_object_store(self) -> bool:
        return avoid_object_store(self.get_platform())
