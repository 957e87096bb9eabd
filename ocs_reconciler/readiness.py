"""Process-wide readiness signal read by the readiness probe."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class FileReadiness:
    """Readiness marker backed by a file whose presence means ready."""

    def __init__(self, path: str):
        self.path = Path(path)

    def set(self) -> None:
        """Mark the process ready."""
        if not self.path.exists():
            self.path.touch()
            logger.info(f"Readiness marker {self.path} created")

    def unset(self) -> None:
        """Mark the process not ready."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Readiness marker {self.path} removed")

    def is_set(self) -> bool:
        return self.path.exists()
