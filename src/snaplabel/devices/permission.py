"""Camera permission providers."""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class PermissionProvider(Protocol):
    """Protocol for the camera permission prompt."""

    @property
    def granted(self) -> bool:
        """Whether camera access has been granted."""
        ...

    def request(self) -> bool:
        """Ask for camera access and return whether it was granted."""
        ...


class ConfigPermissionProvider:
    """Answers permission requests from configuration instead of a user prompt."""

    def __init__(self, allow: bool = True) -> None:
        self._allow = allow
        self._granted = False

    @property
    def granted(self) -> bool:
        return self._granted

    def request(self) -> bool:
        self._granted = self._allow
        logger.info("Camera permission %s", "granted" if self._granted else "denied")
        return self._granted
