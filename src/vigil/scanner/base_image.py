"""
Base image detection.

Identifies the image a container image was built from using its build
history. Detection sits behind the BaseImageDetector interface so the
heuristic can be replaced with data-driven fingerprinting.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from vigil.registry.manifest import ImageConfig

# Matches "FROM alpine:3.18" and "/bin/sh -c #(nop)  FROM ..."
FROM_PATTERN = re.compile(r"FROM\s+(\S+)", re.IGNORECASE)

# Checked in order against the first history entry
COMMON_BASE_IMAGES = ["alpine", "debian", "ubuntu", "node", "python"]


class BaseImageDetector(ABC):
    """Interface for base image detection."""

    @abstractmethod
    def detect(self, config: ImageConfig) -> str | None:
        """Return the detected base image name, or None."""
        pass


class HistoryBaseImageDetector(BaseImageDetector):
    """
    Detect the base image from config history.

    Looks for a ``FROM <image>`` token in each ``created_by`` entry in
    order, then falls back to a substring match of the first entry
    against common base image names.
    """

    def __init__(self, known_images: list[str] | None = None):
        self._known_images = known_images or COMMON_BASE_IMAGES

    def detect(self, config: ImageConfig) -> str | None:
        history = config.history or []

        for entry in history:
            match = FROM_PATTERN.search(entry.created_by or "")
            if match:
                return match.group(1)

        if not history:
            return None

        first_command = history[0].created_by or ""
        for name in self._known_images:
            if name in first_command:
                return name

        return None
