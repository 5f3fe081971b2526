"""Decide which attachments are worth extracting."""

from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class ExtensionFilter:
    """Case-insensitive filename suffix match; no extensions accepts everything."""

    def __init__(self, extensions: Iterable[str] | None = None) -> None:
        cleaned = []
        for ext in extensions or []:
            ext = ext.strip().lower()
            if not ext:
                continue
            cleaned.append(ext if ext.startswith(".") else f".{ext}")
        self.extensions = tuple(cleaned)

    @property
    def accepts_all(self) -> bool:
        return not self.extensions

    def accepts(self, filename: str) -> bool:
        if self.accepts_all:
            return True
        if (filename or "").lower().endswith(self.extensions):
            return True
        logger.debug("Attachment '%s' does not match %s", filename, ", ".join(self.extensions))
        return False
