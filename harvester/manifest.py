"""SQLite-backed record of every file written during extraction."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import sqlite_utils

from .utils import sha256_file

if TYPE_CHECKING:
    from .models import ExtractedFile


class ExtractionManifest:
    """Store output filename -> source attachment rows next to the output."""

    TABLE = "extracted_files"
    FILENAME = "extraction_manifest.db"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite_utils.Database(str(db_path))
        self._ensure_schema()

    @classmethod
    def in_directory(cls, output_dir: Path) -> "ExtractionManifest":
        return cls(output_dir / cls.FILENAME)

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {
                "output_name": str,
                "archive": str,
                "folder_path": str,
                "subject": str,
                "received": str,
                "source_name": str,
                "checksum": str,
                "extracted_at": str,
            },
            pk="output_name",
            if_not_exists=True,
        )

    def record(self, *, archive: str, output_name: str, extracted: "ExtractedFile") -> None:
        checksum = sha256_file(extracted.output_path) if extracted.output_path.exists() else ""
        self.db[self.TABLE].upsert(
            {
                "output_name": output_name,
                "archive": archive,
                "folder_path": extracted.folder_path,
                "subject": extracted.subject,
                "received": extracted.received.isoformat() if extracted.received else None,
                "source_name": extracted.source_name,
                "checksum": checksum,
                "extracted_at": datetime.now(tz=UTC).isoformat(),
            },
            pk="output_name",
        )

    def count(self) -> int:
        return self.db[self.TABLE].count
