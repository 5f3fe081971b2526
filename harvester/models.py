"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Protocol


class JobStatus(str, Enum):
    """Server-side state of a search or export job."""

    NOT_STARTED = "NotStarted"
    STARTING = "Starting"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> "JobStatus":
        for member in cls:
            if member.value == (value or "").strip():
                return member
        return cls.UNKNOWN


@dataclass
class SearchJob:
    """A named compliance search against one mailbox."""

    name: str
    query: str
    mailbox: str | None
    status: JobStatus = JobStatus.NOT_STARTED


@dataclass
class ExportJob:
    """Export action derived from a completed search."""

    search_name: str
    status: JobStatus = JobStatus.NOT_STARTED
    results: str = ""

    @property
    def name(self) -> str:
        return f"{self.search_name}_Export"


@dataclass(frozen=True)
class TransferDescriptor:
    """Location and time-limited credential needed to fetch an export."""

    location_uri: str
    credential_token: str


@dataclass
class DownloadedArchive:
    """An archive file produced by the transfer tool."""

    path: Path
    size: int


class ArchiveAttachment(Protocol):
    filename: str

    def save_as(self, path: Path) -> None: ...


class ArchiveItem(Protocol):
    received: datetime | None
    subject: str

    def attachments(self) -> Iterator[ArchiveAttachment]: ...

    def save_as_message(self, path: Path) -> None: ...


class ArchiveFolder(Protocol):
    """Read-only folder view of a mounted archive.

    ``items()`` and ``child_folders()`` are lazy and only valid while the
    archive stays mounted.
    """

    name: str

    def items(self) -> Iterator[ArchiveItem]: ...

    def child_folders(self) -> Iterator["ArchiveFolder"]: ...


@dataclass
class ExtractedFile:
    """One file written during extraction and where it came from."""

    output_path: Path
    folder_path: str
    subject: str
    received: Optional[datetime]
    source_name: str


@dataclass
class ExtractionFailure:
    folder_path: str
    source_name: str
    error: str


@dataclass
class ExtractionResult:
    """Output filename -> source mapping built while walking an archive."""

    files: dict[str, ExtractedFile] = field(default_factory=dict)
    failures: list[ExtractionFailure] = field(default_factory=list)
    folders_visited: int = 0
    attachments_seen: int = 0
    skipped: int = 0

    @property
    def extracted(self) -> int:
        return len(self.files)

    def merge(self, other: "ExtractionResult") -> None:
        self.files.update(other.files)
        self.failures.extend(other.failures)
        self.folders_visited += other.folders_visited
        self.attachments_seen += other.attachments_seen
        self.skipped += other.skipped


@dataclass
class PipelineOptions:
    """Everything a single pipeline run needs besides Settings."""

    mailbox: str | None = None
    start_date: str | None = None
    days: str | int | None = None
    subject: str | None = None
    sender: str | None = None
    extensions: list[str] = field(default_factory=list)
    base_dir: Path | None = None
    search_name: str | None = None
    naming_mode: str = "subject"
    extract_messages: bool = False
    skip_search: bool = False
    skip_export: bool = False
    skip_download: bool = False
    skip_extract: bool = False
    remove_search: bool = False
    today: date | None = None


@dataclass
class PipelineReport:
    search_name: str
    job_dir: Path
    query: str | None = None
    descriptor: TransferDescriptor | None = None
    archives: list[DownloadedArchive] = field(default_factory=list)
    extraction: ExtractionResult = field(default_factory=ExtractionResult)
    stages_run: list[str] = field(default_factory=list)
