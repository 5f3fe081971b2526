"""Walk a mounted archive and write matching attachments to disk."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Literal

from .attachment_filter import ExtensionFilter
from .errors import ExtractionError
from .manifest import ExtractionManifest
from .models import (
    ArchiveAttachment,
    ArchiveFolder,
    ArchiveItem,
    ExtractedFile,
    ExtractionFailure,
    ExtractionResult,
)
from .utils import received_stamp, sanitize_token

logger = logging.getLogger(__name__)

NamingMode = Literal["subject", "attachment"]
ErrorPolicy = Literal["abort", "continue"]


def subject_filename(item: ArchiveItem, attachment_name: str) -> str:
    suffix = PurePosixPath(attachment_name).suffix
    return f"{received_stamp(item.received)}-{sanitize_token(item.subject)}{suffix}"


def attachment_filename(item: ArchiveItem, attachment_name: str) -> str:
    # drop any directory or drive part so the file lands in the output directory
    safe_name = PureWindowsPath(attachment_name).name.replace(":", "") or "attachment"
    return f"{received_stamp(item.received)}-{safe_name}"


def unique_filename(output_dir: Path, name: str, claimed: set[str] | None = None) -> str:
    """Prefix ``Copy<N>-`` until the name is free on disk and in ``claimed``."""
    claimed = claimed or set()
    candidate = name
    counter = 1
    while candidate in claimed or (output_dir / candidate).exists():
        candidate = f"Copy{counter}-{name}"
        counter += 1
    return candidate


class _ArchiveWalker:
    """Depth-first pre-order walk shared by the extractors."""

    def __init__(
        self,
        output_dir: Path,
        on_error: ErrorPolicy = "abort",
        manifest: ExtractionManifest | None = None,
        archive_name: str = "",
    ) -> None:
        self.output_dir = output_dir
        self.on_error = on_error
        self.manifest = manifest
        self.archive_name = archive_name

    def extract(self, root: ArchiveFolder) -> ExtractionResult:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        result = ExtractionResult()
        self._walk(root, root.name or "/", result)
        logger.info(
            "Extracted %s file(s) from %s folder(s); %s skipped, %s failed",
            result.extracted,
            result.folders_visited,
            result.skipped,
            len(result.failures),
        )
        return result

    def skip_folder(self, folder: ArchiveFolder) -> bool:
        return False

    def visit_item(self, item: ArchiveItem, folder_path: str, result: ExtractionResult) -> None:
        raise NotImplementedError

    def _walk(self, folder: ArchiveFolder, folder_path: str, result: ExtractionResult) -> None:
        result.folders_visited += 1
        logger.debug("Scanning folder %s", folder_path)
        try:
            for item in folder.items():
                try:
                    self.visit_item(item, folder_path, result)
                except ExtractionError:
                    raise
                except Exception as exc:
                    subject = getattr(item, "subject", "") or "(no subject)"
                    self._fail(result, folder_path, subject, exc)
        except ExtractionError:
            raise
        except Exception as exc:
            self._fail(result, folder_path, folder.name, exc)

        try:
            children = list(folder.child_folders())
        except Exception as exc:
            self._fail(result, folder_path, folder.name, exc)
            return

        for child in children:
            if self.skip_folder(child):
                logger.info("Skipping folder %s/%s", folder_path, child.name)
                continue
            self._walk(child, f"{folder_path}/{child.name}", result)

    def _write(
        self,
        result: ExtractionResult,
        folder_path: str,
        item: ArchiveItem,
        source_name: str,
        base_name: str,
        save,
    ) -> None:
        name = unique_filename(self.output_dir, base_name, set(result.files))
        target = self.output_dir / name
        try:
            save(target)
        except Exception as exc:
            self._fail(result, folder_path, source_name, exc)
            return
        logger.info("Saved %s", name)
        record = ExtractedFile(
            output_path=target,
            folder_path=folder_path,
            subject=item.subject,
            received=item.received,
            source_name=source_name,
        )
        result.files[name] = record
        if self.manifest is not None:
            self.manifest.record(archive=self.archive_name, output_name=name, extracted=record)

    def _fail(self, result: ExtractionResult, folder_path: str, source_name: str, exc: Exception) -> None:
        if self.on_error == "abort":
            raise ExtractionError(folder_path, source_name, str(exc)) from exc
        logger.error("Failed to extract '%s' in %s: %s", source_name, folder_path, exc)
        result.failures.append(
            ExtractionFailure(folder_path=folder_path, source_name=source_name, error=str(exc))
        )


class AttachmentExtractor(_ArchiveWalker):
    """Save filtered attachments of every item, flattening the folder tree."""

    def __init__(
        self,
        output_dir: Path,
        extension_filter: ExtensionFilter | None = None,
        naming_mode: NamingMode = "subject",
        on_error: ErrorPolicy = "abort",
        manifest: ExtractionManifest | None = None,
        archive_name: str = "",
    ) -> None:
        super().__init__(output_dir, on_error=on_error, manifest=manifest, archive_name=archive_name)
        self.extension_filter = extension_filter or ExtensionFilter()
        if naming_mode not in ("subject", "attachment"):
            raise ValueError(f"Unknown naming mode '{naming_mode}'")
        self.naming_mode = naming_mode

    def target_name(self, item: ArchiveItem, attachment: ArchiveAttachment) -> str:
        if self.naming_mode == "attachment":
            return attachment_filename(item, attachment.filename)
        return subject_filename(item, attachment.filename)

    def visit_item(self, item: ArchiveItem, folder_path: str, result: ExtractionResult) -> None:
        for attachment in item.attachments():
            result.attachments_seen += 1
            if not self.extension_filter.accepts(attachment.filename):
                result.skipped += 1
                continue
            self._write(
                result,
                folder_path,
                item,
                attachment.filename,
                self.target_name(item, attachment),
                attachment.save_as,
            )


class MessageExporter(_ArchiveWalker):
    """Save every item as a .msg file, ignoring the trash folder."""

    def __init__(
        self,
        output_dir: Path,
        trash_folder_name: str = "Deleted Items",
        on_error: ErrorPolicy = "abort",
        manifest: ExtractionManifest | None = None,
        archive_name: str = "",
    ) -> None:
        super().__init__(output_dir, on_error=on_error, manifest=manifest, archive_name=archive_name)
        self.trash_folder_name = trash_folder_name

    def skip_folder(self, folder: ArchiveFolder) -> bool:
        return folder.name.strip().lower() == self.trash_folder_name.strip().lower()

    def visit_item(self, item: ArchiveItem, folder_path: str, result: ExtractionResult) -> None:
        base_name = f"{received_stamp(item.received)}-{sanitize_token(item.subject)}.msg"
        self._write(result, folder_path, item, item.subject, base_name, item.save_as_message)
