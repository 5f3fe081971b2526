"""Sequence search, export, download and extraction for one mailbox run."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable

from .archive import OutlookSession
from .attachment_filter import ExtensionFilter
from .compliance_client import ComplianceClient
from .config import Settings
from .errors import QueryValidationError, StageError
from .export import ExportCoordinator
from .extractor import AttachmentExtractor, MessageExporter
from .manifest import ExtractionManifest
from .models import (
    DownloadedArchive,
    ExportJob,
    PipelineOptions,
    PipelineReport,
    SearchJob,
    TransferDescriptor,
)
from .polling import PollPolicy
from .query_builder import build_query, build_search_name, resolve_start_date
from .search import SearchCoordinator
from .transfer import TransferLauncher

logger = logging.getLogger(__name__)

PARAMETERS_FILENAME = "parameters.txt"


class PipelineOrchestrator:
    """Run the harvest stages in order, aborting on the first failure."""

    def __init__(
        self,
        settings: Settings,
        client: ComplianceClient | None = None,
        launcher: TransferLauncher | None = None,
        outlook: OutlookSession | None = None,
        policy: PollPolicy | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self._client = client
        self.policy = policy or PollPolicy(
            interval=settings.poll_interval_seconds, timeout=settings.poll_timeout_seconds
        )
        self.launcher = launcher or TransferLauncher(
            settings.transfer_tool_path,
            archive_extension=settings.archive_extension,
            policy=replace(self.policy, interval=settings.transfer_poll_interval_seconds),
        )
        self._outlook = outlook
        self.clock = clock

    @property
    def client(self) -> ComplianceClient:
        if self._client is None:
            self._client = ComplianceClient(self.settings)
        return self._client

    @property
    def outlook(self) -> OutlookSession:
        if self._outlook is None:
            self._outlook = OutlookSession(
                settle_seconds=self.settings.mount_settle_seconds,
                quit_on_close=self.settings.outlook_quit_on_close,
            )
        return self._outlook

    # Validation ---------------------------------------------------------

    def validate(self, options: PipelineOptions) -> None:
        if not options.skip_search:
            resolve_start_date(options.start_date, options.days, options.today)
            if not (options.mailbox or self.settings.mailbox):
                raise QueryValidationError("A mailbox is required to run a search.")
        elif not options.search_name:
            raise QueryValidationError("A search name is required when the search stage is skipped.")
        if options.naming_mode not in ("subject", "attachment"):
            raise QueryValidationError(f"Unknown naming mode '{options.naming_mode}'.")

    # Run ----------------------------------------------------------------

    def run(self, options: PipelineOptions) -> PipelineReport:
        self.validate(options)
        mailbox = options.mailbox or self.settings.mailbox
        query = None
        if not options.skip_search:
            query = build_query(
                options.start_date, options.days, options.subject, options.sender, options.today
            )
        search_name = options.search_name or build_search_name(
            mailbox, options.subject, options.sender, self.clock()
        )

        base_dir = Path(options.base_dir or self.settings.base_dir)
        report = PipelineReport(search_name=search_name, job_dir=base_dir / search_name, query=query)

        try:
            if not options.skip_search:
                job = self._stage(
                    "search", search_name, report, lambda: self._run_search(search_name, query, mailbox)
                )
                report.search_name = job.name
                report.job_dir = base_dir / job.name

            report.job_dir.mkdir(parents=True, exist_ok=True)
            self.write_parameters(report.job_dir, options, report)

            if not options.skip_export:
                report.descriptor = self._stage(
                    "export", report.search_name, report, lambda: self._run_export(report.search_name)
                )

            if not options.skip_download:
                if report.descriptor is None:
                    report.descriptor = self._stage(
                        "export",
                        report.search_name,
                        report,
                        lambda: self._resume_export(report.search_name),
                    )
                report.archives = self._stage(
                    "download",
                    report.search_name,
                    report,
                    lambda: self.launcher.download(report.search_name, report.descriptor, report.job_dir),
                )
            elif not options.skip_extract:
                report.archives = self.launcher.collect_existing(report.job_dir, report.search_name)

            if not options.skip_extract:
                self._run_extraction(options, report)

            if options.remove_search and not options.skip_search:
                self._stage(
                    "cleanup",
                    report.search_name,
                    report,
                    lambda: self.search_coordinator().remove_search(report.search_name),
                )
        finally:
            if self._outlook is not None:
                self._outlook.close()

        logger.info(
            "Run complete for '%s': archives=%s extracted=%s failed=%s",
            report.search_name,
            len(report.archives),
            report.extraction.extracted,
            len(report.extraction.failures),
        )
        return report

    def search_coordinator(self) -> SearchCoordinator:
        return SearchCoordinator(self.client, self.policy)

    def export_coordinator(self) -> ExportCoordinator:
        return ExportCoordinator(self.client, self.policy)

    def _stage(self, stage: str, name: str, report: PipelineReport, action):
        logger.info("Stage %s started for '%s'", stage, name)
        try:
            result = action()
        except StageError:
            raise
        except Exception as exc:
            # requests and COM errors are wrapped too
            raise StageError(stage, name, exc) from exc
        report.stages_run.append(stage)
        return result

    def _run_search(self, name: str, query: str, mailbox: str | None) -> SearchJob:
        coordinator = self.search_coordinator()
        job = coordinator.start_or_reuse_search(name, query, mailbox)
        return coordinator.wait_for_completion(job)

    def _run_export(self, search_name: str) -> TransferDescriptor:
        coordinator = self.export_coordinator()
        export = coordinator.request_export(SearchJob(name=search_name, query="", mailbox=None))
        return coordinator.wait_for_transfer_descriptor(export)

    def _resume_export(self, search_name: str) -> TransferDescriptor:
        return self.export_coordinator().wait_for_transfer_descriptor(ExportJob(search_name=search_name))

    def _run_extraction(self, options: PipelineOptions, report: PipelineReport) -> None:
        manifest = (
            ExtractionManifest.in_directory(report.job_dir) if self.settings.write_manifest else None
        )
        extensions = options.extensions or self.settings.extension_filter
        if not report.archives:
            logger.warning("No %s archives found in %s", self.settings.archive_extension, report.job_dir)
        for archive in report.archives:
            walker = self._walker(options, report.job_dir, extensions, manifest, archive)

            def extract_one(archive: DownloadedArchive = archive, walker=walker):
                with self.outlook.mounted(archive.path) as root:
                    return walker.extract(root)

            result = self._stage("extract", archive.path.name, report, extract_one)
            report.extraction.merge(result)
        if manifest is not None:
            logger.info("Manifest %s now lists %s file(s)", manifest.db_path, manifest.count())

    def _walker(
        self,
        options: PipelineOptions,
        output_dir: Path,
        extensions: list[str],
        manifest: ExtractionManifest | None,
        archive: DownloadedArchive,
    ) -> AttachmentExtractor | MessageExporter:
        if options.extract_messages:
            return MessageExporter(
                output_dir,
                trash_folder_name=self.settings.trash_folder_name,
                on_error=self.settings.on_extraction_error,
                manifest=manifest,
                archive_name=archive.path.name,
            )
        return AttachmentExtractor(
            output_dir,
            extension_filter=ExtensionFilter(extensions),
            naming_mode=options.naming_mode,
            on_error=self.settings.on_extraction_error,
            manifest=manifest,
            archive_name=archive.path.name,
        )

    def write_parameters(self, job_dir: Path, options: PipelineOptions, report: PipelineReport) -> Path:
        """Snapshot the run parameters next to the output."""
        lines = [
            f"SearchName: {report.search_name}",
            f"Mailbox: {options.mailbox or self.settings.mailbox or ''}",
            f"StartDate: {options.start_date or ''}",
            f"Days: {options.days if options.days is not None else ''}",
            f"Subject: {options.subject or ''}",
            f"Sender: {options.sender or ''}",
            f"Query: {report.query or ''}",
            f"Extensions: {', '.join(options.extensions or self.settings.extension_filter)}",
            f"NamingMode: {options.naming_mode}",
            f"ExtractMessages: {options.extract_messages}",
            f"SkipSearch: {options.skip_search}",
            f"SkipExport: {options.skip_export}",
            f"SkipDownload: {options.skip_download}",
            f"SkipExtract: {options.skip_extract}",
            f"StartedAt: {self.clock().isoformat(timespec='seconds')}",
        ]
        path = job_dir / PARAMETERS_FILENAME
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path
