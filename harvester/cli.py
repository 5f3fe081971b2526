"""Command-line entry points for the harvester."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from .config import Settings
from .errors import HarvesterError, QueryValidationError, StageError
from .models import PipelineOptions, PipelineReport
from .pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--extension",
        action="append",
        dest="extensions",
        default=[],
        help="Only extract attachments with this suffix (repeatable, e.g. .pdf)",
    )
    parser.add_argument(
        "--naming",
        choices=("subject", "attachment"),
        help="Name extracted files after the mail subject (default) or the attachment",
    )
    parser.add_argument(
        "--messages",
        action="store_true",
        help="Save each message as .msg instead of extracting attachments",
    )
    parser.add_argument("--base-dir", type=Path, help="Root directory for job folders")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search a mailbox, export the hits and extract their attachments."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Search, export, download and extract")
    run.add_argument("--mailbox", help="Mailbox (UPN) to search")
    run.add_argument("--start-date", help="YYYY-MM-DD lower bound for received date")
    run.add_argument("--days", help="Shortcut for '--start-date' expressed as N days ago")
    run.add_argument("--subject", help="Subject substring to search for")
    run.add_argument("--sender", help="Sender substring to search for")
    run.add_argument("--search-name", help="Resume an existing search job by name")
    run.add_argument("--skip-search", action="store_true", help="Reuse --search-name as-is")
    run.add_argument("--skip-export", action="store_true", help="Read credentials of an existing export")
    run.add_argument("--skip-download", action="store_true", help="Extract archives already on disk")
    run.add_argument("--skip-extract", action="store_true", help="Stop after the download")
    run.add_argument("--remove-search", action="store_true", help="Delete the search job when done")
    _add_filter_arguments(run)

    extract = subparsers.add_parser("extract", help="Extract archives of an earlier run")
    extract.add_argument("search_name", help="Job folder name under the base directory")
    _add_filter_arguments(extract)

    remove = subparsers.add_parser("remove-search", help="Delete a search job")
    remove.add_argument("search_name")

    return parser


def _options_from_args(args: argparse.Namespace, settings: Settings) -> PipelineOptions:
    return PipelineOptions(
        mailbox=getattr(args, "mailbox", None),
        start_date=getattr(args, "start_date", None),
        days=getattr(args, "days", None),
        subject=getattr(args, "subject", None),
        sender=getattr(args, "sender", None),
        extensions=args.extensions,
        base_dir=args.base_dir,
        search_name=args.search_name,
        naming_mode=args.naming or settings.naming_mode,
        extract_messages=args.messages,
        skip_search=getattr(args, "skip_search", False),
        skip_export=getattr(args, "skip_export", False),
        skip_download=getattr(args, "skip_download", False),
        skip_extract=getattr(args, "skip_extract", False),
        remove_search=getattr(args, "remove_search", False),
    )


def _log_report(report: PipelineReport) -> None:
    logging.info(
        "Job '%s' in %s: stages=%s extracted=%s skipped=%s failed=%s",
        report.search_name,
        report.job_dir,
        ",".join(report.stages_run) or "-",
        report.extraction.extracted,
        report.extraction.skipped,
        len(report.extraction.failures),
    )
    for failure in report.extraction.failures:
        logging.warning(
            "Not extracted: '%s' in %s (%s)", failure.source_name, failure.folder_path, failure.error
        )


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    report = PipelineOrchestrator(settings).run(_options_from_args(args, settings))
    _log_report(report)
    return 1 if report.extraction.failures else 0


def cmd_extract(args: argparse.Namespace, settings: Settings) -> int:
    options = _options_from_args(args, settings)
    options.skip_search = options.skip_export = options.skip_download = True
    report = PipelineOrchestrator(settings).run(options)
    _log_report(report)
    return 1 if report.extraction.failures else 0


def cmd_remove_search(args: argparse.Namespace, settings: Settings) -> int:
    PipelineOrchestrator(settings).search_coordinator().remove_search(args.search_name)
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, Settings], int]] = {
    "run": cmd_run,
    "extract": cmd_extract,
    "remove-search": cmd_remove_search,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(settings.log_level)

    try:
        return COMMANDS[args.command](args, settings)
    except QueryValidationError as exc:
        parser.error(str(exc))
    except StageError as exc:
        logging.error("Stage '%s' aborted while working on '%s': %s", exc.stage, exc.name, exc.cause)
        return 2
    except HarvesterError as exc:
        logging.error("%s", exc)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
