"""Request exports of completed searches and recover their download credentials."""

from __future__ import annotations

import logging
import re

import requests

from .compliance_client import ComplianceClient
from .errors import RemoteJobFailedError
from .models import ExportJob, JobStatus, SearchJob, TransferDescriptor
from .polling import PollPolicy, poll_until

logger = logging.getLogger(__name__)

CONTAINER_MARKER = "Container url: "
TOKEN_MARKER = "SAS token: "

_CONTAINER_RE = re.compile(re.escape(CONTAINER_MARKER) + r"([^;]*);")
_TOKEN_RE = re.compile(re.escape(TOKEN_MARKER) + r"([^;]*);")


def parse_transfer_descriptor(results: str | None) -> TransferDescriptor | None:
    """Pull the container URL and SAS token out of an export results blob.

    Returns None until both markers are present with non-empty values.
    """
    if not results:
        return None
    container = _CONTAINER_RE.search(results)
    token = _TOKEN_RE.search(results)
    if not container or not token:
        return None
    location = container.group(1).strip()
    credential = token.group(1).strip()
    if not location or not credential:
        return None
    return TransferDescriptor(location_uri=location, credential_token=credential)


class ExportCoordinator:
    """Drive a search export through to a usable TransferDescriptor."""

    def __init__(self, client: ComplianceClient, policy: PollPolicy | None = None) -> None:
        self.client = client
        self.policy = policy or PollPolicy()

    def request_export(self, job: SearchJob) -> ExportJob:
        export = ExportJob(search_name=job.name)
        logger.info("Requesting export '%s' for search '%s'", export.name, job.name)
        self.client.create_export(job.name)
        return export

    def refresh(self, export: ExportJob) -> bool:
        """Re-read status and results; False when the service was unreachable."""
        try:
            row = self.client.get_export(export.name)
        except requests.RequestException as exc:
            logger.warning("Status check for export '%s' failed, will retry: %s", export.name, exc)
            return False
        if row is None:
            return False
        export.status = JobStatus.parse(row.get("Status"))
        export.results = row.get("Results") or ""
        return True

    def wait_for_transfer_descriptor(
        self, export: ExportJob, policy: PollPolicy | None = None
    ) -> TransferDescriptor:
        """Poll until the export completes and its results carry credentials.

        Both conditions share one deadline from ``policy``.
        """
        policy = policy or self.policy

        def ready() -> TransferDescriptor | None:
            if export.status is not JobStatus.COMPLETED:
                if not self.refresh(export):
                    return None
                if export.status is JobStatus.FAILED:
                    raise RemoteJobFailedError(export.name, export.status.value)
                logger.info("Export '%s' status: %s", export.name, export.status.value)
                if export.status is not JobStatus.COMPLETED:
                    return None
            parsed = parse_transfer_descriptor(export.results)
            if parsed is None:
                logger.info("Export '%s' results do not carry a SAS token yet", export.name)
                self.refresh(export)
                parsed = parse_transfer_descriptor(export.results)
            return parsed

        found = poll_until(ready, policy, f"transfer credentials of '{export.name}'")
        logger.info("Export '%s' ready at %s", export.name, found.location_uri)
        return found
