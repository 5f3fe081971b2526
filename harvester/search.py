"""Create, reuse and wait on compliance searches."""

from __future__ import annotations

import logging

import requests

from .compliance_client import ComplianceClient
from .errors import RemoteJobFailedError
from .models import JobStatus, SearchJob
from .polling import PollPolicy, poll_until

logger = logging.getLogger(__name__)


class SearchCoordinator:
    """Start searches (deduplicated by predicate) and poll them to completion."""

    def __init__(self, client: ComplianceClient, policy: PollPolicy | None = None) -> None:
        self.client = client
        self.policy = policy or PollPolicy()

    def find_by_query(self, query: str) -> dict | None:
        for row in self.client.list_searches():
            if (row.get("ContentMatchQuery") or "").strip() == query.strip():
                return row
        return None

    def start_or_reuse_search(self, name: str, query: str, mailbox: str | None) -> SearchJob:
        existing = self.find_by_query(query)
        if existing:
            existing_name = existing["Name"]
            logger.info(
                "Reusing search '%s' with identical query %s; restarting it", existing_name, query
            )
            self.client.start_search(existing_name)
            return SearchJob(
                name=existing_name,
                query=query,
                mailbox=mailbox,
                status=JobStatus.parse(existing.get("Status")),
            )

        logger.info("Creating search '%s' for %s with query %s", name, mailbox or "all mailboxes", query)
        self.client.create_search(name, query, mailbox)
        self.client.start_search(name)
        return SearchJob(name=name, query=query, mailbox=mailbox, status=JobStatus.STARTING)

    def read_status(self, name: str) -> JobStatus | None:
        """Current status, or None when the service could not be reached."""
        try:
            row = self.client.get_search(name)
        except requests.RequestException as exc:
            logger.warning("Status check for search '%s' failed, will retry: %s", name, exc)
            return None
        if row is None:
            return None
        return JobStatus.parse(row.get("Status"))

    def wait_for_completion(self, job: SearchJob, policy: PollPolicy | None = None) -> SearchJob:
        policy = policy or self.policy

        def check() -> JobStatus | None:
            status = self.read_status(job.name)
            if status is None:
                return None
            if status is JobStatus.FAILED:
                raise RemoteJobFailedError(job.name, status.value)
            logger.info("Search '%s' status: %s", job.name, status.value)
            return status if status is JobStatus.COMPLETED else None

        job.status = poll_until(check, policy, f"search '{job.name}'")
        return job

    def remove_search(self, name: str) -> None:
        logger.info("Removing search '%s'", name)
        self.client.remove_search(name)
