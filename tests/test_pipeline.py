from __future__ import annotations

import logging
from datetime import date, datetime

import pytest

from harvester.archive import OutlookSession
from harvester.errors import ExtractionError, QueryValidationError, StageError
from harvester.models import PipelineOptions
from harvester.pipeline import PARAMETERS_FILENAME, PipelineOrchestrator
from harvester.polling import PollPolicy
from harvester.transfer import TransferLauncher

from helpers import (
    ComAttachment,
    ComFolder,
    ComMail,
    FakeNamespace,
    FakeOutlookApplication,
    FakeProcess,
)

JOB = "20240101_Export-Job"
RESULTS = "Container url: https://x/y; SAS token: ?sv=2020&sig=abc; Scope: IndexedItemsOnly;"
RECEIVED = datetime(2024, 1, 2, 10, 15)


def _archive_tree(*attachments: ComAttachment) -> ComFolder:
    inbox = ComFolder("Inbox", items=[ComMail("Budget Report", RECEIVED, attachments)])
    return ComFolder("Top of Personal Folders", folders=[inbox])


def make_orchestrator(
    settings, fake_client, instant_policy, roots=None, produces=("report.pst",), namespace=None
):
    settings.transfer_tool_path.write_text("")
    spawned: list[FakeProcess] = []

    def popen(command, **_kwargs):
        spawned.append(FakeProcess(command, list(produces)))
        return spawned[-1]

    launcher = TransferLauncher(
        settings.transfer_tool_path, policy=PollPolicy(sleep=lambda _s: None), popen=popen
    )
    namespace = namespace or FakeNamespace(roots or {})
    outlook = OutlookSession(
        settle_seconds=0,
        dispatch=lambda: FakeOutlookApplication(namespace),
        sleep=lambda _s: None,
    )
    orchestrator = PipelineOrchestrator(
        settings,
        client=fake_client,
        launcher=launcher,
        outlook=outlook,
        policy=instant_policy,
        clock=lambda: datetime(2024, 1, 1, 8, 0),
    )
    return orchestrator, namespace, spawned


def test_end_to_end_run(settings, fake_client, instant_policy, caplog) -> None:
    caplog.set_level(logging.INFO, logger="harvester.pipeline")
    job_dir = settings.base_dir / JOB
    archive = job_dir / f"{JOB}-report.pst"
    roots = {str(archive): _archive_tree(ComAttachment("budget.pdf"), ComAttachment("notes.txt"))}
    orchestrator, namespace, spawned = make_orchestrator(settings, fake_client, instant_policy, roots)
    fake_client.search_statuses[JOB] = ["Running", "Completed"]
    fake_client.exports[f"{JOB}_Export"] = [
        {"Status": "Running", "Results": ""},
        {"Status": "Completed", "Results": RESULTS},
    ]

    report = orchestrator.run(
        PipelineOptions(
            search_name=JOB,
            start_date="2024-01-01",
            extensions=[".pdf"],
            today=date(2024, 1, 1),
        )
    )

    assert report.stages_run == ["search", "export", "download", "extract"]
    assert report.query == "(Received>=2024-01-01)"
    assert report.descriptor.credential_token == "?sv=2020&sig=abc"
    assert [a.path for a in report.archives] == [archive]
    assert archive.exists()
    assert (job_dir / "2024-01-02_1015-Budget_Report.pdf").exists()
    assert report.extraction.extracted == 1
    assert report.extraction.skipped == 1
    assert (job_dir / PARAMETERS_FILENAME).read_text().startswith(f"SearchName: {JOB}\n")
    assert spawned[0].command[spawned[0].command.index("-key") + 1] == "?sv=2020&sig=abc"
    assert namespace.stores == []
    assert "now lists 1 file(s)" in caplog.text


def test_reused_search_names_the_job_directory(settings, fake_client, instant_policy) -> None:
    query = "(Received>=2023-12-30)"
    fake_client.searches["earlier"] = {"Name": "earlier", "ContentMatchQuery": query, "Status": "Completed"}
    orchestrator, _namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy)

    report = orchestrator.run(
        PipelineOptions(today=date(2024, 1, 1), skip_export=True, skip_download=True, skip_extract=True)
    )

    assert report.search_name == "earlier"
    assert report.job_dir == settings.base_dir / "earlier"
    assert (report.job_dir / PARAMETERS_FILENAME).exists()


def test_conflicting_dates_fail_before_remote_calls(settings, fake_client, instant_policy) -> None:
    orchestrator, _namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy)

    with pytest.raises(QueryValidationError):
        orchestrator.run(PipelineOptions(start_date="2024-01-01", days="3"))
    assert fake_client.calls == []


def test_mailbox_required_for_search(settings, fake_client, instant_policy) -> None:
    settings = settings.model_copy(update={"mailbox": None})
    orchestrator, _namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy)

    with pytest.raises(QueryValidationError):
        orchestrator.run(PipelineOptions())
    assert fake_client.calls == []


def test_skipping_search_requires_a_name(settings, fake_client, instant_policy) -> None:
    orchestrator, _namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy)

    with pytest.raises(QueryValidationError):
        orchestrator.run(PipelineOptions(skip_search=True))


def test_extract_only_uses_archives_on_disk(settings, fake_client, instant_policy) -> None:
    job_dir = settings.base_dir / JOB
    job_dir.mkdir(parents=True)
    (job_dir / "report.pst").write_bytes(b"pst")
    archive = job_dir / f"{JOB}-report.pst"
    roots = {str(archive): _archive_tree(ComAttachment("budget.pdf"))}
    orchestrator, _namespace, spawned = make_orchestrator(settings, fake_client, instant_policy, roots)

    report = orchestrator.run(
        PipelineOptions(search_name=JOB, skip_search=True, skip_export=True, skip_download=True)
    )

    assert fake_client.calls == []
    assert spawned == []
    assert report.stages_run == ["extract"]
    assert (job_dir / "2024-01-02_1015-Budget_Report.pdf").exists()


def test_skip_export_reads_existing_export(settings, fake_client, instant_policy) -> None:
    fake_client.exports[f"{JOB}_Export"] = [{"Status": "Completed", "Results": RESULTS}]
    orchestrator, _namespace, spawned = make_orchestrator(settings, fake_client, instant_policy)

    report = orchestrator.run(
        PipelineOptions(search_name=JOB, skip_search=True, skip_export=True, skip_extract=True)
    )

    assert ("export", JOB) not in fake_client.calls
    assert report.stages_run == ["export", "download"]
    assert len(spawned) == 1


def test_extraction_failure_names_archive_and_unmounts(settings, fake_client, instant_policy) -> None:
    job_dir = settings.base_dir / JOB
    job_dir.mkdir(parents=True)
    archive = job_dir / f"{JOB}-report.pst"
    archive.write_bytes(b"pst")
    roots = {str(archive): _archive_tree(ComAttachment("budget.pdf", fail=True))}
    orchestrator, namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy, roots)

    with pytest.raises(StageError) as excinfo:
        orchestrator.run(
            PipelineOptions(search_name=JOB, skip_search=True, skip_export=True, skip_download=True)
        )

    assert excinfo.value.stage == "extract"
    assert excinfo.value.name == archive.name
    assert namespace.stores == []


def test_unmount_failure_keeps_the_extraction_error(settings, fake_client, instant_policy) -> None:
    job_dir = settings.base_dir / JOB
    job_dir.mkdir(parents=True)
    archive = job_dir / f"{JOB}-report.pst"
    archive.write_bytes(b"pst")
    namespace = FakeNamespace(
        {str(archive): _archive_tree(ComAttachment("budget.pdf", fail=True))}, fail_remove=True
    )
    orchestrator, _namespace, _spawned = make_orchestrator(
        settings, fake_client, instant_policy, namespace=namespace
    )

    with pytest.raises(StageError) as excinfo:
        orchestrator.run(
            PipelineOptions(search_name=JOB, skip_search=True, skip_export=True, skip_download=True)
        )

    assert isinstance(excinfo.value.cause, ExtractionError)
    assert excinfo.value.cause.source_name == "budget.pdf"


def test_remove_search_after_run(settings, fake_client, instant_policy) -> None:
    fake_client.search_statuses[JOB] = ["Completed"]
    orchestrator, _namespace, _spawned = make_orchestrator(settings, fake_client, instant_policy)

    orchestrator.run(
        PipelineOptions(
            search_name=JOB,
            today=date(2024, 1, 1),
            skip_export=True,
            skip_download=True,
            skip_extract=True,
            remove_search=True,
        )
    )

    assert ("remove", JOB) in fake_client.calls
