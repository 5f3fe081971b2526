from __future__ import annotations

import pytest

from harvester.config import Settings
from harvester.polling import PollPolicy

from helpers import FakeComplianceClient


@pytest.fixture
def fake_client() -> FakeComplianceClient:
    return FakeComplianceClient()


@pytest.fixture
def instant_policy() -> PollPolicy:
    sleeps: list[float] = []
    policy = PollPolicy(interval=5.0, sleep=sleeps.append)
    policy.sleeps = sleeps
    return policy


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        HARVEST_BASE_DIR=str(tmp_path / "exports"),
        HARVEST_MAILBOX="alice@example.test",
        TRANSFER_TOOL_PATH=str(tmp_path / "tool.exe"),
        OUTLOOK_MOUNT_SETTLE_SECONDS="0",
    )
