"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Generator

import pytest

from src.core.config import Settings
from src.core.scheduler_tracker import job_tracker


logger = logging.getLogger(__name__)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with instant retries and a two-poll confirmation budget."""
    return Settings(
        _env_file=None,
        docustore_contract_address="xion1contract",
        docustore_lcd_url="http://lcd.test",
        docustore_signer_url="http://signer.test",
        confirmation_attempts=2,
        confirmation_interval_seconds=0,
        remote_retry_attempts=2,
        remote_retry_base_delay=0,
        sqlite_db_path=str(tmp_path / "tendly.db"),
        local_user_id="user1",
        wallet_account_id=None,
        logfire_token=None,
    )


@pytest.fixture(autouse=True)
def reset_job_tracker() -> Generator[None]:
    """Isolate scheduler job history between tests."""
    job_tracker.reset()
    yield
    job_tracker.reset()
