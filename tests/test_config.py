from __future__ import annotations

from pathlib import Path

import allure
import pytest

from call_recap.config import RetrySettings, Settings, StorageSettings

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Configuration"),
]


def test_defaults_keep_network_off() -> None:
    settings = Settings.from_env()

    assert settings.gate.dry_run is False
    assert settings.gate.allow_network is False
    assert settings.storage.backend == "sqlite"
    assert settings.storage.events_path == Path("logs") / "ingest.log"
    assert settings.retry.max_retries == 2
    assert settings.retry.base_delay_ms == 50
    assert settings.notifications.recipient is None
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CALL_RECAP_DRY_RUN", "yes")
    monkeypatch.setenv("CALL_RECAP_ALLOW_NETWORK", "1")
    monkeypatch.setenv("CALL_RECAP_STORE_BACKEND", " Memory ")
    monkeypatch.setenv("CALL_RECAP_RETRY_MAX_RETRIES", "4")
    monkeypatch.setenv("CALL_RECAP_RETRY_BASE_MS", "10")
    monkeypatch.setenv("CALL_RECAP_SLACK_WEBHOOK_URL", "mock:slack")
    monkeypatch.setenv("CALL_RECAP_NOTIFY_EMAIL", "ops@example.com")
    monkeypatch.setenv("CALL_RECAP_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    settings = Settings.from_env(db_path=tmp_path / "override.db")

    assert settings.gate.dry_run is True
    assert settings.gate.allow_network is True
    assert settings.storage.backend == "memory"
    assert settings.storage.db_path == tmp_path / "override.db"
    assert settings.storage.events_path == tmp_path / "logs" / "ingest.log"
    assert settings.retry.max_retries == 4
    assert settings.delivery.slack_webhook_url == "mock:slack"
    assert settings.notifications.recipient == "ops@example.com"
    assert settings.openai.api_key == "sk-test"


def test_prefixed_api_key_wins(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-generic")
    monkeypatch.setenv("CALL_RECAP_OPENAI_API_KEY", "sk-specific")

    assert Settings.from_env().openai.api_key == "sk-specific"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("CALL_RECAP_DRY_RUN", "maybe")

    with pytest.raises(ValueError, match="CALL_RECAP_DRY_RUN"):
        Settings.from_env()


def test_blank_optional_values_become_none(monkeypatch) -> None:
    monkeypatch.setenv("CALL_RECAP_SLACK_WEBHOOK_URL", "   ")

    assert Settings.from_env().delivery.slack_webhook_url is None


@pytest.mark.parametrize(
    ("settings", "match"),
    [
        (Settings(storage=StorageSettings(backend="postgres")), "CALL_RECAP_STORE_BACKEND"),
        (Settings(storage=StorageSettings(busy_timeout_ms=0)), "BUSY_TIMEOUT"),
        (Settings(retry=RetrySettings(max_retries=-1)), "Retry counts"),
        (Settings(retry=RetrySettings(delivery_base_delay_ms=-1)), "base delays"),
        (Settings(retry=RetrySettings(backoff_factor=-0.5)), "RETRY_FACTOR"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        settings.validate()


def test_policy_for_uses_delivery_budget_for_delivery_stage() -> None:
    retry = RetrySettings(
        max_retries=2,
        base_delay_ms=50,
        delivery_max_retries=3,
        delivery_base_delay_ms=100,
    )

    stage_policy = retry.policy_for("transcribe")
    delivery_policy = retry.policy_for("deliver_summary")

    assert (stage_policy.max_retries, stage_policy.base_delay_ms) == (2, 50)
    assert (delivery_policy.max_retries, delivery_policy.base_delay_ms) == (3, 100)
