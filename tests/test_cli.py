from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from call_recap.main import call_recap

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.setenv("CALL_RECAP_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("CALL_RECAP_UPLOADS_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("CALL_RECAP_ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("CALL_RECAP_SLACK_WEBHOOK_URL", "mock:slack")
    monkeypatch.setenv("CALL_RECAP_RETRY_BASE_MS", "0")
    monkeypatch.setenv("CALL_RECAP_DELIVERY_RETRY_BASE_MS", "0")
    return tmp_path / "cli.db"


def _json_line(output: str) -> dict:
    return json.loads(next(line for line in output.splitlines() if line.startswith("{")))


def test_webhook_then_inspect_and_delete(cli_env: Path) -> None:
    runner = CliRunner()
    db = str(cli_env)

    ingest = runner.invoke(
        call_recap,
        ["ingest", "webhook", "--db-path", db, "--transcript-url", "mock:Quarterly review"],
    )
    assert ingest.exit_code == 0, ingest.output
    assert "HTTP 200" in ingest.output
    response = _json_line(ingest.output)
    assert response["summary"] == "Summary: Quarterly review"
    job_id = response["jobId"]

    listed = runner.invoke(call_recap, ["jobs", "list", "--db-path", db])
    assert listed.exit_code == 0, listed.output
    assert job_id in listed.output
    assert "done" in listed.output

    shown = runner.invoke(call_recap, ["jobs", "show", "--db-path", db, job_id])
    assert shown.exit_code == 0, shown.output
    assert '"status": "done"' in shown.output
    assert '"notification_status": "skipped"' in shown.output

    tail = runner.invoke(call_recap, ["events", "tail", "--db-path", db])
    assert tail.exit_code == 0, tail.output
    assert job_id in tail.output

    deleted = runner.invoke(call_recap, ["jobs", "delete", "--db-path", db, job_id])
    assert deleted.exit_code == 0, deleted.output
    assert f"Job deleted: {job_id}" in deleted.output

    missing = runner.invoke(call_recap, ["jobs", "show", "--db-path", db, job_id])
    assert missing.exit_code != 0
    assert "Job not found" in missing.output


def test_webhook_without_transcript_url_fails(cli_env: Path) -> None:
    result = CliRunner().invoke(call_recap, ["ingest", "webhook", "--db-path", str(cli_env)])

    assert result.exit_code != 0
    assert "HTTP 400" in result.output
    assert _json_line(result.output)["error"] == "invalid_input"


def test_slack_failure_reports_bad_gateway(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("CALL_RECAP_SLACK_WEBHOOK_URL", "mock:fail")

    result = CliRunner().invoke(
        call_recap,
        ["ingest", "webhook", "--db-path", str(cli_env), "--transcript-url", "mock:hi"],
    )

    assert result.exit_code != 0
    assert "HTTP 502" in result.output
    assert _json_line(result.output)["error"] == "slack_post_failed"


def test_folder_file_event_is_skipped(cli_env: Path) -> None:
    result = CliRunner().invoke(
        call_recap,
        [
            "ingest",
            "file-event",
            "--db-path",
            str(cli_env),
            "--url",
            "https://example.com/calls",
            "--tag",
            "folder",
        ],
    )

    assert result.exit_code == 0, result.output
    assert _json_line(result.output) == {"ok": True, "skipped": True}


def test_db_status_reports_head_revision(cli_env: Path) -> None:
    result = CliRunner().invoke(call_recap, ["db", "status", "--db-path", str(cli_env)])

    assert result.exit_code == 0, result.output
    assert "Schema revision: 20261018_0002 (head: 20261018_0002)" in result.output
    assert "Up to date: yes" in result.output
    assert "Jobs: 0" in result.output


def test_empty_listings(cli_env: Path) -> None:
    runner = CliRunner()

    jobs = runner.invoke(call_recap, ["jobs", "list", "--db-path", str(cli_env)])
    events = runner.invoke(call_recap, ["events", "tail", "--db-path", str(cli_env)])

    assert "No jobs found." in jobs.output
    assert "No ingest events recorded." in events.output


def test_invalid_configuration_is_a_click_error(cli_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("CALL_RECAP_DRY_RUN", "sometimes")

    result = CliRunner().invoke(call_recap, ["jobs", "list", "--db-path", str(cli_env)])

    assert result.exit_code == 1
    assert "Invalid boolean value for CALL_RECAP_DRY_RUN" in result.output


def test_precall_prep_with_loopback_website(cli_env: Path) -> None:
    result = CliRunner().invoke(
        call_recap,
        [
            "precall",
            "prep",
            "--db-path",
            str(cli_env),
            "--client-name",
            "Ana",
            "--company-name",
            "Acme",
            "--meeting-goal",
            "Scope a pilot",
            "--website-url",
            "mock:Acme sells garden tools.",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "HTTP 200" in result.output
    response = _json_line(result.output)
    assert response["plan"]["briefing"]["companyOverview"] == "Acme sells garden tools."
    assert response["emailStatus"] == "skipped"


def test_precall_prep_without_required_fields_fails(cli_env: Path) -> None:
    result = CliRunner().invoke(
        call_recap,
        ["precall", "prep", "--db-path", str(cli_env), "--client-name", "Ana"],
    )

    assert result.exit_code != 0
    assert "HTTP 400" in result.output
    assert "Pre-call preparation failed." in result.output


def test_settings_are_changed_and_persisted(cli_env: Path) -> None:
    runner = CliRunner()
    db = str(cli_env)

    changed = runner.invoke(call_recap, ["settings", "--db-path", db, "--no-auto-precall-email"])
    shown = runner.invoke(call_recap, ["settings", "--db-path", db])

    assert changed.exit_code == 0, changed.output
    assert shown.exit_code == 0, shown.output
    assert '"auto_precall_email": false' in shown.output
    assert '"auto_postcall_email": true' in shown.output
