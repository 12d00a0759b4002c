"""CLI entrypoint for call-recap."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from call_recap import __version__
from call_recap.orchestrator.controllers import (
    DbStatusCommand,
    EventsTailCommand,
    FileEventIngestCommand,
    JobInspectCommand,
    JobListCommand,
    JobsCliController,
    JobSubmitCommand,
    PrecallPrepCommand,
    SettingsCommand,
    WebhookIngestCommand,
)
from call_recap.orchestrator.errors import CallRecapError

click.rich_click.USE_MARKDOWN = True
T = TypeVar("T")
JOBS_CONTROLLER = JobsCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="call-recap")
def call_recap() -> None:
    """Call recap CLI."""

    logging.basicConfig(
        level=os.getenv("CALL_RECAP_LOG_LEVEL", "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@call_recap.group()
def jobs() -> None:
    """Job commands."""


@jobs.command("submit")
@DB_PATH_OPTION
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--name", "original_name", default=None, help="Original client-side file name.")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Print the terminal job state instead of the acknowledgement.",
)
def jobs_submit(
    db_path: Path | None,
    file_path: Path,
    original_name: str | None,
    wait: bool,
) -> None:
    """Upload a recording and run the transcription pipeline."""

    result = _guard(
        lambda: JOBS_CONTROLLER.submit(
            JobSubmitCommand(
                db_path=db_path,
                file_path=file_path,
                original_name=original_name,
                wait=wait,
            ),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Job submission failed.")


@jobs.command("list")
@DB_PATH_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Max jobs to list.",
)
def jobs_list(db_path: Path | None, limit: int) -> None:
    """List jobs, newest first."""

    _emit_lines(
        _guard(lambda: JOBS_CONTROLLER.list_jobs(JobListCommand(db_path=db_path, limit=limit))),
    )


@jobs.command("show")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_show(db_path: Path | None, job_id: str) -> None:
    """Show one job as JSON."""

    result = _guard(lambda: JOBS_CONTROLLER.show(JobInspectCommand(db_path=db_path, job_id=job_id)))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(f"Job not found: {job_id}")


@jobs.command("delete")
@DB_PATH_OPTION
@click.argument("job_id")
def jobs_delete(db_path: Path | None, job_id: str) -> None:
    """Delete a job together with its uploaded file and report."""

    _emit_lines(
        _guard(lambda: JOBS_CONTROLLER.delete(JobInspectCommand(db_path=db_path, job_id=job_id))),
    )


@call_recap.group()
def ingest() -> None:
    """Ingestion commands."""


@ingest.command("webhook")
@DB_PATH_OPTION
@click.option("--transcript-url", default=None, help="Transcript URL or `mock:<text>` fixture.")
def ingest_webhook(db_path: Path | None, transcript_url: str | None) -> None:
    """Run the transcript webhook flow end to end."""

    result = _guard(
        lambda: JOBS_CONTROLLER.ingest_webhook(
            WebhookIngestCommand(db_path=db_path, transcript_url=transcript_url),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Webhook ingestion failed.")


@ingest.command("file-event")
@DB_PATH_OPTION
@click.option("--url", default=None, help="File URL or `mock:<text>` fixture.")
@click.option("--name", default=None, help="File name reported by the event.")
@click.option(
    "--tag",
    type=click.Choice(["file", "folder", "deleted"]),
    default="file",
    show_default=True,
    help="Event entry type; only `file` starts a job.",
)
@click.option("--wait/--no-wait", default=True, show_default=True)
def ingest_file_event(
    db_path: Path | None,
    url: str | None,
    name: str | None,
    tag: str,
    wait: bool,
) -> None:
    """Handle one remote storage file event."""

    result = _guard(
        lambda: JOBS_CONTROLLER.ingest_file_event(
            FileEventIngestCommand(db_path=db_path, url=url, name=name, tag=tag, wait=wait),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("File event ingestion failed.")


@call_recap.group()
def precall() -> None:
    """Pre-call preparation commands."""


@precall.command("prep")
@DB_PATH_OPTION
@click.option("--client-name", default=None, help="Who you are meeting. Required.")
@click.option("--company-name", default=None, help="Their company. Required.")
@click.option("--meeting-goal", default=None, help="What the call should achieve. Required.")
@click.option("--role", default=None)
@click.option(
    "--website-url",
    default=None,
    help="Company website, or `mock:<text>` for an offline plan.",
)
@click.option("--linkedin-url", default=None)
@click.option("--notes", default=None)
@click.option("--goal-description", default=None)
@click.option("--offer-name", default=None)
@click.option("--offer-summary", default=None)
@click.option("--desired-outcome", default=None)
@click.option("--send-to-email", default=None, help="Recipient of the plan e-mail.")
def precall_prep(db_path: Path | None, **fields: str | None) -> None:
    """Generate a pre-call plan and e-mail it when enabled."""

    result = _guard(
        lambda: JOBS_CONTROLLER.precall_prep(PrecallPrepCommand(db_path=db_path, fields=fields)),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Pre-call preparation failed.")


@call_recap.command("settings")
@DB_PATH_OPTION
@click.option(
    "--auto-precall-email/--no-auto-precall-email",
    default=None,
    help="E-mail pre-call plans.",
)
@click.option(
    "--auto-postcall-email/--no-auto-postcall-email",
    default=None,
    help="E-mail summaries of finished recording and webhook jobs.",
)
def settings_command(
    db_path: Path | None,
    auto_precall_email: bool | None,
    auto_postcall_email: bool | None,
) -> None:
    """Show notification preferences; flags change them first."""

    _emit_lines(
        _guard(
            lambda: JOBS_CONTROLLER.notification_settings(
                SettingsCommand(
                    db_path=db_path,
                    auto_precall_email=auto_precall_email,
                    auto_postcall_email=auto_postcall_email,
                ),
            ),
        ),
    )


@call_recap.group()
def events() -> None:
    """Ingest event log commands."""


@events.command("tail")
@DB_PATH_OPTION
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="How many latest events to display.",
)
def events_tail(db_path: Path | None, limit: int) -> None:
    """Show the latest ingest events."""

    _emit_lines(
        _guard(
            lambda: JOBS_CONTROLLER.events_tail(EventsTailCommand(db_path=db_path, limit=limit)),
        ),
    )


@call_recap.group()
def db() -> None:
    """Storage commands."""


@db.command("status")
@DB_PATH_OPTION
def db_status(db_path: Path | None) -> None:
    """Migrate the job store and report its schema revision."""

    _emit_lines(_guard(lambda: JOBS_CONTROLLER.db_status(DbStatusCommand(db_path=db_path))))


def _guard(action: Callable[[], T]) -> T:
    try:
        return action()
    except (CallRecapError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    call_recap()
