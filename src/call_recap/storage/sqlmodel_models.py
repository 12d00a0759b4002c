"""SQLModel ORM tables for job and settings storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class JobRow(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_created", "created_at", "seq"),)

    seq: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True)
    status: str = Field(index=True)
    source: str = Field(default="upload")
    input_ref: str | None = None
    original_name: str | None = None
    current_stage: str | None = None
    result_summary: str | None = Field(default=None, sa_column=Column(Text))
    payload_json: str | None = Field(default=None, sa_column=Column(Text))
    error: str | None = Field(default=None, sa_column=Column(Text))
    notification_status: str = Field(default="pending")
    notification_sent_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    notification_error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserSettingsRow(SQLModel, table=True):
    """Single-row table of notification preferences."""

    __tablename__ = "user_settings"  # type: ignore[bad-override]

    id: int = Field(default=1, primary_key=True)
    auto_precall_email: bool = Field(default=True)
    auto_postcall_email: bool = Field(default=True)
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
