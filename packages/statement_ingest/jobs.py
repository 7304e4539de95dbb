"""Parse job lifecycle: upload → detection → extraction → normalization.

A :class:`ParseJob` is created when an upload passes the pre-parse gate and
is processed to completion synchronously. Its status only moves forward::

    pending → processing → completed
                         ↘ failed

Jobs keep the full list of parsed transactions; the review payload returned
by :meth:`ParseJob.to_response` carries a preview truncated to the configured
limit (``hasMore`` tells the UI that more rows exist).
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import PurePath
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from .config import IngestSettings
from .detect import validate_upload
from .errors import CorruptFile, UploadRejected
from .events import EventLog
from .ingest.utils import StatementRows, attach_statement_balance
from .logging_setup import get_logger, job_logger
from .models import FileFormat, ParsedTransaction
from .normalizers import normalize_rows

_logger = get_logger("statement_ingest.jobs")

JobStatus: TypeAlias = Literal["pending", "processing", "completed", "failed"]

_STATUS_ORDER: dict[str, int] = {"pending": 0, "processing": 1, "completed": 2, "failed": 2}


# ---------------------------------------------------------------------------
# Job records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UploadInfo:
    filename: str
    original_name: str
    file_size: int
    mime_type: str | None
    detected_format: FileFormat


@dataclass(slots=True)
class PreviewData:
    transactions: list[ParsedTransaction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


@dataclass(slots=True)
class ParseJob:
    """State of one statement parse. Mutated only by the job runner."""

    id: str
    upload: UploadInfo
    status: JobStatus = "pending"
    progress: int = 0
    total_transactions: int = 0
    parsed_transactions: int = 0
    preview_data: PreviewData = field(default_factory=PreviewData)
    transactions: list[ParsedTransaction] = field(default_factory=list)
    error_message: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def _advance(self, status: JobStatus, progress: int) -> None:
        if _STATUS_ORDER[status] < _STATUS_ORDER[self.status] or self.status in (
            "completed",
            "failed",
        ):
            raise ValueError(f"job {self.id}: cannot move from {self.status} to {status}")
        self.status = status
        self.progress = max(self.progress, min(progress, 100))

    def start(self) -> None:
        self._advance("processing", 10)

    def update_progress(self, progress: int) -> None:
        if self.status != "processing":
            raise ValueError(f"job {self.id} is not processing")
        self.progress = max(self.progress, min(progress, 99))

    def complete(
        self,
        transactions: list[ParsedTransaction],
        errors: list[str],
        *,
        preview_limit: int,
    ) -> None:
        total = len(transactions)
        shown = transactions if preview_limit == 0 else transactions[:preview_limit]
        self.transactions = list(transactions)
        self.total_transactions = total
        self.parsed_transactions = total
        self.preview_data = PreviewData(
            transactions=list(shown),
            errors=list(errors),
            total_count=total,
            has_more=len(shown) < total,
        )
        self._advance("completed", 100)

    def fail(self, message: str) -> None:
        self.error_message = message
        self._advance("failed", 100)

    def to_response(self) -> dict[str, Any]:
        """Review payload with camelCase keys."""

        return ParseJobResponse.from_job(self).model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Response models (review UI contract)
# ---------------------------------------------------------------------------


class PreviewResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    transactions: list[dict[str, Any]]
    errors: list[str]
    total_count: int = Field(alias="totalCount", ge=0)
    has_more: bool = Field(alias="hasMore")


class ParseJobResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    parse_job_id: str = Field(alias="parseJobId")
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    preview_data: PreviewResponse = Field(alias="previewData")
    total_transactions: int = Field(alias="totalTransactions", ge=0)
    detected_format: str = Field(alias="detectedFormat")
    error_message: str | None = Field(default=None, alias="errorMessage")

    @classmethod
    def from_job(cls, job: ParseJob) -> ParseJobResponse:
        preview = job.preview_data
        return cls(
            parse_job_id=job.id,
            status=job.status,
            progress=job.progress,
            preview_data=PreviewResponse(
                transactions=[t.to_dict() for t in preview.transactions],
                errors=list(preview.errors),
                total_count=preview.total_count,
                has_more=preview.has_more,
            ),
            total_transactions=job.total_transactions,
            detected_format=str(job.upload.detected_format),
            error_message=job.error_message,
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class JobStore:
    """In-memory registry of parse jobs keyed by id. Expiry is up to the host."""

    def __init__(self) -> None:
        self._jobs: dict[str, ParseJob] = {}
        self._lock = threading.Lock()

    def create(self, upload: UploadInfo, *, job_id: str | None = None) -> ParseJob:
        job = ParseJob(id=job_id or str(uuid.uuid4()), upload=upload)
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"duplicate job id: {job.id}")
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> ParseJob:
        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError:
                raise KeyError(f"unknown parse job: {job_id}") from None

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def _stored_name(job_id: str, original_name: str) -> str:
    return f"{job_id}{PurePath(original_name).suffix.lower()}"


def run_parse(
    data: bytes,
    filename: str,
    mime_type: str | None,
    *,
    settings: IngestSettings,
    jobs: JobStore,
    events: EventLog | None = None,
) -> ParseJob:
    """Validate, parse and normalize one upload into a finished job.

    Pre-parse rejections raise before a job exists. A structurally broken file
    marks the job ``failed`` and the :class:`CorruptFile` is re-raised; the job
    stays in ``jobs`` for inspection. Any other error raised while parsing
    also fails the job before it propagates.
    """

    try:
        detected = validate_upload(data, filename, mime_type, max_bytes=settings.max_upload_bytes)
    except UploadRejected as exc:
        _logger.info("upload %r rejected: %s", filename, exc)
        if events is not None:
            events.record("upload_rejected", filename=filename, reason=str(exc))
        raise

    job_id = str(uuid.uuid4())
    upload = UploadInfo(
        filename=_stored_name(job_id, filename),
        original_name=filename,
        file_size=len(data),
        mime_type=mime_type,
        detected_format=detected,
    )
    job = jobs.create(upload, job_id=job_id)
    if events is not None:
        events.record(
            "file_upload", job_id=job.id, filename=filename, size=len(data), format=str(detected)
        )
    log = job_logger(_logger.name, job.id)
    log.info("parsing %r as %s (%d bytes)", filename, detected, len(data))

    job.start()
    rows = StatementRows(detected, data, date_order=settings.date_order)
    try:
        result = normalize_rows(rows, date_order=settings.date_order)
        job.update_progress(80)
        transactions = attach_statement_balance(
            result.transactions, rows.closing_balance, rows.closing_date
        )
        errors = [*rows.warnings, *result.errors]
        job.complete(transactions, errors, preview_limit=settings.preview_limit)
    except CorruptFile as exc:
        job.fail(exc.user_message(debug=settings.debug))
        log.warning("parse failed: %s", exc)
        if events is not None:
            events.record("parse_failed", job_id=job.id, filename=filename, reason=exc.detail)
        raise
    except Exception as exc:
        # Never leave a job stuck in "processing".
        message = "Unexpected error while parsing the file."
        job.fail(f"{message} ({exc})" if settings.debug else message)
        log.exception("parse crashed")
        if events is not None:
            events.record("parse_failed", job_id=job.id, filename=filename, reason=repr(exc))
        raise

    log.info("parse completed: %d transactions, %d errors", len(transactions), len(errors))
    if events is not None:
        events.record(
            "parse_completed",
            job_id=job.id,
            filename=filename,
            transactions=len(transactions),
            errors=len(errors),
        )
    return job


__all__ = [
    "JobStatus",
    "UploadInfo",
    "PreviewData",
    "ParseJob",
    "PreviewResponse",
    "ParseJobResponse",
    "JobStore",
    "run_parse",
]
