from __future__ import annotations

from decimal import Decimal

import pytest

import statement_ingest.ingest.adapters.pdf as pdf_mod
import statement_ingest.jobs as jobs_mod
from statement_ingest.api import parse_statement
from statement_ingest.config import IngestSettings
from statement_ingest.errors import CorruptFile, EmptyFile, FileTooLarge, UnsupportedFormat
from statement_ingest.events import EventLog
from statement_ingest.jobs import JobStore, ParseJob, UploadInfo
from statement_ingest.models import FileFormat
from tests.helpers.builders import dedent_bytes, ofx_sgml

CSV = dedent_bytes(
    """
    Date,Description,Amount
    01/02/2024,COFFEE SHOP,-4.50
    01/03/2024,PAYROLL ACME,1200.00
    01/04/2024,GROCERY MART,-54.20
    not a date,BROKEN ROW,-1.00
    """
)


def _upload() -> UploadInfo:
    return UploadInfo(
        filename="x.csv",
        original_name="x.csv",
        file_size=1,
        mime_type=None,
        detected_format=FileFormat.CSV,
    )


def test_csv_parse_builds_review_payload() -> None:
    jobs = JobStore()
    events = EventLog()
    job = parse_statement(CSV, "January.CSV", "text/csv", jobs=jobs, events=events)

    assert job.status == "completed"
    assert job.progress == 100
    assert jobs.get(job.id) is job
    assert job.upload.filename == f"{job.id}.csv"
    assert job.upload.original_name == "January.CSV"

    payload = job.to_response()
    assert set(payload) == {
        "parseJobId",
        "status",
        "progress",
        "previewData",
        "totalTransactions",
        "detectedFormat",
    }
    assert payload["parseJobId"] == job.id
    assert payload["detectedFormat"] == "csv"
    assert payload["totalTransactions"] == 3
    preview = payload["previewData"]
    assert preview["totalCount"] == 3
    assert preview["hasMore"] is False
    assert [t["amount"] for t in preview["transactions"]] == ["-4.50", "1200.00", "-54.20"]
    assert len(preview["errors"]) == 1
    assert preview["errors"][0].startswith("line 5:")

    assert [e.kind for e in events.recent()] == ["parse_completed", "file_upload"]


def test_preview_is_truncated_but_job_keeps_everything() -> None:
    job = parse_statement(CSV, "s.csv", settings=IngestSettings(preview_limit=2))
    preview = job.to_response()["previewData"]
    assert len(preview["transactions"]) == 2
    assert preview["hasMore"] is True
    assert preview["totalCount"] == 3
    assert len(job.transactions) == 3


def test_preview_limit_zero_means_everything() -> None:
    job = parse_statement(CSV, "s.csv", settings=IngestSettings(preview_limit=0))
    assert len(job.preview_data.transactions) == 3
    assert job.preview_data.has_more is False


def test_dmy_setting_applies_to_whole_file() -> None:
    data = dedent_bytes(
        """
        Date,Description,Amount
        03/02/2024,RENT,-900.00
        """
    )
    job = parse_statement(data, "s.csv", settings=IngestSettings(date_order="DMY"))
    assert job.transactions[0].date == "2024-02-03"


def test_ofx_ledger_balance_lands_on_latest_transaction() -> None:
    data = ofx_sgml(
        [
            {"TRNTYPE": "DEBIT", "DTPOSTED": "20240105", "TRNAMT": "-20.00", "NAME": "COFFEE"},
            {"TRNTYPE": "CREDIT", "DTPOSTED": "20240110", "TRNAMT": "1500.00", "NAME": "PAY"},
        ],
        ledger=("1480.00", "20240131"),
    )
    job = parse_statement(data, "bank.ofx")
    assert job.upload.detected_format is FileFormat.OFX
    assert [t.balance for t in job.transactions] == [None, Decimal("1480.00")]


def test_pdf_without_text_completes_with_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(pdf_mod, "pdf_text_lines", lambda data: [])
    job = parse_statement(b"%PDF-1.4 scanned", "scan.pdf", "application/pdf")
    assert job.status == "completed"
    assert job.total_transactions == 0
    assert job.preview_data.errors == [pdf_mod.NO_TEXT_ERROR]


def test_corrupt_file_fails_job_and_keeps_it() -> None:
    jobs = JobStore()
    events = EventLog()
    with pytest.raises(CorruptFile):
        parse_statement(b"Date,Amount\n\x00\x01\x02", "bad.csv", jobs=jobs, events=events)

    assert len(jobs) == 1
    (failed,) = events.by_kind("parse_failed")
    job = jobs.get(failed.details["job_id"])
    assert job.status == "failed"
    payload = job.to_response()
    assert payload["errorMessage"] == "The csv file appears to be damaged or is not a valid csv file."
    assert "binary" not in payload["errorMessage"]


def test_corrupt_file_message_includes_detail_in_debug() -> None:
    jobs = JobStore()
    with pytest.raises(CorruptFile):
        parse_statement(
            b"\x00\x00", "bad.csv", settings=IngestSettings(debug=True), jobs=jobs, events=None
        )
    assert len(jobs) == 1


def test_oversized_amount_is_a_row_error_not_a_crash() -> None:
    data = dedent_bytes(
        """
        Date,Description,Amount
        01/02/2024,COFFEE SHOP,-4.50
        01/03/2024,WEIRD,1e30
        01/04/2024,GROCERY MART,-54.20
        """
    )
    job = parse_statement(data, "s.csv")
    assert job.status == "completed"
    assert [t.description for t in job.transactions] == ["COFFEE SHOP", "GROCERY MART"]
    assert len(job.preview_data.errors) == 1
    assert job.preview_data.errors[0].startswith("line 3:")


def test_unexpected_error_fails_job_instead_of_leaving_it_processing(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def explode(rows, *, date_order):
        raise RuntimeError("decoder blew up")

    monkeypatch.setattr(jobs_mod, "normalize_rows", explode)
    jobs = JobStore()
    events = EventLog()
    with pytest.raises(RuntimeError):
        parse_statement(CSV, "s.csv", jobs=jobs, events=events)

    (failed,) = events.by_kind("parse_failed")
    job = jobs.get(failed.details["job_id"])
    assert job.status == "failed"
    assert job.progress == 100
    assert job.error_message == "Unexpected error while parsing the file."
    assert "decoder blew up" in failed.details["reason"]


@pytest.mark.parametrize(
    ("data", "filename", "settings", "expected"),
    [
        (b"", "a.csv", IngestSettings(), EmptyFile),
        (b"x" * 11, "a.csv", IngestSettings(max_upload_bytes=10), FileTooLarge),
        (b"hello", "notes.txt", IngestSettings(), UnsupportedFormat),
    ],
)
def test_rejections_create_no_job(data, filename, settings, expected) -> None:
    jobs = JobStore()
    events = EventLog()
    with pytest.raises(expected):
        parse_statement(data, filename, settings=settings, jobs=jobs, events=events)
    assert len(jobs) == 0
    assert [e.kind for e in events.recent()] == ["upload_rejected"]


def test_size_limit_is_inclusive() -> None:
    data = b"Date,Description,Amount\n"
    job = parse_statement(data, "a.csv", settings=IngestSettings(max_upload_bytes=len(data)))
    assert job.status == "completed"
    assert job.total_transactions == 0


def test_status_only_moves_forward() -> None:
    job = ParseJob(id="j1", upload=_upload())
    with pytest.raises(ValueError):
        job.update_progress(50)
    job.start()
    job.update_progress(50)
    job.update_progress(20)
    assert job.progress == 50
    job.fail("boom")
    with pytest.raises(ValueError):
        job.start()
    with pytest.raises(ValueError):
        job.complete([], [], preview_limit=10)
    assert job.to_response()["errorMessage"] == "boom"


def test_job_store() -> None:
    store = JobStore()
    job = store.create(_upload(), job_id="fixed")
    with pytest.raises(ValueError):
        store.create(_upload(), job_id="fixed")
    assert store.get("fixed") is job
    store.delete("fixed")
    with pytest.raises(KeyError):
        store.get("fixed")


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SI_PREVIEW_LIMIT", "5")
    monkeypatch.setenv("SI_DATE_ORDER", "dmy")
    monkeypatch.setenv("SI_DEBUG", "yes")
    settings = IngestSettings.from_env()
    assert (settings.preview_limit, settings.date_order, settings.debug) == (5, "DMY", True)

    monkeypatch.setenv("SI_MAX_UPLOAD_BYTES", "lots")
    with pytest.raises(ValueError, match="SI_MAX_UPLOAD_BYTES"):
        IngestSettings.from_env()
