import asyncio
import sqlite3
import time
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from handover.db.connection import run_migrations
from handover.errors import ClaimConflict, RecordCreateFailed, TokenRejected, UploadFailed
from handover.models.submission import ClaimStatus, FileCategory, IncomingFile, SubmissionStatus
from handover.models.timestamps import utcnow
from handover.models.token import TokenStatus
from handover.repositories.submission_repository import SubmissionRepository
from handover.repositories.token_repository import TokenRepository
from handover.schemas.submission import Questionnaire
from handover.services.moderation_service import ModerationService
from handover.services.reconciliation_service import ReconciliationService
from handover.services.redemption_service import RedemptionService
from handover.services.submission_saga import SubmissionSaga
from handover.storage.blob_store import LocalBlobStore


def _questionnaire(**overrides) -> Questionnaire:
    data = {
        "position_level": "Senior",
        "department": "Engineering",
        "experience_range": "2-5 years",
        "team_size_range": "6-10",
        "main_responsibilities": ["Run deploys", "Review PRs", "On-call rotation"],
        "essential_tools": ["GitHub", "Slack"],
        "custom_tools": "Grafana",
        "critical_skills": ["Problem Solving"],
        "learning_resources": "Read the runbooks first",
        "common_problems": "Flaky CI",
        "solutions": "Retry once, then bisect",
        "communication_methods": ["Daily standups"],
        "collaboration_tips": "Over-communicate during incidents",
        "handoff_advice": "Pair on the first deploy",
        "final_advice": "Ask questions early",
    }
    data.update(overrides)
    return Questionnaire(**data)


class FlakyBlobStore(LocalBlobStore):
    """Fails on the n-th put."""

    def __init__(self, root: str, fail_on: int) -> None:
        super().__init__(root)
        self.fail_on = fail_on
        self.calls = 0

    def put(self, bucket, name, content):
        self.calls += 1
        if self.calls == self.fail_on:
            raise OSError("storage unavailable")
        super().put(bucket, name, content)


class SlowBlobStore(LocalBlobStore):
    def put(self, bucket, name, content):
        time.sleep(0.5)
        super().put(bucket, name, content)


class RacingBlobStore(LocalBlobStore):
    """Another tab redeems the same code while our files are uploading."""

    def __init__(self, root: str, redemption: RedemptionService, code: str) -> None:
        super().__init__(root)
        self.redemption = redemption
        self.code = code

    def put(self, bucket, name, content):
        self.redemption.claim(self.code)
        super().put(bucket, name, content)


class BrokenSubmissionRepository(SubmissionRepository):
    def insert(self, submission):
        raise sqlite3.OperationalError("database is locked")


class SlowClaimTokenRepository(TokenRepository):
    """The claim lands, but only after the saga has stopped waiting."""

    def claim(self, code, now):
        time.sleep(0.3)
        return super().claim(code, now)


class BrokenClaimTokenRepository(TokenRepository):
    def claim(self, code, now):
        raise sqlite3.OperationalError("disk I/O error")


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "handover.db")
    run_migrations(path)
    return path


@pytest.fixture
def blob_root(tmp_path):
    return str(tmp_path / "blobs")


@pytest.fixture
def redemption(db_path):
    svc = RedemptionService(TokenRepository(db_path))
    svc.issue("admin-1", code="ABC123")
    return svc


@pytest.fixture
def submissions(db_path):
    return SubmissionRepository(db_path)


@pytest.fixture
def enrichment():
    client = AsyncMock()
    client.request_enrichment = AsyncMock(return_value=True)
    return client


def _saga(redemption, submissions, blobs, enrichment, **kwargs) -> SubmissionSaga:
    return SubmissionSaga(redemption, submissions, blobs, enrichment, **kwargs)


def _all_rows(submissions):
    return submissions.list_by_status(None, claimed_only=False)


def _blob_files(blob_root):
    root = Path(blob_root)
    return sorted(p for p in root.rglob("*") if p.is_file()) if root.exists() else []


# Scenario A, service level
@pytest.mark.asyncio
async def test_submit_single_process_file(redemption, submissions, blob_root, enrichment):
    scheduled = []
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)

    receipt = await saga.submit(
        "ABC123",
        _questionnaire(),
        {FileCategory.PROCESS: [IncomingFile("onboarding-sop.pdf", b"%PDF-1.4 steps")]},
        schedule=lambda func, *args: scheduled.append((func, args)),
    )

    row = submissions.get(receipt.submission_id)
    assert row.status is SubmissionStatus.PENDING
    assert row.claim_status is ClaimStatus.CLAIMED
    assert row.token_code == "ABC123"
    assert len(row.process_files) == 1
    name = row.process_files[0]
    assert name.endswith(".pdf")
    assert "onboarding" not in name
    assert row.template_files == [] and row.example_files == []
    assert (Path(blob_root) / "process-documents" / name).read_bytes() == b"%PDF-1.4 steps"
    assert redemption.validate("ABC123").status is TokenStatus.ALREADY_USED
    assert scheduled == [(saga.request_enrichment, (receipt.submission_id,))]


@pytest.mark.asyncio
async def test_submit_merges_custom_tool_and_routes_categories(redemption, submissions, blob_root, enrichment):
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)
    receipt = await saga.submit(
        "ABC123",
        _questionnaire(),
        {
            FileCategory.TEMPLATE: [IncomingFile("t.docx", b"t")],
            FileCategory.EXAMPLE: [IncomingFile("e1.md", b"1"), IncomingFile("e2.md", b"2")],
        },
        schedule=lambda *args: None,
    )
    row = submissions.get(receipt.submission_id)
    assert row.essential_tools == ["GitHub", "Slack", "Grafana"]
    assert len(row.template_files) == 1
    assert len(row.example_files) == 2
    assert (Path(blob_root) / "templates" / row.template_files[0]).exists()
    assert receipt.files[FileCategory.EXAMPLE] == row.example_files


@pytest.mark.asyncio
async def test_upload_failure_aborts_before_commit(redemption, submissions, blob_root, enrichment):
    blobs = FlakyBlobStore(blob_root, fail_on=3)
    saga = _saga(redemption, submissions, blobs, enrichment)
    files = {
        FileCategory.PROCESS: [IncomingFile("a.pdf", b"a"), IncomingFile("b.pdf", b"b")],
        FileCategory.TEMPLATE: [IncomingFile("c.docx", b"c")],
    }

    with pytest.raises(UploadFailed) as exc_info:
        await saga.submit("ABC123", _questionnaire(), files)

    assert exc_info.value.filename == "c.docx"
    assert exc_info.value.retryable
    assert _all_rows(submissions) == []
    assert redemption.validate("ABC123").ok
    # the two earlier uploads stay behind as orphans
    assert len(_blob_files(blob_root)) == 2
    enrichment.request_enrichment.assert_not_called()


@pytest.mark.asyncio
async def test_retry_after_upload_failure_succeeds(redemption, submissions, blob_root, enrichment):
    files = {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]}
    with pytest.raises(UploadFailed):
        await _saga(redemption, submissions, FlakyBlobStore(blob_root, fail_on=1), enrichment).submit(
            "ABC123", _questionnaire(), files
        )
    receipt = await _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment).submit(
        "ABC123", _questionnaire(), files, schedule=lambda *args: None
    )
    assert submissions.get(receipt.submission_id).claim_status is ClaimStatus.CLAIMED


@pytest.mark.asyncio
async def test_upload_timeout_is_an_upload_failure(redemption, submissions, blob_root, enrichment):
    saga = _saga(redemption, submissions, SlowBlobStore(blob_root), enrichment, upload_timeout=0.05)
    with pytest.raises(UploadFailed) as exc_info:
        await saga.submit("ABC123", _questionnaire(), {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]})
    assert exc_info.value.cause == "timed out"
    assert _all_rows(submissions) == []
    assert redemption.validate("ABC123").ok


@pytest.mark.asyncio
async def test_commit_failure_leaves_token_usable(redemption, db_path, blob_root, enrichment):
    saga = _saga(redemption, BrokenSubmissionRepository(db_path), LocalBlobStore(blob_root), enrichment)
    with pytest.raises(RecordCreateFailed):
        await saga.submit("ABC123", _questionnaire(), {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]})
    assert redemption.validate("ABC123").ok
    assert len(_blob_files(blob_root)) == 1


@pytest.mark.asyncio
async def test_lost_claim_race_keeps_row_labelled_conflict(redemption, submissions, blob_root, enrichment):
    scheduled = []
    saga = _saga(redemption, submissions, RacingBlobStore(blob_root, redemption, "ABC123"), enrichment)

    with pytest.raises(ClaimConflict) as exc_info:
        await saga.submit(
            "ABC123",
            _questionnaire(),
            {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]},
            schedule=lambda *args: scheduled.append(args),
        )

    conflict = exc_info.value
    assert conflict.cause == "already_used"
    assert not conflict.retryable
    row = submissions.get(conflict.submission_id)
    assert row.claim_status is ClaimStatus.CONFLICT
    assert row.status is SubmissionStatus.PENDING
    # the committed row is still enriched
    assert scheduled == [(saga.request_enrichment, conflict.submission_id)]
    # hidden from the moderation queue
    assert submissions.list_by_status(SubmissionStatus.PENDING) == []


@pytest.mark.asyncio
async def test_claim_timeout_leaves_row_pending_until_reconciled(db_path, submissions, blob_root, enrichment):
    tokens = SlowClaimTokenRepository(db_path)
    redemption = RedemptionService(tokens)
    redemption.issue("admin-1", code="SLOW01")
    scheduled = []
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment, claim_timeout=0.05)

    with pytest.raises(ClaimConflict) as exc_info:
        await saga.submit(
            "SLOW01", _questionnaire(), {}, schedule=lambda *args: scheduled.append(args)
        )

    conflict = exc_info.value
    assert conflict.cause == "timeout"
    assert submissions.get(conflict.submission_id).claim_status is ClaimStatus.PENDING
    assert scheduled == [(saga.request_enrichment, conflict.submission_id)]

    # the claim still lands in its worker thread
    await asyncio.sleep(0.5)
    assert tokens.get("SLOW01").consumed
    moderation = ModerationService(submissions)
    assert moderation.queue() == []

    reconciliation = ReconciliationService(
        submissions, tokens, LocalBlobStore(blob_root), grace=timedelta(0)
    )
    resolved = reconciliation.resolve_pending_claims()
    assert [(r.submission_id, r.claim_status) for r in resolved] == [
        (conflict.submission_id, ClaimStatus.CLAIMED)
    ]
    assert [s.id for s in moderation.queue()] == [conflict.submission_id]


@pytest.mark.asyncio
async def test_claim_error_leaves_row_pending_and_token_usable(db_path, submissions, blob_root, enrichment):
    redemption = RedemptionService(BrokenClaimTokenRepository(db_path))
    redemption.issue("admin-1", code="ERR001")
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)

    with pytest.raises(ClaimConflict) as exc_info:
        await saga.submit("ERR001", _questionnaire(), {}, schedule=lambda *args: None)

    assert exc_info.value.cause == "error"
    row = submissions.get(exc_info.value.submission_id)
    assert row.claim_status is ClaimStatus.PENDING
    assert redemption.validate("ERR001").ok


@pytest.mark.asyncio
async def test_resubmitting_spent_token_creates_nothing(redemption, submissions, blob_root, enrichment):
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)
    files = {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]}
    await saga.submit("ABC123", _questionnaire(), files, schedule=lambda *args: None)

    with pytest.raises(TokenRejected) as exc_info:
        await saga.submit("ABC123", _questionnaire(), files, schedule=lambda *args: None)

    assert exc_info.value.reason == "already_used"
    assert len(_all_rows(submissions)) == 1
    assert len(_blob_files(blob_root)) == 1


@pytest.mark.asyncio
async def test_expired_token_rejected_before_upload(db_path, submissions, blob_root, enrichment):
    redemption = RedemptionService(TokenRepository(db_path))
    redemption.issue("admin-1", code="OLD001", issued_at=utcnow() - timedelta(hours=25))
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)

    with pytest.raises(TokenRejected) as exc_info:
        await saga.submit("OLD001", _questionnaire(), {FileCategory.PROCESS: [IncomingFile("a.pdf", b"a")]})

    assert exc_info.value.reason == "expired"
    assert _all_rows(submissions) == []
    assert _blob_files(blob_root) == []


@pytest.mark.asyncio
async def test_enrichment_failure_does_not_fail_submission(redemption, submissions, blob_root):
    enrichment = AsyncMock()
    enrichment.request_enrichment = AsyncMock(side_effect=RuntimeError("enricher down"))
    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)

    receipt = await saga.submit("ABC123", _questionnaire(), {})
    await saga.drain()

    enrichment.request_enrichment.assert_awaited_once_with(receipt.submission_id)
    row = submissions.get(receipt.submission_id)
    assert row.claim_status is ClaimStatus.CLAIMED
    assert row.summary is None


@pytest.mark.asyncio
async def test_scheduler_error_does_not_fail_submission(redemption, submissions, blob_root, enrichment):
    def broken_schedule(*args):
        raise RuntimeError("queue full")

    saga = _saga(redemption, submissions, LocalBlobStore(blob_root), enrichment)
    receipt = await saga.submit("ABC123", _questionnaire(), {}, schedule=broken_schedule)
    assert submissions.get(receipt.submission_id) is not None
