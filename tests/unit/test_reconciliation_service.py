from datetime import datetime, timedelta, timezone

import pytest

from handover.db.connection import run_migrations
from handover.models.submission import ClaimStatus, Submission
from handover.models.token import AccessToken
from handover.repositories.submission_repository import SubmissionRepository
from handover.repositories.token_repository import TokenRepository
from handover.services.reconciliation_service import ReconciliationService
from handover.storage.blob_store import LocalBlobStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _submission(submission_id, code, claim_status, process_files=()):
    return Submission(
        id=submission_id,
        token_code=code,
        position_level="Manager",
        department="Sales",
        experience_range="5+ years",
        team_size_range="11-20",
        process_files=list(process_files),
        claim_status=claim_status,
        created_at=NOW,
    )


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "handover.db")
    run_migrations(path)
    return path


@pytest.fixture
def tokens(db_path):
    tokens = TokenRepository(db_path)
    for code in ("T1", "T2", "T3"):
        tokens.insert(AccessToken(code, "admin-1", NOW, NOW + timedelta(hours=24)))
    return tokens


@pytest.fixture
def repo(db_path, tokens):
    return SubmissionRepository(db_path)


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


def _service(repo, tokens, blobs, now):
    return ReconciliationService(repo, tokens, blobs, grace=timedelta(minutes=60), clock=lambda: now)


def test_reports_conflict_and_stuck_claims(repo, tokens, blobs):
    repo.insert(_submission("ok", "T1", ClaimStatus.CLAIMED))
    repo.insert(_submission("lost-race", "T2", ClaimStatus.CONFLICT))
    repo.insert(_submission("stuck", "T3", ClaimStatus.PENDING))

    unclaimed = _service(repo, tokens, blobs, NOW + timedelta(hours=2)).find_unclaimed_submissions()
    assert {s.id: s.claim_status for s in unclaimed} == {
        "lost-race": ClaimStatus.CONFLICT,
        "stuck": ClaimStatus.PENDING,
    }


def test_recent_rows_are_not_reported_as_unclaimed(repo, tokens, blobs):
    # a saga may still be between its commit and claim steps
    repo.insert(_submission("in-flight", "T1", ClaimStatus.PENDING))
    assert _service(repo, tokens, blobs, NOW + timedelta(minutes=5)).find_unclaimed_submissions() == []
    later = _service(repo, tokens, blobs, NOW + timedelta(minutes=61)).find_unclaimed_submissions()
    assert [s.id for s in later] == ["in-flight"]


def test_pending_claim_with_consumed_token_becomes_claimed(repo, tokens, blobs):
    repo.insert(_submission("late-claim", "T1", ClaimStatus.PENDING))
    assert tokens.claim("T1", NOW)

    resolved = _service(repo, tokens, blobs, NOW + timedelta(hours=2)).resolve_pending_claims()

    assert [(r.submission_id, r.claim_status) for r in resolved] == [("late-claim", ClaimStatus.CLAIMED)]
    assert repo.get("late-claim").claim_status is ClaimStatus.CLAIMED
    assert [s.id for s in repo.list_by_status()] == ["late-claim"]


def test_pending_claim_with_unconsumed_token_becomes_conflict(repo, tokens, blobs):
    repo.insert(_submission("never-claimed", "T1", ClaimStatus.PENDING))

    resolved = _service(repo, tokens, blobs, NOW + timedelta(hours=2)).resolve_pending_claims()

    assert [(r.submission_id, r.claim_status) for r in resolved] == [("never-claimed", ClaimStatus.CONFLICT)]
    assert not tokens.get("T1").consumed


def test_pending_claim_sharing_a_token_becomes_conflict(repo, tokens, blobs):
    repo.insert(_submission("winner", "T1", ClaimStatus.CLAIMED))
    repo.insert(_submission("stuck", "T1", ClaimStatus.PENDING))
    assert tokens.claim("T1", NOW)

    service = _service(repo, tokens, blobs, NOW + timedelta(hours=2))
    resolved = service.resolve_pending_claims()

    assert [(r.submission_id, r.claim_status) for r in resolved] == [("stuck", ClaimStatus.CONFLICT)]
    assert repo.get("winner").claim_status is ClaimStatus.CLAIMED
    # conflict rows are reported, never relabelled again
    assert service.resolve_pending_claims() == []


def test_orphans_respect_grace_period(repo, tokens, blobs):
    blobs.put("process-documents", "kept.pdf", b"kept")
    blobs.put("process-documents", "orphan.pdf", b"orphan")
    blobs.put("examples", "orphan2.md", b"orphan")
    repo.insert(_submission("ok", "T1", ClaimStatus.CLAIMED, process_files=["kept.pdf"]))

    assert _service(repo, tokens, blobs, datetime.now(timezone.utc)).find_orphaned_files() == []

    later = datetime.now(timezone.utc) + timedelta(hours=2)
    orphans = _service(repo, tokens, blobs, later).find_orphaned_files()
    assert sorted((b.bucket, b.name) for b in orphans) == [
        ("examples", "orphan2.md"),
        ("process-documents", "orphan.pdf"),
    ]


def test_sweep_deletes_only_orphans(repo, tokens, blobs):
    blobs.put("process-documents", "kept.pdf", b"kept")
    blobs.put("templates", "orphan.docx", b"orphan")
    repo.insert(_submission("ok", "T1", ClaimStatus.CLAIMED, process_files=["kept.pdf"]))

    later = datetime.now(timezone.utc) + timedelta(hours=2)
    swept = _service(repo, tokens, blobs, later).sweep_orphaned_files()

    assert [(b.bucket, b.name) for b in swept] == [("templates", "orphan.docx")]
    assert blobs.get("process-documents", "kept.pdf") == b"kept"
    assert blobs.list("templates") == []


def test_report_combines_both(repo, tokens, blobs):
    repo.insert(_submission("lost-race", "T2", ClaimStatus.CONFLICT, process_files=["a.pdf"]))
    blobs.put("process-documents", "a.pdf", b"a")
    report = _service(repo, tokens, blobs, datetime.now(timezone.utc) + timedelta(hours=2)).report()
    assert [s.id for s in report.unclaimed_submissions] == ["lost-race"]
    # referenced by a conflicted row, so not garbage
    assert report.orphaned_files == []
