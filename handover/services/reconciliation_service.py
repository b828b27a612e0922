"""
Finds and settles the accepted inconsistencies the submission saga can leave behind.

- Submissions whose token claim failed (claim_status='conflict') or never
  completed (claim_status='pending').
- Stored files that no submission references, e.g. from an aborted upload.

Anything younger than the grace period is ignored: it may belong to a saga
that is still between its upload, commit and claim steps.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from handover.models.submission import ClaimStatus, FileCategory, Submission
from handover.models.timestamps import utcnow
from handover.repositories.base import AbstractSubmissionRepository, AbstractTokenRepository
from handover.storage.blob_store import AbstractBlobStore, BlobInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationReport:
    unclaimed_submissions: list[Submission]
    orphaned_files: list[BlobInfo]


@dataclass(frozen=True)
class ClaimResolution:
    submission_id: str
    claim_status: ClaimStatus


class ReconciliationService:
    def __init__(
        self,
        submissions: AbstractSubmissionRepository,
        tokens: AbstractTokenRepository,
        blobs: AbstractBlobStore,
        grace: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._submissions = submissions
        self._tokens = tokens
        self._blobs = blobs
        self._grace = grace
        self._clock = clock

    def _cutoff(self) -> datetime:
        return self._clock() - self._grace

    def find_unclaimed_submissions(self) -> list[Submission]:
        return self._submissions.list_unclaimed(created_before=self._cutoff())

    def resolve_pending_claims(self) -> list[ClaimResolution]:
        """
        Settle rows whose claim outcome was never recorded, typically after a
        claim timeout. A row becomes 'claimed' only if its token is consumed and
        no other submission names that token; otherwise it becomes 'conflict'.
        """
        resolved = []
        for submission in self.find_unclaimed_submissions():
            if submission.claim_status is not ClaimStatus.PENDING:
                continue
            token = self._tokens.get(submission.token_code)
            sole_row = self._submissions.count_for_token(submission.token_code) == 1
            if token is not None and token.consumed and sole_row:
                label = ClaimStatus.CLAIMED
            else:
                label = ClaimStatus.CONFLICT
            if not self._submissions.set_claim_status(submission.id, label):
                continue
            logger.info(
                "[reconcile] claim resolved | submission_id=%s | claim_status=%s",
                submission.id,
                label.value,
            )
            resolved.append(ClaimResolution(submission.id, label))
        return resolved

    def find_orphaned_files(self) -> list[BlobInfo]:
        referenced = self._submissions.referenced_file_names()
        cutoff = self._cutoff()
        return [
            blob
            for category in FileCategory
            for blob in self._blobs.list(category.bucket)
            if blob.name not in referenced and blob.modified_at < cutoff
        ]

    def report(self) -> ReconciliationReport:
        report = ReconciliationReport(
            unclaimed_submissions=self.find_unclaimed_submissions(),
            orphaned_files=self.find_orphaned_files(),
        )
        logger.info(
            "[reconcile] report | unclaimed=%d | orphaned_files=%d",
            len(report.unclaimed_submissions),
            len(report.orphaned_files),
        )
        return report

    def sweep_orphaned_files(self) -> list[BlobInfo]:
        swept = []
        for blob in self.find_orphaned_files():
            try:
                self._blobs.delete(blob.bucket, blob.name)
            except OSError:
                logger.exception("[reconcile] delete failed | bucket=%s | name=%s", blob.bucket, blob.name)
                continue
            swept.append(blob)
        logger.info("[reconcile] swept orphaned files | count=%d", len(swept))
        return swept
