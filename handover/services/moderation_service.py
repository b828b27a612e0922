import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from handover.errors import ConfirmationRequired, SubmissionNotFound, UnclaimedSubmission
from handover.models.submission import ClaimStatus, FileCategory, Submission, SubmissionStatus
from handover.models.timestamps import utcnow
from handover.repositories.base import AbstractSubmissionRepository

logger = logging.getLogger(__name__)


class ModerationOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ALREADY_APPROVED = "already_approved"
    ALREADY_REJECTED = "already_rejected"


_ALREADY = {
    SubmissionStatus.APPROVED: ModerationOutcome.ALREADY_APPROVED,
    SubmissionStatus.REJECTED: ModerationOutcome.ALREADY_REJECTED,
}


@dataclass(frozen=True)
class ModerationResult:
    submission_id: str
    outcome: ModerationOutcome
    status: SubmissionStatus

    @property
    def changed(self) -> bool:
        return self.outcome in (ModerationOutcome.APPROVED, ModerationOutcome.REJECTED)


class ModerationService:
    """
    pending -> approved | rejected, both terminal.

    Transitions are conditional updates on status='pending'. A repeated or
    conflicting decision is reported as a benign already_* outcome rather than
    raised, so an admin double-click never breaks the workflow. Submissions
    whose token was never claimed are refused with UnclaimedSubmission.
    """

    def __init__(
        self, repository: AbstractSubmissionRepository, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._repository = repository
        self._clock = clock

    def approve(self, submission_id: str, admin_id: str) -> ModerationResult:
        applied = self._repository.approve(submission_id, admin_id, self._clock())
        return self._settle(submission_id, applied, ModerationOutcome.APPROVED, admin_id)

    def reject(self, submission_id: str, admin_id: str, confirm: bool = False) -> ModerationResult:
        if not confirm:
            raise ConfirmationRequired("rejection is irreversible and must be confirmed")
        applied = self._repository.reject(submission_id, admin_id, self._clock())
        return self._settle(submission_id, applied, ModerationOutcome.REJECTED, admin_id)

    def _settle(
        self, submission_id: str, applied: bool, outcome: ModerationOutcome, admin_id: str
    ) -> ModerationResult:
        if applied:
            logger.info(
                "[moderation] %s | submission_id=%s | admin=%s", outcome.value, submission_id, admin_id
            )
            return ModerationResult(submission_id, outcome, SubmissionStatus(outcome.value))

        current = self._repository.get(submission_id)
        if current is None:
            raise SubmissionNotFound(submission_id)
        if current.claim_status is not ClaimStatus.CLAIMED:
            logger.warning(
                "[moderation] refused, token not claimed | submission_id=%s | claim_status=%s",
                submission_id,
                current.claim_status.value,
            )
            raise UnclaimedSubmission(submission_id, current.claim_status.value)
        if current.status is SubmissionStatus.PENDING:
            # Only reachable if the row changed between the update and this read.
            raise RuntimeError(f"submission {submission_id} is pending but the update did not apply")
        logger.info(
            "[moderation] no-op, already %s | submission_id=%s | admin=%s",
            current.status.value,
            submission_id,
            admin_id,
        )
        return ModerationResult(submission_id, _ALREADY[current.status], current.status)

    def get(self, submission_id: str) -> Submission:
        submission = self._repository.get(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    def queue(self, status: SubmissionStatus | None = SubmissionStatus.PENDING, limit: int = 100) -> list[Submission]:
        return self._repository.list_by_status(status, claimed_only=True, limit=limit)

    def approved(self, limit: int = 100) -> list[Submission]:
        """The externally visible set consumed by the read side."""
        return self._repository.list_by_status(SubmissionStatus.APPROVED, claimed_only=True, limit=limit)

    def stats(self) -> dict[str, int]:
        counts = self._repository.count_by_status()
        counts["total"] = sum(counts.values())
        return counts

    def is_published_file(self, category: FileCategory, name: str) -> bool:
        return self._repository.is_published_file(category, name)
