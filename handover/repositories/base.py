from abc import ABC, abstractmethod
from datetime import datetime

from handover.models.submission import ClaimStatus, FileCategory, Submission, SubmissionStatus
from handover.models.token import AccessToken


class AbstractTokenRepository(ABC):
    @abstractmethod
    def insert(self, token: AccessToken) -> None:
        """Persist a newly issued token. Raises if the code already exists."""

    @abstractmethod
    def get(self, code: str) -> AccessToken | None:
        """Return the token with the given code, or None."""

    @abstractmethod
    def claim(self, code: str, now: datetime) -> bool:
        """
        Atomically mark the token consumed if it is unconsumed and unexpired at `now`.
        Returns True only for the single caller whose update matched the row.
        """

    @abstractmethod
    def list_recent(self, limit: int = 10) -> list[AccessToken]:
        """Most recently issued tokens first."""


class AbstractSubmissionRepository(ABC):
    @abstractmethod
    def insert(self, submission: Submission) -> None:
        """Insert a new submission row."""

    @abstractmethod
    def get(self, submission_id: str) -> Submission | None:
        """Return the submission with the given id, or None."""

    @abstractmethod
    def set_claim_status(self, submission_id: str, claim_status: ClaimStatus) -> bool:
        """Label a submission whose claim step is still pending. Returns True if a row changed."""

    @abstractmethod
    def approve(self, submission_id: str, admin_id: str, now: datetime) -> bool:
        """Move a pending, claimed submission to approved. Returns False otherwise."""

    @abstractmethod
    def reject(self, submission_id: str, admin_id: str, now: datetime) -> bool:
        """Move a pending, claimed submission to rejected. Returns False otherwise."""

    @abstractmethod
    def apply_enrichment(
        self,
        submission_id: str,
        summary: str | None,
        keywords: list[str] | None,
        categories: list[str] | None,
        now: datetime,
    ) -> bool:
        """Merge the supplied enrichment fields. Returns False if the submission does not exist."""

    @abstractmethod
    def list_by_status(
        self, status: SubmissionStatus | None = None, claimed_only: bool = True, limit: int = 100
    ) -> list[Submission]:
        """Newest first, optionally filtered by moderation status."""

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        """Number of submissions per moderation status."""

    @abstractmethod
    def list_unclaimed(self, created_before: datetime | None = None) -> list[Submission]:
        """Submissions whose token claim did not (yet) succeed."""

    @abstractmethod
    def count_for_token(self, token_code: str) -> int:
        """Number of submissions that name the given token, whatever their claim status."""

    @abstractmethod
    def is_published_file(self, category: FileCategory, name: str) -> bool:
        """True if an approved, claimed submission references the stored file."""

    @abstractmethod
    def referenced_file_names(self) -> set[str]:
        """Every stored file name referenced by any submission."""
