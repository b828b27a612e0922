"""Typed failures raised by the redemption, submission and moderation services.

Route handlers translate these into HTTP responses; nothing here knows about HTTP.
"""


class HandoverError(Exception):
    retryable = False


class TokenRejected(HandoverError):
    """The advisory token check failed before any side effect took place."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"token rejected: {reason}")
        self.reason = reason


class UploadFailed(HandoverError):
    retryable = True

    def __init__(self, filename: str, cause: BaseException | str) -> None:
        super().__init__(f"upload failed for {filename}: {cause}")
        self.filename = filename
        self.cause = cause


class RecordCreateFailed(HandoverError):
    retryable = True

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"submission record could not be created: {cause}")
        self.cause = cause


class ClaimConflict(HandoverError):
    """The token could not be claimed. Never retried: a new token is required."""

    def __init__(self, cause: str, submission_id: str | None = None) -> None:
        super().__init__(f"token claim conflict: {cause}")
        self.cause = cause
        self.submission_id = submission_id


class SubmissionNotFound(HandoverError):
    def __init__(self, submission_id: str) -> None:
        super().__init__(f"submission not found: {submission_id}")
        self.submission_id = submission_id


class ConfirmationRequired(HandoverError):
    """Rejection is irreversible and must be explicitly confirmed by the caller."""


class UnclaimedSubmission(HandoverError):
    """The submission's token claim never succeeded, so it cannot be moderated."""

    def __init__(self, submission_id: str, claim_status: str) -> None:
        super().__init__(f"submission {submission_id} is not claimed: {claim_status}")
        self.submission_id = submission_id
        self.claim_status = claim_status
