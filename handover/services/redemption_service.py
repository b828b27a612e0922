import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from handover.models.timestamps import utcnow
from handover.models.token import AccessToken, RedemptionResult, TokenStatus
from handover.repositories.base import AbstractTokenRepository

logger = logging.getLogger(__name__)


class RedemptionService:
    """
    Issues, checks and claims single-use access tokens.

    validate() is a side-effect-free advisory read. claim() is the only
    authoritative operation: callers must act on its result even if an earlier
    validate() said the token was usable.
    """

    def __init__(
        self,
        repository: AbstractTokenRepository,
        ttl_hours: int = 24,
        token_bytes: int = 9,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._ttl = timedelta(hours=ttl_hours)
        self._token_bytes = token_bytes
        self._clock = clock

    def issue(
        self, issued_by: str, code: str | None = None, issued_at: datetime | None = None
    ) -> AccessToken:
        issued_at = issued_at or self._clock()
        token = AccessToken(
            code=code or secrets.token_urlsafe(self._token_bytes),
            issued_by=issued_by,
            issued_at=issued_at,
            expires_at=issued_at + self._ttl,
        )
        self._repository.insert(token)
        logger.info(
            "[tokens] issued | by=%s | expires_at=%s", issued_by, token.expires_at.isoformat()
        )
        return token

    def _status_of(self, token: AccessToken | None, now: datetime) -> TokenStatus:
        if token is None:
            return TokenStatus.NOT_FOUND
        if token.is_usable(now):
            return TokenStatus.OK
        if token.consumed:
            return TokenStatus.ALREADY_USED
        return TokenStatus.EXPIRED

    def validate(self, code: str) -> RedemptionResult:
        code = code.strip()
        status = self._status_of(self._repository.get(code), self._clock())
        logger.info("[tokens] validate | status=%s", status.value)
        return RedemptionResult(status=status)

    def claim(self, code: str) -> RedemptionResult:
        code = code.strip()
        now = self._clock()
        if self._repository.claim(code, now):
            logger.info("[tokens] claimed")
            return RedemptionResult(status=TokenStatus.OK)

        # Diagnostic only: the row may have changed again since the failed update.
        cause = self._status_of(self._repository.get(code), now)
        if cause is TokenStatus.OK:
            cause = TokenStatus.CLAIM_CONFLICT
        logger.warning("[tokens] claim conflict | cause=%s", cause.value)
        return RedemptionResult(status=TokenStatus.CLAIM_CONFLICT, cause=cause)

    def list_recent(self, limit: int = 10) -> list[tuple[AccessToken, str]]:
        """Recent tokens paired with their derived display state."""
        now = self._clock()
        return [(token, token.display_state(now)) for token in self._repository.list_recent(limit)]
