import logging
from datetime import datetime
from typing import Callable

import httpx

from handover.models.timestamps import utcnow
from handover.repositories.base import AbstractSubmissionRepository
from handover.schemas.enrichment import EnrichmentCallback

logger = logging.getLogger(__name__)


class EnrichmentClient:
    """Outbound, fire-and-forget request asking the external enricher to process a submission."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def request_enrichment(self, submission_id: str) -> bool:
        """POST the submission id to the enricher. Returns False on any failure; never raises."""
        if not self._url:
            logger.info("[enrichment] no endpoint configured | submission_id=%s", submission_id)
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json={"submission_id": submission_id})
            if 200 <= response.status_code < 300:
                logger.info("[enrichment] requested | submission_id=%s", submission_id)
                return True
            logger.warning(
                "[enrichment] request rejected | submission_id=%s | status=%s",
                submission_id,
                response.status_code,
            )
            return False
        except Exception as exc:
            logger.warning(
                "[enrichment] request failed | submission_id=%s | error=%s", submission_id, exc
            )
            return False


class EnrichmentConsumer:
    """Merges enrichment results into existing submissions; touches enrichment fields only."""

    def __init__(
        self, repository: AbstractSubmissionRepository, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._repository = repository
        self._clock = clock

    def apply(self, callback: EnrichmentCallback) -> bool:
        applied = self._repository.apply_enrichment(
            submission_id=callback.submission_id,
            summary=callback.summary,
            keywords=callback.keywords,
            categories=callback.categories,
            now=self._clock(),
        )
        if applied:
            logger.info(
                "[enrichment] applied | submission_id=%s | keywords=%d | categories=%d",
                callback.submission_id,
                len(callback.keywords or []),
                len(callback.categories or []),
            )
        else:
            logger.info("[enrichment] ignored, no such submission | submission_id=%s", callback.submission_id)
        return applied
