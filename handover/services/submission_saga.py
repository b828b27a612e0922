"""
Write path for a completed questionnaire: upload → commit → claim → enrichment.

There is no transaction spanning the blob store and the database, so the steps
are ordered such that a failure leaves either nothing usable behind (orphaned
blobs only, token still unclaimed) or a row explicitly labelled by
claim_status for reconciliation:

    upload fails   -> UploadFailed, earlier blobs orphaned, no row, token usable
    commit fails   -> RecordCreateFailed, blobs orphaned, token usable
    claim fails    -> ClaimConflict, row kept with claim_status='conflict'
    claim unknown  -> ClaimConflict, row kept with claim_status='pending'
    enrichment     -> requested once the row is committed; failures logged and ignored
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from handover.errors import ClaimConflict, RecordCreateFailed, TokenRejected, UploadFailed
from handover.models.submission import (
    ClaimStatus,
    FileCategory,
    IncomingFile,
    StoredFile,
    Submission,
)
from handover.models.timestamps import utcnow
from handover.repositories.base import AbstractSubmissionRepository
from handover.schemas.submission import Questionnaire
from handover.services.enrichment_service import EnrichmentClient
from handover.services.redemption_service import RedemptionService
from handover.storage.blob_store import AbstractBlobStore, generate_blob_name

logger = logging.getLogger(__name__)

UPLOAD_ORDER = (FileCategory.PROCESS, FileCategory.TEMPLATE, FileCategory.EXAMPLE)

# Matches BackgroundTasks.add_task(func, *args).
Scheduler = Callable[..., None]


@dataclass(frozen=True)
class SubmissionReceipt:
    submission_id: str
    files: dict[FileCategory, list[str]] = field(default_factory=dict)


class SubmissionSaga:
    def __init__(
        self,
        redemption: RedemptionService,
        submissions: AbstractSubmissionRepository,
        blobs: AbstractBlobStore,
        enrichment: EnrichmentClient,
        upload_timeout: float = 30.0,
        claim_timeout: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._redemption = redemption
        self._submissions = submissions
        self._blobs = blobs
        self._enrichment = enrichment
        self._upload_timeout = upload_timeout
        self._claim_timeout = claim_timeout
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    async def submit(
        self,
        code: str,
        questionnaire: Questionnaire,
        files: dict[FileCategory, list[IncomingFile]],
        schedule: Scheduler | None = None,
    ) -> SubmissionReceipt:
        code = code.strip()

        # Advisory: fails fast for spent/expired codes. The claim below stays authoritative.
        precheck = await asyncio.to_thread(self._redemption.validate, code)
        if not precheck.ok:
            logger.info("[saga] token rejected before upload | status=%s", precheck.status.value)
            raise TokenRejected(precheck.status.value)

        stored = await self._upload_all(files)
        submission = self._build_submission(code, questionnaire, stored)
        await self._commit(submission)
        try:
            await self._claim(code, submission.id)
        finally:
            # Enrichment follows the commit, not the claim.
            self._trigger_enrichment(submission.id, schedule)

        logger.info(
            "[saga] complete | submission_id=%s | files=%d",
            submission.id,
            sum(len(names) for names in stored.values()),
        )
        return SubmissionReceipt(submission_id=submission.id, files=stored)

    async def _upload_all(
        self, files: dict[FileCategory, list[IncomingFile]]
    ) -> dict[FileCategory, list[str]]:
        stored: dict[FileCategory, list[str]] = {category: [] for category in UPLOAD_ORDER}
        for category in UPLOAD_ORDER:
            for incoming in files.get(category, []):
                blob = await self._upload_one(category, incoming)
                stored[category].append(blob.name)
        return stored

    async def _upload_one(self, category: FileCategory, incoming: IncomingFile) -> StoredFile:
        blob = StoredFile(name=generate_blob_name(incoming.filename), category=category)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._blobs.put, blob.bucket, blob.name, incoming.content),
                timeout=self._upload_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("[saga] upload timed out | bucket=%s | name=%s", blob.bucket, blob.name)
            raise UploadFailed(incoming.filename, "timed out") from exc
        except Exception as exc:
            logger.error(
                "[saga] upload failed | bucket=%s | name=%s | error=%s", blob.bucket, blob.name, exc
            )
            raise UploadFailed(incoming.filename, exc) from exc
        logger.info("[saga] uploaded | bucket=%s | name=%s", blob.bucket, blob.name)
        return blob

    def _build_submission(
        self, code: str, questionnaire: Questionnaire, stored: dict[FileCategory, list[str]]
    ) -> Submission:
        return Submission(
            id=uuid.uuid4().hex,
            token_code=code,
            position_level=questionnaire.position_level,
            department=questionnaire.department,
            experience_range=questionnaire.experience_range,
            team_size_range=questionnaire.team_size_range,
            main_responsibilities=questionnaire.main_responsibilities,
            essential_tools=questionnaire.all_tools(),
            critical_skills=questionnaire.critical_skills,
            learning_resources=questionnaire.learning_resources,
            common_problems=questionnaire.common_problems,
            solutions=questionnaire.solutions,
            communication_methods=questionnaire.communication_methods,
            collaboration_tips=questionnaire.collaboration_tips,
            handoff_advice=questionnaire.handoff_advice,
            final_advice=questionnaire.final_advice,
            allow_followup=questionnaire.allow_followup,
            process_files=stored[FileCategory.PROCESS],
            template_files=stored[FileCategory.TEMPLATE],
            example_files=stored[FileCategory.EXAMPLE],
            created_at=self._clock(),
        )

    async def _commit(self, submission: Submission) -> None:
        try:
            await asyncio.to_thread(self._submissions.insert, submission)
        except Exception as exc:
            logger.exception("[saga] record insert failed | submission_id=%s", submission.id)
            raise RecordCreateFailed(exc) from exc
        logger.info("[saga] committed | submission_id=%s", submission.id)

    async def _claim(self, code: str, submission_id: str) -> None:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._redemption.claim, code), timeout=self._claim_timeout
            )
        except asyncio.TimeoutError as exc:
            # The claim may still land; claim_status stays 'pending' for reconciliation.
            logger.error("[saga] claim timed out | submission_id=%s", submission_id)
            raise ClaimConflict("timeout", submission_id) from exc
        except Exception as exc:
            logger.exception("[saga] claim errored | submission_id=%s", submission_id)
            raise ClaimConflict("error", submission_id) from exc

        if result.ok:
            await self._label(submission_id, ClaimStatus.CLAIMED)
            return

        cause = result.cause.value if result.cause else result.status.value
        logger.warning(
            "[saga] claim conflict, submission kept unclaimed | submission_id=%s | cause=%s",
            submission_id,
            cause,
        )
        await self._label(submission_id, ClaimStatus.CONFLICT)
        raise ClaimConflict(cause, submission_id)

    async def _label(self, submission_id: str, claim_status: ClaimStatus) -> None:
        try:
            await asyncio.to_thread(self._submissions.set_claim_status, submission_id, claim_status)
        except Exception:
            logger.exception(
                "[saga] could not label claim status | submission_id=%s | claim_status=%s",
                submission_id,
                claim_status.value,
            )

    def _trigger_enrichment(self, submission_id: str, schedule: Scheduler | None) -> None:
        try:
            if schedule is not None:
                schedule(self.request_enrichment, submission_id)
                return
            task = asyncio.get_running_loop().create_task(self.request_enrichment(submission_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        except Exception:
            logger.exception("[saga] could not schedule enrichment | submission_id=%s", submission_id)

    async def request_enrichment(self, submission_id: str) -> None:
        """Background step: never raises, never retries."""
        try:
            await self._enrichment.request_enrichment(submission_id)
        except Exception:
            logger.exception("[saga] enrichment request crashed | submission_id=%s", submission_id)

    async def drain(self) -> None:
        """Wait for enrichment requests started without an external scheduler."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
