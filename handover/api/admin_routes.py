import asyncio
import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from handover.api.routes import error_response, serve_file
from handover.errors import ConfirmationRequired, SubmissionNotFound, UnclaimedSubmission
from handover.models.submission import SubmissionStatus
from handover.schemas.moderation import ApproveRequest, ModerationResponse, RejectRequest
from handover.schemas.submission import AdminSubmissionView
from handover.schemas.tokens import IssueTokenRequest, TokenView
from handover.services.moderation_service import ModerationResult

logger = logging.getLogger(__name__)


async def require_admin_key(request: Request, x_admin_key: str | None = Header(default=None)) -> None:
    expected = request.app.state.settings.ADMIN_API_KEY
    if expected and not secrets.compare_digest(x_admin_key or "", expected):
        raise HTTPException(status_code=401, detail="Invalid admin key")


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_key)])


def _unclaimed_response():
    return error_response(409, "unclaimed", "The access code for this submission was never claimed.")


def _moderation_response(result: ModerationResult) -> ModerationResponse:
    return ModerationResponse(
        submission_id=result.submission_id,
        outcome=result.outcome.value,
        status=result.status.value,
        changed=result.changed,
    )


@router.post("/tokens", status_code=201, response_model=TokenView)
async def issue_token(payload: IssueTokenRequest, request: Request) -> TokenView:
    redemption = request.app.state.redemption_service
    token = await asyncio.to_thread(redemption.issue, payload.issued_by)
    return TokenView(**vars(token), state="active")


@router.get("/tokens", response_model=list[TokenView])
async def list_tokens(request: Request, limit: int = 10) -> list[TokenView]:
    redemption = request.app.state.redemption_service
    tokens = await asyncio.to_thread(redemption.list_recent, limit)
    return [TokenView(**vars(token), state=state) for token, state in tokens]


@router.get("/submissions", response_model=list[AdminSubmissionView])
async def list_submissions(
    request: Request, status: SubmissionStatus | None = SubmissionStatus.PENDING, limit: int = 100
) -> list[AdminSubmissionView]:
    moderation = request.app.state.moderation_service
    submissions = await asyncio.to_thread(moderation.queue, status, limit)
    return [AdminSubmissionView.from_submission(s) for s in submissions]


@router.get("/submissions/{submission_id}", response_model=AdminSubmissionView)
async def get_submission(submission_id: str, request: Request):
    moderation = request.app.state.moderation_service
    try:
        submission = await asyncio.to_thread(moderation.get, submission_id)
    except SubmissionNotFound:
        return error_response(404, "not_found", "Submission not found")
    return AdminSubmissionView.from_submission(submission)


@router.post("/submissions/{submission_id}/approve", response_model=ModerationResponse)
async def approve_submission(submission_id: str, payload: ApproveRequest, request: Request):
    moderation = request.app.state.moderation_service
    try:
        result = await asyncio.to_thread(moderation.approve, submission_id, payload.admin_id)
    except SubmissionNotFound:
        return error_response(404, "not_found", "Submission not found")
    except UnclaimedSubmission:
        return _unclaimed_response()
    return _moderation_response(result)


@router.post("/submissions/{submission_id}/reject", response_model=ModerationResponse)
async def reject_submission(submission_id: str, payload: RejectRequest, request: Request):
    moderation = request.app.state.moderation_service
    try:
        result = await asyncio.to_thread(
            moderation.reject, submission_id, payload.admin_id, payload.confirm
        )
    except ConfirmationRequired:
        return error_response(
            422, "confirmation_required", "Rejection cannot be undone; resend with confirm=true."
        )
    except SubmissionNotFound:
        return error_response(404, "not_found", "Submission not found")
    except UnclaimedSubmission:
        return _unclaimed_response()
    return _moderation_response(result)


@router.get("/stats")
async def stats(request: Request) -> dict:
    moderation = request.app.state.moderation_service
    return await asyncio.to_thread(moderation.stats)


@router.get("/reconciliation")
async def reconciliation_report(request: Request) -> dict:
    reconciliation = request.app.state.reconciliation_service
    report = await asyncio.to_thread(reconciliation.report)
    return {
        "unclaimed_submissions": [
            {"id": s.id, "claim_status": s.claim_status.value, "created_at": s.created_at.isoformat()}
            for s in report.unclaimed_submissions
        ],
        "orphaned_files": [
            {"bucket": b.bucket, "name": b.name, "modified_at": b.modified_at.isoformat()}
            for b in report.orphaned_files
        ],
    }


@router.post("/reconciliation/sweep")
async def sweep_orphans(request: Request) -> dict:
    reconciliation = request.app.state.reconciliation_service
    swept = await asyncio.to_thread(reconciliation.sweep_orphaned_files)
    logger.info("[admin] orphan sweep | count=%d", len(swept))
    return {"swept": [{"bucket": b.bucket, "name": b.name} for b in swept]}


@router.post("/reconciliation/resolve-claims")
async def resolve_claims(request: Request) -> dict:
    reconciliation = request.app.state.reconciliation_service
    resolved = await asyncio.to_thread(reconciliation.resolve_pending_claims)
    return {
        "resolved": [
            {"id": r.submission_id, "claim_status": r.claim_status.value} for r in resolved
        ]
    }


@router.get("/files/{category}/{name}")
async def download_any_file(category: str, name: str, request: Request):
    return await serve_file(request, category, name, published_only=False)
