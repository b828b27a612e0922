import asyncio
import logging

from fastapi import APIRouter, BackgroundTasks, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from handover.errors import ClaimConflict, RecordCreateFailed, TokenRejected, UploadFailed
from handover.models.submission import FileCategory, IncomingFile
from handover.models.token import TokenStatus
from handover.schemas.enrichment import EnrichmentCallback, EnrichmentCallbackResponse
from handover.schemas.submission import Questionnaire, SubmissionCreatedResponse, SubmissionView
from handover.schemas.tokens import ValidateTokenRequest, ValidateTokenResponse

logger = logging.getLogger(__name__)

router = APIRouter()

# "Try a different code" (404/410) vs "this code is spent" (409).
TOKEN_STATUS_CODES = {
    TokenStatus.OK.value: 200,
    TokenStatus.NOT_FOUND.value: 404,
    TokenStatus.ALREADY_USED.value: 409,
    TokenStatus.EXPIRED.value: 410,
}

TOKEN_MESSAGES = {
    TokenStatus.OK.value: "Code accepted",
    TokenStatus.NOT_FOUND.value: "Invalid code. Check it or ask for a new one.",
    TokenStatus.ALREADY_USED.value: "This code has already been used.",
    TokenStatus.EXPIRED.value: "This code has expired. Ask for a new one.",
}


def error_response(status_code: int, status: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status, "message": message})


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.post("/tokens/validate", response_model=ValidateTokenResponse)
async def validate_token(payload: ValidateTokenRequest, request: Request):
    redemption = request.app.state.redemption_service
    result = await asyncio.to_thread(redemption.validate, payload.code)
    status = result.status.value
    return JSONResponse(
        status_code=TOKEN_STATUS_CODES[status],
        content=ValidateTokenResponse(status=status, message=TOKEN_MESSAGES[status]).model_dump(),
    )


async def _read_files(
    uploads: list[UploadFile], max_bytes: int
) -> list[IncomingFile] | JSONResponse:
    files = []
    for upload in uploads:
        content = await upload.read()
        if len(content) > max_bytes:
            return error_response(413, "file_too_large", f"{upload.filename} exceeds {max_bytes} bytes")
        files.append(IncomingFile(filename=upload.filename or "", content=content))
    return files


@router.post("/submissions", status_code=201, response_model=SubmissionCreatedResponse)
async def create_submission(
    request: Request,
    background_tasks: BackgroundTasks,
    code: str = Form(...),
    questionnaire: str = Form(...),
    process_files: list[UploadFile] = File(default=[]),
    template_files: list[UploadFile] = File(default=[]),
    example_files: list[UploadFile] = File(default=[]),
):
    saga = request.app.state.submission_saga
    max_bytes = request.app.state.settings.MAX_UPLOAD_BYTES

    if not code.strip():
        return error_response(422, "invalid", "code must not be empty")
    try:
        answers = Questionnaire.model_validate_json(questionnaire)
    except ValidationError as exc:
        logger.info("[submit] questionnaire rejected | errors=%d", exc.error_count())
        return error_response(422, "invalid", str(exc))

    files: dict[FileCategory, list[IncomingFile]] = {}
    for category, uploads in (
        (FileCategory.PROCESS, process_files),
        (FileCategory.TEMPLATE, template_files),
        (FileCategory.EXAMPLE, example_files),
    ):
        read = await _read_files(uploads, max_bytes)
        if isinstance(read, JSONResponse):
            return read
        files[category] = read

    try:
        receipt = await saga.submit(code, answers, files, schedule=background_tasks.add_task)
    except TokenRejected as exc:
        return error_response(TOKEN_STATUS_CODES[exc.reason], exc.reason, TOKEN_MESSAGES[exc.reason])
    except UploadFailed as exc:
        return error_response(503, "upload_failed", f"Failed to upload {exc.filename}. Please try again.")
    except RecordCreateFailed:
        return error_response(503, "record_create_failed", "Failed to save your submission. Please try again.")
    except ClaimConflict as exc:
        if exc.cause in ("timeout", "error"):
            return error_response(
                503, "claim_unconfirmed", "Your submission was received but the code could not be confirmed."
            )
        return error_response(409, "claim_conflict", "This code was already used by another submission.")

    return SubmissionCreatedResponse(submission_id=receipt.submission_id)


@router.post("/enrichment/callback", response_model=EnrichmentCallbackResponse)
async def enrichment_callback(
    payload: EnrichmentCallback,
    request: Request,
    x_enrichment_secret: str | None = Header(default=None),
):
    secret = request.app.state.settings.ENRICHMENT_CALLBACK_SECRET
    if secret and x_enrichment_secret != secret:
        return error_response(401, "unauthorized", "Invalid enrichment secret")
    consumer = request.app.state.enrichment_consumer
    applied = await asyncio.to_thread(consumer.apply, payload)
    return EnrichmentCallbackResponse(status="applied" if applied else "ignored")


@router.get("/submissions/approved", response_model=list[SubmissionView])
async def list_approved(request: Request, limit: int = 100) -> list[SubmissionView]:
    moderation = request.app.state.moderation_service
    submissions = await asyncio.to_thread(moderation.approved, limit)
    return [SubmissionView.from_submission(s) for s in submissions]


async def serve_file(request: Request, category: str, name: str, published_only: bool) -> Response:
    try:
        file_category = FileCategory(category)
    except ValueError:
        return error_response(404, "not_found", "Unknown file category")
    if published_only:
        moderation = request.app.state.moderation_service
        if not await asyncio.to_thread(moderation.is_published_file, file_category, name):
            return error_response(404, "not_found", "File not found")
    blobs = request.app.state.blob_store
    try:
        content = await asyncio.to_thread(blobs.get, file_category.bucket, name)
    except (FileNotFoundError, ValueError):
        return error_response(404, "not_found", "File not found")
    return Response(content=content, media_type="application/octet-stream")


@router.get("/files/{category}/{name}")
async def download_file(category: str, name: str, request: Request):
    """Only files of approved submissions are public; admins use /admin/files."""
    return await serve_file(request, category, name, published_only=True)
