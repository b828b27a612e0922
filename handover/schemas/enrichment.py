from pydantic import BaseModel, field_validator


class EnrichmentCallback(BaseModel):
    submission_id: str
    summary: str | None = None
    # Omitted fields keep whatever an earlier callback stored.
    keywords: list[str] | None = None
    categories: list[str] | None = None

    @field_validator("submission_id")
    @classmethod
    def id_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("submission_id must not be empty")
        return v.strip()

    @field_validator("keywords", "categories")
    @classmethod
    def drop_blank_items(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return [item.strip() for item in v if item and item.strip()]


class EnrichmentCallbackResponse(BaseModel):
    status: str
