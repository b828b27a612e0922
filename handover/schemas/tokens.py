from datetime import datetime

from pydantic import BaseModel, field_validator


class ValidateTokenRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def code_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("code must not be empty")
        return v.strip()


class ValidateTokenResponse(BaseModel):
    status: str
    message: str


class IssueTokenRequest(BaseModel):
    issued_by: str

    @field_validator("issued_by")
    @classmethod
    def issuer_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("issued_by must not be empty")
        return v.strip()


class TokenView(BaseModel):
    code: str
    issued_by: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool
    consumed_at: datetime | None = None
    state: str
