from pydantic import BaseModel, field_validator


class ApproveRequest(BaseModel):
    admin_id: str

    @field_validator("admin_id")
    @classmethod
    def admin_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("admin_id must not be empty")
        return v.strip()


class RejectRequest(ApproveRequest):
    confirm: bool = False


class ModerationResponse(BaseModel):
    submission_id: str
    outcome: str
    status: str
    changed: bool
