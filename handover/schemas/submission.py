from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_validator

from handover.models.submission import Submission

DEPARTMENTS = (
    "Engineering", "Product", "Design", "Marketing", "Sales",
    "Customer Success", "Operations", "Finance", "HR", "Legal", "Other",
)

MIN_RESPONSIBILITIES = 3

PositionLevel = Literal["Junior", "Mid-level", "Senior", "Lead", "Manager", "Director", "Executive"]
ExperienceRange = Literal["<6 months", "6-12 months", "1-2 years", "2-5 years", "5+ years"]
TeamSizeRange = Literal["Just me", "2-5", "6-10", "11-20", "20+"]


def _clean_items(values: list[str]) -> list[str]:
    return [v.strip() for v in values if v and v.strip()]


class Questionnaire(BaseModel):
    """Completed questionnaire. Validated in full before any upload starts."""

    position_level: PositionLevel
    department: str
    experience_range: ExperienceRange
    team_size_range: TeamSizeRange
    main_responsibilities: list[str]
    essential_tools: list[str] = []
    custom_tools: str = ""
    critical_skills: list[str]
    learning_resources: str
    common_problems: str
    solutions: str
    communication_methods: list[str]
    collaboration_tips: str
    handoff_advice: str
    final_advice: str
    allow_followup: bool = False

    @field_validator("department")
    @classmethod
    def department_must_be_known(cls, v: str) -> str:
        if v not in DEPARTMENTS:
            raise ValueError(f"department must be one of {', '.join(DEPARTMENTS)}")
        return v

    @field_validator("main_responsibilities")
    @classmethod
    def needs_enough_responsibilities(cls, v: list[str]) -> list[str]:
        cleaned = _clean_items(v)
        if len(cleaned) < MIN_RESPONSIBILITIES:
            raise ValueError(f"at least {MIN_RESPONSIBILITIES} responsibilities are required")
        return cleaned

    @field_validator("critical_skills", "communication_methods")
    @classmethod
    def list_must_not_be_empty(cls, v: list[str]) -> list[str]:
        cleaned = _clean_items(v)
        if not cleaned:
            raise ValueError("select at least one option")
        return cleaned

    @field_validator("essential_tools")
    @classmethod
    def clean_tools(cls, v: list[str]) -> list[str]:
        return _clean_items(v)

    @field_validator(
        "learning_resources",
        "common_problems",
        "solutions",
        "collaboration_tips",
        "handoff_advice",
        "final_advice",
    )
    @classmethod
    def text_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("this field is required")
        return v.strip()

    def all_tools(self) -> list[str]:
        """Selected tools plus the free-text custom entry, if any."""
        tools = list(self.essential_tools)
        if self.custom_tools.strip():
            tools.append(self.custom_tools.strip())
        return tools


class SubmissionCreatedResponse(BaseModel):
    status: str = "submitted"
    submission_id: str
    message: str = "Your knowledge has been submitted and will be reviewed soon."


class SubmissionView(BaseModel):
    """Read projection of a submission. Never exposes the token code."""

    id: str
    position_level: str
    department: str
    experience_range: str
    team_size_range: str
    main_responsibilities: list[str]
    essential_tools: list[str]
    critical_skills: list[str]
    learning_resources: str
    common_problems: str
    solutions: str
    communication_methods: list[str]
    collaboration_tips: str
    handoff_advice: str
    final_advice: str
    allow_followup: bool
    process_files: list[str]
    template_files: list[str]
    example_files: list[str]
    status: str
    created_at: datetime
    summary: str | None = None
    keywords: list[str] = []
    categories: list[str] = []
    enriched_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None

    @classmethod
    def from_submission(cls, submission: Submission) -> "SubmissionView":
        data = {name: getattr(submission, name) for name in cls.model_fields}
        data["status"] = submission.status.value
        return cls(**data)


class AdminSubmissionView(SubmissionView):
    claim_status: str

    @classmethod
    def from_submission(cls, submission: Submission) -> "AdminSubmissionView":
        data = {name: getattr(submission, name) for name in cls.model_fields}
        data["status"] = submission.status.value
        data["claim_status"] = submission.claim_status.value
        return cls(**data)
