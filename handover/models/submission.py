from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from handover.models.timestamps import utcnow


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    CONFLICT = "conflict"


class FileCategory(str, Enum):
    PROCESS = "process"
    TEMPLATE = "template"
    EXAMPLE = "example"

    @property
    def bucket(self) -> str:
        return _BUCKETS[self]


_BUCKETS = {
    FileCategory.PROCESS: "process-documents",
    FileCategory.TEMPLATE: "templates",
    FileCategory.EXAMPLE: "examples",
}


@dataclass
class IncomingFile:
    """A file as received from the client. The filename is never persisted."""

    filename: str
    content: bytes


@dataclass
class StoredFile:
    name: str
    category: FileCategory

    @property
    def bucket(self) -> str:
        return self.category.bucket


@dataclass
class Submission:
    id: str
    token_code: str
    position_level: str
    department: str
    experience_range: str
    team_size_range: str
    main_responsibilities: list[str] = field(default_factory=list)
    essential_tools: list[str] = field(default_factory=list)
    critical_skills: list[str] = field(default_factory=list)
    learning_resources: str = ""
    common_problems: str = ""
    solutions: str = ""
    communication_methods: list[str] = field(default_factory=list)
    collaboration_tips: str = ""
    handoff_advice: str = ""
    final_advice: str = ""
    allow_followup: bool = False
    process_files: list[str] = field(default_factory=list)
    template_files: list[str] = field(default_factory=list)
    example_files: list[str] = field(default_factory=list)
    status: SubmissionStatus = SubmissionStatus.PENDING
    claim_status: ClaimStatus = ClaimStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    summary: str | None = None
    keywords: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    enriched_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
