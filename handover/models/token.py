from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"
    CLAIM_CONFLICT = "claim_conflict"


@dataclass
class AccessToken:
    code: str
    issued_by: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: datetime | None = None

    def is_usable(self, now: datetime) -> bool:
        return not self.consumed and now < self.expires_at

    def display_state(self, now: datetime) -> str:
        """Admin listing label: used, expired or active."""
        if self.consumed:
            return "used"
        if now >= self.expires_at:
            return "expired"
        return "active"


@dataclass(frozen=True)
class RedemptionResult:
    status: TokenStatus
    # Set only on a failed claim: why the conditional update matched no row.
    cause: TokenStatus | None = None

    @property
    def ok(self) -> bool:
        return self.status is TokenStatus.OK
