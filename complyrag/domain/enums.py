from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    COMPLIANCE_MANAGER_FULL = "compliance_manager_full"
    COMPLIANCE_MANAGER_WRITE = "compliance_manager_write"
    COMPLIANCE_MANAGER_READ = "compliance_manager_read"
    EDITOR = "editor"
    REVIEWER = "reviewer"
    RISK_MANAGER = "risk_manager"
    AUDITOR = "auditor"
    USER = "user"
    VIEWER = "viewer"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    IN_REVIEW = "inReview"
    APPROVED = "approved"
    REJECTED = "rejected"


class IndexState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Level(str, Enum):
    # Shared scale for risk probability/impact and rule priority.
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RuleStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class RiskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    ACCEPTED = "accepted"
    MITIGATED = "mitigated"


class MitigationStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    IMPLEMENTED = "implemented"
    DISCARDED = "discarded"


class MergePolicy(str, Enum):
    PRESERVE_HUMAN_EDITS = "preserve_human_edits"
    OVERWRITE = "overwrite"


LEVEL_WEIGHTS: dict[str, int] = {Level.LOW.value: 1, Level.MEDIUM.value: 2, Level.HIGH.value: 3}


def risk_score(probability: str, impact: str) -> int:
    # Score ranges 1..9; unknown levels count as low.
    return LEVEL_WEIGHTS.get(probability, 1) * LEVEL_WEIGHTS.get(impact, 1)


DEFAULT_VIEW_ROLES: tuple[str, ...] = (
    Role.ADMIN.value,
    Role.COMPLIANCE_MANAGER_FULL.value,
    Role.COMPLIANCE_MANAGER_READ.value,
    Role.COMPLIANCE_MANAGER_WRITE.value,
    Role.RISK_MANAGER.value,
    Role.USER.value,
)

DEFAULT_EDIT_ROLES: tuple[str, ...] = (
    Role.ADMIN.value,
    Role.COMPLIANCE_MANAGER_FULL.value,
    Role.COMPLIANCE_MANAGER_WRITE.value,
)
