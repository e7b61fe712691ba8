from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.errors import InvalidTransition, NotFoundError, PermissionDenied, ValidationError
from complyrag.domain.enums import DocumentStatus, Role
from complyrag.domain.models import Document
from complyrag.persistence.repos import documents as documents_repo
from complyrag.services.authz import Principal


logger = logging.getLogger(__name__)


SUBMITTER_ROLES = frozenset(
    {Role.EDITOR.value, Role.COMPLIANCE_MANAGER_WRITE.value, Role.COMPLIANCE_MANAGER_FULL.value}
)
REVIEWER_ROLES = frozenset({Role.REVIEWER.value, Role.COMPLIANCE_MANAGER_FULL.value})

_DRAFT = DocumentStatus.DRAFT.value
_IN_REVIEW = DocumentStatus.IN_REVIEW.value
_APPROVED = DocumentStatus.APPROVED.value
_REJECTED = DocumentStatus.REJECTED.value

# Exhaustive: any (from, to) pair missing here is an invalid transition.
TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (_DRAFT, _IN_REVIEW): SUBMITTER_ROLES,
    (_IN_REVIEW, _APPROVED): REVIEWER_ROLES,
    (_IN_REVIEW, _REJECTED): REVIEWER_ROLES,
    (_IN_REVIEW, _DRAFT): REVIEWER_ROLES,
    (_APPROVED, _DRAFT): SUBMITTER_ROLES,
    (_REJECTED, _DRAFT): SUBMITTER_ROLES,
}

VALID_STATUSES = frozenset(status.value for status in DocumentStatus)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def required_roles(current: str, target: str) -> frozenset[str]:
    if target not in VALID_STATUSES:
        raise ValidationError(f"unknown target status: {target}")
    roles = TRANSITIONS.get((current, target))
    if roles is None:
        raise InvalidTransition(current, target)
    return roles


def check_transition(principal: Principal, current: str, target: str) -> None:
    """Raise unless principal may move a document from current to target.

    Administrators skip the capability check but not the table.
    """
    roles = required_roles(current, target)
    if principal.is_admin:
        return
    if not principal.roles & roles:
        raise PermissionDenied(f"transition {current} -> {target} requires one of {sorted(roles)}")


class WorkflowEngine:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def change_status(self, document_id: str, target: str, principal: Principal) -> Document:
        if target not in VALID_STATUSES:
            raise ValidationError(f"unknown target status: {target}")
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            current = doc.status
            check_transition(principal, current, target)

            swapped = await documents_repo.compare_and_set_status(
                session,
                document_id,
                expected=current,
                target=target,
                actor=principal.subject_id,
                changed_at=_utc_now(),
            )
            if not swapped:
                await session.rollback()
                latest = await documents_repo.get_document(session, document_id)
                latest_status = latest.status if latest is not None else current
                raise InvalidTransition(
                    latest_status,
                    target,
                    f"status of {document_id} changed concurrently (now {latest_status})",
                )
            await session.commit()
            await session.refresh(doc)
            logger.info(
                "document_status_changed document_id=%s from=%s to=%s by=%s",
                document_id,
                current,
                target,
                principal.subject_id,
            )
            return doc
