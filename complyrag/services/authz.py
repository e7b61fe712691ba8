from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from complyrag.core.errors import PermissionDenied
from complyrag.domain.enums import Role
from complyrag.domain.models import Document


ADMIN_ROLES = frozenset({Role.ADMIN.value})
# Roles allowed to create new documents.
UPLOAD_ROLES = frozenset(
    {Role.ADMIN.value, Role.COMPLIANCE_MANAGER_FULL.value, Role.COMPLIANCE_MANAGER_WRITE.value}
)
# Edit any document regardless of its own edit_roles.
GENERAL_EDIT_ROLES = frozenset(
    {Role.EDITOR.value, Role.COMPLIANCE_MANAGER_FULL.value, Role.COMPLIANCE_MANAGER_WRITE.value}
)
SUGGEST_ROLES = UPLOAD_ROLES
BATCH_ROLES = frozenset({Role.ADMIN.value, Role.COMPLIANCE_MANAGER_FULL.value})
RULE_EDIT_ROLES = UPLOAD_ROLES
RISK_EDIT_ROLES = UPLOAD_ROLES | {Role.RISK_MANAGER.value}


@dataclass(frozen=True)
class Principal:
    subject_id: str
    roles: frozenset[str]

    @classmethod
    def of(cls, subject_id: str, roles: Iterable[str]) -> "Principal":
        return cls(subject_id=subject_id, roles=frozenset(r for r in roles if r))

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & ADMIN_ROLES)

    def has_any(self, roles: Iterable[str]) -> bool:
        return self.is_admin or bool(self.roles & set(roles))


def can_view(principal: Principal, doc: Document) -> bool:
    return principal.is_admin or bool(principal.roles & set(doc.view_roles or []))


def can_edit(principal: Principal, doc: Document) -> bool:
    if principal.is_admin or principal.roles & GENERAL_EDIT_ROLES:
        return True
    return bool(principal.roles & set(doc.edit_roles or []))


def require_view(principal: Principal, doc: Document) -> None:
    if not can_view(principal, doc):
        raise PermissionDenied(f"no view access to document {doc.id}")


def require_edit(principal: Principal, doc: Document) -> None:
    if not can_edit(principal, doc):
        raise PermissionDenied(f"no edit access to document {doc.id}")


def require_roles(principal: Principal, roles: Iterable[str], action: str) -> None:
    if not principal.has_any(roles):
        raise PermissionDenied(f"roles {sorted(principal.roles)} may not {action}")
