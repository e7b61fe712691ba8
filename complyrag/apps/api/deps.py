from __future__ import annotations

from fastapi import HTTPException, Request, status

from complyrag.core.config import get_settings
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    # Built once in the app lifespan; handlers never construct providers themselves.
    return request.app.state.container


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def parse_roles(header_value: str | None) -> list[str]:
    if not header_value:
        return []
    return [role.strip() for role in header_value.split(",") if role.strip()]


async def get_principal(request: Request) -> Principal:
    """Principal asserted by the trusted gateway via subject and role headers."""
    settings = get_settings()
    subject_id = (request.headers.get(settings.auth_subject_header) or "").strip()
    if not subject_id:
        raise _auth_error(f"{settings.auth_subject_header} header is required")
    roles = parse_roles(request.headers.get(settings.auth_roles_header))
    return Principal.of(subject_id, roles)
