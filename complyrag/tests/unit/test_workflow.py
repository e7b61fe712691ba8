from __future__ import annotations

import itertools

import pytest

from complyrag.core.errors import InvalidTransition, NotFoundError, PermissionDenied, ValidationError
from complyrag.services.workflow import TRANSITIONS, VALID_STATUSES, check_transition
from complyrag.tests.utils.fakes import ADMIN, make_container, principal


REVIEWER = principal("reviewer", subject_id="rev-1")
EDITOR = principal("editor", subject_id="ed-1")
VIEWER = principal("viewer", subject_id="view-1")


@pytest.mark.parametrize("current, target", sorted(itertools.product(VALID_STATUSES, repeat=2)))
def test_transition_table_is_exhaustive(current: str, target: str) -> None:
    if (current, target) in TRANSITIONS:
        check_transition(ADMIN, current, target)
    else:
        with pytest.raises(InvalidTransition):
            check_transition(ADMIN, current, target)


def test_draft_to_approved_is_invalid_even_for_reviewer() -> None:
    with pytest.raises(InvalidTransition) as exc_info:
        check_transition(REVIEWER, "draft", "approved")
    assert exc_info.value.current == "draft"
    assert exc_info.value.target == "approved"


def test_unknown_target_is_validation_error() -> None:
    with pytest.raises(ValidationError):
        check_transition(ADMIN, "draft", "published")


def test_reviewer_and_submitter_capabilities() -> None:
    check_transition(REVIEWER, "inReview", "approved")
    check_transition(EDITOR, "draft", "inReview")
    check_transition(EDITOR, "approved", "draft")
    with pytest.raises(PermissionDenied):
        check_transition(EDITOR, "inReview", "approved")
    with pytest.raises(PermissionDenied):
        check_transition(REVIEWER, "draft", "inReview")


async def _upload(container) -> str:
    doc, _ = await container.versions.upload(
        content=b"Access reviews happen quarterly.",
        name="access.txt",
        media_type="text/plain",
        principal=ADMIN,
    )
    return doc.id


@pytest.mark.asyncio
async def test_change_status_stamps_actor() -> None:
    container = make_container()
    document_id = await _upload(container)

    doc = await container.workflow.change_status(document_id, "inReview", EDITOR)
    assert doc.status == "inReview"
    assert doc.status_changed_by == "ed-1"
    assert doc.status_changed_at is not None

    doc = await container.workflow.change_status(document_id, "approved", REVIEWER)
    assert doc.status == "approved"
    assert doc.status_changed_by == "rev-1"


@pytest.mark.asyncio
async def test_change_status_by_non_reviewer_is_denied() -> None:
    container = make_container()
    document_id = await _upload(container)
    await container.workflow.change_status(document_id, "inReview", EDITOR)

    with pytest.raises(PermissionDenied):
        await container.workflow.change_status(document_id, "approved", VIEWER)

    doc = await container.versions.get_document(document_id, ADMIN)
    assert doc.status == "inReview"


@pytest.mark.asyncio
async def test_change_status_direct_approval_is_rejected() -> None:
    container = make_container()
    document_id = await _upload(container)

    with pytest.raises(InvalidTransition):
        await container.workflow.change_status(document_id, "approved", REVIEWER)


@pytest.mark.asyncio
async def test_change_status_unknown_document() -> None:
    container = make_container()

    with pytest.raises(NotFoundError):
        await container.workflow.change_status("missing", "inReview", ADMIN)
