# pyright: reportCallInDefaultInitializer=false
"""
Classification API Routes

Trigger endpoints queue reclassification and return 202 straight away; the
preview endpoint runs the scorer and writes nothing.
"""

import logging
import uuid
from dataclasses import dataclass

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from .dispatch import (
    enqueue_case_metadata_changed,
    enqueue_case_reference_added,
    enqueue_contact_added,
    enqueue_contact_email_changed,
    enqueue_contact_marked_private,
    enqueue_manual_assignment,
)
from .repository import SqlAlchemyClassificationRepository
from .scoring import ClassificationScorer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classification", tags=["classification"])


@dataclass(frozen=True)
class RequestContext:
    firm_id: uuid.UUID
    user_id: uuid.UUID | None


def request_context(request: Request) -> RequestContext:
    """Firm/user identity placed on ``request.state`` by the auth middleware."""
    firm_id = getattr(request.state, "firm_id", None)
    if not firm_id:
        raise HTTPException(status_code=401, detail="Firm context required")
    user_id = getattr(request.state, "user_id", None)
    try:
        return RequestContext(
            firm_id=uuid.UUID(str(firm_id)),
            user_id=uuid.UUID(str(user_id)) if user_id else None,
        )
    except (ValueError, AttributeError, TypeError):
        logger.debug(f"Invalid request context: firm={firm_id!r} user={user_id!r}")
        raise HTTPException(status_code=401, detail="Invalid firm context")


class TriggerResponse(BaseModel):
    queued: bool
    task_id: str | None = None


class MetadataChangedRequest(BaseModel):
    keywords_changed: bool = False
    reference_numbers_changed: bool = False


class ReferenceAddedRequest(BaseModel):
    reference_number: str = Field(min_length=1, max_length=200)


class ContactAddedRequest(BaseModel):
    email: str | None = None
    domains: list[str] = Field(default_factory=list)


class ContactEmailChangedRequest(BaseModel):
    old_email: str | None = None
    new_email: str | None = None


class ManualAssignmentRequest(BaseModel):
    case_id: uuid.UUID


class ContactMarkedPrivateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)


def _queued(task_id: str | None) -> TriggerResponse:
    return TriggerResponse(queued=task_id is not None, task_id=task_id)


@router.post(
    "/cases/{case_id}/metadata-changed",
    response_model=TriggerResponse,
    status_code=202,
)
def case_metadata_changed(
    case_id: uuid.UUID,
    body: MetadataChangedRequest,
    ctx: RequestContext = Depends(request_context),
):
    return _queued(
        enqueue_case_metadata_changed(
            case_id,
            ctx.firm_id,
            ctx.user_id,
            keywords_changed=body.keywords_changed,
            reference_numbers_changed=body.reference_numbers_changed,
        )
    )


@router.post(
    "/cases/{case_id}/references", response_model=TriggerResponse, status_code=202
)
def case_reference_added(
    case_id: uuid.UUID,
    body: ReferenceAddedRequest,
    ctx: RequestContext = Depends(request_context),
):
    return _queued(
        enqueue_case_reference_added(case_id, body.reference_number, ctx.firm_id)
    )


@router.post(
    "/cases/{case_id}/contacts", response_model=TriggerResponse, status_code=202
)
def case_contact_added(
    case_id: uuid.UUID,
    body: ContactAddedRequest,
    ctx: RequestContext = Depends(request_context),
):
    if not body.email and not body.domains:
        raise HTTPException(status_code=422, detail="email or domains required")
    return _queued(
        enqueue_contact_added(
            body.email, body.domains, case_id, ctx.firm_id, ctx.user_id
        )
    )


@router.post(
    "/contacts/email-changed", response_model=TriggerResponse, status_code=202
)
def contact_email_changed(
    body: ContactEmailChangedRequest,
    ctx: RequestContext = Depends(request_context),
):
    return _queued(
        enqueue_contact_email_changed(
            body.old_email, body.new_email, ctx.firm_id, ctx.user_id
        )
    )


@router.post(
    "/contacts/marked-private", response_model=TriggerResponse, status_code=202
)
def contact_marked_private(
    body: ContactMarkedPrivateRequest,
    ctx: RequestContext = Depends(request_context),
):
    if ctx.user_id is None:
        raise HTTPException(status_code=401, detail="User context required")
    return _queued(
        enqueue_contact_marked_private(body.email, ctx.user_id, ctx.firm_id)
    )


@router.post(
    "/emails/{email_id}/manual-assignment",
    response_model=TriggerResponse,
    status_code=202,
)
def manual_assignment(
    email_id: uuid.UUID,
    body: ManualAssignmentRequest,
    ctx: RequestContext = Depends(request_context),
):
    if ctx.user_id is None:
        raise HTTPException(status_code=401, detail="User context required")
    return _queued(
        enqueue_manual_assignment(email_id, body.case_id, ctx.user_id, ctx.firm_id)
    )


@router.get("/emails/{email_id}/preview")
def preview_classification(
    email_id: uuid.UUID,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
):
    """Classification the scorer would make for this email right now."""
    repository = SqlAlchemyClassificationRepository(db)
    email = repository.get_email(email_id, ctx.firm_id)
    if email is None:
        raise HTTPException(status_code=404, detail="Email not found")
    result = ClassificationScorer(repository).classify(
        email, ctx.firm_id, email.user_id
    )
    return {"email_id": str(email_id), **result.to_dict()}
