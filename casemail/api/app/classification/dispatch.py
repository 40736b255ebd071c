"""Fire-and-forget submission of reclassification triggers.

Mutation handlers call these after committing their own change. Submission
never raises: a broker failure is logged and reported as ``None`` so the
originating request still succeeds.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from ..config import settings

logger = logging.getLogger(__name__)


def _str(value: uuid.UUID | str | None) -> str | None:
    return str(value) if value is not None else None


def _submit(task: Any, description: str, **kwargs: Any) -> str | None:
    try:
        async_result = task.apply_async(kwargs=kwargs, queue=settings.CELERY_QUEUE)
    except Exception as e:
        logger.error(f"Failed to enqueue {description}: {e}")
        return None
    logger.debug(f"Enqueued {description} as task {async_result.id}")
    return async_result.id


def enqueue_case_metadata_changed(
    case_id: uuid.UUID | str,
    firm_id: uuid.UUID | str,
    actor_user_id: uuid.UUID | str | None = None,
    *,
    keywords_changed: bool = False,
    reference_numbers_changed: bool = False,
) -> str | None:
    from ..tasks import reclassify_case_metadata_changed

    return _submit(
        reclassify_case_metadata_changed,
        f"metadata reclassification for case {case_id}",
        case_id=_str(case_id),
        firm_id=_str(firm_id),
        actor_user_id=_str(actor_user_id),
        keywords_changed=keywords_changed,
        reference_numbers_changed=reference_numbers_changed,
    )


def enqueue_contact_added(
    contact_email: str | None,
    contact_domains: Iterable[str] | None,
    case_id: uuid.UUID | str,
    firm_id: uuid.UUID | str,
    actor_user_id: uuid.UUID | str | None = None,
) -> str | None:
    from ..tasks import reclassify_contact_added

    return _submit(
        reclassify_contact_added,
        f"contact reclassification for case {case_id}",
        contact_email=contact_email,
        contact_domains=list(contact_domains or []),
        case_id=_str(case_id),
        firm_id=_str(firm_id),
        actor_user_id=_str(actor_user_id),
    )


def enqueue_case_reference_added(
    case_id: uuid.UUID | str, reference_number: str, firm_id: uuid.UUID | str
) -> str | None:
    from ..tasks import reclassify_case_reference_added

    return _submit(
        reclassify_case_reference_added,
        f"court folder scan for case {case_id}",
        case_id=_str(case_id),
        reference_number=reference_number,
        firm_id=_str(firm_id),
    )


def enqueue_contact_email_changed(
    old_email: str | None,
    new_email: str | None,
    firm_id: uuid.UUID | str,
    actor_user_id: uuid.UUID | str | None = None,
) -> str | None:
    from ..tasks import reclassify_contact_email_changed

    return _submit(
        reclassify_contact_email_changed,
        "contact email change reclassification",
        old_email=old_email,
        new_email=new_email,
        firm_id=_str(firm_id),
        actor_user_id=_str(actor_user_id),
    )


def enqueue_manual_assignment(
    email_id: uuid.UUID | str,
    case_id: uuid.UUID | str,
    user_id: uuid.UUID | str,
    firm_id: uuid.UUID | str,
) -> str | None:
    from ..tasks import reclassify_manual_assignment

    return _submit(
        reclassify_manual_assignment,
        f"pattern reclassification from email {email_id}",
        email_id=_str(email_id),
        case_id=_str(case_id),
        user_id=_str(user_id),
        firm_id=_str(firm_id),
    )


def enqueue_contact_marked_private(
    contact_email: str,
    user_id: uuid.UUID | str,
    firm_id: uuid.UUID | str,
) -> str | None:
    from ..tasks import ignore_private_contact_mail

    return _submit(
        ignore_private_contact_mail,
        "private contact ignore",
        contact_email=contact_email,
        user_id=_str(user_id),
        firm_id=_str(firm_id),
    )
