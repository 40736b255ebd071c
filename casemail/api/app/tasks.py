"""
Background tasks for casemail
Runs email reclassification triggered by case and contact edits.
"""

import logging
import uuid
from typing import Any, Callable
from celery import Celery
from .config import settings
from .classification.reclassifier import EmailReclassifier
from .classification.repository import SqlAlchemyClassificationRepository
from .classification.schemas import BatchResult

logger = logging.getLogger(__name__)

celery_app = Celery(
    "casemail-classification", broker=settings.REDIS_URL, backend=settings.REDIS_URL
)

# Configure Celery
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 min max per batch
    task_acks_late=True,  # Redeliver if a worker dies mid-batch
    task_reject_on_worker_lost=True,
    task_default_queue=settings.CELERY_QUEUE,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)


def _uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(str(value)) if value else None


def _run_reclassifier(
    trigger: str, run: Callable[[EmailReclassifier], BatchResult]
) -> dict[str, Any]:
    """Open a session, run one trigger and return its counts."""
    from .db import SessionLocal

    logger.info(f"Starting reclassification task: {trigger}")
    db = SessionLocal()
    try:
        reclassifier = EmailReclassifier(SqlAlchemyClassificationRepository(db))
        result = run(reclassifier)
        logger.info(f"Finished {trigger}: {result.to_dict()}")
        return result.to_dict()
    finally:
        db.close()


@celery_app.task(bind=True, name="classification.case_metadata_changed")
def reclassify_case_metadata_changed(
    self,
    case_id: str,
    firm_id: str,
    actor_user_id: str | None = None,
    keywords_changed: bool = False,
    reference_numbers_changed: bool = False,
) -> dict[str, Any]:
    return _run_reclassifier(
        f"case {case_id} metadata changed",
        lambda r: r.on_case_metadata_changed(
            uuid.UUID(case_id),
            uuid.UUID(firm_id),
            _uuid(actor_user_id),
            keywords_changed=keywords_changed,
            reference_numbers_changed=reference_numbers_changed,
        ),
    )


@celery_app.task(bind=True, name="classification.contact_added")
def reclassify_contact_added(
    self,
    contact_email: str | None,
    contact_domains: list[str] | None,
    case_id: str,
    firm_id: str,
    actor_user_id: str | None = None,
) -> dict[str, Any]:
    return _run_reclassifier(
        f"contact added to case {case_id}",
        lambda r: r.on_contact_added(
            contact_email,
            contact_domains or [],
            uuid.UUID(case_id),
            uuid.UUID(firm_id),
            _uuid(actor_user_id),
        ),
    )


@celery_app.task(bind=True, name="classification.case_reference_added")
def reclassify_case_reference_added(
    self, case_id: str, reference_number: str, firm_id: str
) -> dict[str, Any]:
    return _run_reclassifier(
        f"reference {reference_number!r} added to case {case_id}",
        lambda r: r.on_case_reference_added(
            uuid.UUID(case_id), reference_number, uuid.UUID(firm_id)
        ),
    )


@celery_app.task(bind=True, name="classification.contact_email_changed")
def reclassify_contact_email_changed(
    self,
    old_email: str | None,
    new_email: str | None,
    firm_id: str,
    actor_user_id: str | None = None,
) -> dict[str, Any]:
    return _run_reclassifier(
        "contact email changed",
        lambda r: r.on_contact_email_changed(
            old_email, new_email, uuid.UUID(firm_id), _uuid(actor_user_id)
        ),
    )


@celery_app.task(bind=True, name="classification.manual_assignment")
def reclassify_manual_assignment(
    self, email_id: str, case_id: str, user_id: str, firm_id: str
) -> dict[str, Any]:
    return _run_reclassifier(
        f"manual assignment of {email_id}",
        lambda r: r.on_manual_assignment(
            uuid.UUID(email_id),
            uuid.UUID(case_id),
            uuid.UUID(user_id),
            uuid.UUID(firm_id),
        ),
    )


@celery_app.task(bind=True, name="classification.contact_marked_private")
def ignore_private_contact_mail(
    self, contact_email: str, user_id: str, firm_id: str
) -> dict[str, Any]:
    return _run_reclassifier(
        "contact marked private",
        lambda r: r.on_contact_marked_private(
            contact_email, uuid.UUID(user_id), uuid.UUID(firm_id)
        ),
    )
