from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from ..config import settings
from ..models import EmailClassificationState, EmailMatchType, UserRole
from .repository import ClassificationRepository
from .schemas import EmailForClassification

logger = logging.getLogger(__name__)


class ReclassificationError(Exception):
    """Base error for failures while re-evaluating one email."""


class AssignmentError(ReclassificationError):
    """One or both writes of a case assignment failed."""

    def __init__(self, email_id: uuid.UUID, failures: list[tuple[str, Exception]]):
        self.email_id = email_id
        self.failures = failures
        detail = "; ".join(f"{step}: {exc}" for step, exc in failures)
        super().__init__(f"Assignment of email {email_id} failed ({detail})")


class CaseAssigner:
    """Persist an email-to-case assignment.

    Two writes: the legacy EmailMessage fields (state guarded) and the
    EmailCaseLink upsert. Once the guard holds both are attempted; neither is
    rolled back if the other fails.
    """

    def __init__(
        self,
        repository: ClassificationRepository,
        private_roles: Iterable[str] | None = None,
    ):
        self.repository = repository
        roles = (
            private_roles
            if private_roles is not None
            else settings.PRIVATE_BY_DEFAULT_ROLES
        )
        self.private_roles = frozenset(str(r).upper() for r in roles)

    def is_private_owner(self, email: EmailForClassification) -> bool:
        role = email.owner_role
        if role is None:
            return False
        value = role.value if isinstance(role, UserRole) else str(role)
        return value.upper() in self.private_roles

    def assign(
        self,
        email: EmailForClassification,
        case_id: uuid.UUID,
        client_id: uuid.UUID | None,
        *,
        confidence: float,
        match_type: EmailMatchType,
        linked_by: str,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool:
        """File ``email`` to ``case_id``; False when the email moved on first.

        The email update is guarded on ``from_states`` (default: the state the
        email was read in) and on ``case_id IS NULL``. When the guard no longer
        holds nothing is written, so a concurrent filing is never overwritten
        and no other link is demoted.
        """
        if from_states is None:
            from_states = (email.classification_state,)
        confidence = round(max(0.0, min(confidence, 1.0)), 4)
        failures: list[tuple[str, Exception]] = []

        private_by = email.user_id if self.is_private_owner(email) else None
        try:
            applied = self.repository.mark_classified(
                email.id,
                email.firm_id,
                case_id=case_id,
                client_id=client_id,
                confidence=confidence,
                classified_by=linked_by,
                private_by=private_by,
                from_states=from_states,
            )
            if not applied:
                logger.info(
                    f"Email {email.id} was classified elsewhere; not filing to case {case_id}"
                )
                return False
        except Exception as e:
            failures.append(("email update", e))

        try:
            self.repository.upsert_case_link(
                email.id,
                case_id,
                confidence=confidence,
                match_type=match_type,
                linked_by=linked_by,
                is_primary=True,
            )
        except Exception as e:
            failures.append(("case link", e))

        if failures:
            raise AssignmentError(email.id, failures) from failures[0][1]

        if private_by is not None:
            logger.debug(f"Email {email.id} marked private for owner {private_by}")
        return True
