"""Data access for classification.

Every query here carries a ``firm_id`` filter; nothing in this module may
return or touch rows belonging to another firm.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Protocol, Sequence

from sqlalchemy import String, case, cast, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, selectinload

from ..config import settings
from ..models import (
    CLASSIFIABLE_CASE_STATUSES,
    Case,
    CaseTeamMember,
    EmailCaseLink,
    EmailClassificationState,
    EmailMatchType,
    EmailMessage,
    EmailSourceCategory,
    Firm,
    GlobalEmailSource,
    User,
)
from .contacts import normalize_domain, normalize_email
from .schemas import CaseProfile, EmailForClassification

logger = logging.getLogger(__name__)


class ClassificationRepository(Protocol):
    def get_case_profile(
        self, case_id: uuid.UUID, firm_id: uuid.UUID
    ) -> CaseProfile | None: ...

    def load_case_profiles(
        self, firm_id: uuid.UUID, member_user_id: uuid.UUID | None = None
    ) -> list[CaseProfile]: ...

    def get_firm_threshold(self, firm_id: uuid.UUID) -> float | None: ...

    def find_thread_assignment(
        self,
        firm_id: uuid.UUID,
        conversation_id: str,
        exclude_email_id: uuid.UUID | None = None,
    ) -> uuid.UUID | None: ...

    def load_court_source_contacts(
        self, firm_id: uuid.UUID
    ) -> tuple[list[str], list[str]]: ...

    def get_email(
        self, email_id: uuid.UUID, firm_id: uuid.UUID
    ) -> EmailForClassification | None: ...

    def find_contact_candidates(
        self,
        firm_id: uuid.UUID,
        states: Sequence[EmailClassificationState],
        *,
        emails: Iterable[str] = (),
        domains: Iterable[str] = (),
        limit: int,
        exclude_email_ids: Iterable[uuid.UUID] = (),
        exclude_conversation_id: str | None = None,
    ) -> list[EmailForClassification]: ...

    def find_court_unassigned(
        self, firm_id: uuid.UUID, limit: int
    ) -> list[EmailForClassification]: ...

    def upsert_case_link(
        self,
        email_id: uuid.UUID,
        case_id: uuid.UUID,
        *,
        confidence: float,
        match_type: EmailMatchType,
        linked_by: str,
        is_primary: bool = True,
    ) -> None: ...

    def mark_classified(
        self,
        email_id: uuid.UUID,
        firm_id: uuid.UUID,
        *,
        case_id: uuid.UUID,
        client_id: uuid.UUID | None,
        confidence: float,
        classified_by: str,
        private_by: uuid.UUID | None = None,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool: ...

    def update_state(
        self,
        email_id: uuid.UUID,
        firm_id: uuid.UUID,
        state: EmailClassificationState,
        *,
        client_id: uuid.UUID | None = None,
        classified_by: str | None = None,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool: ...

    def ignore_sender_emails(
        self,
        firm_id: uuid.UUID,
        sender_email: str,
        states: Sequence[EmailClassificationState],
        *,
        ignored_by: str,
    ) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _case_to_profile(case_row: Case) -> CaseProfile:
    emails: list[str | None] = []
    domains: list[str | None] = []
    for actor in case_row.actors:
        emails.append(normalize_email(actor.email))
        for d in actor.email_domains or []:
            if isinstance(d, str):
                domains.append(normalize_domain(d))
    if case_row.client is not None:
        emails.append(normalize_email(case_row.client.contact_email))
    return CaseProfile.build(
        id=case_row.id,
        firm_id=case_row.firm_id,
        client_id=case_row.client_id,
        status=case_row.status,
        keywords=[k for k in (case_row.keywords or []) if isinstance(k, str)],
        reference_numbers=[
            r for r in (case_row.reference_numbers or []) if isinstance(r, str)
        ],
        contact_emails=emails,
        contact_domains=domains,
    )


class SqlAlchemyClassificationRepository:
    """ClassificationRepository over a SQLAlchemy session.

    Write methods commit on success and roll back before re-raising, so one
    failed email leaves the session usable for the next one in the batch.
    """

    def __init__(self, db: Session, sent_folders: Iterable[str] | None = None):
        self.db = db
        self.sent_folders = tuple(
            sent_folders if sent_folders is not None else settings.SENT_FOLDER_NAMES
        )

    # ------------------------------------------------------------------
    # Cases

    def _case_query(self, firm_id: uuid.UUID):
        return (
            select(Case)
            .where(Case.firm_id == firm_id)
            .options(selectinload(Case.actors), selectinload(Case.client))
        )

    def get_case_profile(
        self, case_id: uuid.UUID, firm_id: uuid.UUID
    ) -> CaseProfile | None:
        row = self.db.execute(
            self._case_query(firm_id).where(Case.id == case_id)
        ).scalar_one_or_none()
        return _case_to_profile(row) if row is not None else None

    def load_case_profiles(
        self, firm_id: uuid.UUID, member_user_id: uuid.UUID | None = None
    ) -> list[CaseProfile]:
        stmt = self._case_query(firm_id).where(
            Case.status.in_(CLASSIFIABLE_CASE_STATUSES)
        )
        if member_user_id is not None:
            stmt = stmt.join(CaseTeamMember, CaseTeamMember.case_id == Case.id).where(
                CaseTeamMember.user_id == member_user_id
            )
        rows = self.db.execute(stmt.order_by(Case.created_at, Case.id)).scalars()
        return [_case_to_profile(r) for r in rows.unique()]

    def get_firm_threshold(self, firm_id: uuid.UUID) -> float | None:
        return self.db.execute(
            select(Firm.classification_threshold).where(Firm.id == firm_id)
        ).scalar_one_or_none()

    def find_thread_assignment(
        self,
        firm_id: uuid.UUID,
        conversation_id: str,
        exclude_email_id: uuid.UUID | None = None,
    ) -> uuid.UUID | None:
        if not conversation_id:
            return None
        stmt = select(EmailMessage.case_id).where(
            EmailMessage.firm_id == firm_id,
            EmailMessage.conversation_id == conversation_id,
            EmailMessage.classification_state == EmailClassificationState.CLASSIFIED,
            EmailMessage.case_id.is_not(None),
        )
        if exclude_email_id is not None:
            stmt = stmt.where(EmailMessage.id != exclude_email_id)
        stmt = stmt.order_by(EmailMessage.received_at.desc().nulls_last()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def load_court_source_contacts(
        self, firm_id: uuid.UUID
    ) -> tuple[list[str], list[str]]:
        rows = self.db.execute(
            select(GlobalEmailSource).where(
                GlobalEmailSource.firm_id == firm_id,
                GlobalEmailSource.category.in_(
                    (EmailSourceCategory.COURT, EmailSourceCategory.AUTHORITY)
                ),
            )
        ).scalars()
        emails: list[str] = []
        domains: list[str] = []
        for source in rows:
            emails.extend(e for e in (source.emails or []) if isinstance(e, str))
            domains.extend(d for d in (source.domains or []) if isinstance(d, str))
        return emails, domains

    # ------------------------------------------------------------------
    # Emails

    def _email_query(self, firm_id: uuid.UUID):
        return (
            select(EmailMessage, User.role)
            .outerjoin(User, User.id == EmailMessage.user_id)
            .where(EmailMessage.firm_id == firm_id)
        )

    def _to_view(self, rows) -> list[EmailForClassification]:
        return [
            EmailForClassification.from_model(
                email, owner_role=role, sent_folders=self.sent_folders
            )
            for email, role in rows
        ]

    def get_email(
        self, email_id: uuid.UUID, firm_id: uuid.UUID
    ) -> EmailForClassification | None:
        rows = self.db.execute(
            self._email_query(firm_id).where(EmailMessage.id == email_id)
        ).all()
        views = self._to_view(rows)
        return views[0] if views else None

    def find_contact_candidates(
        self,
        firm_id: uuid.UUID,
        states: Sequence[EmailClassificationState],
        *,
        emails: Iterable[str] = (),
        domains: Iterable[str] = (),
        limit: int,
        exclude_email_ids: Iterable[uuid.UUID] = (),
        exclude_conversation_id: str | None = None,
    ) -> list[EmailForClassification]:
        """Unassigned emails in ``states`` that mention any of the contacts.

        The address filter is a coarse text pre-filter over the sender and the
        JSON recipient lists; callers confirm matches in memory.
        """
        sender = func.lower(func.coalesce(EmailMessage.sender_email, ""))
        to_text = func.lower(cast(EmailMessage.recipients_to, String))
        cc_text = func.lower(cast(EmailMessage.recipients_cc, String))

        conditions = []
        for e in {normalize_email(e) for e in emails}:
            if not e:
                continue
            conditions.append(sender == e)
            conditions.append(to_text.contains(e, autoescape=True))
            conditions.append(cc_text.contains(e, autoescape=True))
        for d in {normalize_domain(d) for d in domains}:
            if not d:
                continue
            conditions.append(sender.endswith(f"@{d}", autoescape=True))
            conditions.append(to_text.contains(f"@{d}", autoescape=True))
            conditions.append(cc_text.contains(f"@{d}", autoescape=True))
        if not conditions:
            return []

        stmt = self._email_query(firm_id).where(
            EmailMessage.classification_state.in_(list(states)),
            EmailMessage.case_id.is_(None),
            or_(*conditions),
        )
        excluded = list(exclude_email_ids)
        if excluded:
            stmt = stmt.where(EmailMessage.id.not_in(excluded))
        if exclude_conversation_id:
            stmt = stmt.where(
                or_(
                    EmailMessage.conversation_id.is_(None),
                    EmailMessage.conversation_id != exclude_conversation_id,
                )
            )
        stmt = stmt.order_by(
            EmailMessage.received_at.desc().nulls_last(), EmailMessage.id
        ).limit(limit)
        return self._to_view(self.db.execute(stmt).all())

    def find_court_unassigned(
        self, firm_id: uuid.UUID, limit: int
    ) -> list[EmailForClassification]:
        stmt = (
            self._email_query(firm_id)
            .where(
                EmailMessage.classification_state
                == EmailClassificationState.COURT_UNASSIGNED
            )
            .order_by(EmailMessage.received_at.desc().nulls_last(), EmailMessage.id)
            .limit(limit)
        )
        return self._to_view(self.db.execute(stmt).all())

    # ------------------------------------------------------------------
    # Writes

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise NotImplementedError(f"Case link upsert not supported on {dialect}")

    def upsert_case_link(
        self,
        email_id: uuid.UUID,
        case_id: uuid.UUID,
        *,
        confidence: float,
        match_type: EmailMatchType,
        linked_by: str,
        is_primary: bool = True,
    ) -> None:
        table = EmailCaseLink.__table__
        now = _utcnow()
        stmt = self._insert()(table).values(
            id=uuid.uuid4(),
            email_id=email_id,
            case_id=case_id,
            confidence=confidence,
            match_type=match_type,
            linked_by=linked_by,
            is_primary=is_primary,
            linked_at=now,
        )
        # A full-confidence link keeps its confidence and provenance.
        is_certain = table.c.confidence >= 1.0
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.email_id, table.c.case_id],
            set_={
                "confidence": case(
                    (is_certain, table.c.confidence), else_=stmt.excluded.confidence
                ),
                "match_type": case(
                    (is_certain, table.c.match_type), else_=stmt.excluded.match_type
                ),
                "linked_by": case(
                    (is_certain, table.c.linked_by), else_=stmt.excluded.linked_by
                ),
                "is_primary": stmt.excluded.is_primary,
                "linked_at": stmt.excluded.linked_at,
            },
        )
        try:
            if is_primary:
                self.db.execute(
                    update(EmailCaseLink)
                    .where(
                        EmailCaseLink.email_id == email_id,
                        EmailCaseLink.case_id != case_id,
                        EmailCaseLink.is_primary.is_(True),
                    )
                    .values(is_primary=False)
                    .execution_options(synchronize_session=False)
                )
            self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def mark_classified(
        self,
        email_id: uuid.UUID,
        firm_id: uuid.UUID,
        *,
        case_id: uuid.UUID,
        client_id: uuid.UUID | None,
        confidence: float,
        classified_by: str,
        private_by: uuid.UUID | None = None,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool:
        now = _utcnow()
        values = {
            "case_id": case_id,
            "client_id": client_id,
            "classification_state": EmailClassificationState.CLASSIFIED,
            "classification_confidence": round(max(0.0, min(confidence, 1.0)), 4),
            "classified_at": now,
            "classified_by": classified_by,
        }
        if private_by is not None:
            values.update(
                is_private=True, marked_private_by=private_by, marked_private_at=now
            )
        return self._update_email(email_id, firm_id, values, from_states)

    def update_state(
        self,
        email_id: uuid.UUID,
        firm_id: uuid.UUID,
        state: EmailClassificationState,
        *,
        client_id: uuid.UUID | None = None,
        classified_by: str | None = None,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool:
        return self._update_email(
            email_id,
            firm_id,
            {
                "classification_state": state,
                "client_id": client_id,
                "classified_at": _utcnow(),
                "classified_by": classified_by,
            },
            from_states,
        )

    def ignore_sender_emails(
        self,
        firm_id: uuid.UUID,
        sender_email: str,
        states: Sequence[EmailClassificationState],
        *,
        ignored_by: str,
    ) -> int:
        """Soft-ignore every email in ``states`` sent from ``sender_email``."""
        address = normalize_email(sender_email)
        if not address or not states:
            return 0
        now = _utcnow()
        try:
            result = self.db.execute(
                update(EmailMessage)
                .where(
                    EmailMessage.firm_id == firm_id,
                    func.lower(func.trim(EmailMessage.sender_email)) == address,
                    EmailMessage.classification_state.in_(list(states)),
                )
                .values(
                    classification_state=EmailClassificationState.IGNORED,
                    is_ignored=True,
                    ignored_at=now,
                    classified_at=now,
                    classified_by=ignored_by,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount

    def _update_email(
        self,
        email_id: uuid.UUID,
        firm_id: uuid.UUID,
        values: dict,
        from_states: Sequence[EmailClassificationState] | None = None,
    ) -> bool:
        """Apply ``values`` to one email.

        With ``from_states`` the update only lands while the email is still
        unassigned and in one of those states; otherwise it is skipped and
        False is returned. Without a guard a missing email raises LookupError.
        """
        stmt = update(EmailMessage).where(
            EmailMessage.id == email_id, EmailMessage.firm_id == firm_id
        )
        if from_states is not None:
            stmt = stmt.where(
                EmailMessage.classification_state.in_(list(from_states)),
                EmailMessage.case_id.is_(None),
            )
        try:
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                if from_states is None:
                    raise LookupError(f"email {email_id} not found in firm {firm_id}")
                self.db.rollback()
                logger.debug(
                    f"Email {email_id} no longer unassigned in "
                    f"{[s.value for s in from_states]}; update skipped"
                )
                return False
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return True
