"""Typed structures shared by the classification components.

Sender/recipient data is stored on ``EmailMessage`` as loosely typed JSON. It
is validated once into :class:`EmailAddress` when an email is loaded for
classification; scoring and matching only see the validated structures.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..config import settings
from ..models import (
    CaseStatus,
    EmailClassificationState,
    EmailMatchType,
    UserRole,
)

logger = logging.getLogger(__name__)


class EmailAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    address: str

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        cleaned = (v or "").strip().strip("<>").strip().lower()
        if "@" not in cleaned:
            raise ValueError("not an email address")
        return cleaned

    @property
    def domain(self) -> str:
        return self.address.rsplit("@", 1)[-1]


def parse_address(raw: Any) -> EmailAddress | None:
    """Validate one stored address entry; malformed entries yield None.

    Accepts ``{"name", "address"}`` objects, Graph-style
    ``{"emailAddress": {...}}`` wrappers and bare address strings.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = {"address": raw}
    elif isinstance(raw, dict) and isinstance(raw.get("emailAddress"), dict):
        raw = raw["emailAddress"]
    if not isinstance(raw, dict):
        return None
    try:
        return EmailAddress.model_validate(raw)
    except ValidationError:
        logger.debug(f"Skipping malformed address entry: {raw!r}")
        return None


def parse_addresses(raw: Any) -> tuple[EmailAddress, ...]:
    if not raw:
        return ()
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    parsed = (parse_address(item) for item in raw)
    return tuple(a for a in parsed if a is not None)


def is_sent_folder(folder_name: str | None, sent_folders: Iterable[str] | None = None) -> bool:
    if not folder_name:
        return False
    names = sent_folders if sent_folders is not None else settings.SENT_FOLDER_NAMES
    folder = folder_name.strip().lower()
    return any(folder == n.strip().lower() for n in names)


@dataclass(frozen=True)
class EmailForClassification:
    """Read-only view of an email as the scorer sees it."""

    id: uuid.UUID
    firm_id: uuid.UUID
    user_id: uuid.UUID | None
    conversation_id: str | None = None
    sender: EmailAddress | None = None
    to: tuple[EmailAddress, ...] = ()
    cc: tuple[EmailAddress, ...] = ()
    subject: str | None = None
    body_preview: str | None = None
    body_content: str | None = None
    parent_folder_name: str | None = None
    classification_state: EmailClassificationState = EmailClassificationState.PENDING
    case_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None
    is_private: bool = False
    owner_role: UserRole | None = None
    is_sent: bool = False

    @classmethod
    def from_model(
        cls,
        email: Any,
        *,
        owner_role: UserRole | None = None,
        sent_folders: Iterable[str] | None = None,
    ) -> "EmailForClassification":
        sender = None
        if email.sender_email:
            sender = parse_address(
                {"name": email.sender_name, "address": email.sender_email}
            )
        return cls(
            id=email.id,
            firm_id=email.firm_id,
            user_id=email.user_id,
            conversation_id=email.conversation_id,
            sender=sender,
            to=parse_addresses(email.recipients_to),
            cc=parse_addresses(email.recipients_cc),
            subject=email.subject,
            body_preview=email.body_preview,
            body_content=email.body_content,
            parent_folder_name=email.parent_folder_name,
            classification_state=email.classification_state,
            case_id=email.case_id,
            client_id=email.client_id,
            is_private=bool(email.is_private),
            owner_role=owner_role,
            is_sent=is_sent_folder(email.parent_folder_name, sent_folders),
        )

    @property
    def recipients(self) -> tuple[EmailAddress, ...]:
        return self.to + self.cc

    def counterpart_addresses(self) -> tuple[EmailAddress, ...]:
        """Addresses identifying the other party: recipients for sent mail."""
        if self.is_sent:
            return self.recipients
        return (self.sender,) if self.sender else ()


@dataclass(frozen=True)
class CaseProfile:
    """Everything the scorer needs to know about one candidate case."""

    id: uuid.UUID
    firm_id: uuid.UUID
    client_id: uuid.UUID | None = None
    status: CaseStatus = CaseStatus.ACTIVE
    keywords: tuple[str, ...] = ()
    reference_numbers: tuple[str, ...] = ()
    contact_emails: frozenset[str] = frozenset()
    contact_domains: frozenset[str] = frozenset()

    @classmethod
    def build(
        cls,
        *,
        id: uuid.UUID,
        firm_id: uuid.UUID,
        client_id: uuid.UUID | None = None,
        status: CaseStatus = CaseStatus.ACTIVE,
        keywords: Iterable[str | None] | None = None,
        reference_numbers: Iterable[str | None] | None = None,
        contact_emails: Iterable[str | None] | None = None,
        contact_domains: Iterable[str | None] | None = None,
    ) -> "CaseProfile":
        def _clean(values: Iterable[str | None] | None) -> tuple[str, ...]:
            out: list[str] = []
            for v in values or ():
                if isinstance(v, str) and v.strip() and v.strip() not in out:
                    out.append(v.strip())
            return tuple(out)

        return cls(
            id=id,
            firm_id=firm_id,
            client_id=client_id,
            status=status,
            keywords=_clean(keywords),
            reference_numbers=_clean(reference_numbers),
            contact_emails=frozenset(e.lower() for e in _clean(contact_emails)),
            contact_domains=frozenset(
                d.lower().lstrip("@") for d in _clean(contact_domains)
            ),
        )

    @property
    def is_active(self) -> bool:
        return self.status in (CaseStatus.ACTIVE, CaseStatus.PENDING_APPROVAL)

    @property
    def has_contacts(self) -> bool:
        return bool(self.contact_emails or self.contact_domains)


@dataclass(frozen=True)
class ClassificationResult:
    """Scorer decision. Recomputed on every run, never persisted as-is."""

    state: EmailClassificationState
    case_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None
    confidence: float | None = None
    match_type: EmailMatchType | None = None
    matched_reference: str | None = None
    matched_address: str | None = None
    scores: dict[str, float] = field(default_factory=dict, compare=False)

    @classmethod
    def classified(
        cls,
        case_id: uuid.UUID,
        confidence: float,
        match_type: EmailMatchType,
        *,
        client_id: uuid.UUID | None = None,
        matched_reference: str | None = None,
        matched_address: str | None = None,
        scores: dict[str, float] | None = None,
    ) -> "ClassificationResult":
        return cls(
            state=EmailClassificationState.CLASSIFIED,
            case_id=case_id,
            client_id=client_id,
            confidence=max(0.0, min(confidence, 1.0)),
            match_type=match_type,
            matched_reference=matched_reference,
            matched_address=matched_address,
            scores=scores or {},
        )

    @classmethod
    def client_inbox(
        cls, client_id: uuid.UUID, *, scores: dict[str, float] | None = None
    ) -> "ClassificationResult":
        return cls(
            state=EmailClassificationState.CLIENT_INBOX,
            client_id=client_id,
            scores=scores or {},
        )

    @classmethod
    def uncertain(
        cls, *, scores: dict[str, float] | None = None
    ) -> "ClassificationResult":
        return cls(state=EmailClassificationState.UNCERTAIN, scores=scores or {})

    @classmethod
    def court_unassigned(cls) -> "ClassificationResult":
        return cls(state=EmailClassificationState.COURT_UNASSIGNED)

    @classmethod
    def pending(cls) -> "ClassificationResult":
        return cls(state=EmailClassificationState.PENDING)

    @property
    def is_classified(self) -> bool:
        return self.state == EmailClassificationState.CLASSIFIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "case_id": str(self.case_id) if self.case_id else None,
            "client_id": str(self.client_id) if self.client_id else None,
            "confidence": self.confidence,
            "match_type": self.match_type.value if self.match_type else None,
            "matched_reference": self.matched_reference,
            "matched_address": self.matched_address,
            "scores": dict(self.scores),
        }


@dataclass
class BatchResult:
    """Aggregate outcome of one reclassification trigger."""

    reclassified: int = 0
    errors: int = 0
    scanned: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "reclassified": self.reclassified,
            "errors": self.errors,
            "scanned": self.scanned,
        }


@dataclass(frozen=True)
class ScoringWeights:
    threshold: float = 0.70
    contact: float = 0.6
    sole_case_bonus: float = 0.3
    reference: float = 1.0
    keyword: float = 0.2
    keyword_cap: float = 0.4
    team_scoped: bool = False

    @classmethod
    def from_settings(cls) -> "ScoringWeights":
        return cls(
            threshold=settings.CLASSIFICATION_THRESHOLD,
            contact=settings.CLASSIFICATION_CONTACT_WEIGHT,
            sole_case_bonus=settings.CLASSIFICATION_SOLE_CASE_BONUS,
            reference=settings.CLASSIFICATION_REFERENCE_WEIGHT,
            keyword=settings.CLASSIFICATION_KEYWORD_WEIGHT,
            keyword_cap=settings.CLASSIFICATION_KEYWORD_CAP,
            team_scoped=settings.CLASSIFICATION_TEAM_SCOPED,
        )
