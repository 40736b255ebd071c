from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    String,
    DateTime,
    Text,
    JSON,
    Enum,
    Float,
    ForeignKey,
    Boolean,
    Index,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func, expression
from sqlalchemy.orm import relationship, Mapped, mapped_column
from enum import Enum as PyEnum
from .db import Base


class UserRole(str, PyEnum):
    """
    Firm roles (highest to lowest):
    - ADMIN: platform operators
    - BUSINESS_OWNER / PARTNER: firm owners, see all firm cases
    - ASSOCIATE / PARALEGAL: case team members
    """

    ADMIN = "ADMIN"
    BUSINESS_OWNER = "BUSINESS_OWNER"
    PARTNER = "PARTNER"
    ASSOCIATE = "ASSOCIATE"
    PARALEGAL = "PARALEGAL"


class CaseStatus(str, PyEnum):
    ACTIVE = "Active"
    PENDING_APPROVAL = "PendingApproval"
    CLOSED = "Closed"
    ARCHIVED = "Archived"


# Cases in these states take part in email classification
CLASSIFIABLE_CASE_STATUSES = (CaseStatus.ACTIVE, CaseStatus.PENDING_APPROVAL)


class EmailClassificationState(str, PyEnum):
    PENDING = "Pending"
    UNCERTAIN = "Uncertain"
    CLIENT_INBOX = "ClientInbox"
    CLASSIFIED = "Classified"
    COURT_UNASSIGNED = "CourtUnassigned"
    IGNORED = "Ignored"


class EmailMatchType(str, PyEnum):
    ACTOR = "Actor"
    REFERENCE_NUMBER = "ReferenceNumber"
    KEYWORD = "Keyword"
    THREAD_CONTINUITY = "ThreadContinuity"
    MANUAL = "Manual"


class EmailSourceCategory(str, PyEnum):
    COURT = "Court"
    AUTHORITY = "Authority"
    OTHER = "Other"


class Firm(Base):
    """Tenant. Every other row is scoped to exactly one firm."""

    __tablename__ = "firms"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Overrides settings.CLASSIFICATION_THRESHOLD when set
    classification_threshold: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class User(Base):
    __tablename__ = "users"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("firms.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.ASSOCIATE
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    firm: Mapped[Firm] = relationship("Firm")


class Client(Base):
    __tablename__ = "clients"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("firms.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    cases: Mapped[list[Case]] = relationship("Case", back_populates="client")


class Case(Base):
    """Legal matter; owns the signals used to route email"""

    __tablename__ = "cases"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("firms.id"), nullable=False, index=True
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=True, index=True
    )
    case_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[CaseStatus] = mapped_column(
        Enum(CaseStatus), nullable=False, default=CaseStatus.ACTIVE
    )
    keywords: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    reference_numbers: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )  # Raw court-file numbers, e.g. "1234/3/2024"
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    client: Mapped[Client | None] = relationship("Client", back_populates="cases")
    actors: Mapped[list[CaseActor]] = relationship(
        "CaseActor", back_populates="case", cascade="all, delete-orphan"
    )
    team_members: Mapped[list[CaseTeamMember]] = relationship(
        "CaseTeamMember", back_populates="case", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_cases_firm_status", "firm_id", "status"),)


class CaseActor(Base):
    """Contact (person or organisation) associated with a case"""

    __tablename__ = "case_actors"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # opposing counsel, expert, court clerk...
    email: Mapped[str | None] = mapped_column(String(512), nullable=True, index=True)
    email_domains: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    case: Mapped[Case] = relationship("Case", back_populates="actors")


class CaseTeamMember(Base):
    __tablename__ = "case_team_members"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    added_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    case: Mapped[Case] = relationship("Case", back_populates="team_members")
    user: Mapped[User] = relationship("User")

    __table_args__ = (
        UniqueConstraint("case_id", "user_id", name="uq_case_team_member"),
    )


class GlobalEmailSource(Base):
    """Firm-configured court/institution senders"""

    __tablename__ = "global_email_sources"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("firms.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[EmailSourceCategory] = mapped_column(
        Enum(EmailSourceCategory), nullable=False, default=EmailSourceCategory.COURT
    )
    emails: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    domains: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)


class EmailMessage(Base):
    """Synced mailbox message with its case assignment"""

    __tablename__ = "email_messages"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    firm_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("firms.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )  # Mailbox owner
    conversation_id: Mapped[str | None] = mapped_column(
        String(512), nullable=True, index=True
    )

    # Email content
    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    sender_email: Mapped[str | None] = mapped_column(
        String(512), nullable=True, index=True
    )
    sender_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    recipients_to: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )  # [{"name": ..., "address": ...}]
    recipients_cc: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )
    body_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_content: Mapped[str | None] = mapped_column(Text, nullable=True)  # HTML or text
    parent_folder_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Classification
    classification_state: Mapped[EmailClassificationState] = mapped_column(
        Enum(EmailClassificationState),
        nullable=False,
        default=EmailClassificationState.PENDING,
    )
    case_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cases.id"), nullable=True
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=True
    )
    classification_confidence: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )
    classified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    classified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Partner privacy
    is_private: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=expression.false()
    )
    marked_private_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    marked_private_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Soft ignore (mail from a contact marked private)
    is_ignored: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=expression.false()
    )
    ignored_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    owner: Mapped[User] = relationship("User", foreign_keys=[user_id])
    case: Mapped[Case | None] = relationship("Case")
    case_links: Mapped[list[EmailCaseLink]] = relationship(
        "EmailCaseLink", back_populates="email"
    )

    __table_args__ = (
        Index("idx_email_firm_state", "firm_id", "classification_state"),
        Index("idx_email_firm_conversation", "firm_id", "conversation_id"),
        Index("idx_email_case", "case_id"),
    )


class EmailCaseLink(Base):
    """Many-to-many email/case assignment with match provenance"""

    __tablename__ = "email_case_links"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_messages.id"), nullable=False
    )
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cases.id"), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    match_type: Mapped[EmailMatchType] = mapped_column(
        Enum(EmailMatchType), nullable=False
    )
    linked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    linked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    email: Mapped[EmailMessage] = relationship(
        "EmailMessage", back_populates="case_links"
    )
    case: Mapped[Case] = relationship("Case")

    __table_args__ = (
        UniqueConstraint("email_id", "case_id", name="uq_email_case_link"),
        Index("idx_email_case_links_case", "case_id"),
    )
