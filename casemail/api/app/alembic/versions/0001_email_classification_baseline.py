"""Baseline schema for email classification.

Creates firms, users, clients, cases (with actors and team members), global
email sources, email messages and email/case links.

Enum columns store member names, matching ``sqlalchemy.Enum(PyEnum)`` in
app.models.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_email_classification_baseline"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


user_role = sa.Enum(
    "ADMIN", "BUSINESS_OWNER", "PARTNER", "ASSOCIATE", "PARALEGAL", name="userrole"
)
case_status = sa.Enum(
    "ACTIVE", "PENDING_APPROVAL", "CLOSED", "ARCHIVED", name="casestatus"
)
classification_state = sa.Enum(
    "PENDING",
    "UNCERTAIN",
    "CLIENT_INBOX",
    "CLASSIFIED",
    "COURT_UNASSIGNED",
    "IGNORED",
    name="emailclassificationstate",
)
match_type = sa.Enum(
    "ACTOR",
    "REFERENCE_NUMBER",
    "KEYWORD",
    "THREAD_CONTINUITY",
    "MANUAL",
    name="emailmatchtype",
)
source_category = sa.Enum("COURT", "AUTHORITY", "OTHER", name="emailsourcecategory")


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    op.create_table(
        "firms",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("classification_threshold", sa.Float(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("firm_id", sa.Uuid(), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_users_firm_id", "users", ["firm_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "clients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("firm_id", sa.Uuid(), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("contact_email", sa.String(512), nullable=True),
        _created_at(),
    )
    op.create_index("ix_clients_firm_id", "clients", ["firm_id"])

    op.create_table(
        "cases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("firm_id", sa.Uuid(), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column(
            "client_id", sa.Uuid(), sa.ForeignKey("clients.id"), nullable=True
        ),
        sa.Column("case_number", sa.String(100), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("status", case_status, nullable=False),
        sa.Column("keywords", sa.JSON(), nullable=True),
        sa.Column("reference_numbers", sa.JSON(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_cases_firm_id", "cases", ["firm_id"])
    op.create_index("ix_cases_client_id", "cases", ["client_id"])
    op.create_index("ix_cases_case_number", "cases", ["case_number"])
    op.create_index("idx_cases_firm_status", "cases", ["firm_id", "status"])

    op.create_table(
        "case_actors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(100), nullable=True),
        sa.Column("email", sa.String(512), nullable=True),
        sa.Column("email_domains", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_case_actors_case_id", "case_actors", ["case_id"])
    op.create_index("ix_case_actors_email", "case_actors", ["email"])

    op.create_table(
        "case_team_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "added_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.UniqueConstraint("case_id", "user_id", name="uq_case_team_member"),
    )

    op.create_table(
        "global_email_sources",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("firm_id", sa.Uuid(), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", source_category, nullable=False),
        sa.Column("emails", sa.JSON(), nullable=True),
        sa.Column("domains", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_global_email_sources_firm_id", "global_email_sources", ["firm_id"]
    )

    op.create_table(
        "email_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("firm_id", sa.Uuid(), sa.ForeignKey("firms.id"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("conversation_id", sa.String(512), nullable=True),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("sender_email", sa.String(512), nullable=True),
        sa.Column("sender_name", sa.String(512), nullable=True),
        sa.Column("recipients_to", sa.JSON(), nullable=True),
        sa.Column("recipients_cc", sa.JSON(), nullable=True),
        sa.Column("body_preview", sa.Text(), nullable=True),
        sa.Column("body_content", sa.Text(), nullable=True),
        sa.Column("parent_folder_name", sa.String(255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("classification_state", classification_state, nullable=False),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id"), nullable=True),
        sa.Column(
            "client_id", sa.Uuid(), sa.ForeignKey("clients.id"), nullable=True
        ),
        sa.Column("classification_confidence", sa.Float(), nullable=True),
        sa.Column("classified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("classified_by", sa.String(255), nullable=True),
        sa.Column(
            "is_private", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "marked_private_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("marked_private_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_email_messages_conversation_id", "email_messages", ["conversation_id"]
    )
    op.create_index(
        "ix_email_messages_sender_email", "email_messages", ["sender_email"]
    )
    op.create_index(
        "idx_email_firm_state", "email_messages", ["firm_id", "classification_state"]
    )
    op.create_index(
        "idx_email_firm_conversation",
        "email_messages",
        ["firm_id", "conversation_id"],
    )
    op.create_index("idx_email_case", "email_messages", ["case_id"])

    op.create_table(
        "email_case_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "email_id",
            sa.Uuid(),
            sa.ForeignKey("email_messages.id"),
            nullable=False,
        ),
        sa.Column("case_id", sa.Uuid(), sa.ForeignKey("cases.id"), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("match_type", match_type, nullable=False),
        sa.Column("linked_by", sa.String(255), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column(
            "linked_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.UniqueConstraint("email_id", "case_id", name="uq_email_case_link"),
    )
    op.create_index("idx_email_case_links_case", "email_case_links", ["case_id"])


def downgrade() -> None:
    op.drop_table("email_case_links")
    op.drop_table("email_messages")
    op.drop_table("global_email_sources")
    op.drop_table("case_team_members")
    op.drop_table("case_actors")
    op.drop_table("cases")
    op.drop_table("clients")
    op.drop_table("users")
    op.drop_table("firms")

    bind = op.get_bind()
    for enum in (
        source_category,
        match_type,
        classification_state,
        case_status,
        user_role,
    ):
        enum.drop(bind, checkfirst=True)
