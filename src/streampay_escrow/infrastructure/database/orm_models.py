"""SQLAlchemy 2.0 ORM models for the StreamPay escrow coordinator.

Seven tables:
    1. organizations         — Client/developer organizations and their quorum.
    2. org_members           — Who belongs to an organization, with which role.
    3. escrows               — Funding agreements backed by a Soroban contract.
    4. milestones            — Payable units of an escrow.
    5. platform_connections  — Binds an escrow to a repository or board.
    6. approvals             — One vote per member per milestone.
    7. milestone_events      — Append-only audit log of every transition.

Design decisions:
    - UUIDs as primary keys, surfaced to the domain as strings.
    - Integer amounts in the token's smallest unit (no floating point).
    - CHECK constraints on status columns to reject invalid enum values.
    - Unique constraints carry the invariants the coordinators depend on:
      one milestone per (escrow, index), one connection per platform
      identity, one vote per (escrow, milestone, member).
    - milestone_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from streampay_escrow.domain.enums import (
    ApprovalAction,
    EscrowStatus,
    MemberRole,
    MilestoneStatus,
    Platform,
)
from streampay_escrow.domain.models import (
    Approval as ApprovalRecord,
    AuditEvent,
    Escrow as EscrowRecord,
    Member as MemberRecord,
    Milestone as MilestoneRecord,
    Organization as OrganizationRecord,
    PlatformConnection as ConnectionRecord,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _uuid_str() -> str:
    return str(uuid.uuid4())


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; every stored timestamp is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. organizations
# ---------------------------------------------------------------------------
class Organization(Base):
    """An organization whose finance members approve milestone releases."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    treasury_wallet: Mapped[str | None] = mapped_column(
        String(56),
        nullable=True,
        comment="Stellar account that funds this organization's escrows",
    )
    approval_threshold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Approve votes required to release a milestone",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("approval_threshold >= 1", name="ck_org_threshold_positive"),
    )

    def to_domain(self) -> OrganizationRecord:
        return OrganizationRecord(
            id=self.id,
            name=self.name,
            slug=self.slug,
            approval_threshold=self.approval_threshold,
            treasury_wallet=self.treasury_wallet,
        )


# ---------------------------------------------------------------------------
# 2. org_members
# ---------------------------------------------------------------------------
class OrgMember(Base):
    """Membership of a platform user in an organization."""

    __tablename__ = "org_members"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    org_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Identity issued by the auth gateway",
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="contributor")

    __table_args__ = (
        UniqueConstraint("org_id", "user_id", name="uq_member_org_user"),
        CheckConstraint(
            "role IN ('admin', 'finance', 'contributor')",
            name="ck_member_valid_role",
        ),
    )

    def to_domain(self) -> MemberRecord:
        return MemberRecord(
            id=self.id,
            org_id=self.org_id,
            user_id=self.user_id,
            role=MemberRole(self.role),
        )


# ---------------------------------------------------------------------------
# 3. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """A funding agreement between a client and a developer."""

    __tablename__ = "escrows"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)

    # --- On-chain identity ---
    contract_id: Mapped[str] = mapped_column(
        String(56),
        nullable=False,
        comment="Soroban contract address (C...)",
    )
    token_id: Mapped[str] = mapped_column(
        String(56),
        nullable=False,
        comment="Stellar asset contract the escrow pays out in",
    )

    # --- Participants ---
    client_address: Mapped[str] = mapped_column(String(56), nullable=False)
    developer_address: Mapped[str] = mapped_column(String(56), nullable=False)
    client_org_id: Mapped[str | None] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    developer_org_id: Mapped[str | None] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )

    # --- Financials ---
    total_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Escrowed amount in the token's smallest unit",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    # --- Source of task events ---
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    repo_or_board: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'cancelled')",
            name="ck_escrow_valid_status",
        ),
        CheckConstraint("total_amount > 0", name="ck_escrow_positive_amount"),
        UniqueConstraint("contract_id", name="uq_escrow_contract"),
        Index("idx_escrow_status", "status"),
        Index("idx_escrow_client_org", "client_org_id"),
    )

    def to_domain(self) -> EscrowRecord:
        return EscrowRecord(
            id=self.id,
            contract_id=self.contract_id,
            token_id=self.token_id,
            client_address=self.client_address,
            developer_address=self.developer_address,
            total_amount=self.total_amount,
            platform=Platform(self.platform),
            repo_or_board=self.repo_or_board,
            status=EscrowStatus(self.status),
            client_org_id=self.client_org_id,
            developer_org_id=self.developer_org_id,
            created_at=_aware(self.created_at),
        )

    @classmethod
    def from_domain(cls, escrow: EscrowRecord) -> Escrow:
        return cls(
            id=escrow.id,
            contract_id=escrow.contract_id,
            token_id=escrow.token_id,
            client_address=escrow.client_address,
            developer_address=escrow.developer_address,
            total_amount=escrow.total_amount,
            platform=escrow.platform.value,
            repo_or_board=escrow.repo_or_board,
            status=escrow.status.value,
            client_org_id=escrow.client_org_id,
            developer_org_id=escrow.developer_org_id,
            created_at=escrow.created_at,
        )

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} status={self.status} contract={self.contract_id}>"


# ---------------------------------------------------------------------------
# 4. milestones
# ---------------------------------------------------------------------------
class Milestone(Base):
    """A payable unit of an escrow, matched by its trigger keyword."""

    __tablename__ = "milestones"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    escrow_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    index: Mapped[int] = mapped_column(
        "milestone_index",
        Integer,
        nullable=False,
        comment="0-based position; also the index passed to mark_complete",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_keyword: Mapped[str] = mapped_column(String(255), nullable=False)
    bps: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Share of total_amount in basis points",
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # --- Attestation ---
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    task_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attestation_tx_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Attestation lease ---
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("escrow_id", "milestone_index", name="uq_milestone_escrow_index"),
        CheckConstraint(
            "status IN ('pending', 'pending_release', 'released', 'disputed', 'refunded')",
            name="ck_milestone_valid_status",
        ),
        CheckConstraint("bps > 0 AND bps <= 10000", name="ck_milestone_bps_range"),
        Index("idx_milestone_status", "escrow_id", "status"),
    )

    def to_domain(self) -> MilestoneRecord:
        return MilestoneRecord(
            id=self.id,
            escrow_id=self.escrow_id,
            index=self.index,
            title=self.title,
            trigger_keyword=self.trigger_keyword,
            bps=self.bps,
            status=MilestoneStatus(self.status),
            completed_at=_aware(self.completed_at),
            task_url=self.task_url,
            attestation_tx_hash=self.attestation_tx_hash,
            claim_token=self.claim_token,
            claimed_at=_aware(self.claimed_at),
        )

    @classmethod
    def from_domain(cls, milestone: MilestoneRecord) -> Milestone:
        return cls(
            id=milestone.id,
            escrow_id=milestone.escrow_id,
            index=milestone.index,
            title=milestone.title,
            trigger_keyword=milestone.trigger_keyword,
            bps=milestone.bps,
            status=milestone.status.value,
        )

    def __repr__(self) -> str:
        return f"<Milestone escrow={self.escrow_id} index={self.index} status={self.status}>"


# ---------------------------------------------------------------------------
# 5. platform_connections
# ---------------------------------------------------------------------------
class PlatformConnection(Base):
    """Routes events from a repository/board to exactly one escrow."""

    __tablename__ = "platform_connections"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    escrow_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="owner/repo, board id or project key",
    )
    webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_connection_identity"),
        CheckConstraint(
            "platform IN ('github', 'trello', 'jira')",
            name="ck_connection_valid_platform",
        ),
    )

    def to_domain(self) -> ConnectionRecord:
        return ConnectionRecord(
            id=self.id,
            escrow_id=self.escrow_id,
            platform=Platform(self.platform),
            external_id=self.external_id,
            webhook_secret=self.webhook_secret,
            access_token=self.access_token,
        )

    @classmethod
    def from_domain(cls, connection: ConnectionRecord) -> PlatformConnection:
        return cls(
            id=connection.id,
            escrow_id=connection.escrow_id,
            platform=connection.platform.value,
            external_id=connection.external_id,
            webhook_secret=connection.webhook_secret,
            access_token=connection.access_token,
        )


# ---------------------------------------------------------------------------
# 6. approvals
# ---------------------------------------------------------------------------
class Approval(Base):
    """A member's vote on a milestone."""

    __tablename__ = "approvals"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    escrow_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_index: Mapped[int] = mapped_column(Integer, nullable=False)
    member_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("org_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "escrow_id", "milestone_index", "member_id", name="uq_approval_one_vote"
        ),
        CheckConstraint(
            "action IN ('approve', 'reject', 'dispute')",
            name="ck_approval_valid_action",
        ),
        Index("idx_approval_milestone", "escrow_id", "milestone_index"),
    )

    def to_domain(self) -> ApprovalRecord:
        return ApprovalRecord(
            id=self.id,
            escrow_id=self.escrow_id,
            milestone_index=self.milestone_index,
            member_id=self.member_id,
            action=ApprovalAction(self.action),
            note=self.note,
            created_at=_aware(self.created_at),
        )

    @classmethod
    def from_domain(cls, approval: ApprovalRecord) -> Approval:
        return cls(
            id=approval.id,
            escrow_id=approval.escrow_id,
            milestone_index=approval.milestone_index,
            member_id=approval.member_id,
            action=approval.action.value,
            note=approval.note,
            created_at=approval.created_at,
        )


# ---------------------------------------------------------------------------
# 7. milestone_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class MilestoneEvent(Base):
    """Immutable audit record of a milestone or escrow transition.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single atomic event.
    """

    __tablename__ = "milestone_events"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=_uuid_str)
    escrow_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    milestone_index: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Null for escrow-level events",
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="SYSTEM",
        comment="Member id, arbitrator or SYSTEM",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Raw webhook payload, tx hash, vote tallies",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_escrow", "escrow_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def to_domain(self) -> AuditEvent:
        return AuditEvent(
            id=self.id,
            escrow_id=self.escrow_id,
            milestone_index=self.milestone_index,
            event_type=self.event_type,
            old_status=self.old_status,
            new_status=self.new_status,
            actor=self.actor,
            metadata=self.metadata_json,
            created_at=_aware(self.created_at),
        )

    @classmethod
    def from_domain(cls, event: AuditEvent) -> MilestoneEvent:
        return cls(
            id=event.id,
            escrow_id=event.escrow_id,
            milestone_index=event.milestone_index,
            event_type=str(event.event_type),
            old_status=event.old_status,
            new_status=event.new_status,
            actor=event.actor,
            metadata_json=event.metadata,
            created_at=event.created_at,
        )

    def __repr__(self) -> str:
        return (
            f"<MilestoneEvent type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )
