"""
Module: approval_kernel.models.history
Responsibility: ORM persistence for the append-only approval history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: ORM listeners (db/immutability.py) and, on PostgreSQL,
      database triggers (db/triggers.py) reject UPDATE and DELETE.
    - Per-instance ordering: UNIQUE(instance_id, seq).
    - Tamper evidence: ``hash`` chains over the previous entry's hash.

Failure modes:
    - IntegrityError on a duplicate (instance_id, seq).
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import ApprovalHistoryEntry


class ApprovalHistoryModel(Base):
    """Persistent history entry. Append-only."""

    __tablename__ = "approval_history"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('started', 'approved', 'rejected', 'auto_approved', "
            "'escalated', 'cancelled')",
            name="ck_approval_history_kind",
        ),
        UniqueConstraint("instance_id", "seq", name="uq_approval_history_instance_seq"),
        Index("ix_approval_history_instance_time", "instance_id", "occurred_at", "seq"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalHistory {self.instance_id}#{self.seq} {self.kind} by {self.actor}>"

    def to_dto(self) -> ApprovalHistoryEntry:
        from approval_kernel.domain.workflow import (
            ApprovalHistoryEntry as ApprovalHistoryEntryDTO,
            HistoryEventKind,
        )

        return ApprovalHistoryEntryDTO(
            entry_id=self.id,
            instance_id=self.instance_id,
            seq=self.seq,
            kind=HistoryEventKind(self.kind),
            actor=self.actor,
            occurred_at=self.occurred_at,
            hash=self.hash,
            request_id=self.request_id,
            comment=self.comment,
            prev_hash=self.prev_hash,
        )
