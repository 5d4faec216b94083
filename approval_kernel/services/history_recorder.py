"""
HistoryRecorder -- append-only, hash-chained approval history.

Responsibility:
    Appends one immutable ``ApprovalHistoryModel`` row for every state
    transition (started, approved, rejected, auto_approved, escalated,
    cancelled) and verifies the per-instance hash chain.

Architecture position:
    Kernel > Services -- session-bound, runs inside the engine's
    transaction.  Flushes only; never commits.

Invariants enforced:
    - Append-only: there is no update or delete method.  ORM listeners and
      PostgreSQL triggers reject UPDATE/DELETE on history rows.
    - Per-instance sequence: ``seq`` is 1, 2, 3... per instance.  Callers
      hold the instance lock, so the next value is max(seq) + 1.
    - Chain integrity: ``hash = H(fields, prev_hash)``; the first entry of
      an instance chains from GENESIS.

Failure modes:
    - HistoryChainBrokenError from ``verify_chain`` when a stored hash, a
      prev_hash link or the seq numbering does not match.
    - IntegrityError on a duplicate seq.  Unreachable through the engine,
      which claims the instance version before appending.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import ApprovalHistoryEntry, HistoryEventKind
from approval_kernel.exceptions import HistoryChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.utils.hashing import GENESIS, hash_history_entry

logger = get_logger("services.history_recorder")


class HistoryRecorder:
    """
    Records and verifies approval history.

    Contract:
        ``append`` adds exactly one row and returns its DTO.  The row is
        flushed, not committed; it becomes durable with the caller's
        transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _last_entry(self, instance_id: UUID) -> ApprovalHistoryModel | None:
        return self.session.execute(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.instance_id == instance_id)
            .order_by(ApprovalHistoryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def append(
        self,
        *,
        instance_id: UUID,
        kind: HistoryEventKind,
        actor: str,
        request_id: UUID | None = None,
        comment: str | None = None,
    ) -> ApprovalHistoryEntry:
        """Append one entry to the instance's history."""
        last = self._last_entry(instance_id)
        seq = (last.seq + 1) if last is not None else 1
        prev_hash = last.hash if last is not None else None
        occurred_at = self._clock.now()

        entry_hash = hash_history_entry(
            instance_id=instance_id,
            request_id=request_id,
            seq=seq,
            kind=kind.value,
            actor=actor,
            comment=comment,
            occurred_at=occurred_at,
            prev_hash=prev_hash,
        )

        model = ApprovalHistoryModel(
            id=uuid4(),
            instance_id=instance_id,
            request_id=request_id,
            seq=seq,
            kind=kind.value,
            actor=actor,
            comment=comment,
            occurred_at=occurred_at,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self.session.add(model)
        self.session.flush()

        logger.debug(
            "history_appended",
            extra={
                "instance_id": str(instance_id),
                "kind": kind.value,
                "seq": seq,
            },
        )
        return model.to_dto()

    def list_for_instance(self, instance_id: UUID) -> list[ApprovalHistoryEntry]:
        """Entries in insertion order."""
        rows = self.session.execute(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.instance_id == instance_id)
            .order_by(ApprovalHistoryModel.seq)
        ).scalars()
        return [r.to_dto() for r in rows]

    def verify_chain(self, instance_id: UUID) -> bool:
        """
        Recompute every hash of the instance's chain.

        Returns:
            True if the chain is intact (an empty history is intact).

        Raises:
            HistoryChainBrokenError: On the first entry that does not match.
        """
        entries = self.list_for_instance(instance_id)
        prev_hash: str | None = None
        for expected_seq, entry in enumerate(entries, start=1):
            if entry.seq != expected_seq or entry.prev_hash != prev_hash:
                raise HistoryChainBrokenError(
                    str(instance_id),
                    entry.seq,
                    prev_hash or GENESIS,
                    entry.prev_hash or GENESIS,
                )
            expected = hash_history_entry(
                instance_id=entry.instance_id,
                request_id=entry.request_id,
                seq=entry.seq,
                kind=entry.kind.value,
                actor=entry.actor,
                comment=entry.comment,
                occurred_at=entry.occurred_at,
                prev_hash=entry.prev_hash,
            )
            if expected != entry.hash:
                raise HistoryChainBrokenError(str(instance_id), entry.seq, expected, entry.hash)
            prev_hash = entry.hash
        return True
