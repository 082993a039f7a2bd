"""
PCI Engine - Review Workflow
============================
Approval status state machine for tasks, flag lifecycle and review comments.

Task audit status:   pending -> approved | rejected   (both terminal)
Flag status:         open -> resolved                  (terminal)

Invalid transitions fail before anything is written, so a rejected attempt
leaves no audit entry behind.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .audit_recorder import AuditRecorder, require_user
from .errors import ConflictError, NotFoundError, StorageError, ValidationError, from_pydantic
from .kv_store import KVStore, comment_key, flag_key
from .models import (
    AuditAction,
    AuditStatus,
    Comment,
    EntityType,
    Flag,
    FlagCategory,
    FlagSeverity,
    FlagStatus,
    Task,
    utc_now,
)
from .task_service import TaskService

logger = logging.getLogger(__name__)

# =============================================================================
# TRANSITIONS
# =============================================================================

# Reopening (approved/rejected -> pending) is not supported
STATUS_TRANSITIONS: Dict[AuditStatus, List[AuditStatus]] = {
    AuditStatus.PENDING: [AuditStatus.APPROVED, AuditStatus.REJECTED],
    AuditStatus.APPROVED: [],
    AuditStatus.REJECTED: [],
}

FLAG_TRANSITIONS: Dict[FlagStatus, List[FlagStatus]] = {
    FlagStatus.OPEN: [FlagStatus.RESOLVED],
    FlagStatus.RESOLVED: [],
}


def get_allowed_transitions(current_status: AuditStatus) -> List[AuditStatus]:
    return list(STATUS_TRANSITIONS.get(AuditStatus(current_status), []))


def is_terminal(status: AuditStatus) -> bool:
    return not STATUS_TRANSITIONS.get(AuditStatus(status))


def validate_transition(current_status: AuditStatus, new_status: AuditStatus) -> None:
    """
    Raise ConflictError unless current -> new is an allowed transition.

    Re-applying the current status is also rejected: approving an approved
    task is a second transition, not a no-op.
    """
    current_status = AuditStatus(current_status)
    new_status = AuditStatus(new_status)
    allowed = STATUS_TRANSITIONS.get(current_status, [])
    if new_status in allowed:
        logger.debug(f"Valid transition: {current_status.value} -> {new_status.value}")
        return

    message = f"Invalid status transition: {current_status.value} -> {new_status.value}."
    if not allowed:
        message += f" Task is already {current_status.value}; review decisions are final."
    else:
        message += f" From {current_status.value} you can only move to: {', '.join(s.value for s in allowed)}."
    logger.warning(f"Blocked transition: {message}")
    raise ConflictError(
        message,
        current_status=current_status.value,
        requested_status=new_status.value,
    )


# =============================================================================
# WORKFLOW
# =============================================================================

class ReviewWorkflow:
    """Approve/reject tasks, raise and resolve flags, and comment on tasks."""

    def __init__(
        self,
        store: KVStore,
        recorder: Optional[AuditRecorder] = None,
        tasks: Optional[TaskService] = None,
    ):
        self.store = store
        self.recorder = recorder or AuditRecorder(store)
        self.tasks = tasks or TaskService(store, self.recorder)

    # -------------------------------------------------------------------------
    # Task approval
    # -------------------------------------------------------------------------

    def _transition(
        self,
        user_id: str,
        task_id: str,
        new_status: AuditStatus,
        stamps: Dict[str, Any],
        action: AuditAction,
        metadata: Dict[str, Any],
    ) -> Task:
        def guard(task: Task) -> None:
            validate_transition(task.audit_status, new_status)

        task = self.tasks.apply_changes(
            user_id, task_id,
            {"audit_status": new_status, **stamps},
            action=action,
            metadata=metadata,
            guard=guard,
        )
        logger.info(f"Task {task_id} {new_status.value} by {user_id}")
        return task

    def approve_task(self, user_id: str, task_id: str, notes: Optional[str] = None) -> Task:
        """Move a pending task to approved."""
        require_user(user_id)
        return self._transition(
            user_id, task_id, AuditStatus.APPROVED,
            {"approved_at": utc_now(), "approved_by": user_id, "approval_notes": notes},
            AuditAction.APPROVE,
            {"notes": notes},
        )

    def reject_task(self, user_id: str, task_id: str, reason: str) -> Task:
        """Move a pending task to rejected. A reason is required."""
        require_user(user_id)
        if not reason or not str(reason).strip():
            raise ValidationError("A rejection reason is required", target="reason")
        return self._transition(
            user_id, task_id, AuditStatus.REJECTED,
            {"rejected_at": utc_now(), "rejected_by": user_id, "rejection_reason": reason},
            AuditAction.REJECT,
            {"reason": reason},
        )

    # -------------------------------------------------------------------------
    # Flags
    # -------------------------------------------------------------------------

    def _parse_flag(self, raw: Dict[str, Any]) -> Flag:
        try:
            return Flag.model_validate(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Stored flag {raw.get('id')} is invalid", details=str(e)) from e

    def create_flag(
        self,
        user_id: str,
        task_id: str,
        category: Union[FlagCategory, str],
        severity: Union[FlagSeverity, str],
        notes: str,
    ) -> Flag:
        """
        Flag a task for attention.

        Args:
            user_id: Reviewer raising the flag
            task_id: Task being flagged (must exist)
            category: LowAAS | HighCost | UnclearScope | ReviewNeeded
            severity: low | medium | high | critical
            notes: Why the task was flagged

        Returns:
            The open Flag
        """
        require_user(user_id)
        self.tasks.get_task(user_id, task_id)

        try:
            flag = Flag(
                task_id=task_id,
                user_id=user_id,
                category=category,
                severity=severity,
                notes=notes,
            )
        except PydanticValidationError as e:
            raise from_pydantic(e, target="flag") from e

        after = flag.to_dict()
        self.recorder.commit(
            flag_key(user_id, flag.id), after,
            user_id=user_id,
            action=AuditAction.FLAG,
            entity_type=EntityType.FLAG,
            entity_id=flag.id,
            changes={"after": after},
            metadata={"taskId": task_id, "category": flag.category.value, "severity": flag.severity.value},
            append_only=True,
        )
        logger.info(f"Flag {flag.id} ({flag.category.value}/{flag.severity.value}) raised on task {task_id}")
        return flag

    def get_flag(self, user_id: str, flag_id: str) -> Flag:
        require_user(user_id)
        raw = self.store.get(flag_key(user_id, flag_id))
        if raw is None:
            raise NotFoundError(f"Flag not found: {flag_id}", target=flag_id)
        return self._parse_flag(raw)

    def resolve_flag(self, user_id: str, flag_id: str, resolution: Optional[str] = None) -> Flag:
        """Resolve an open flag. Resolution is final."""
        require_user(user_id)
        key = flag_key(user_id, flag_id)
        with self.store.lock_for(key):
            flag = self.get_flag(user_id, flag_id)

            if FlagStatus.RESOLVED not in FLAG_TRANSITIONS[flag.status]:
                logger.warning(f"Blocked flag transition on {flag_id}: already {flag.status.value}")
                raise ConflictError(
                    f"Flag {flag_id} is already {flag.status.value}",
                    target=flag_id,
                    current_status=flag.status.value,
                    requested_status=FlagStatus.RESOLVED.value,
                )

            resolved = flag.model_copy(update={
                "status": FlagStatus.RESOLVED,
                "resolved_at": utc_now(),
                "resolved_by": user_id,
                "resolution": resolution,
            })
            before = flag.to_dict()
            after = resolved.to_dict()
            self.recorder.commit(
                key, after,
                user_id=user_id,
                action=AuditAction.FLAG,
                entity_type=EntityType.FLAG,
                entity_id=flag_id,
                changes={"before": before, "after": after},
                metadata={"taskId": flag.task_id, "resolution": resolution},
            )
        logger.info(f"Flag {flag_id} resolved by {user_id}")
        return resolved

    def list_flags(
        self,
        user_id: str,
        status: Optional[Union[FlagStatus, str]] = None,
        task_id: Optional[str] = None,
    ) -> List[Flag]:
        """Flags for an account, newest first."""
        require_user(user_id)
        if status is not None:
            try:
                status = FlagStatus(status)
            except ValueError as e:
                raise ValidationError(str(e), target="status") from e

        flags = [self._parse_flag(raw) for raw in self.store.list_by_prefix(flag_key(user_id, ""))]
        if status is not None:
            flags = [f for f in flags if f.status == status]
        if task_id is not None:
            flags = [f for f in flags if f.task_id == task_id]
        return sorted(flags, key=lambda f: (f.created_at, f.id), reverse=True)

    # -------------------------------------------------------------------------
    # Comments
    # -------------------------------------------------------------------------

    def add_comment(self, user_id: str, task_id: str, comment: str) -> Comment:
        require_user(user_id)
        self.tasks.get_task(user_id, task_id)
        try:
            record = Comment(task_id=task_id, user_id=user_id, comment=comment)
        except PydanticValidationError as e:
            raise from_pydantic(e, target="comment") from e

        after = record.to_dict()
        self.recorder.commit(
            comment_key(user_id, record.id), after,
            user_id=user_id,
            action=AuditAction.COMMENT,
            entity_type=EntityType.COMMENT,
            entity_id=record.id,
            changes={"after": after},
            metadata={"taskId": task_id},
            append_only=True,
        )
        return record

    def list_comments(self, user_id: str, task_id: Optional[str] = None) -> List[Comment]:
        """Comments oldest first, optionally for one task."""
        require_user(user_id)
        comments = []
        for raw in self.store.list_by_prefix(comment_key(user_id, "")):
            try:
                c = Comment.model_validate(raw)
            except PydanticValidationError as e:
                raise StorageError("Stored comment is invalid", details=str(e)) from e
            if task_id is None or c.task_id == task_id:
                comments.append(c)
        return sorted(comments, key=lambda c: (c.created_at, c.id))
