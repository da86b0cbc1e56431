"""
Task / activity / document fan-out helpers.

The fan-out writers only stage rows on the session (``add`` + ``flush``); the
calling transition owns the commit so the fan-out lands in the same atomic
batch as the state flip it belongs to. ``start_task`` is the one transition
of its own here and commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from fitout.core.exceptions import PermissionDeniedError, StateTransitionError
from fitout.models import db
from fitout.models.activity import (
    OPEN_TASK_STATUSES,
    CaseActivity,
    CaseDocument,
    CaseTask,
    validate_task_transition,
)
from fitout.models.roles import Actor, Role
from fitout.services.helpers.unit_of_work import atomic_batch, get_or_raise

logger = logging.getLogger(__name__)


def write_activity(
    *,
    case_id: int,
    action: str,
    message: str,
    actor: Actor | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    details: dict | None = None,
    when: datetime | None = None,
) -> CaseActivity:
    """Append one human-readable activity line. Flush only."""
    row = CaseActivity(
        case_id=case_id,
        action=action,
        message=message,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor.id if actor else "system",
        actor_name=actor.label if actor else None,
        actor_role=actor.role.value if actor else None,
        details=details or None,
        timestamp=when or datetime.now(timezone.utc),
    )
    db.session.add(row)
    db.session.flush()
    return row


def create_task(
    *,
    case_id: int,
    task_type: str,
    title: str,
    assigned_role: str | None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor: Actor | None = None,
) -> CaseTask:
    task = CaseTask(
        case_id=case_id,
        task_type=task_type,
        title=title,
        status="pending",
        assigned_role=assigned_role,
        entity_type=entity_type,
        entity_id=entity_id,
        created_by=actor.id if actor else None,
    )
    db.session.add(task)
    db.session.flush()
    return task


def complete_open_tasks(case_id: int, task_type: str, actor: Actor, when: datetime) -> list[CaseTask]:
    """Mark every pending/started task of ``task_type`` on the case completed."""
    tasks = db.session.execute(
        select(CaseTask).where(
            CaseTask.case_id == case_id,
            CaseTask.task_type == task_type,
            CaseTask.status.in_(OPEN_TASK_STATUSES),
        )
    ).scalars().all()
    for task in tasks:
        task.status = "completed"
        task.completed_at = when
        task.completed_by = actor.id
    if tasks:
        db.session.flush()
    return tasks


def start_task(task_id: int, actor: Actor) -> dict:
    """pending → started, by the assigned role (or super admin). Commits."""
    task = get_or_raise(CaseTask, task_id)
    if task.assigned_role and not actor.has_role(Role(task.assigned_role), Role.SUPER_ADMIN):
        raise PermissionDeniedError(
            f"Task is assigned to '{task.assigned_role}'", role=actor.role.value,
        )
    if not validate_task_transition(task.status, "started"):
        raise StateTransitionError(
            f"Task cannot be started from '{task.status}'",
            current_state=task.status,
            code="TASK_STATE_INVALID",
        )
    now = datetime.now(timezone.utc)
    with atomic_batch(task):
        task.status = "started"
        task.started_at = now
        write_activity(
            case_id=task.case_id,
            action="task.start",
            message=f"{actor.label} started task '{task.title}'",
            actor=actor,
            entity_type="task",
            entity_id=task.id,
            when=now,
        )
    logger.info(
        "Task started",
        extra={"case_id": task.case_id, "entity_type": "task", "entity_id": task.id,
               "action": "task.start", "actor_id": actor.id},
    )
    return task.to_dict()


def attach_document(
    *,
    case_id: int,
    name: str,
    actor: Actor,
    doc_type: str = "quotation",
    file_url: str | None = None,
    quotation_id: int | None = None,
    amount=None,
    visible_to_client: bool = False,
    approval_status: str | None = None,
    when: datetime | None = None,
) -> CaseDocument:
    doc = CaseDocument(
        case_id=case_id,
        doc_type=doc_type,
        name=name,
        file_url=file_url,
        quotation_id=quotation_id,
        amount=amount,
        visible_to_client=visible_to_client,
        approval_status=approval_status,
        approved_by=actor.id if approval_status == "approved" else None,
        approved_at=when if approval_status == "approved" else None,
        uploaded_by=actor.id,
    )
    db.session.add(doc)
    db.session.flush()
    return doc


# ── Read side ─────────────────────────────────────────────────────────────────


def list_tasks(case_id: int, status: str | None = None) -> list[dict]:
    stmt = select(CaseTask).where(CaseTask.case_id == case_id)
    if status:
        stmt = stmt.where(CaseTask.status == status)
    return [t.to_dict() for t in db.session.execute(stmt.order_by(CaseTask.id)).scalars()]


def list_activities(case_id: int, limit: int = 100) -> list[dict]:
    stmt = (
        select(CaseActivity)
        .where(CaseActivity.case_id == case_id)
        .order_by(CaseActivity.timestamp.desc(), CaseActivity.id.desc())
        .limit(limit)
    )
    return [a.to_dict() for a in db.session.execute(stmt).scalars()]


def list_documents(case_id: int, client_view: bool = False) -> list[dict]:
    """Documents on the case. The client channel only sees client-visible ones."""
    stmt = select(CaseDocument).where(CaseDocument.case_id == case_id)
    if client_view:
        stmt = stmt.where(CaseDocument.visible_to_client.is_(True))
    return [d.to_dict() for d in db.session.execute(stmt.order_by(CaseDocument.id)).scalars()]


def has_open_task(case_id: int, task_type: str) -> bool:
    return db.session.execute(
        select(CaseTask.id).where(
            CaseTask.case_id == case_id,
            CaseTask.task_type == task_type,
            CaseTask.status.in_(OPEN_TASK_STATUSES),
        ).limit(1)
    ).first() is not None
