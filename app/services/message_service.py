"""
Message threads between a department and the institution.

Threads are not stored: ``fold_threads`` groups the flat, time-ordered
message list by the problem statement each message references.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BackendError, ValidationError
from app.models import db
from app.models.problem_statement import ProblemStatement, ProblemStatementMessage
from app.services.problem_statement_lifecycle import get_scoped_problem_statement

logger = logging.getLogger(__name__)

DEPARTMENT_ADMIN = "department_admin"
INSTITUTION_ADMIN = "institution_admin"
DEFAULT_THREAD_TITLE = "Problem Statement"


@dataclass
class MessageThread:
    id: str
    ps_id: str
    ps_title: str
    ps_code: str | None
    messages: list = field(default_factory=list)
    unread_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _is_unread_for(message: dict, role: str | None) -> bool:
    return bool(role) and not message.get("is_read") and message.get("recipient_role") == role


def fold_threads(rows: list[dict], role: str | None) -> list[MessageThread]:
    """Group message rows into threads, first-seen order, counting unread for ``role``."""
    threads: dict[str, MessageThread] = {}
    for msg in rows:
        ps_id = msg.get("problem_statement_id")
        thread = threads.get(ps_id)
        if thread is None:
            relation = msg.get("problem_statements") or {}
            thread = MessageThread(
                id=msg["id"],
                ps_id=ps_id,
                ps_title=relation.get("title") or DEFAULT_THREAD_TITLE,
                ps_code=relation.get("problem_statement_id"),
            )
            threads[ps_id] = thread
        thread.messages.append(msg)
        if _is_unread_for(msg, role):
            thread.unread_count += 1
    return list(threads.values())


def _department_messages(actor, ps_id: str | None = None):
    query = (
        ProblemStatementMessage.query
        .join(ProblemStatement, ProblemStatementMessage.problem_statement_id == ProblemStatement.id)
        .filter(ProblemStatement.department_id == actor.department_id)
    )
    if ps_id is not None:
        query = query.filter(ProblemStatementMessage.problem_statement_id == ps_id)
    return query.order_by(ProblemStatementMessage.created_at.asc())


def list_threads(actor) -> list[dict]:
    if not actor or not actor.department_id:
        return []
    try:
        rows = [m.to_row() for m in _department_messages(actor).all()]
    except SQLAlchemyError as exc:
        logger.warning("Failed to load messages department=%s error=%s", actor.department_id, exc)
        raise BackendError(str(exc), operation="messages") from exc
    return [t.to_dict() for t in fold_threads(rows, actor.role)]


def open_thread(actor, ps_id: str) -> dict:
    """Return one thread and mark the messages addressed to the actor's role as read."""
    get_scoped_problem_statement(actor, ps_id)
    messages = _department_messages(actor, ps_id).all()

    marked = 0
    for msg in messages:
        if not msg.is_read and msg.recipient_role == actor.role:
            msg.is_read = True
            marked += 1
    if marked:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Failed to mark thread read ps=%s error=%s", ps_id, exc)
            raise BackendError(str(exc), operation="mark_read") from exc

    threads = fold_threads([m.to_row() for m in messages], actor.role)
    if threads:
        return threads[0].to_dict()
    ps = db.session.get(ProblemStatement, ps_id)
    return MessageThread(id=ps_id, ps_id=ps_id, ps_title=ps.title, ps_code=ps.problem_statement_id).to_dict()


def recipient_role_for(sender_role: str | None) -> str:
    return INSTITUTION_ADMIN if sender_role == DEPARTMENT_ADMIN else DEPARTMENT_ADMIN


def send_reply(actor, ps_id: str, content: str) -> dict:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message cannot be empty", details={"content": "required"})
    get_scoped_problem_statement(actor, ps_id)

    message = ProblemStatementMessage(
        problem_statement_id=ps_id,
        sender_id=actor.id,
        sender_role=actor.role,
        recipient_role=recipient_role_for(actor.role),
        content=content,
        is_read=False,
    )
    db.session.add(message)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Failed to send message ps=%s error=%s", ps_id, exc)
        raise BackendError(str(exc), operation="send_message") from exc
    return message.to_row()
