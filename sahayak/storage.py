"""
Sahayak v1.0 — Persistence Collaborators
Read/append contracts the pipeline relies on: chats, users, tutor sessions,
and the message ledger. SQLAlchemy calls are blocking, so every public method
runs in the threadpool.
"""

import logging
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from sahayak.models import Chat, User, Message, TutorSession

logger = logging.getLogger(__name__)


class ChatNotFoundError(LookupError):
    """Raised when a turn references a chat that does not exist."""


def _profile_snapshot(user: Optional[User]) -> dict:
    if user is None:
        return {}
    return {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "current_class": user.current_class,
        "exam_target": user.exam_target,
        "education_board": user.education_board,
    }


class TutorRepository:
    """Thin async facade over a sessionmaker."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ─── Read ────────────────────────────────────────────────────────────────

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        return await run_in_threadpool(self._get, Chat, chat_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await run_in_threadpool(self._get, User, user_id)

    async def get_tutor_session(self, chat_id: str) -> Optional[TutorSession]:
        """Plain lookup. Status queries use this and treat None as not-found."""
        return await run_in_threadpool(self._get_tutor_session, chat_id)

    async def get_chat_messages(self, chat_id: str, limit: Optional[int] = None) -> list[Message]:
        """Messages in chronological order; `limit` keeps the most recent N."""
        return await run_in_threadpool(self._get_chat_messages, chat_id, limit)

    async def count_user_messages(self, chat_id: str) -> int:
        return await run_in_threadpool(self._count_user_messages, chat_id)

    # ─── Write ───────────────────────────────────────────────────────────────

    async def get_or_create_tutor_session(
        self,
        chat: Chat,
        user: Optional[User],
        persona_id: str,
    ) -> TutorSession:
        """Ordinary callers treat a missing session as 'initialize new'."""
        return await run_in_threadpool(self._get_or_create_tutor_session, chat, user, persona_id)

    async def save_tutor_session(self, session: TutorSession) -> TutorSession:
        return await run_in_threadpool(self._save, session)

    async def add_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        meta: Optional[dict] = None,
    ) -> Message:
        return await run_in_threadpool(self._add_message, chat_id, role, content, meta)

    # ─── Sync internals ──────────────────────────────────────────────────────

    def _get(self, model, key: str):
        with self._session_factory() as db:
            return db.get(model, key)

    def _get_tutor_session(self, chat_id: str) -> Optional[TutorSession]:
        with self._session_factory() as db:
            return db.query(TutorSession).filter(TutorSession.chat_id == chat_id).first()

    def _get_chat_messages(self, chat_id: str, limit: Optional[int]) -> list[Message]:
        with self._session_factory() as db:
            query = db.query(Message).filter(Message.chat_id == chat_id)
            if limit:
                rows = query.order_by(Message.created_at.desc()).limit(limit).all()
                return list(reversed(rows))
            return query.order_by(Message.created_at.asc()).all()

    def _count_user_messages(self, chat_id: str) -> int:
        with self._session_factory() as db:
            return (
                db.query(func.count(Message.id))
                .filter(Message.chat_id == chat_id, Message.role == "user")
                .scalar()
            ) or 0

    def _get_or_create_tutor_session(
        self,
        chat: Chat,
        user: Optional[User],
        persona_id: str,
    ) -> TutorSession:
        with self._session_factory() as db:
            existing = db.query(TutorSession).filter(TutorSession.chat_id == chat.id).first()
            if existing:
                return existing

            session = TutorSession(
                chat_id=chat.id,
                user_id=chat.user_id,
                current_phase="greeting",
                phase_step=0,
                progress=0,
                persona_id=persona_id,
                level=chat.level or "beginner",
                subject=chat.subject,
                topic=chat.topic,
                adaptive_metrics={
                    "misconceptions": [],
                    "strong_concepts": [],
                    "checkpoints_passed": 0,
                    "hints_used": 0,
                },
                profile_snapshot=_profile_snapshot(user),
            )
            db.add(session)
            try:
                db.commit()
            except IntegrityError:
                # Another turn created it first: one session per chat
                db.rollback()
                return db.query(TutorSession).filter(TutorSession.chat_id == chat.id).one()
            logger.info(f"Tutor session created for chat {chat.id} (persona={persona_id})")
            return session

    def _save(self, session: TutorSession) -> TutorSession:
        with self._session_factory() as db:
            merged = db.merge(session)
            db.commit()
            return merged

    def _add_message(self, chat_id: str, role: str, content: str, meta: Optional[dict]) -> Message:
        with self._session_factory() as db:
            message = Message(chat_id=chat_id, role=role, content=content, meta=meta or {})
            db.add(message)
            db.commit()
            return message
