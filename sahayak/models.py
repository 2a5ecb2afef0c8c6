"""
Sahayak v1.0 — ORM Models
Users and chats are read-only collaborators here. Messages are an
append-only ledger. One tutor session per chat.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, Text, DateTime, JSON,
    ForeignKey, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sahayak.database import Base


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _uuid() -> str:
    return str(uuid.uuid4())

def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Users ───────────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    current_class: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    exam_target: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # JEE | NEET | ...
    education_board: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    preferred_language: Mapped[str] = mapped_column(String(10), default="en")  # "hi" | "en"
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    chats: Mapped[list["Chat"]] = relationship(back_populates="user")


# ─── Chats ───────────────────────────────────────────────────────────────────

class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    mode: Mapped[str] = mapped_column(String(20), default="tutor")
    language: Mapped[str] = mapped_column(String(10), default="en")
    subject: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    level: Mapped[str] = mapped_column(String(20), default="beginner")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    user: Mapped["User"] = relationship(back_populates="chats")
    messages: Mapped[list["Message"]] = relationship(
        back_populates="chat", order_by="Message.created_at"
    )


# ─── Messages ────────────────────────────────────────────────────────────────

class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    chat_id: Mapped[str] = mapped_column(String(36), ForeignKey("chats.id"))
    role: Mapped[str] = mapped_column(String(10))  # "user" | "assistant" | "system"
    content: Mapped[str] = mapped_column(Text)
    # intent, emotion, detected_language, model, cost, cached, validation, phase
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    chat: Mapped["Chat"] = relationship(back_populates="messages")

    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )


# ─── Tutor Sessions ──────────────────────────────────────────────────────────

class TutorSession(Base):
    """Seven-phase lesson state for a chat. Never deleted; terminal at closure."""
    __tablename__ = "tutor_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    chat_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chats.id"), unique=True, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)

    current_phase: Mapped[str] = mapped_column(String(20), default="greeting", index=True)
    phase_step: Mapped[int] = mapped_column(Integer, default=0)
    progress: Mapped[int] = mapped_column(Integer, default=0)  # 0-100

    persona_id: Mapped[str] = mapped_column(String(20), default="priya")
    level: Mapped[str] = mapped_column(String(20), default="beginner")
    subject: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # {"misconceptions": [], "strong_concepts": [], "checkpoints_passed": 0, "hints_used": 0}
    adaptive_metrics: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # first_name, last_name, current_class, exam_target, education_board
    profile_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    last_checkpoint: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    voice_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)
