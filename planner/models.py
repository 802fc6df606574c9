from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.mutable import MutableDict

from .database import Base

# Slugs with behaviour attached to them
INTRODUCTION_SLUG = "introduction"
CAPABILITIES_SLUG = "capabilities-inventory"
STRATEGY_SLUG = "strategy-framework"
FINAL_REPORT_SLUG = "final-report"


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    hashed_password = Column(String(1024), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    # administrator flag
    is_superuser = Column(Boolean, default=False, nullable=False)
    # flipped by an administrator; gates the questionnaire
    is_approved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    responses = relationship("UserResponse", back_populates="user", passive_deletes=True)
    settings = relationship("UserSettings", back_populates="user", uselist=False, passive_deletes=True)


# ---------------------------
# MODULES / QUESTIONS (reference data)
# ---------------------------
class Module(Base):
    __tablename__ = "modules"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    slug = Column(String(64), unique=True, nullable=False)
    order = Column(Integer, nullable=False, index=True)  # 0-based, dense
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    questions = relationship(
        "Question",
        back_populates="module",
        order_by="Question.order.asc()",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Module {self.order}:{self.slug}>"


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), index=True, nullable=False)
    content = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    module = relationship("Module", back_populates="questions")


# ---------------------------
# PER-USER STATE
# ---------------------------
class UserResponse(Base):
    __tablename__ = "user_responses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="responses")

    # one row per (user, question) is kept by the application, not the schema
    __table_args__ = (
        Index("ix_user_responses_user_question", "user_id", "question_id"),
    )


class ModuleProgress(Base):
    __tablename__ = "module_progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), index=True, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    current_question = Column(Integer, ForeignKey("questions.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_module_progress_user_module"),
    )


class CompletedModule(Base):
    __tablename__ = "completed_modules"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_completed_user_module"),
    )


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), unique=True, index=True, nullable=False)
    selected_practice = Column(String(255), nullable=True)
    selected_niche = Column(String(255), nullable=True)
    # { "<module slug>": <analysis JSON> }
    analyses = Column(MutableDict.as_mutable(JSON), default=dict, nullable=False)
    final_report = Column(JSON, nullable=True)
    chat_notifications = Column(Boolean, default=True, nullable=False)
    chat_sounds = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="settings")


# ---------------------------
# DIRECT MESSAGES
# ---------------------------
class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    receiver_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
