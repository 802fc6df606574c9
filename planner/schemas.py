from fastapi_users import schemas
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

# =========================
# USER SCHEMAS
# =========================
class UserRead(schemas.BaseUser[int]):
    is_approved: bool = False
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

class UserCreate(schemas.BaseUserCreate):
    pass

class UserUpdate(schemas.BaseUserUpdate):
    is_approved: Optional[bool] = None

    def create_update_dict(self):
        # users cannot approve themselves
        data = super().create_update_dict()
        data.pop("is_approved", None)
        return data


# =========================
# QUESTIONNAIRE SCHEMAS
# =========================
class ModuleSummary(BaseModel):
    id: int
    title: str
    slug: str
    order: int
    unlocked: bool
    completed: bool

class QuestionRead(BaseModel):
    id: int
    content: str
    order: int
    answer: str = ""

class Position(BaseModel):
    module: str
    index: int
    question_id: Optional[int] = None
    total: int
    can_advance: bool

class ModuleView(BaseModel):
    module: Optional[ModuleSummary] = None
    questions: List[QuestionRead] = []
    position: Position
    analysis: Optional[Dict[str, Any]] = None

class AnswerIn(BaseModel):
    text: str = ""

class AnswerOut(BaseModel):
    question_id: int
    saved: bool = False
    pending: bool = True
    last_error: Optional[str] = None

class AdvanceIn(BaseModel):
    direction: Literal["next", "prev"] = "next"

class AdvanceOut(BaseModel):
    position: Position
    moved_module: bool = False
    warning: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None

class SelectionIn(BaseModel):
    value: Optional[str] = None

class SelectionOut(BaseModel):
    selected_practice: Optional[str] = None
    selected_niche: Optional[str] = None
    warning: Optional[str] = None


# =========================
# ACCOUNT SCHEMAS
# =========================
class ApprovalStatus(BaseModel):
    state: Literal["anonymous", "unapproved", "approved"]
    is_admin: bool = False
    is_approved: bool = False

class SettingsRead(BaseModel):
    selected_practice: Optional[str] = None
    selected_niche: Optional[str] = None
    chat_notifications: bool = True
    chat_sounds: bool = True
    final_report: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True

class SettingsUpdate(BaseModel):
    chat_notifications: Optional[bool] = None
    chat_sounds: Optional[bool] = None


# =========================
# MESSAGE SCHEMAS
# =========================
class MessageCreate(BaseModel):
    receiver_id: int
    content: str = Field(min_length=1)

class MessageRead(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    content: str
    read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ConversationRead(BaseModel):
    participant_id: int
    participant_email: Optional[str] = None
    last_message: MessageRead
    unread: int = 0


# =========================
# ADMIN SCHEMAS
# =========================
class AdminUserRead(BaseModel):
    id: int
    email: str
    is_admin: bool
    is_approved: bool
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

class GrowthPoint(BaseModel):
    date: str
    count: int
