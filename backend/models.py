# backend/models.py
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

def _form_id() -> str:
    return uuid.uuid4().hex

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC copy of a timestamp. sqlite hands stored values back naive, in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: Optional[str] = Field(default=None)
    image: Optional[str] = Field(default=None, max_length=512)
    createdAt: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

class Account(SQLModel, table=True):
    """Stored OAuth credential, one live row per (userId, provider)."""
    __table_args__ = (UniqueConstraint("userId", "provider"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    userId: int = Field(foreign_key="user.id", index=True)
    provider: str = Field(default="google")
    providerAccountId: str = Field(index=True)
    access_token: Optional[str] = Field(default=None, max_length=2048)
    refresh_token: Optional[str] = Field(default=None, max_length=2048)
    expires_at: Optional[int] = Field(default=None)  # epoch seconds
    scope: Optional[str] = Field(default=None, max_length=1024)

class Form(SQLModel, table=True):
    id: str = Field(default_factory=_form_id, primary_key=True)
    userId: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    title: str = Field(default="Untitled Form")
    description: str = Field(default="")
    uploadConfig: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    designConfig: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    driveEnabled: bool = Field(default=False)
    driveFolderId: Optional[str] = Field(default=None)
    accessLevel: str = Field(default="public")
    password: Optional[str] = Field(default=None)
    expiryDate: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    isActive: bool = Field(default=True)
    createdAt: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updatedAt: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

class Submission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    formId: str = Field(foreign_key="form.id", index=True)
    fileUrl: str
    fileId: Optional[str] = Field(default=None)
    fileName: str
    fileType: str = Field(default="unknown")
    fileSize: int = Field(default=0)
    files: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    submitterName: Optional[str] = Field(default=None)
    submitterEmail: Optional[str] = Field(default=None)
    metadata_: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    submittedAt: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)

class AppConfig(SQLModel, table=True):
    id: int = Field(default=1, primary_key=True)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updatedAt: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
