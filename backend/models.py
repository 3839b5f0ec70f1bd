# backend/models.py
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything is stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    spotifyId: str = Field(unique=True, index=True)
    email: str = Field(unique=True)
    displayName: Optional[str] = Field(default=None)
    avatarUrl: Optional[str] = Field(default=None, max_length=512)
    oauth_access_token: Optional[str] = Field(default=None, max_length=2048)
    oauth_refresh_token: Optional[str] = Field(default=None, max_length=2048)
    oauth_token_expiry: Optional[datetime] = Field(default=None)

class QuizResult(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    userId: int = Field(foreign_key="user.id", index=True)
    userEmail: str
    userName: str
    score: int
    totalQuestions: int
    percentage: int
    timeRange: str = Field(default="medium_term")
    date: datetime = Field(default_factory=utcnow, index=True)
    tracks: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

# Public views (no OAuth credentials, no per-track details)
class UserPublic(SQLModel):
    id: int
    spotifyId: str
    email: str
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None

class QuizResultSummary(SQLModel):
    id: int
    userId: int
    userEmail: str
    userName: str
    score: int
    totalQuestions: int
    percentage: int
    timeRange: str
    date: datetime
    grade: str = ""

# Per-track outcome stored inside QuizResult.tracks
class UserAnswer(SQLModel):
    artist: str = ""
    title: str = ""

class TrackOutcome(SQLModel):
    trackId: str
    trackName: str
    artist: str
    correct: bool
    userAnswer: Optional[UserAnswer] = None
