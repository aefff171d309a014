# calmora/models/puzzle.py
import datetime as dt
import enum
import uuid
from sqlalchemy import (
    String, Text, Integer, Float, Boolean, Date, DateTime, ForeignKey, Enum, JSON, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column
from calmora.core.db import Base


class Difficulty(str, enum.Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class StressLevel(str, enum.Enum):
    low = "low"
    moderate = "moderate"
    high = "high"


class GameSession(Base):
    __tablename__ = "game_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    puzzle_word: Mapped[str] = mapped_column(String(64), nullable=False)
    difficulty: Mapped[Difficulty] = mapped_column(Enum(Difficulty), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    time_taken: Mapped[int | None] = mapped_column(Integer, nullable=True)  # segundos
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    solved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class StressReport(Base):
    __tablename__ = "stress_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    stress_level: Mapped[StressLevel] = mapped_column(Enum(StressLevel), nullable=False)
    weekly_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    coping_tip: Mapped[str] = mapped_column(Text, nullable=False)
    ai_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    badges: Mapped[list[str]] = mapped_column(JSON, default=list)
    fallback: Mapped[bool] = mapped_column(Boolean, default=False)
    game_session_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("game_sessions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class UserGameStats(Base):
    __tablename__ = "user_game_stats"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    max_streak: Mapped[int] = mapped_column(Integer, default=0)
    total_puzzles_solved: Mapped[int] = mapped_column(Integer, default=0)
    average_solve_time: Mapped[float] = mapped_column(Float, default=0.0)
    last_played_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class UserAchievement(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    achievement_id: Mapped[str] = mapped_column(String(64), nullable=False)
    achievement_name: Mapped[str] = mapped_column(String(128), nullable=False)
    achievement_description: Mapped[str] = mapped_column(String(255), nullable=False)
    achievement_icon: Mapped[str] = mapped_column(String(16), nullable=False)
    unlocked_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
