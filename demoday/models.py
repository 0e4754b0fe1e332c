from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from demoday.utils import utcnow

UPCOMING = "upcoming"
PITCHING = "pitching"
COMPLETED = "completed"


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# External collaborators (identity, ideas, profiles): read-only here
# ---------------------------------------------------------------------------


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # auth provider user id
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    discord_username: Mapped[str | None] = mapped_column(String(100), nullable=True)


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submitter_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")

    members: Mapped[list[IdeaMember]] = relationship("IdeaMember", back_populates="idea", cascade="all, delete-orphan")


class IdeaMember(Base):
    __tablename__ = "idea_members"
    __table_args__ = (UniqueConstraint("idea_id", "user_id", name="uq_idea_members_idea_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idea_id: Mapped[int] = mapped_column(Integer, ForeignKey("ideas.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), default="member")

    idea: Mapped[Idea] = relationship("Idea", back_populates="members")


# ---------------------------------------------------------------------------
# Demoday core
# ---------------------------------------------------------------------------


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)  # first day of the month
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UPCOMING)  # upcoming | pitching | completed
    details_json: Mapped[str] = mapped_column(Text, default="{}")
    host_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    pitches: Mapped[list[Pitch]] = relationship("Pitch", back_populates="event", order_by="Pitch.submitted_at")


class Balance(Base):
    __tablename__ = "balances"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_balances_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    initial_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # cents
    remaining_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # cents
    final_balance: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # cents, set by results
    is_angel: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Pitch(Base):
    __tablename__ = "pitches"
    __table_args__ = (UniqueConstraint("event_id", "pitcher_id", name="uq_pitches_event_pitcher"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False)
    idea_id: Mapped[int] = mapped_column(Integer, ForeignKey("ideas.id"), nullable=False)
    pitcher_id: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    event: Mapped[Event] = relationship("Event", back_populates="pitches")
    idea: Mapped[Idea] = relationship("Idea")


class Investment(Base):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    investor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    pitch_id: Mapped[int] = mapped_column(Integer, ForeignKey("pitches.id"), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # cents, > 0
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ResultsSnapshot(Base):
    __tablename__ = "results_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id"), nullable=False, unique=True)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    pitch_rankings_json: Mapped[str] = mapped_column(Text, default="[]")
    investor_rankings_json: Mapped[str] = mapped_column(Text, default="[]")
