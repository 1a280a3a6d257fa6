"""SQLAlchemy ORM models for the ledger engine."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Boolean, DateTime, Integer

from squadledger.datetime_utils import utcnow


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        CheckConstraint("role IN ('admin','user','guest')", name="ck_user_role"),
    )

    principal: Mapped[str] = mapped_column(Text, primary_key=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class UserApproval(Base):
    __tablename__ = "user_approvals"
    __table_args__ = (
        Index("idx_approvals_status", "status"),
        CheckConstraint(
            "status IN ('pending','approved','rejected')", name="ck_approval_status"
        ),
    )

    principal: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    decided_by: Mapped[str | None] = mapped_column(Text)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class UserProfile(Base):
    __tablename__ = "user_profiles"
    __table_args__ = (
        CheckConstraint(
            "squad_role IN ('Apprentice','Journeyman','Masters','Mentor')",
            name="ck_profile_squad_role",
        ),
        CheckConstraint(
            "participation_level IN ('Apprentice','Journeyman','Master','GuestArtist')",
            name="ck_profile_level",
        ),
    )

    principal: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    squad_role: Mapped[str] = mapped_column(Text, nullable=False)
    participation_level: Mapped[str] = mapped_column(Text, nullable=False)
    participation_level_locked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    profile_picture: Mapped[str] = mapped_column(Text, nullable=False, default="")
    total_pledged_hh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_earned_hh: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reputation_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    enabler_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = (
        Index("idx_projects_status", "status"),
        Index("idx_projects_creator", "creator"),
        CheckConstraint(
            "status IN ('pledging','active','completed','archived')",
            name="ck_project_status",
        ),
        CheckConstraint("estimated_total_hh >= 0", name="ck_project_capacity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    creator: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pledging")
    estimated_total_hh: Mapped[float] = mapped_column(Float, nullable=False)
    final_monetary_value: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    shared_resource_link: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completion_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ProjectParticipant(Base):
    __tablename__ = "project_participants"
    __table_args__ = (
        UniqueConstraint("project_id", "principal", name="uq_project_participant"),
        Index("idx_participants_project", "project_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    principal: Mapped[str] = mapped_column(Text, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_project", "project_id"),
        Index("idx_tasks_status", "project_id", "status"),
        Index("idx_tasks_assignee", "assignee"),
        CheckConstraint(
            "status IN ('proposed','taskConfirmed','active','inProgress','inAudit',"
            "'pendingConfirmation','completed','rejected')",
            name="ck_task_status",
        ),
        CheckConstraint("hh_budget >= 0", name="ck_task_budget"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    hh_budget: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="proposed")
    is_pool: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assignee: Mapped[str | None] = mapped_column(Text)
    dependencies: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    proposed_by: Mapped[str] = mapped_column(Text, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    audit_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completion_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Pledges
# ---------------------------------------------------------------------------


class Pledge(Base):
    __tablename__ = "pledges"
    __table_args__ = (
        Index("idx_pledges_project", "project_id", "status"),
        Index("idx_pledges_task", "task_id"),
        Index("idx_pledges_user", "user"),
        CheckConstraint(
            "status IN ('pending','confirmed','expired','reassigned')",
            name="ck_pledge_status",
        ),
        CheckConstraint("target_kind IN ('task','pool')", name="ck_pledge_target"),
        CheckConstraint("amount > 0", name="ck_pledge_amount"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    # Pool pledges point at the project's pool task until reassigned
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id"), nullable=False
    )
    original_task_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("tasks.id")
    )
    target_kind: Mapped[str] = mapped_column(Text, nullable=False)
    user: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reassigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    __tablename__ = "challenges"
    __table_args__ = (
        Index("idx_challenges_task", "task_id", "status"),
        CheckConstraint(
            "status IN ('open','upheld','dismissed')", name="ck_challenge_status"
        ),
        CheckConstraint("stake_hh > 0", name="ck_challenge_stake"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    challenger: Mapped[str] = mapped_column(Text, nullable=False)
    stake_hh: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("target_id", "vote_type", "voter", name="uq_vote"),
        Index("idx_votes_target", "target_id", "vote_type"),
        CheckConstraint(
            "vote_type IN ('finalPrize','challenge','taskProposal')",
            name="ck_vote_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    vote_type: Mapped[str] = mapped_column(Text, nullable=False)
    voter: Mapped[str] = mapped_column(Text, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Peer ratings & payouts
# ---------------------------------------------------------------------------


class PeerRating(Base):
    __tablename__ = "peer_ratings"
    __table_args__ = (
        UniqueConstraint("project_id", "rater", "ratee", name="uq_peer_rating"),
        Index("idx_ratings_ratee", "ratee"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_rating_range"),
        CheckConstraint("rater <> ratee", name="ck_rating_not_self"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    rater: Mapped[str] = mapped_column(Text, nullable=False)
    ratee: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class ProjectPayout(Base):
    __tablename__ = "project_payouts"
    __table_args__ = (
        UniqueConstraint("project_id", "principal", name="uq_project_payout"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    principal: Mapped[str] = mapped_column(Text, nullable=False)
    confirmed_hh: Mapped[float] = mapped_column(Float, nullable=False)
    share: Mapped[float] = mapped_column(Float, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Project Activity Log
# ---------------------------------------------------------------------------


class ProjectActivity(Base):
    __tablename__ = "project_activity"
    __table_args__ = (Index("idx_activity_project", "project_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    actor: Mapped[str | None] = mapped_column(Text)
    activity_type: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    task_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("tasks.id"))
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
