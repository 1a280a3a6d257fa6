"""Pydantic v2 request/response schemas for all endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from squadledger.config import voting_power_for

SQUAD_ROLE_PATTERN = r"^(Apprentice|Journeyman|Masters|Mentor)$"
LEVEL_PATTERN = r"^(Apprentice|Journeyman|Master|GuestArtist)$"


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


class AccessResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal: str
    role: str
    approval_status: str | None
    is_admin: bool
    is_approved: bool
    user_status: str


class ApprovalRequestResponse(BaseModel):
    status: str
    message: str


class SetApprovalRequest(BaseModel):
    status: str = Field(..., pattern=r"^(pending|approved|rejected)$")


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal: str
    status: str
    requested_at: datetime
    decided_at: datetime | None
    decided_by: str | None


class AssignRoleRequest(BaseModel):
    role: str = Field(..., pattern=r"^(admin|user|guest)$")


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal: str
    role: str
    updated_at: datetime


class FlagResponse(BaseModel):
    value: bool


class UserStatusResponse(BaseModel):
    status: str


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)
    squad_role: str = Field(..., pattern=SQUAD_ROLE_PATTERN)
    participation_level: str = Field(..., pattern=LEVEL_PATTERN)


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=100)
    profile_picture: str | None = Field(default=None, max_length=2048)


class ParticipationLevelRequest(BaseModel):
    participation_level: str = Field(..., pattern=LEVEL_PATTERN)


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal: str
    display_name: str
    squad_role: str
    participation_level: str
    participation_level_locked: bool
    profile_picture: str
    total_pledged_hh: float
    total_earned_hh: float
    reputation_score: float
    enabler_points: int
    created_at: datetime

    @computed_field
    @property
    def voting_power(self) -> float:
        return voting_power_for(self.participation_level)


class ReputationResponse(BaseModel):
    principal: str
    reputation_score: float | None


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: str = ""
    estimated_total_hh: float = Field(..., ge=0)
    pool_hh: float = Field(default=0.0, ge=0)
    final_monetary_value: float = Field(default=0.0, ge=0)
    shared_resource_link: str | None = Field(default=None, max_length=2048)


class ProjectUpdate(BaseModel):
    description: str | None = None
    shared_resource_link: str | None = Field(default=None, max_length=2048)
    final_monetary_value: float | None = Field(default=None, ge=0)


class ActivateRequest(BaseModel):
    force: bool = False


class CompleteRequest(BaseModel):
    final_monetary_value: float | None = Field(default=None, ge=0)


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    creator: str
    status: str
    estimated_total_hh: float
    final_monetary_value: float
    shared_resource_link: str | None
    created_at: datetime
    activated_at: datetime | None
    completion_time: datetime | None
    archived_at: datetime | None


class ReadinessResponse(BaseModel):
    project_id: int
    status: str
    confirmed_hh: float
    threshold_hh: float
    pending_pledges: int
    threshold_reached: bool
    ready: bool


class TaskUsageResponse(BaseModel):
    task_id: int
    title: str
    is_pool: bool
    status: str
    hh_budget: float
    pending_hh: float
    confirmed_hh: float
    remaining_hh: float


class LedgerResponse(BaseModel):
    project_id: int
    capacity_hh: float
    pool_budget_hh: float
    allocated_hh: float
    unallocated_hh: float
    pending_hh: float
    confirmed_hh: float
    remaining_capacity_hh: float
    tasks: list[TaskUsageResponse] = Field(default_factory=list)


class PayoutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    principal: str
    confirmed_hh: float
    share: float
    amount: float


class ActivityLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    actor: str | None
    activity_type: str
    message: str
    task_id: int | None
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    project_id: int
    title: str = Field(..., min_length=1, max_length=300)
    description: str = ""
    hh_budget: float = Field(..., gt=0)
    dependencies: list[int] = Field(default_factory=list)


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    title: str
    description: str
    hh_budget: float
    status: str
    is_pool: bool
    assignee: str | None
    dependencies: list[int]
    proposed_by: str
    created_at: datetime
    confirmed_at: datetime | None
    started_at: datetime | None
    audit_start_time: datetime | None
    completion_time: datetime | None


class ChallengeCreate(BaseModel):
    stake_hh: float = Field(..., gt=0)


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    project_id: int
    challenger: str
    stake_hh: float
    status: str
    created_at: datetime
    resolved_at: datetime | None


# ---------------------------------------------------------------------------
# Pledges
# ---------------------------------------------------------------------------


class PledgeCreate(BaseModel):
    project_id: int
    amount: float = Field(..., gt=0)
    task_id: int | None = Field(default=None, description="Omit to pledge to the general pool")


class ReassignRequest(BaseModel):
    task_id: int


class PledgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    task_id: int
    original_task_id: int | None
    target_kind: str
    user: str
    amount: float
    status: str
    created_at: datetime
    confirmed_at: datetime | None
    expired_at: datetime | None
    reassigned_at: datetime | None


# ---------------------------------------------------------------------------
# Ratings & votes
# ---------------------------------------------------------------------------


class RatingCreate(BaseModel):
    project_id: int
    ratee: str = Field(..., min_length=1)
    rating: float = Field(..., ge=0, le=5)


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    rater: str
    ratee: str
    rating: float
    weight: float
    created_at: datetime


class VoteCreate(BaseModel):
    target_id: int
    vote_type: str = Field(..., pattern=r"^(finalPrize|challenge|taskProposal)$")


class VoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    target_id: int
    vote_type: str
    voter: str
    weight: float
    created_at: datetime


class VoteTallyResponse(BaseModel):
    target_id: int
    vote_type: str
    votes: int = 0
    total_weight: float = 0.0


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    message: str
