"""State machines for projects, tasks and pledges.

Project:  pledging -> active -> completed -> archived (admin may archive from
          any non-archived state).
Task:     proposed -> taskConfirmed -> inProgress -> inAudit -> completed,
          inAudit -> rejected, inAudit <-> pendingConfirmation while a
          challenge is open.
Pledge:   pending -> confirmed | expired, confirmed -> reassigned.
"""

from __future__ import annotations

from squadledger.exceptions import TransitionError

PROJECT_TRANSITIONS: dict[str, list[str]] = {
    "pledging": ["active", "archived"],
    "active": ["completed", "archived"],
    "completed": ["archived"],
    "archived": [],  # terminal
}

# Map of current_status -> list of (target_status, trigger_reason)
TASK_TRANSITIONS: dict[str, list[tuple[str, str]]] = {
    "proposed": [
        ("taskConfirmed", "creator_confirmed"),
    ],
    "taskConfirmed": [
        ("inProgress", "self_assigned"),
    ],
    # Rows carried over from the older schema that used "active" for
    # confirmed-and-open tasks.
    "active": [
        ("inProgress", "self_assigned"),
    ],
    "inProgress": [
        ("inAudit", "assignee_completed"),
    ],
    "inAudit": [
        ("completed", "reviewer_approved"),
        ("rejected", "reviewer_rejected"),
        ("pendingConfirmation", "challenge_raised"),
    ],
    "pendingConfirmation": [
        ("rejected", "challenge_upheld"),
        ("inAudit", "challenge_dismissed"),
    ],
    "completed": [],
    "rejected": [],
}

PLEDGE_TRANSITIONS: dict[str, list[str]] = {
    "pending": ["confirmed", "expired"],
    "confirmed": ["reassigned"],
    "expired": [],
    "reassigned": [],
}

# Pledge statuses that count as committed HH
COMMITTED_PLEDGE_STATUSES: tuple[str, ...] = ("confirmed", "reassigned")
# Pledge statuses that hold capacity (committed or awaiting confirmation)
RESERVING_PLEDGE_STATUSES: tuple[str, ...] = ("pending", "confirmed", "reassigned")

# Task statuses reached only after the creator confirmed the task
TASK_CONFIRMED_STATUSES: tuple[str, ...] = (
    "taskConfirmed",
    "active",
    "inProgress",
    "inAudit",
    "pendingConfirmation",
    "completed",
)
ACCEPTABLE_TASK_STATUSES: tuple[str, ...] = ("taskConfirmed", "active")
TERMINAL_TASK_STATUSES: tuple[str, ...] = ("completed", "rejected")

PLEDGE_STATUS_ALIASES: dict[str, str] = {"approved": "confirmed"}


def normalize_pledge_status(value: str) -> str:
    """Map legacy pledge status names onto the canonical ones."""
    return PLEDGE_STATUS_ALIASES.get(value, value)


def can_transition_project(current: str, target: str) -> bool:
    return target in PROJECT_TRANSITIONS.get(current, [])


def validate_project_transition(current: str, target: str) -> None:
    if not can_transition_project(current, target):
        raise TransitionError("project", current, target)


def can_transition_task(current: str, target: str) -> bool:
    allowed = TASK_TRANSITIONS.get(current, [])
    return any(t == target for t, _ in allowed)


def validate_task_transition(current: str, target: str) -> None:
    if not can_transition_task(current, target):
        raise TransitionError("task", current, target)


def can_transition_pledge(current: str, target: str) -> bool:
    return target in PLEDGE_TRANSITIONS.get(normalize_pledge_status(current), [])


def validate_pledge_transition(current: str, target: str) -> None:
    if not can_transition_pledge(current, target):
        raise TransitionError("pledge", current, target)
