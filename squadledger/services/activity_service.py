"""Activity logging service: one row per project state transition."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.logging_config import get_logger
from squadledger.models import ProjectActivity

logger = get_logger(__name__)


async def log_activity(
    db: AsyncSession,
    project_id: int,
    activity_type: str,
    message: str,
    actor: str | None = None,
    task_id: int | None = None,
    metadata: dict | None = None,
) -> ProjectActivity:
    """
    Insert an activity log entry inside the caller's transaction.

    Args:
        db: Database session
        project_id: Owning project
        activity_type: e.g. 'pledge_created', 'task_approved', 'project_completed'
        message: Human-readable description
        actor: Principal performing the action (None for sweeps)
        task_id: Related task (optional)
        metadata: Additional metadata (optional)
    """
    entry = ProjectActivity(
        project_id=project_id,
        actor=actor,
        activity_type=activity_type,
        message=message,
        task_id=task_id,
        metadata_=metadata or {},
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "activity_logged",
        project_id=project_id,
        activity_type=activity_type,
        message=message,
    )
    return entry


async def list_activity(
    db: AsyncSession,
    project_id: int,
    limit: int = 100,
    offset: int = 0,
) -> list[ProjectActivity]:
    """Newest first."""
    result = await db.execute(
        select(ProjectActivity)
        .where(ProjectActivity.project_id == project_id)
        .order_by(ProjectActivity.created_at.desc(), ProjectActivity.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())
