"""Budget ledger: per-project HH accounting.

Capacity is the project's ``estimated_total_hh``. It is carved into the pool
task budget and the regular task budgets (structural allocation), and it is
consumed by pledges (commitments). Two caps apply to every pledge: the
project-wide remaining capacity and the remaining budget of the pledge's
target (a regular task or the pool).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from squadledger.config import HH_EPSILON
from squadledger.exceptions import BudgetExceededError, NotFoundError
from squadledger.models import Pledge, Project, Task
from squadledger.state_machine import COMMITTED_PLEDGE_STATUSES, RESERVING_PLEDGE_STATUSES


@dataclass
class TaskUsage:
    task_id: int
    title: str
    is_pool: bool
    status: str
    hh_budget: float
    pending_hh: float = 0.0
    confirmed_hh: float = 0.0

    @property
    def reserved_hh(self) -> float:
        return self.pending_hh + self.confirmed_hh

    @property
    def remaining_hh(self) -> float:
        return self.hh_budget - self.reserved_hh


@dataclass
class LedgerSnapshot:
    """Consistent view of one project's budget at a point in time."""

    project_id: int
    capacity: float
    pool_budget: float = 0.0
    allocated_hh: float = 0.0
    pending_hh: float = 0.0
    confirmed_hh: float = 0.0
    tasks: dict[int, TaskUsage] = field(default_factory=dict)

    @property
    def reserved_hh(self) -> float:
        return self.pending_hh + self.confirmed_hh

    @property
    def remaining_capacity(self) -> float:
        return self.capacity - self.reserved_hh

    @property
    def unallocated_hh(self) -> float:
        return self.capacity - self.pool_budget - self.allocated_hh

    def usage(self, task_id: int) -> TaskUsage:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFoundError("Task", task_id) from None

    def check_task_allocation(self, budget: float) -> None:
        """A new regular task must fit next to the pool and existing tasks."""
        if budget > self.unallocated_hh + HH_EPSILON:
            raise BudgetExceededError("Project", budget, self.unallocated_hh)

    def check_pledge(self, task_id: int, amount: float) -> None:
        """Both the project cap and the target's own cap must hold."""
        if amount > self.remaining_capacity + HH_EPSILON:
            raise BudgetExceededError("Project", amount, self.remaining_capacity)
        usage = self.usage(task_id)
        if amount > usage.remaining_hh + HH_EPSILON:
            scope = "Pool" if usage.is_pool else "Task"
            raise BudgetExceededError(scope, amount, usage.remaining_hh)

    def check_reassignment(self, task_id: int, amount: float) -> None:
        """Moving committed hours only has to fit the destination task."""
        usage = self.usage(task_id)
        if amount > usage.remaining_hh + HH_EPSILON:
            raise BudgetExceededError("Task", amount, usage.remaining_hh)

    def activation_threshold_hh(self, fraction: float) -> float:
        return self.capacity * fraction


async def load_ledger(session: AsyncSession, project: Project) -> LedgerSnapshot:
    """Build a ledger snapshot from the current database state."""
    snapshot = LedgerSnapshot(project_id=project.id, capacity=project.estimated_total_hh)

    task_rows = await session.execute(
        select(Task.id, Task.title, Task.is_pool, Task.status, Task.hh_budget)
        .where(Task.project_id == project.id)
        .order_by(Task.id)
    )
    for task_id, title, is_pool, status, hh_budget in task_rows.all():
        snapshot.tasks[task_id] = TaskUsage(
            task_id=task_id,
            title=title,
            is_pool=is_pool,
            status=status,
            hh_budget=hh_budget,
        )
        if is_pool:
            snapshot.pool_budget += hh_budget
        else:
            snapshot.allocated_hh += hh_budget

    pledge_rows = await session.execute(
        select(Pledge.task_id, Pledge.status, func.coalesce(func.sum(Pledge.amount), 0.0))
        .where(
            Pledge.project_id == project.id,
            Pledge.status.in_(RESERVING_PLEDGE_STATUSES),
        )
        .group_by(Pledge.task_id, Pledge.status)
    )
    for task_id, status, total in pledge_rows.all():
        total = float(total)
        usage = snapshot.tasks.get(task_id)
        if status in COMMITTED_PLEDGE_STATUSES:
            snapshot.confirmed_hh += total
            if usage is not None:
                usage.confirmed_hh += total
        else:
            snapshot.pending_hh += total
            if usage is not None:
                usage.pending_hh += total

    return snapshot
