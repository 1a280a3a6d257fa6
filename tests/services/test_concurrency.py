"""Racing writers on separate sessions: the ledger must never overcommit."""

import asyncio
from datetime import timedelta

import pytest

from squadledger.datetime_utils import utcnow
from squadledger.exceptions import BudgetExceededError, ConflictError
from squadledger.models import Task
from squadledger.services.pledge_service import PledgeService
from squadledger.services.project_service import ProjectService
from squadledger.services.task_service import TaskService


class TestConcurrentWriters:

    @pytest.mark.asyncio
    async def test_racing_pledges_respect_task_cap(self, session_factory, db_session, project, creator, enroll):
        """Two 30 HH pledges race for a 40 HH task; exactly one lands."""
        dave = await enroll("dave")
        erin = await enroll("erin")
        task = await TaskService(db_session).create_task(creator, project.id, "Sketch", 40.0)

        async def pledge(principal):
            async with session_factory() as session:
                return await PledgeService(session).pledge_to_task(
                    principal, project.id, 30.0, task_id=task.id
                )

        results = await asyncio.gather(pledge(dave), pledge(erin), return_exceptions=True)
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], BudgetExceededError)

        ledger = await ProjectService(db_session).get_ledger(project.id)
        usage = {row["task_id"]: row for row in ledger["tasks"]}
        assert usage[task.id]["pending_hh"] == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_many_pool_pledges(self, session_factory, db_session, project, enroll):
        """Ten 2 HH pledges against a 10 HH pool: five land, five are refused."""
        members = [await enroll(f"member{i}") for i in range(10)]

        async def pledge(principal):
            async with session_factory() as session:
                return await PledgeService(session).pledge_to_task(principal, project.id, 2.0)

        results = await asyncio.gather(*(pledge(m) for m in members), return_exceptions=True)
        assert sum(1 for r in results if not isinstance(r, Exception)) == 5
        assert all(isinstance(r, BudgetExceededError) for r in results if isinstance(r, Exception))

        ledger = await ProjectService(db_session).get_ledger(project.id)
        assert ledger["pending_hh"] == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_racing_accepts_single_assignee(self, session_factory, db_session, project, creator, enroll):
        dave = await enroll("dave")
        erin = await enroll("erin")
        tasks = TaskService(db_session)
        task = await tasks.create_task(creator, project.id, "Sketch", 40.0)
        await tasks.confirm_task(creator, task.id)

        async def accept(principal):
            async with session_factory() as session:
                return await TaskService(session).accept_task(principal, task.id)

        results = await asyncio.gather(accept(dave), accept(erin), return_exceptions=True)
        winners = [r for r in results if isinstance(r, Task)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConflictError)

        stored = await tasks.get_task(task.id)
        assert stored.assignee == winners[0].assignee

    @pytest.mark.asyncio
    async def test_confirm_and_expiry_race(self, session_factory, db_session, project, creator, enroll):
        """Whichever of confirm and expiry commits first wins; the other changes nothing."""
        dave = await enroll("dave")
        pledge = await PledgeService(db_session).pledge_to_task(dave, project.id, 4.0)
        later = utcnow() + timedelta(days=15)

        async def confirm():
            async with session_factory() as session:
                return await PledgeService(session).confirm_pledge(creator, pledge.id)

        async def sweep():
            async with session_factory() as session:
                return await PledgeService(session).expire_stale_pledges(now=later)

        confirmed, swept = await asyncio.gather(confirm(), sweep(), return_exceptions=True)
        final = await PledgeService(db_session).get_pledge(pledge.id)

        if final.status == "confirmed":
            assert not isinstance(confirmed, Exception)
            assert swept["expired"] == 0
        else:
            assert final.status == "expired"
            assert isinstance(confirmed, Exception)
            assert swept["expired"] == 1
