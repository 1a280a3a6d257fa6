"""Tests for audit challenges, weighted votes and the audit-close sweep."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from squadledger.datetime_utils import utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    BudgetExceededError,
    ConflictError,
    InvalidStateError,
)
from squadledger.models import Task
from squadledger.services.pledge_service import PledgeService
from squadledger.services.profile_service import ProfileService
from squadledger.services.project_service import ProjectService
from squadledger.services.task_service import TaskService
from squadledger.services.voting_service import VotingService, challenge_upheld, tally_votes


async def stake(db_session, project, creator, principal, amount):
    """Pledge to the pool and have the creator confirm it."""
    pledges = PledgeService(db_session)
    pledge = await pledges.pledge_to_task(principal, project.id, amount)
    await pledges.confirm_pledge(creator, pledge.id)


@pytest.fixture
def audited_task(db_session, project, creator, enroll):
    """A 40 HH task done by dave and awaiting review, with erin holding 5 HH."""

    async def _build():
        dave = await enroll("dave")
        erin = await enroll("erin")
        await stake(db_session, project, creator, erin, 5.0)
        tasks = TaskService(db_session)
        task = await tasks.create_task(creator, project.id, "Sketch", 40.0)
        await tasks.confirm_task(creator, task.id)
        await tasks.accept_task(dave, task.id)
        await tasks.complete_task(dave, task.id)
        return task, dave, erin

    return _build


class TestChallenge:

    @pytest.mark.asyncio
    async def test_challenge_moves_task_to_pending_confirmation(self, db_session, audited_task):
        task, _, erin = await audited_task()
        challenge = await TaskService(db_session).challenge_task(erin, task.id, 3.0)
        assert challenge.status == "open"
        assert challenge.stake_hh == 3.0
        assert (await TaskService(db_session).get_task(task.id)).status == "pendingConfirmation"

    @pytest.mark.asyncio
    async def test_stake_limited_to_committed_hours(self, db_session, audited_task):
        task, _, erin = await audited_task()
        with pytest.raises(BudgetExceededError):
            await TaskService(db_session).challenge_task(erin, task.id, 6.0)

    @pytest.mark.asyncio
    async def test_one_open_challenge_per_challenger(self, db_session, audited_task):
        task, _, erin = await audited_task()
        tasks = TaskService(db_session)
        await tasks.challenge_task(erin, task.id, 1.0)
        with pytest.raises(ConflictError):
            await tasks.challenge_task(erin, task.id, 1.0)

    @pytest.mark.asyncio
    async def test_assignee_cannot_challenge(self, db_session, audited_task):
        task, dave, _ = await audited_task()
        with pytest.raises(AccessDeniedError):
            await TaskService(db_session).challenge_task(dave, task.id, 1.0)

    @pytest.mark.asyncio
    async def test_window_closes(self, db_session, audited_task):
        task, _, erin = await audited_task()
        await db_session.execute(
            update(Task)
            .where(Task.id == task.id)
            .values(audit_start_time=utcnow() - timedelta(hours=25))
        )
        await db_session.commit()
        with pytest.raises(InvalidStateError):
            await TaskService(db_session).challenge_task(erin, task.id, 1.0)

    @pytest.mark.asyncio
    async def test_open_challenge_blocks_approval(self, db_session, creator, audited_task):
        task, _, erin = await audited_task()
        await TaskService(db_session).challenge_task(erin, task.id, 1.0)
        with pytest.raises(InvalidStateError):
            await TaskService(db_session).approve_task(creator, task.id)


class TestChallengeVotes:
    """Challenge votes reaching the uphold weight reject the task."""

    @pytest.mark.asyncio
    async def test_votes_uphold_challenge(self, db_session, project, creator, enroll, audited_task):
        task, _, erin = await audited_task()
        gina = await enroll("gina")
        hank = await enroll("hank", squad_role="Masters", participation_level="Master")
        await stake(db_session, project, creator, gina, 1.0)
        await stake(db_session, project, creator, hank, 1.0)

        tasks = TaskService(db_session)
        voting = VotingService(db_session)
        challenge = await tasks.challenge_task(erin, task.id, 2.0)

        first = await voting.cast_vote(gina, task.id, "challenge")
        assert first.weight == 1.0
        assert (await tasks.get_task(task.id)).status == "pendingConfirmation"

        second = await voting.cast_vote(hank, task.id, "challenge")
        assert second.weight == 3.0

        assert (await tasks.get_task(task.id)).status == "rejected"
        challenges = await tasks.list_challenges(task.id)
        assert [c.status for c in challenges] == ["upheld"]
        assert challenges[0].id == challenge.id
        profile = await ProfileService(db_session).get_profile(erin)
        assert profile.enabler_points == 1

        tally = await voting.get_tally(task.id, "challenge")
        assert tally["votes"] == 2
        assert tally["total_weight"] == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_duplicate_vote(self, db_session, project, creator, enroll, audited_task):
        task, _, erin = await audited_task()
        gina = await enroll("gina")
        await stake(db_session, project, creator, gina, 1.0)
        await TaskService(db_session).challenge_task(erin, task.id, 1.0)

        voting = VotingService(db_session)
        await voting.cast_vote(gina, task.id, "challenge")
        with pytest.raises(ConflictError):
            await voting.cast_vote(gina, task.id, "challenge")

    @pytest.mark.asyncio
    async def test_assignee_cannot_vote_on_own_challenge(self, db_session, audited_task):
        task, dave, erin = await audited_task()
        await TaskService(db_session).challenge_task(erin, task.id, 1.0)
        with pytest.raises(AccessDeniedError):
            await VotingService(db_session).cast_vote(dave, task.id, "challenge")

    @pytest.mark.asyncio
    async def test_apprentice_has_no_vote(self, db_session, project, creator, enroll, audited_task):
        task, _, erin = await audited_task()
        ivy = await enroll("ivy", squad_role="Apprentice", participation_level="Apprentice")
        await stake(db_session, project, creator, ivy, 1.0)
        await TaskService(db_session).challenge_task(erin, task.id, 1.0)
        with pytest.raises(AccessDeniedError):
            await VotingService(db_session).cast_vote(ivy, task.id, "challenge")

    @pytest.mark.asyncio
    async def test_challenge_vote_needs_open_challenge(self, db_session, audited_task):
        task, _, erin = await audited_task()
        with pytest.raises(InvalidStateError):
            await VotingService(db_session).cast_vote(erin, task.id, "challenge")

    @pytest.mark.asyncio
    async def test_no_votes_after_audit_window(self, db_session, project, creator, enroll, audited_task):
        """Once the window has passed, only the audit-close sweep resolves the challenge."""
        task, _, erin = await audited_task()
        task_id = task.id
        hank = await enroll("hank", squad_role="Masters", participation_level="Master")
        await stake(db_session, project, creator, hank, 1.0)
        await TaskService(db_session).challenge_task(erin, task_id, 1.0)
        await db_session.execute(
            update(Task)
            .where(Task.id == task_id)
            .values(audit_start_time=utcnow() - timedelta(hours=48))
        )
        await db_session.commit()

        with pytest.raises(InvalidStateError):
            await VotingService(db_session).cast_vote(hank, task_id, "challenge")

        tasks = TaskService(db_session)
        assert (await tasks.get_task(task_id)).status == "pendingConfirmation"
        assert [c.status for c in await tasks.list_challenges(task_id)] == ["open"]
        assert await tasks.close_elapsed_audits() == {"closed": 1, "skipped": 0}
        assert (await tasks.get_task(task_id)).status == "inAudit"


class TestOtherVotes:

    @pytest.mark.asyncio
    async def test_task_proposal_vote(self, db_session, project, creator):
        task = await TaskService(db_session).create_task(creator, project.id, "Idea", 5.0)
        vote = await VotingService(db_session).cast_vote(creator, task.id, "taskProposal")
        assert vote.vote_type == "taskProposal"
        assert vote.weight == 1.0

    @pytest.mark.asyncio
    async def test_final_prize_needs_completed_project(self, db_session, project, admin):
        project_id = project.id
        voting = VotingService(db_session)
        with pytest.raises(InvalidStateError):
            await voting.cast_vote(admin, project_id, "finalPrize")

        projects = ProjectService(db_session)
        await projects.activate_project(admin, project_id, force=True)
        await projects.complete_project(admin, project_id)
        vote = await voting.cast_vote(admin, project_id, "finalPrize")
        assert vote.weight == 3.0


class TestAuditCloseSweep:
    """Challenges left open past the audit window are dismissed."""

    @pytest.mark.asyncio
    async def test_dismisses_and_returns_to_audit(self, db_session, creator, audited_task):
        task, dave, erin = await audited_task()
        tasks = TaskService(db_session)
        await tasks.challenge_task(erin, task.id, 1.0)
        later = utcnow() + timedelta(hours=25)

        assert await tasks.close_elapsed_audits(now=later) == {"closed": 1, "skipped": 0}
        assert (await tasks.get_task(task.id)).status == "inAudit"
        assert [c.status for c in await tasks.list_challenges(task.id)] == ["dismissed"]

        assert await tasks.close_elapsed_audits(now=later) == {"closed": 0, "skipped": 0}

        approved = await tasks.approve_task(creator, task.id)
        assert approved.status == "completed"
        profile = await ProfileService(db_session).get_profile(dave)
        assert profile.total_earned_hh == pytest.approx(40.0)

    @pytest.mark.asyncio
    async def test_open_window_untouched(self, db_session, audited_task):
        task, _, erin = await audited_task()
        tasks = TaskService(db_session)
        await tasks.challenge_task(erin, task.id, 1.0)
        assert await tasks.close_elapsed_audits() == {"closed": 0, "skipped": 0}
        assert (await tasks.get_task(task.id)).status == "pendingConfirmation"


class TestTally:

    def test_tally_votes(self):
        class FakeVote:
            def __init__(self, weight):
                self.weight = weight

        assert tally_votes([FakeVote(1.0), FakeVote(3.0)]) == {"votes": 2, "total_weight": 4.0}
        assert tally_votes([]) == {"votes": 0, "total_weight": 0.0}

    def test_uphold_threshold(self):
        assert challenge_upheld(3.0, 3.0)
        assert not challenge_upheld(2.0, 3.0)
