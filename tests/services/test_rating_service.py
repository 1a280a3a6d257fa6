"""Tests for peer ratings and mentor-weighted reputation."""

from datetime import timedelta

import pytest

from squadledger.datetime_utils import ensure_utc, utcnow
from squadledger.exceptions import (
    AccessDeniedError,
    ConflictError,
    InputValidationError,
    InvalidStateError,
)
from squadledger.models import PeerRating
from squadledger.services import rating_service
from squadledger.services.pledge_service import PledgeService
from squadledger.services.profile_service import ProfileService
from squadledger.services.project_service import ProjectService
from squadledger.services.rating_service import RatingService


@pytest.fixture
def completed_project(db_session, creator, enroll):
    """A completed 10 HH project funded by dave, erin and mentor frank."""

    async def _build():
        dave = await enroll("dave")
        erin = await enroll("erin")
        frank = await enroll("frank", squad_role="Mentor", participation_level="Master")
        projects = ProjectService(db_session)
        pledges = PledgeService(db_session)
        project = await projects.create_project(creator, "Zine", 10.0, pool_hh=10.0)
        for principal, amount in ((dave, 3.0), (erin, 4.0), (frank, 3.0)):
            pledge = await pledges.pledge_to_task(principal, project.id, amount)
            await pledges.confirm_pledge(creator, pledge.id)
        await projects.activate_project(creator, project.id)
        project = await projects.complete_project(creator, project.id, final_monetary_value=100.0)
        return project, dave, erin, frank

    return _build


class TestSubmitRating:

    @pytest.mark.asyncio
    async def test_mentor_weighting(self, db_session, completed_project):
        """A mentor's 5 outweighs a journeyman's 1: (5*3 + 1*1) / 4."""
        project, dave, erin, frank = await completed_project()
        ratings = RatingService(db_session)

        by_mentor = await ratings.submit_rating(frank, project.id, erin, 5.0)
        by_peer = await ratings.submit_rating(dave, project.id, erin, 1.0)
        assert by_mentor.weight == 3.0
        assert by_peer.weight == 1.0

        profile = await ProfileService(db_session).get_profile(erin)
        assert profile.reputation_score == pytest.approx(4.0)
        assert await ratings.get_reputation(erin) == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_self_rating(self, db_session, completed_project):
        project, dave, _, _ = await completed_project()
        with pytest.raises(InputValidationError):
            await RatingService(db_session).submit_rating(dave, project.id, dave, 5.0)

    @pytest.mark.asyncio
    async def test_duplicate_rating(self, db_session, completed_project):
        project, dave, erin, _ = await completed_project()
        ratings = RatingService(db_session)
        await ratings.submit_rating(dave, project.id, erin, 4.0)
        with pytest.raises(ConflictError):
            await ratings.submit_rating(dave, project.id, erin, 2.0)

    @pytest.mark.asyncio
    async def test_window_closes_after_seven_days(self, db_session, completed_project):
        project, dave, erin, _ = await completed_project()
        project_id = project.id
        completion = ensure_utc(project.completion_time)
        ratings = RatingService(db_session)

        with pytest.raises(InputValidationError):
            await ratings.submit_rating(dave, project_id, erin, 4.0, now=completion + timedelta(days=8))

        entry = await ratings.submit_rating(dave, project_id, erin, 4.0, now=completion + timedelta(days=6))
        assert entry.rating == 4.0

    @pytest.mark.asyncio
    async def test_ratee_must_have_participated(self, db_session, completed_project, enroll):
        project, dave, _, _ = await completed_project()
        project_id = project.id
        outsider = await enroll("oscar")
        with pytest.raises(InputValidationError):
            await RatingService(db_session).submit_rating(dave, project_id, outsider, 3.0)
        with pytest.raises(AccessDeniedError):
            await RatingService(db_session).submit_rating(outsider, project_id, dave, 3.0)

    @pytest.mark.asyncio
    async def test_project_must_be_completed(self, db_session, project, creator, enroll):
        dave = await enroll("dave")
        await PledgeService(db_session).pledge_to_task(dave, project.id, 1.0)
        with pytest.raises(InvalidStateError):
            await RatingService(db_session).submit_rating(creator, project.id, dave, 3.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [-1.0, 5.5])
    async def test_rating_range(self, db_session, completed_project, value):
        project, dave, erin, _ = await completed_project()
        with pytest.raises(InputValidationError):
            await RatingService(db_session).submit_rating(dave, project.id, erin, value)

    @pytest.mark.asyncio
    async def test_failed_recompute_discards_rating(self, db_session, completed_project, monkeypatch):
        """A rating is only stored if the ratee's reputation is updated with it."""
        project, dave, erin, _ = await completed_project()
        project_id = project.id

        async def broken_recompute(db, principal):
            raise RuntimeError("reputation store unavailable")

        monkeypatch.setattr(rating_service, "recompute_reputation", broken_recompute)
        with pytest.raises(RuntimeError):
            await RatingService(db_session).submit_rating(dave, project_id, erin, 4.0)

        assert await RatingService(db_session).list_ratings(project_id) == []
        assert await RatingService(db_session).get_reputation(erin) == 0.0


class TestReputation:

    @pytest.mark.asyncio
    async def test_late_ratings_are_ignored(self, db_session, completed_project):
        """Ratings stamped after the window never count toward reputation."""
        project, dave, erin, frank = await completed_project()
        ratings = RatingService(db_session)
        await ratings.submit_rating(dave, project.id, erin, 2.0)

        db_session.add(
            PeerRating(
                project_id=project.id,
                rater=frank,
                ratee=erin,
                rating=5.0,
                weight=3.0,
                created_at=ensure_utc(project.completion_time) + timedelta(days=10),
            )
        )
        await db_session.commit()

        assert await rating_service.recompute_reputation(db_session, erin) == pytest.approx(2.0)
        assert len(await ratings.list_ratings(project.id, ratee=erin)) == 2

    @pytest.mark.asyncio
    async def test_unrated_user(self, db_session, enroll):
        dave = await enroll("dave")
        assert await RatingService(db_session).get_reputation(dave) == 0.0
        profile = await ProfileService(db_session).get_profile(dave)
        assert profile.reputation_score == 0.0

    @pytest.mark.asyncio
    async def test_reading_reputation_does_not_recompute(self, db_session, completed_project):
        """Reads return the stored score; only a submitted rating recomputes it."""
        project, dave, erin, frank = await completed_project()
        ratings = RatingService(db_session)
        await ratings.submit_rating(dave, project.id, erin, 2.0)

        db_session.add(
            PeerRating(project_id=project.id, rater=frank, ratee=erin, rating=5.0, weight=3.0)
        )
        await db_session.commit()

        assert await ratings.get_reputation(erin) == pytest.approx(2.0)


class TestSweepsIgnoreCompletedProjects:

    @pytest.mark.asyncio
    async def test_expiry_sweep_on_completed_project(self, db_session, completed_project):
        await completed_project()
        result = await PledgeService(db_session).expire_stale_pledges(now=utcnow() + timedelta(days=30))
        assert result == {"expired": 0, "skipped": 0}
