import asyncio
from datetime import timedelta

import pytest

from ranked.config import config
from ranked.exceptions import (
    AlreadyReported,
    NotParticipant,
    PersistenceError,
    StateError,
    UnknownMatch,
    ValidationError
)
from ranked.matches import DisputeOrigin, HistoryAction, MatchStatus
from ranked.players import PlayerActivity
from ranked.timing import datetime_now
from tests.utils import fast_forward


@pytest.fixture
async def players(player_factory):
    await player_factory(1, rating=1000)
    await player_factory(2, rating=1000)


async def test_agreeing_reports_complete_the_match(
    outcome_resolver,
    rating_service,
    running_match,
    players,
    store,
    notifier,
    match_registry,
    mocker
):
    expected = rating_service.engine.compute(1000, 1000, margin=2)
    compute = mocker.spy(rating_service.engine, "compute")
    match = await running_match()

    await outcome_resolver.submit_score(match.id, 1, "5-3")
    assert match.status is MatchStatus.IN_PROGRESS
    await outcome_resolver.submit_score(match.id, 2, "3-5")

    assert match.status is MatchStatus.COMPLETED
    assert match.winner_id == 1
    assert compute.call_count == 1
    assert match.participant(1).rating_change == expected.winner_delta
    assert match.participant(2).rating_change == expected.loser_delta
    assert (await store.load_player(1)).rating == 1000 + expected.winner_delta
    assert (await store.load_player(2)).rating == 1000 + expected.loser_delta
    assert (await store.load_player(1)).matches_won == 1
    assert (await store.load_player(2)).matches_lost == 1
    assert match.timer is None
    assert match.id not in match_registry
    assert await store.get_activity(1) is PlayerActivity.IDLE
    assert sorted(u for u, _ in notifier.sent("match_completed")) == [1, 2]


async def test_loser_can_report_first(outcome_resolver, running_match, players):
    match = await running_match()

    await outcome_resolver.submit_score(match.id, 2, "3-5")
    await outcome_resolver.submit_score(match.id, 1, (5, 3))

    assert match.winner_id == 1


async def test_first_report_notifies_opponent(
    outcome_resolver, running_match, notifier
):
    match = await running_match()

    await outcome_resolver.submit_score(match.id, 1, "5-3")

    (recipient, _), = notifier.sent("opponent_reported")
    assert recipient == 2
    assert match.participant(1).reported_score == (5, 3)
    assert match.participant(1).reported_at is not None
    reported, = [
        e for e in match.history if e.action is HistoryAction.SCORE_REPORTED
    ]
    assert reported.payload["score"] == "5-3"


async def test_mismatching_reports_open_dispute(
    outcome_resolver, dispute_coordinator, running_match, notifier
):
    match = await running_match()

    await outcome_resolver.submit_score(match.id, 1, "5-3")
    await outcome_resolver.submit_score(match.id, 2, "7-3")

    assert match.status is MatchStatus.DISPUTED
    dispute = match.dispute
    assert dispute.origin is DisputeOrigin.SCORE_MISMATCH
    assert dispute.priority > 0
    assert dispute_coordinator.pending() == [dispute]
    assert sorted(u for u, _ in notifier.sent("match_disputed")) == [1, 2]
    # The report timer was replaced by the dispute timer
    assert match.timer is not None and match.timer.pending


async def test_request_dispute(outcome_resolver, dispute_coordinator, running_match):
    match = await running_match()
    await outcome_resolver.submit_score(match.id, 1, "5-3")

    await outcome_resolver.request_dispute(match.id, 2)

    assert match.status is MatchStatus.DISPUTED
    assert match.dispute.origin is DisputeOrigin.PLAYER_REQUEST
    assert match.dispute.requested_by == 2
    assert match.dispute.priority == config.DISPUTE_WEIGHT_PLAYER_REQUEST

    with pytest.raises(StateError):
        await outcome_resolver.submit_score(match.id, 2, "3-5")


async def test_request_dispute_errors(outcome_resolver, match_factory, running_match):
    with pytest.raises(UnknownMatch):
        await outcome_resolver.request_dispute(42, 1)

    match = await running_match()
    with pytest.raises(NotParticipant):
        await outcome_resolver.request_dispute(match.id, 3)

    pregame = await match_factory((3, 4))
    with pytest.raises(StateError):
        await outcome_resolver.request_dispute(pregame.id, 3)


async def test_submit_score_errors_in_order(
    outcome_resolver, match_factory, running_match
):
    with pytest.raises(UnknownMatch):
        await outcome_resolver.submit_score(42, 1, "nonsense")

    match = await running_match()
    with pytest.raises(NotParticipant):
        await outcome_resolver.submit_score(match.id, 3, "nonsense")
    with pytest.raises(ValidationError):
        await outcome_resolver.submit_score(match.id, 1, "nonsense")
    with pytest.raises(ValidationError):
        await outcome_resolver.submit_score(match.id, 1, "3-3")

    pregame = await match_factory((3, 4))
    with pytest.raises(StateError):
        await outcome_resolver.submit_score(pregame.id, 3, "5-3")

    await outcome_resolver.submit_score(match.id, 1, "5-3")
    with pytest.raises(AlreadyReported):
        await outcome_resolver.submit_score(match.id, 1, "5-4")
    assert match.participant(1).reported_score == (5, 3)


async def test_concurrent_reports_are_counted_once(
    outcome_resolver, running_match
):
    match = await running_match()

    results = await asyncio.gather(
        outcome_resolver.submit_score(match.id, 1, "5-3"),
        outcome_resolver.submit_score(match.id, 1, "5-3"),
        return_exceptions=True
    )

    assert sum(1 for r in results if isinstance(r, AlreadyReported)) == 1
    assert match.status is MatchStatus.IN_PROGRESS


async def test_request_report_requires_running_match(
    outcome_resolver, match_factory
):
    match = await match_factory()

    with pytest.raises(StateError):
        async with match.lock:
            await outcome_resolver.request_report(match)


@fast_forward(30)
async def test_report_timeout_cancels(
    outcome_resolver, running_match, players, store, notifier, mocker
):
    mocker.patch.object(config, "REPORT_TIMEOUT", 10)
    match = await running_match()
    await outcome_resolver.submit_score(match.id, 1, "5-3")

    await asyncio.sleep(15)

    assert match.status is MatchStatus.CANCELLED
    assert match.cancel_reason == "score reports timed out"
    assert match.participant(1).rating_change == 0
    assert (await store.load_player(1)).rating == 1000
    timed_out, = [e for e in match.history if e.action is HistoryAction.TIMED_OUT]
    assert timed_out.payload == {"phase": "report", "reports": 1}
    assert sorted(u for u, _ in notifier.sent("match_cancelled")) == [1, 2]

    with pytest.raises(UnknownMatch):
        await outcome_resolver.submit_score(match.id, 2, "3-5")


@fast_forward(30)
async def test_report_in_time_stops_timer(
    outcome_resolver, running_match, players, mocker
):
    mocker.patch.object(config, "REPORT_TIMEOUT", 10)
    match = await running_match()
    await asyncio.sleep(5)

    await outcome_resolver.submit_score(match.id, 1, "5-3")
    await outcome_resolver.submit_score(match.id, 2, "3-5")
    await asyncio.sleep(10)

    assert match.status is MatchStatus.COMPLETED


@fast_forward(30)
async def test_initialize_rearms_remaining_time(
    outcome_resolver, match_factory, match_registry
):
    match = await match_factory(status=MatchStatus.IN_PROGRESS)
    match.started_at = datetime_now() - timedelta(
        seconds=config.REPORT_TIMEOUT - 5
    )
    await match_registry.save(match)

    await outcome_resolver.initialize()
    assert 0 < match.timer.remaining() <= 5

    await asyncio.sleep(10)

    assert match.status is MatchStatus.CANCELLED
    assert match.cancel_reason == "score reports timed out"


async def test_rating_failure_still_ends_match(
    outcome_resolver,
    rating_service,
    running_match,
    players,
    store,
    match_registry,
    notifier,
    mocker,
    caplog
):
    mocker.patch.object(
        rating_service, "apply_result", side_effect=PersistenceError("db down")
    )
    match = await running_match()

    await outcome_resolver.submit_score(match.id, 1, "5-3")
    await outcome_resolver.submit_score(match.id, 2, "3-5")

    assert match.status is MatchStatus.COMPLETED
    assert match.id not in match_registry
    assert await store.get_activity(1) is PlayerActivity.IDLE
    assert await store.get_activity(2) is PlayerActivity.IDLE
    assert [p.rating_change for p in match.participants] == [0, 0]
    assert sorted(u for u, _ in notifier.sent("match_completed")) == [1, 2]
    assert "Failed to rate" in caplog.text


@fast_forward(30)
async def test_late_report_timeout_does_nothing(
    outcome_resolver, running_match, players, mocker
):
    mocker.patch.object(config, "REPORT_TIMEOUT", 10)
    match = await running_match()
    await outcome_resolver.submit_score(match.id, 1, "5-3")
    await outcome_resolver.submit_score(match.id, 2, "3-5")
    history = list(match.history)

    await outcome_resolver._on_report_timeout(match)
    await asyncio.sleep(15)

    assert match.status is MatchStatus.COMPLETED
    assert match.history == history


@fast_forward(30)
async def test_repeated_report_timeout_cancels_once(
    outcome_resolver, running_match, notifier, mocker
):
    mocker.patch.object(config, "REPORT_TIMEOUT", 10)
    match = await running_match()
    await asyncio.sleep(15)
    assert match.status is MatchStatus.CANCELLED
    history = list(match.history)

    await outcome_resolver._on_report_timeout(match)

    assert match.status is MatchStatus.CANCELLED
    assert match.history == history
    assert len(notifier.sent("match_cancelled")) == 2
