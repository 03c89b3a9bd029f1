import pytest

from ranked.exceptions import NotParticipant, StateError, ValidationError
from ranked.matches import (
    Dispute,
    DisputeOrigin,
    HistoryAction,
    Match,
    MatchStatus,
    NegotiationPhase,
    Participant,
    ReportedScore,
    Resolution
)
from ranked.timing import datetime_now


def test_needs_two_distinct_players():
    with pytest.raises(ValueError):
        Match(id=1, participants=[Participant(1)])
    with pytest.raises(ValueError):
        Match(id=1, participants=[Participant(1), Participant(1)])


def test_participants(match):
    assert match.user_ids == [1, 2]
    assert match.participant(2).user_id == 2
    assert match.opponent_of(1).user_id == 2
    assert match.opponent_of(2).user_id == 1
    assert [p.user_id for p in match] == [1, 2]

    with pytest.raises(NotParticipant):
        match.participant(3)
    with pytest.raises(NotParticipant):
        match.opponent_of(3)


def test_host_and_loser(match):
    assert match.host is None
    assert match.loser_id is None

    match.participant(2).is_host = True
    match.winner_id = 2

    assert match.host.user_id == 2
    assert match.loser_id == 1


def test_transition_records_history(match):
    match.transition(MatchStatus.IN_PROGRESS, actor=1, reason="test")

    assert match.status is MatchStatus.IN_PROGRESS
    assert match.started_at is not None
    entry = match.history[-1]
    assert entry.action is HistoryAction.STATUS_CHANGED
    assert entry.actor == 1
    assert entry.payload == {
        "old": "PREGAME", "new": "IN_PROGRESS", "reason": "test"
    }


@pytest.mark.parametrize("path", (
    (MatchStatus.DISPUTED,),
    (MatchStatus.IN_PROGRESS, MatchStatus.PREGAME),
    (MatchStatus.COMPLETED, MatchStatus.CANCELLED),
    (MatchStatus.CANCELLED, MatchStatus.IN_PROGRESS),
))
def test_invalid_transitions(match, path):
    *valid, invalid = path
    for status in valid:
        match.transition(status)
    history = list(match.history)

    with pytest.raises(StateError):
        match.transition(invalid)

    assert match.history == history


def test_terminal_match_is_frozen(match):
    match.transition(MatchStatus.CANCELLED)

    assert match.is_terminal
    assert match.ended_at is not None
    assert match.phase is NegotiationPhase.CANCELLED
    with pytest.raises(StateError):
        match.record(HistoryAction.TIMED_OUT)


def test_completion_ends_negotiation(match):
    match.transition(MatchStatus.COMPLETED)

    assert match.phase is NegotiationPhase.DONE


async def test_arming_a_timer_cancels_the_previous_one(match, scheduler):
    first = scheduler.call_later(10, lambda: None)
    second = scheduler.call_later(10, lambda: None)

    match.arm_timer(first)
    match.arm_timer(second)

    assert first.cancelled
    assert second.pending
    assert match.timer is second

    match.clear_timer()
    assert second.cancelled
    assert match.timer is None


async def test_terminal_transition_clears_timer(match, scheduler):
    handle = scheduler.call_later(10, lambda: None)
    match.arm_timer(handle)

    match.transition(MatchStatus.CANCELLED)

    assert handle.cancelled
    assert match.timer is None


def test_serialization(match):
    now = datetime_now()
    match.stage = "Yoshi Park"
    match.room_code = "ABCD"
    match.is_hypercharged = True
    match.hypercharge_multiplier = 0.5
    match.participant(1).captain = "Mario"
    match.participant(1).is_host = True
    match.participant(2).reported_score = ReportedScore(3, 5)
    match.participant(2).reported_at = now
    match.record(HistoryAction.CAPTAIN_PICKED, 1, captain="Mario", auto=False)
    match.transition(MatchStatus.IN_PROGRESS)
    match.transition(MatchStatus.DISPUTED)
    match.dispute = Dispute(
        match_id=match.id,
        priority=1.2,
        origin=DisputeOrigin.SCORE_MISMATCH,
        created_at=now,
        sequence=4,
        metadata={1: 0, 2: 1},
        resolution=Resolution(winner_id=1, score=ReportedScore(5, 3)),
    )

    restored = Match.from_dict(match.to_dict())

    assert restored.to_dict() == match.to_dict()
    assert restored.participant(2).reported_score == ReportedScore(3, 5)
    assert restored.dispute.metadata == {1: 0, 2: 1}
    assert restored.dispute.resolution.score == ReportedScore(5, 3)
    assert restored.timer is None
    assert restored.lock is not match.lock


@pytest.mark.parametrize("resolution", (
    Resolution(),
    Resolution(winner_id=1, cancelled=True),
    Resolution(winner_id=1, score=ReportedScore(3, 5)),
))
def test_invalid_resolutions(resolution):
    with pytest.raises(ValidationError):
        resolution.validate()


def test_valid_resolutions():
    Resolution(cancelled=True).validate()
    Resolution(winner_id=2).validate()
    Resolution(winner_id=2, score=ReportedScore(5, 3)).validate()


def test_dispute_ordering():
    now = datetime_now()

    def make(priority, sequence):
        return Dispute(
            match_id=sequence,
            priority=priority,
            origin=DisputeOrigin.PLAYER_REQUEST,
            created_at=now,
            sequence=sequence,
        )

    disputes = [make(1.0, 1), make(1.5, 2), make(1.0, 3), make(1.5, 4)]

    ordered = sorted(disputes, key=lambda d: d.sort_key)

    assert [d.id for d in ordered] == [2, 4, 1, 3]
