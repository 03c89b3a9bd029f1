from unittest import mock

import pytest

from ranked.config import config
from ranked.matches import Match, Participant


@pytest.fixture
def match():
    """A standalone match that no service knows about"""
    return Match(id=1, participants=[Participant(1), Participant(2)])


@pytest.fixture
def fast_timeouts(mocker):
    """Shorten every negotiation timeout to a few simulated seconds"""
    for key, value in (
        ("STAGE_BAN_TIMEOUT", 5),
        ("CAPTAIN_PICK_TIMEOUT", 5),
        ("HOST_SELECT_TIMEOUT", 5),
        ("ROOM_CODE_TIMEOUT", 5),
        ("ROOM_CODE_CONFIRM_TIMEOUT", 5),
        ("PREGAME_TIMEOUT", 600),
    ):
        mocker.patch.object(config, key, value)


@pytest.fixture
def short_stage_list(mocker):
    mocker.patch.object(config, "STAGES", ["Mario Stadium", "Yoshi Park", "Wario City"])


@pytest.fixture
def mock_publish(message_queue_service):
    with mock.patch.object(
        message_queue_service, "publish", mock.AsyncMock()
    ) as publish:
        yield publish
