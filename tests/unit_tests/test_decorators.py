import logging
from unittest import mock

from ranked.decorators import timed, with_logger


def test_with_logger():
    @with_logger
    class MatchQueue:
        pass

    assert isinstance(MatchQueue()._logger, logging.Logger)
    assert MatchQueue._logger.name.endswith("MatchQueue")


def test_timed_fun():
    logger = mock.Mock()

    @timed(logger=logger, limit=0)
    def find_pairs():
        return "pairs"

    assert find_pairs() == "pairs"
    logger.warning.assert_called_once()


def test_timed_method():
    logger = mock.Mock()

    class Algorithm:
        @timed(logger=logger, limit=0)
        def find_pairs(self):
            return "pairs"

    assert Algorithm().find_pairs() == "pairs"
    logger.warning.assert_called_once()


def test_timed_fast_enough():
    logger = mock.Mock()

    @timed(logger=logger, limit=60)
    def find_pairs():
        return "pairs"

    find_pairs()
    logger.warning.assert_not_called()


def test_timed_wraps_right():
    @timed
    def find_pairs():
        """Pair everyone"""

    assert find_pairs.__name__ == "find_pairs"
    assert find_pairs.__doc__ == "Pair everyone"
