"""
Common exception definitions

Every public operation raises one of these before mutating anything, so a
caller that catches them can assume nothing changed.
"""


class RankedError(Exception):
    """
    Base class for errors surfaced to the command layer. `message` is meant to
    be shown to the user that triggered the operation.
    """
    def __init__(self, message: str = "", *args, **kwargs):
        super().__init__(message, *args, **kwargs)
        self.message = message


class ValidationError(RankedError):
    """
    Malformed input such as a bad room code or an out of range score. The
    input should be requested again.
    """


class StateError(RankedError):
    """
    The action is not valid for the current phase of the match or queue.
    """


class NotQueued(StateError):
    def __init__(self, user_id: int, *args, **kwargs):
        super().__init__(f"User {user_id} is not queued", *args, **kwargs)
        self.user_id = user_id


class AlreadyReported(StateError):
    def __init__(self, match_id: int, user_id: int, *args, **kwargs):
        super().__init__(
            f"User {user_id} already reported a score for match {match_id}",
            *args, **kwargs
        )
        self.match_id = match_id
        self.user_id = user_id


class NotFoundError(RankedError):
    """
    The referenced match, dispute or player does not exist.
    """


class UnknownMatch(NotFoundError):
    def __init__(self, match_id: int, *args, **kwargs):
        super().__init__(f"Unknown match {match_id}", *args, **kwargs)
        self.match_id = match_id


class UnknownDispute(NotFoundError):
    def __init__(self, dispute_id: int, *args, **kwargs):
        super().__init__(f"Unknown dispute {dispute_id}", *args, **kwargs)
        self.dispute_id = dispute_id


class NotParticipant(NotFoundError):
    def __init__(self, match_id: int, user_id: int, *args, **kwargs):
        super().__init__(
            f"User {user_id} is not playing in match {match_id}",
            *args, **kwargs
        )
        self.match_id = match_id
        self.user_id = user_id


class ConcurrencyConflict(RankedError):
    """
    Two operations raced for the same resource. The losing operation made no
    changes.
    """


class AlreadyQueued(ConcurrencyConflict):
    def __init__(self, user_id: int, *args, **kwargs):
        super().__init__(f"User {user_id} is already queued", *args, **kwargs)
        self.user_id = user_id


class AlreadyInMatch(ConcurrencyConflict):
    def __init__(self, user_id: int, *args, **kwargs):
        super().__init__(
            f"User {user_id} is already in an active match", *args, **kwargs
        )
        self.user_id = user_id


class QueueFull(ConcurrencyConflict):
    def __init__(self, size: int, *args, **kwargs):
        super().__init__(f"The queue is full ({size} players)", *args, **kwargs)
        self.size = size


class PersistenceError(RankedError):
    """
    The store failed to save something. Usually retried by the caller.
    """
