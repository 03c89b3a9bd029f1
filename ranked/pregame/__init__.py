"""
Pre game negotiation: stage bans, captain picks, host selection and the
room code exchange
"""

from .negotiator import Negotiation, PreGameNegotiator
from .requests import PendingRequest
from .rules import (
    CODE_CONFIRM,
    CODE_INVALID,
    HOST_OPPONENT,
    HOST_SELF,
    HostCandidate,
    check_pregame_timeouts,
    resolve_host,
    validate_room_code
)

__all__ = (
    "CODE_CONFIRM",
    "CODE_INVALID",
    "HOST_OPPONENT",
    "HOST_SELF",
    "HostCandidate",
    "Negotiation",
    "PendingRequest",
    "PreGameNegotiator",
    "check_pregame_timeouts",
    "resolve_host",
    "validate_room_code",
)
